"""Synchronization and mutation layer.

Mutations go to the appointment store first; only after the store confirms
them are the cached collections invalidated and fetched again in full. Nothing
is inserted, patched or removed locally ahead of that confirmation, so a
failed mutation leaves the cache exactly as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from .errors import MutationFailed, ValidationError
from .lifecycle import is_editable, validate, validate_patch
from .models import Appointment, AppointmentDraft, AppointmentPatch, AppointmentStatus
from .projection import load_appointments

logger = logging.getLogger(__name__)

APPOINTMENTS = "appointments"
TODAY = "today-appointments"
COLLECTIONS = (APPOINTMENTS, TODAY)


class AppointmentStore(Protocol):
    """Clinic-scoped appointment persistence. Records travel in wire format."""

    async def list_appointments(self, clinic_id: str) -> list[dict[str, Any]]: ...

    async def list_today(self, clinic_id: str) -> list[dict[str, Any]]: ...

    async def create_appointment(self, clinic_id: str, payload: dict[str, Any]) -> dict[str, Any]: ...

    async def update_appointment(
        self, clinic_id: str, appointment_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def delete_appointment(self, clinic_id: str, appointment_id: str) -> None: ...

    async def patient_names(self, clinic_id: str) -> dict[str, str]: ...

    async def dentist_names(self, clinic_id: str) -> dict[str, str]: ...


@dataclass
class _Collection:
    items: dict[str, Appointment] = field(default_factory=dict)
    stale: bool = True
    loaded: bool = False
    requested: int = 0  # sequence number of the newest fetch started
    applied: int = 0  # sequence number of the fetch currently shown
    valid_from: int = 1  # fetches started before the last invalidation cannot clear ``stale``


class AppointmentCache:
    """Named appointment collections keyed by appointment id.

    Fetch results may arrive out of order; a result older than the one
    already applied is dropped so the newest fetch always wins.
    """

    def __init__(self) -> None:
        self._collections: dict[str, _Collection] = {}

    def _get(self, key: str) -> _Collection:
        return self._collections.setdefault(key, _Collection())

    def begin_fetch(self, key: str) -> int:
        collection = self._get(key)
        collection.requested += 1
        return collection.requested

    def apply(self, key: str, seq: int, items: list[Appointment]) -> bool:
        collection = self._get(key)
        if seq < collection.applied:
            logger.debug("Dropping superseded %s fetch #%s", key, seq)
            return False
        collection.items = {item.id: item for item in items}
        collection.applied = seq
        collection.loaded = True
        if seq >= collection.valid_from:
            collection.stale = False
        return True

    def invalidate(self, *keys: str) -> None:
        for key in keys or tuple(self._collections):
            collection = self._get(key)
            collection.stale = True
            collection.valid_from = collection.requested + 1

    def is_stale(self, key: str) -> bool:
        return self._get(key).stale

    def is_loaded(self, key: str) -> bool:
        return self._get(key).loaded

    def items(self, key: str) -> list[Appointment]:
        return list(self._get(key).items.values())

    def get(self, key: str, appointment_id: str) -> Optional[Appointment]:
        return self._get(key).items.get(appointment_id)


class AppointmentSync:
    """Create/update/delete appointments for one clinic and keep its cache consistent.

    Concurrent edits are last-write-wins at the store; no version check is made.
    """

    def __init__(
        self,
        store: AppointmentStore,
        clinic_id: str,
        cache: AppointmentCache | None = None,
        lock_terminal: bool = False,
    ):
        self.store = store
        self.clinic_id = clinic_id
        self.cache = cache or AppointmentCache()
        self.lock_terminal = lock_terminal

    # reads -------------------------------------------------------------

    async def refresh(self, key: str = APPOINTMENTS) -> list[Appointment]:
        """Fetch ``key`` in full and replace the cached collection with it."""
        if key not in COLLECTIONS:
            raise KeyError(key)
        seq = self.cache.begin_fetch(key)
        fetch = self.store.list_appointments if key == APPOINTMENTS else self.store.list_today
        records = await fetch(self.clinic_id)
        self.cache.apply(key, seq, load_appointments(records))
        return self.cache.items(key)

    async def appointments(self) -> list[Appointment]:
        if self.cache.is_stale(APPOINTMENTS):
            await self.refresh(APPOINTMENTS)
        return self.cache.items(APPOINTMENTS)

    async def today(self) -> list[Appointment]:
        if self.cache.is_stale(TODAY):
            await self.refresh(TODAY)
        return self.cache.items(TODAY)

    def cached(self, key: str = APPOINTMENTS) -> list[Appointment]:
        """Current snapshot without touching the store."""
        return self.cache.items(key)

    def invalidate(self, *keys: str) -> None:
        self.cache.invalidate(*(keys or COLLECTIONS))

    # mutations ---------------------------------------------------------

    async def create(self, draft: AppointmentDraft) -> Appointment:
        problem = validate(draft)
        if problem:
            raise problem
        payload = draft.to_wire(tenant_ref=self.clinic_id)
        raw = await self._dispatch("create", None, self.store.create_appointment(self.clinic_id, payload))
        confirmed = self._parse_reply("create", raw)
        await self._after_mutation()
        created = await self._settled("create", raw, confirmed)
        logger.info("Created appointment %s for clinic %s", created.id, self.clinic_id)
        return created

    async def update(self, appointment_id: str, patch: AppointmentPatch) -> Appointment:
        current = self.cache.get(APPOINTMENTS, appointment_id)
        if current is not None and not is_editable(current, self.lock_terminal):
            raise ValidationError("status", f"{current.status} appointments cannot be edited")
        problem = validate_patch(patch, current)
        if problem:
            raise problem
        raw = await self._dispatch(
            "update",
            appointment_id,
            self.store.update_appointment(self.clinic_id, appointment_id, patch.to_wire()),
        )
        confirmed = self._parse_reply("update", raw)
        await self._after_mutation()
        updated = await self._settled("update", raw, confirmed, appointment_id)
        logger.info("Updated appointment %s for clinic %s", appointment_id, self.clinic_id)
        return updated

    async def set_status(self, appointment_id: str, status: AppointmentStatus | str) -> Appointment:
        value = status.value if isinstance(status, AppointmentStatus) else status
        return await self.update(appointment_id, AppointmentPatch(status=value))

    async def remove(self, appointment_id: str) -> None:
        await self._dispatch("delete", appointment_id, self.store.delete_appointment(self.clinic_id, appointment_id))
        await self._after_mutation()
        logger.info("Deleted appointment %s for clinic %s", appointment_id, self.clinic_id)

    # helpers -----------------------------------------------------------

    async def _dispatch(self, operation: str, appointment_id: str | None, call: Any) -> Any:
        try:
            return await call
        except MutationFailed as exc:
            logger.warning("Appointment %s failed for %s: %s", operation, appointment_id or "<new>", exc.detail)
            raise
        except httpx.HTTPError as exc:
            failure = MutationFailed.from_http_error(operation, exc, appointment_id)
            logger.warning("Appointment %s failed for %s: %s", operation, appointment_id or "<new>", failure.detail)
            raise failure from exc

    async def _after_mutation(self) -> None:
        """Invalidate every collection and refetch the ones the UI has loaded."""
        self.cache.invalidate(*COLLECTIONS)
        for key in COLLECTIONS:
            if not self.cache.is_loaded(key):
                continue
            try:
                await self.refresh(key)
            except httpx.HTTPError as exc:
                logger.warning("Refetch of %s failed, keeping it stale: %s", key, exc)

    def _parse_reply(self, operation: str, raw: Any) -> Optional[Appointment]:
        try:
            return Appointment.from_wire(raw)
        except PydanticValidationError as exc:
            logger.warning("Store committed %s but its reply is unreadable: %r (%s)", operation, raw, exc)
            return None

    async def _settled(
        self, operation: str, raw: Any, confirmed: Optional[Appointment], appointment_id: str | None = None
    ) -> Appointment:
        """The refetched entity for a committed mutation, else the store's own reply."""
        if appointment_id is None:
            if confirmed is not None:
                appointment_id = confirmed.id
            elif isinstance(raw, dict) and raw.get("id") is not None:
                appointment_id = str(raw["id"])
        if confirmed is None and appointment_id and self.cache.is_stale(APPOINTMENTS):
            try:
                await self.refresh(APPOINTMENTS)
            except httpx.HTTPError as exc:
                logger.warning("Refetch of %s failed, keeping it stale: %s", APPOINTMENTS, exc)
        if appointment_id and not self.cache.is_stale(APPOINTMENTS):
            cached = self.cache.get(APPOINTMENTS, appointment_id)
            if cached is not None:
                return cached
        if confirmed is not None:
            return confirmed
        raise MutationFailed(operation, "store returned an unreadable appointment", appointment_id=appointment_id)
