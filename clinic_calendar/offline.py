"""In-memory appointment store used in OFFLINE_MODE and by tests."""
from __future__ import annotations

import copy
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable

from .codec import CivilInstant, decode, encode
from .errors import MalformedTimestamp, MutationFailed

DEMO_CLINIC = "default"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryAppointmentStore:
    """Implements the AppointmentStore protocol over plain dicts, one bucket per clinic."""

    def __init__(
        self,
        records: dict[str, Iterable[dict[str, Any]]] | None = None,
        patients: dict[str, dict[str, str]] | None = None,
        dentists: dict[str, dict[str, str]] | None = None,
        today: date | None = None,
    ):
        self._records: dict[str, dict[str, dict[str, Any]]] = {}
        self._patients = patients or {}
        self._dentists = dentists or {}
        self._today = today
        for clinic_id, items in (records or {}).items():
            self.seed(clinic_id, items)

    def seed(self, clinic_id: str, records: Iterable[dict[str, Any]]) -> None:
        bucket = self._records.setdefault(clinic_id, {})
        for record in records:
            bucket[str(record["id"])] = copy.deepcopy(record)

    def _bucket(self, clinic_id: str) -> dict[str, dict[str, Any]]:
        return self._records.setdefault(clinic_id, {})

    async def list_appointments(self, clinic_id: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(record) for record in self._bucket(clinic_id).values()]

    async def list_today(self, clinic_id: str) -> list[dict[str, Any]]:
        today = self._today or date.today()
        result = []
        for record in self._bucket(clinic_id).values():
            try:
                on_day = decode(record.get("scheduledAt") or record.get("scheduledDate")).date() == today
            except MalformedTimestamp:
                # let the caller's loader report it
                on_day = False
            if on_day:
                result.append(copy.deepcopy(record))
        return result

    async def create_appointment(self, clinic_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        appointment_id = str(uuid.uuid4())
        now = _now_iso()
        record = {**copy.deepcopy(payload), "id": appointment_id, "tenantRef": clinic_id, "createdAt": now, "updatedAt": now}
        self._bucket(clinic_id)[appointment_id] = record
        return copy.deepcopy(record)

    async def update_appointment(
        self, clinic_id: str, appointment_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        record = self._bucket(clinic_id).get(appointment_id)
        if record is None:
            raise MutationFailed("update", "Appointment not found", status_code=404, appointment_id=appointment_id)
        record.update(copy.deepcopy(payload))
        record["updatedAt"] = _now_iso()
        return copy.deepcopy(record)

    async def delete_appointment(self, clinic_id: str, appointment_id: str) -> None:
        if self._bucket(clinic_id).pop(appointment_id, None) is None:
            raise MutationFailed("delete", "Appointment not found", status_code=404, appointment_id=appointment_id)

    async def patient_names(self, clinic_id: str) -> dict[str, str]:
        return dict(self._patients.get(clinic_id, {}))

    async def dentist_names(self, clinic_id: str) -> dict[str, str]:
        return dict(self._dentists.get(clinic_id, {}))


def demo_store(today: date | None = None) -> InMemoryAppointmentStore:
    """A store with a handful of appointments around ``today`` for the demo clinic."""
    today = today or date.today()
    tomorrow = today + timedelta(days=1)
    slots = [
        ("demo-0001", "patient-000101", "dentist-000001", CivilInstant.at(today, 9), 60, "Cleaning", "completed"),
        ("demo-0002", "patient-000102", "dentist-000001", CivilInstant.at(today, 10), 30, "Check-up", "in_progress"),
        ("demo-0003", "patient-000103", "dentist-000002", CivilInstant.at(today, 10, 15), 30, None, "scheduled"),
        ("demo-0004", "patient-000104", "dentist-000002", CivilInstant.at(tomorrow, 16), 90, "Root canal", "scheduled"),
        ("demo-0005", "patient-000105", "dentist-000001", CivilInstant.at(tomorrow, 14), 45, "Extraction", "cancelled"),
    ]
    records = [
        {
            "id": appointment_id,
            "patientRef": patient,
            "dentistRef": dentist,
            "tenantRef": DEMO_CLINIC,
            "scheduledAt": encode(start),
            "durationMinutes": duration,
            "procedure": procedure,
            "status": status,
        }
        for appointment_id, patient, dentist, start, duration, procedure, status in slots
    ]
    return InMemoryAppointmentStore(
        records={DEMO_CLINIC: records},
        patients={DEMO_CLINIC: {"patient-000101": "Ana Souza", "patient-000102": "Bruno Lima", "patient-000104": "Carla Dias"}},
        dentists={DEMO_CLINIC: {"dentist-000001": "Dr. Paulo Reis", "dentist-000002": "Dr. Marta Alves"}},
        today=today,
    )
