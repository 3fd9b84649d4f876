import asyncio
import logging
from datetime import date

import httpx
import pytest

from clinic_calendar.errors import MutationFailed, ValidationError
from clinic_calendar.models import AppointmentDraft, AppointmentPatch, AppointmentStatus
from clinic_calendar.offline import InMemoryAppointmentStore, demo_store
from clinic_calendar.sync import APPOINTMENTS, TODAY, AppointmentCache, AppointmentSync

CLINIC = "clinic-1"
TODAY_DATE = date(2025, 8, 25)


def _record(appointment_id, when="2025-08-25T10:00:00Z", **extra):
    return {
        "id": appointment_id,
        "patientRef": "p-1",
        "dentistRef": "d-1",
        "scheduledAt": when,
        "durationMinutes": 30,
        "status": "scheduled",
        **extra,
    }


class RecordingStore(InMemoryAppointmentStore):
    """Counts store calls so tests can assert nothing was dispatched."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    async def list_appointments(self, clinic_id):
        self.calls.append("list")
        return await super().list_appointments(clinic_id)

    async def create_appointment(self, clinic_id, payload):
        self.calls.append(("create", payload))
        return await super().create_appointment(clinic_id, payload)

    async def update_appointment(self, clinic_id, appointment_id, payload):
        self.calls.append(("update", appointment_id, payload))
        return await super().update_appointment(clinic_id, appointment_id, payload)


class UnreachableStore(RecordingStore):
    async def update_appointment(self, clinic_id, appointment_id, payload):
        raise httpx.ConnectError("connection refused")

    async def create_appointment(self, clinic_id, payload):
        request = httpx.Request("POST", "https://store.test/api/appointments")
        response = httpx.Response(409, json={"message": "Slot already taken"}, request=request)
        raise httpx.HTTPStatusError("conflict", request=request, response=response)


def _sync(store_cls=RecordingStore, records=(), **kwargs):
    store = store_cls(records={CLINIC: list(records)}, today=TODAY_DATE)
    return store, AppointmentSync(store, CLINIC, **kwargs)


@pytest.mark.asyncio
async def test_invalid_draft_never_reaches_store():
    store, sync = _sync()
    with pytest.raises(ValidationError) as excinfo:
        await sync.create(AppointmentDraft(patient_ref="p-1", dentist_ref="d-1", scheduled_at=None))
    assert excinfo.value.field == "scheduledAt"
    assert store.calls == []


@pytest.mark.asyncio
async def test_create_sends_typed_digits_and_refetches():
    store, sync = _sync()
    await sync.appointments()
    draft = AppointmentDraft(patient_ref="p-1", dentist_ref="d-1", scheduled_at="2025-08-25T16:00")

    created = await sync.create(draft)

    (_, payload), = [call for call in store.calls if call[0] == "create"]
    assert payload["scheduledAt"] == "2025-08-25T16:00:00Z"
    assert payload["tenantRef"] == CLINIC
    assert store.calls.count("list") == 2
    assert created.scheduled_at.hour == 16
    assert [a.id for a in sync.cached()] == [created.id]
    assert not sync.cache.is_stale(APPOINTMENTS)


@pytest.mark.asyncio
async def test_scenario_d_failed_update_leaves_cache_untouched(caplog):
    store, sync = _sync(UnreachableStore, [_record("a-1")])
    before = await sync.appointments()

    with caplog.at_level(logging.WARNING, logger="clinic_calendar.sync"):
        with pytest.raises(MutationFailed) as excinfo:
            await sync.update("a-1", AppointmentPatch(status="in_progress"))

    assert excinfo.value.operation == "update"
    assert excinfo.value.appointment_id == "a-1"
    assert "connection refused" in excinfo.value.detail
    assert sync.cached() == before
    assert sync.cached()[0].status == "scheduled"
    assert not sync.cache.is_stale(APPOINTMENTS)
    assert "a-1" in caplog.text


@pytest.mark.asyncio
async def test_store_rejection_message_is_kept():
    _, sync = _sync(UnreachableStore)
    with pytest.raises(MutationFailed) as excinfo:
        await sync.create(AppointmentDraft(patient_ref="p-1", dentist_ref="d-1", scheduled_at="2025-08-25T16:00"))
    assert excinfo.value.detail == "Slot already taken"
    assert excinfo.value.status_code == 409


@pytest.mark.asyncio
async def test_update_validates_against_cached_entity():
    store, sync = _sync(records=[_record("a-1", "2025-08-25T23:00:00Z")])
    await sync.appointments()
    with pytest.raises(ValidationError) as excinfo:
        await sync.update("a-1", AppointmentPatch(duration_minutes=120))
    assert excinfo.value.field == "durationMinutes"
    assert not [call for call in store.calls if call[0] == "update"]


@pytest.mark.asyncio
async def test_set_status_replaces_entity_after_refetch():
    _, sync = _sync(records=[_record("a-1")])
    before = (await sync.appointments())[0]
    updated = await sync.set_status("a-1", AppointmentStatus.IN_PROGRESS)
    assert updated.status == "in_progress"
    assert before.status == "scheduled"
    assert sync.cached()[0] is not before


@pytest.mark.asyncio
async def test_terminal_lock_is_opt_in():
    records = [_record("done", status="completed")]
    _, locked = _sync(records=records, lock_terminal=True)
    await locked.appointments()
    with pytest.raises(ValidationError) as excinfo:
        await locked.update("done", AppointmentPatch(notes="late note"))
    assert excinfo.value.field == "status"

    _, open_sync = _sync(records=records)
    await open_sync.appointments()
    assert (await open_sync.update("done", AppointmentPatch(notes="late note"))).notes == "late note"


@pytest.mark.asyncio
async def test_remove_unknown_id_surfaces_not_found():
    _, sync = _sync()
    with pytest.raises(MutationFailed) as excinfo:
        await sync.remove("missing")
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_remove_refetches_loaded_collections():
    _, sync = _sync(records=[_record("a-1"), _record("a-2", "2025-08-26T09:00:00Z")])
    assert len(await sync.appointments()) == 2
    assert [a.id for a in await sync.today()] == ["a-1"]

    await sync.remove("a-1")

    assert [a.id for a in sync.cached(APPOINTMENTS)] == ["a-2"]
    assert sync.cached(TODAY) == []
    assert not sync.cache.is_stale(TODAY)


@pytest.mark.asyncio
async def test_unloaded_collection_only_marked_stale():
    store, sync = _sync(records=[_record("a-1")])
    await sync.set_status("a-1", "cancelled")
    assert "list" not in store.calls
    assert sync.cache.is_stale(APPOINTMENTS)
    assert (await sync.appointments())[0].status == "cancelled"


class FlakyListStore(RecordingStore):
    fail = False

    async def list_appointments(self, clinic_id):
        if self.fail:
            raise httpx.ReadTimeout("timed out")
        return await super().list_appointments(clinic_id)


@pytest.mark.asyncio
async def test_refetch_failure_keeps_collection_stale(caplog):
    store, sync = _sync(FlakyListStore, [_record("a-1")])
    await sync.appointments()
    store.fail = True

    with caplog.at_level(logging.WARNING, logger="clinic_calendar.sync"):
        updated = await sync.set_status("a-1", "in_progress")

    assert updated.status == "in_progress"
    assert sync.cache.is_stale(APPOINTMENTS)
    assert "Refetch of appointments failed" in caplog.text


class GatedStore(InMemoryAppointmentStore):
    """Each list call waits on its own gate so responses can be reordered."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gates = []

    async def list_appointments(self, clinic_id):
        snapshot = await super().list_appointments(clinic_id)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return snapshot


@pytest.mark.asyncio
async def test_superseded_fetch_is_discarded():
    store = GatedStore(records={CLINIC: [_record("a-1")]})
    sync = AppointmentSync(store, CLINIC)

    older = asyncio.create_task(sync.refresh())
    await asyncio.sleep(0)
    store.seed(CLINIC, [_record("a-2")])
    newer = asyncio.create_task(sync.refresh())
    await asyncio.sleep(0)

    store.gates[1].set()
    await newer
    store.gates[0].set()
    await older

    assert sorted(a.id for a in sync.cached()) == ["a-1", "a-2"]


def test_cache_invalidation_outranks_in_flight_fetch():
    cache = AppointmentCache()
    seq = cache.begin_fetch(APPOINTMENTS)
    cache.invalidate(APPOINTMENTS)
    assert cache.apply(APPOINTMENTS, seq, [])
    assert cache.is_stale(APPOINTMENTS)
    assert cache.is_loaded(APPOINTMENTS)


@pytest.mark.asyncio
async def test_demo_store_today_collection():
    sync = AppointmentSync(demo_store(TODAY_DATE), "default")
    today = await sync.today()
    assert sorted(a.id for a in today) == ["demo-0001", "demo-0002", "demo-0003"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "stored",
    [
        {"durationMinutes": 20},
        {"scheduledAt": "2025-08-25T23:30:00Z", "durationMinutes": 60},
    ],
)
async def test_status_change_on_stored_booking_outside_current_rules(stored):
    _, sync = _sync(records=[_record("a-1", **{"scheduledAt": "2025-08-25T10:00:00Z", **stored})])
    await sync.appointments()
    started = await sync.set_status("a-1", "in_progress")
    assert started.status == "in_progress"
    assert started.duration_minutes == stored["durationMinutes"]


class GarbledReplyStore(RecordingStore):
    """Commits every mutation but answers with records that cannot be parsed."""

    async def update_appointment(self, clinic_id, appointment_id, payload):
        await super().update_appointment(clinic_id, appointment_id, payload)
        return {"id": appointment_id, "scheduledAt": "garbage"}

    async def create_appointment(self, clinic_id, payload):
        await super().create_appointment(clinic_id, payload)
        return {"ok": True}


@pytest.mark.asyncio
@pytest.mark.parametrize("loaded", [True, False])
async def test_committed_update_with_unreadable_reply_returns_refetched_entity(loaded, caplog):
    _, sync = _sync(GarbledReplyStore, [_record("a-1")])
    if loaded:
        await sync.appointments()

    with caplog.at_level(logging.WARNING, logger="clinic_calendar.sync"):
        updated = await sync.set_status("a-1", "cancelled")

    assert updated.status == "cancelled"
    assert sync.cached()[0].status == "cancelled"
    assert "garbage" in caplog.text


@pytest.mark.asyncio
async def test_committed_create_without_usable_reply_still_invalidates():
    store, sync = _sync(GarbledReplyStore)
    await sync.appointments()
    draft = AppointmentDraft(patient_ref="p-1", dentist_ref="d-1", scheduled_at="2025-08-25T16:00")

    with pytest.raises(MutationFailed) as excinfo:
        await sync.create(draft)

    assert excinfo.value.detail == "store returned an unreadable appointment"
    assert len(sync.cached()) == 1
    assert store.calls.count("list") == 2
