"""Appointment validation and status lifecycle.

Pure functions only. ``validate`` returns a :class:`ValidationError` value
instead of raising so the caller decides whether to surface or raise it.
"""
from __future__ import annotations

from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .codec import CivilInstant, decode
from .errors import MalformedTimestamp, ValidationError
from .models import Appointment, AppointmentDraft, AppointmentPatch, AppointmentStatus

MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
DURATION_STEP_MINUTES = 15
MINUTES_PER_DAY = 24 * 60

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED}),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

STATUS_LABELS = {
    AppointmentStatus.SCHEDULED: "Scheduled",
    AppointmentStatus.IN_PROGRESS: "In progress",
    AppointmentStatus.COMPLETED: "Completed",
    AppointmentStatus.CANCELLED: "Cancelled",
}

Candidate = Union[Appointment, AppointmentDraft]
_KNOWN_STATUSES = frozenset(s.value for s in AppointmentStatus)


def parse_status(status: object) -> AppointmentStatus:
    """Known status for ``status``; anything unrecognised reads as ``scheduled``."""
    if isinstance(status, AppointmentStatus):
        return status
    try:
        return AppointmentStatus(status)
    except ValueError:
        return AppointmentStatus.SCHEDULED


def is_known_status(status: object) -> bool:
    if isinstance(status, AppointmentStatus):
        return True
    return isinstance(status, str) and status in _KNOWN_STATUSES


def is_terminal(status: object) -> bool:
    return is_known_status(status) and not TRANSITIONS[parse_status(status)]


def can_transition(src: object, dst: object) -> bool:
    if not is_known_status(dst):
        return False
    return parse_status(dst) in TRANSITIONS[parse_status(src)]


def available_transitions(status: object) -> list[AppointmentStatus]:
    """Next statuses offered to the UI, in lifecycle order."""
    allowed = TRANSITIONS[parse_status(status)]
    return [s for s in AppointmentStatus if s in allowed]


def status_label(status: object) -> str:
    return STATUS_LABELS[parse_status(status)]


def is_editable(appointment: Appointment, lock_terminal: bool = False) -> bool:
    """Terminal appointments are read-only only when the caller asks for it."""
    return not (lock_terminal and is_terminal(appointment.status))


def with_status(appointment: Appointment, status: AppointmentStatus | str) -> Appointment:
    """A new entity with ``status`` replaced; the original is left untouched."""
    value = status.value if isinstance(status, AppointmentStatus) else status
    return appointment.model_copy(update={"status": value})


def _check_duration(duration: object) -> Optional[ValidationError]:
    if isinstance(duration, bool) or not isinstance(duration, int):
        return ValidationError("durationMinutes", "must be a whole number of minutes")
    if not MIN_DURATION_MINUTES <= duration <= MAX_DURATION_MINUTES:
        return ValidationError(
            "durationMinutes", f"must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
        )
    if duration % DURATION_STEP_MINUTES:
        return ValidationError("durationMinutes", f"must be a multiple of {DURATION_STEP_MINUTES} minutes")
    return None


def _check_midnight(start: CivilInstant, duration: int) -> Optional[ValidationError]:
    if start.minute_of_day + duration > MINUTES_PER_DAY:
        return ValidationError("durationMinutes", "appointment cannot run past midnight")
    return None


def _check_ref(field: str, value: object) -> Optional[ValidationError]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationError(field, "is required")
    return None


def _decode_start(value: object) -> CivilInstant | ValidationError:
    if value is None or value == "":
        return ValidationError("scheduledAt", "is required")
    try:
        return decode(value)
    except MalformedTimestamp:
        return ValidationError("scheduledAt", f"is not a valid date and time: {value!r}")


def validate(appointment: Candidate) -> Optional[ValidationError]:
    """First problem found with ``appointment``, or ``None`` when it may be dispatched."""
    for field, value in (("patientRef", appointment.patient_ref), ("dentistRef", appointment.dentist_ref)):
        problem = _check_ref(field, value)
        if problem:
            return problem

    start = _decode_start(appointment.scheduled_at)
    if isinstance(start, ValidationError):
        return start

    problem = _check_duration(appointment.duration_minutes)
    if problem:
        return problem

    problem = _check_midnight(start, appointment.duration_minutes)
    if problem:
        return problem

    if isinstance(appointment, AppointmentDraft) and not is_known_status(appointment.status):
        return ValidationError("status", f"unknown status {appointment.status!r}")
    return None


def validate_patch(patch: AppointmentPatch, current: Appointment | None = None) -> Optional[ValidationError]:
    """Validate the fields ``patch`` sets.

    When the patch re-times the booking and ``current`` is known, the merged
    start and duration must still end by midnight. Rules the patch does not
    touch are not re-checked against the stored record.
    """
    changes = patch.changes()

    for field, name in (("patientRef", "patient_ref"), ("dentistRef", "dentist_ref")):
        if name in changes:
            problem = _check_ref(field, changes[name])
            if problem:
                return problem

    start = None
    if "scheduled_at" in changes:
        start = _decode_start(changes["scheduled_at"])
        if isinstance(start, ValidationError):
            return start

    if "duration_minutes" in changes:
        problem = _check_duration(changes["duration_minutes"])
        if problem:
            return problem

    if "status" in changes and not is_known_status(changes["status"]):
        return ValidationError("status", f"unknown status {changes['status']!r}")

    # status, notes and ref changes leave the stored timing as it is
    if "scheduled_at" not in changes and "duration_minutes" not in changes:
        return None
    if current is None:
        if start is not None and "duration_minutes" in changes:
            return _check_midnight(start, changes["duration_minutes"])
        return None

    try:
        merged = patch.apply_to(current)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = str(first["loc"][0]) if first.get("loc") else "appointment"
        return ValidationError(field, first["msg"])
    return _check_midnight(merged.scheduled_at, merged.duration_minutes)
