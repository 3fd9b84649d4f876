"""Dentist filtering and display projection of appointments."""
from __future__ import annotations

import logging
from datetime import date
from functools import partial
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .lifecycle import parse_status, status_label
from .models import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

ALL_DENTISTS = "all"
DEFAULT_PROCEDURE = "Consultation"
PLACEHOLDER_ID_CHARS = 6

STATUS_COLORS: dict[AppointmentStatus, str] = {
    AppointmentStatus.SCHEDULED: "info",
    AppointmentStatus.IN_PROGRESS: "warning",
    AppointmentStatus.COMPLETED: "success",
    AppointmentStatus.CANCELLED: "danger",
}

Lookup = Callable[[str], Optional[str]]


class EventLabel(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    color_class: str
    patient_name: str
    dentist_name: str
    procedure: str
    status_label: str


class AgendaDay(BaseModel):
    """One civil day of the agenda list with its appointments in time order."""

    day: date
    label: str
    appointments: list[Appointment]


def status_color(status: object) -> str:
    return STATUS_COLORS[parse_status(status)]


def placeholder_name(kind: str, ref: str | None) -> str:
    return f"{kind} #{(ref or '')[-PLACEHOLDER_ID_CHARS:]}"


def lookup_from(names: Mapping[str, str]) -> Lookup:
    return names.get


def _resolve(lookup: Lookup | None, ref: str, kind: str) -> str:
    name = lookup(ref) if lookup is not None else None
    return name if name else placeholder_name(kind, ref)


def filter_by_dentist(appointments: Iterable[Appointment], dentist_filter: str | None) -> list[Appointment]:
    """Appointments of one dentist, or all of them for ``"all"``. Always a new list."""
    if dentist_filter is None or dentist_filter == ALL_DENTISTS:
        return list(appointments)
    return [appointment for appointment in appointments if appointment.dentist_ref == dentist_filter]


def project_label(
    appointment: Appointment,
    patient_lookup: Lookup | None = None,
    dentist_lookup: Lookup | None = None,
) -> EventLabel:
    """Display title and color for one appointment.

    Names that the registries have not loaded yet fall back to a short id
    placeholder so the calendar never shows a blank event.
    """
    patient_name = _resolve(patient_lookup, appointment.patient_ref, "Patient")
    dentist_name = _resolve(dentist_lookup, appointment.dentist_ref, "Dentist")
    procedure = appointment.procedure or DEFAULT_PROCEDURE
    return EventLabel(
        title=f"{patient_name} - {procedure}",
        color_class=status_color(appointment.status),
        patient_name=patient_name,
        dentist_name=dentist_name,
        procedure=procedure,
        status_label=status_label(appointment.status),
    )


def labeler(
    patient_lookup: Lookup | None = None, dentist_lookup: Lookup | None = None
) -> Callable[[Appointment], EventLabel]:
    return partial(project_label, patient_lookup=patient_lookup, dentist_lookup=dentist_lookup)


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())


def load_appointments(records: Iterable[Any]) -> list[Appointment]:
    """Parse wire records, skipping any that cannot be decoded.

    A single bad record is logged and dropped from the result; it never
    prevents the rest of the collection from rendering.
    """
    loaded: list[Appointment] = []
    for raw in records:
        try:
            loaded.append(Appointment.from_wire(raw))
        except PydanticValidationError as exc:
            record_id = raw.get("id") if isinstance(raw, Mapping) else None
            logger.warning("Skipping appointment %s: %s", record_id or "<unknown>", _describe(exc))
    return loaded


def group_by_day(appointments: Iterable[Appointment]) -> list[AgendaDay]:
    """Agenda list: appointments bucketed by civil day, days and times ascending."""
    buckets: dict[date, list[Appointment]] = {}
    for appointment in appointments:
        buckets.setdefault(appointment.civil_date, []).append(appointment)
    return [
        AgendaDay(
            day=day,
            label=day.strftime("%d/%m/%Y"),
            appointments=sorted(buckets[day], key=lambda a: (a.scheduled_at.sort_key, a.id)),
        )
        for day in sorted(buckets)
    ]
