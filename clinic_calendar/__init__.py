"""Appointment scheduling and calendar engine for the clinic application."""
from .codec import CivilInstant, decode, encode
from .errors import CalendarError, MalformedTimestamp, MutationFailed, ValidationError
from .grid import GridOptions, compute_grid, navigate
from .models import Appointment, AppointmentDraft, AppointmentPatch, AppointmentStatus, ViewMode
from .projection import filter_by_dentist, project_label
from .sync import AppointmentSync

__all__ = [
    "Appointment",
    "AppointmentDraft",
    "AppointmentPatch",
    "AppointmentStatus",
    "AppointmentSync",
    "CalendarError",
    "CivilInstant",
    "GridOptions",
    "MalformedTimestamp",
    "MutationFailed",
    "ValidationError",
    "ViewMode",
    "compute_grid",
    "decode",
    "encode",
    "filter_by_dentist",
    "navigate",
    "project_label",
]
