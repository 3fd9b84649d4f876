"""Calendar grid engine.

Pure layout of appointments onto a day, week or month view. Every function
here is deterministic: the same inputs give the same grid, and nothing reads
the clock unless the caller navigates to "today" without supplying one.
"""
from __future__ import annotations

import calendar
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from . import config
from .codec import CivilInstant
from .models import Appointment, ViewMode
from .projection import EventLabel, project_label

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
WEEKDAY_ABBR = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

Labeler = Callable[[Appointment], EventLabel]


class NavigateAction(str, Enum):
    NEXT = "next"
    PREV = "prev"
    TODAY = "today"


class GridOptions(BaseModel):
    """Visible hours, slot size and month-cell limits. Defaults come from config."""

    model_config = ConfigDict(frozen=True)

    min_hour: int = Field(default_factory=lambda: config.CALENDAR_MIN_HOUR, ge=0, le=23)
    max_hour: int = Field(default_factory=lambda: config.CALENDAR_MAX_HOUR, ge=1, le=24)
    step: int = Field(default_factory=lambda: config.CALENDAR_STEP_MINUTES, ge=5, le=240)
    week_start: int = Field(default_factory=lambda: config.CALENDAR_WEEK_START, ge=0, le=6)
    max_events_per_cell: int = Field(default_factory=lambda: config.CALENDAR_MAX_EVENTS_PER_CELL, ge=1)

    @model_validator(mode="after")
    def _check_window(self) -> "GridOptions":
        if self.min_hour >= self.max_hour:
            raise ValueError("min_hour must be before max_hour")
        if ((self.max_hour - self.min_hour) * 60) % self.step:
            raise ValueError("step must divide the visible hours evenly")
        return self

    @property
    def window_start(self) -> int:
        return self.min_hour * 60

    @property
    def rows_per_day(self) -> int:
        return (self.max_hour - self.min_hour) * 60 // self.step


class TimeRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int
    hour: int
    minute: int
    label: str


class PlacedEvent(BaseModel):
    """An appointment positioned on the grid.

    ``row``/``row_span`` are ``None`` in month view. ``column`` out of
    ``columns`` gives the equal-width lane inside its overlap cluster.
    ``clipped`` marks events that start or end outside the visible hours and
    were clamped to the first or last row.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    day: date
    start: CivilInstant
    end: CivilInstant
    time_label: str
    duration_minutes: int
    status: str
    patient_ref: str
    dentist_ref: str
    title: str
    color_class: str
    row: Optional[int] = None
    row_span: Optional[int] = None
    column: int = 0
    columns: int = 1
    clipped: bool = False


class DayColumn(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    label: str
    is_today: bool = False
    events: list[PlacedEvent]


class MonthCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: date
    in_month: bool
    is_today: bool = False
    events: list[PlacedEvent]
    overflow: int = 0
    overflow_label: Optional[str] = None


class Grid(BaseModel):
    model_config = ConfigDict(frozen=True)

    view: ViewMode
    reference_date: date
    range_start: date
    range_end: date
    label: str
    rows: list[TimeRow] = []
    columns: list[DayColumn] = []
    weeks: list[list[MonthCell]] = []
    events: list[PlacedEvent] = []


# -- navigation -------------------------------------------------------------

def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    years, month_index = divmod(day.month - 1 + months, 12)
    year = day.year + years
    month = month_index + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def start_of_week(day: date, week_start: int) -> date:
    return day - timedelta(days=(day.weekday() - week_start) % 7)


def navigate(
    reference_date: date,
    view: Union[ViewMode, str],
    action: Union[NavigateAction, str],
    today: date | None = None,
) -> date:
    """Move the reference date one view unit forward/back, or jump to today."""
    view = ViewMode(view)
    action = NavigateAction(action)
    if action is NavigateAction.TODAY:
        return today if today is not None else date.today()
    sign = 1 if action is NavigateAction.NEXT else -1
    if view is ViewMode.DAY:
        return reference_date + timedelta(days=sign)
    if view is ViewMode.WEEK:
        return reference_date + timedelta(days=7 * sign)
    return add_months(reference_date, sign)


def visible_range(reference_date: date, view: Union[ViewMode, str], options: GridOptions | None = None) -> tuple[date, date]:
    """Inclusive first and last civil day rendered by ``view``."""
    options = options or GridOptions()
    view = ViewMode(view)
    if view is ViewMode.DAY:
        return reference_date, reference_date
    if view is ViewMode.WEEK:
        first = start_of_week(reference_date, options.week_start)
        return first, first + timedelta(days=6)
    month_first = reference_date.replace(day=1)
    month_last = month_first.replace(day=calendar.monthrange(month_first.year, month_first.month)[1])
    return start_of_week(month_first, options.week_start), start_of_week(month_last, options.week_start) + timedelta(days=6)


def slot_start(day: date, row: int, options: GridOptions | None = None) -> CivilInstant:
    """Civil start of a clicked time slot; seeds a new appointment draft."""
    options = options or GridOptions()
    if not 0 <= row < options.rows_per_day:
        raise ValueError(f"row {row} outside 0..{options.rows_per_day - 1}")
    minutes = options.window_start + row * options.step
    return CivilInstant.at(day, minutes // 60, minutes % 60)


# -- labels -----------------------------------------------------------------

def _day_label(day: date) -> str:
    return f"{WEEKDAY_NAMES[day.weekday()]}, {day.day} {MONTH_NAMES[day.month - 1]} {day.year}"


def _column_label(day: date) -> str:
    return f"{WEEKDAY_ABBR[day.weekday()]} {day.day:02d}/{day.month:02d}"


def _range_label(view: ViewMode, reference_date: date, first: date, last: date) -> str:
    if view is ViewMode.DAY:
        return _day_label(reference_date)
    if view is ViewMode.MONTH:
        return f"{MONTH_NAMES[reference_date.month - 1]} {reference_date.year}"
    if first.year != last.year:
        return f"{first.day} {MONTH_NAMES[first.month - 1][:3]} {first.year} - {last.day} {MONTH_NAMES[last.month - 1][:3]} {last.year}"
    return f"{first.day} {MONTH_NAMES[first.month - 1][:3]} - {last.day} {MONTH_NAMES[last.month - 1][:3]} {last.year}"


def _time_rows(options: GridOptions) -> list[TimeRow]:
    rows = []
    for index in range(options.rows_per_day):
        minutes = options.window_start + index * options.step
        hour, minute = divmod(minutes, 60)
        rows.append(TimeRow(index=index, hour=hour, minute=minute, label=f"{hour:02d}:{minute:02d}"))
    return rows


# -- placement --------------------------------------------------------------

def _by_start(appointment: Appointment) -> tuple:
    return (appointment.scheduled_at.sort_key, appointment.id)


def _event(appointment: Appointment, label: EventLabel, **layout) -> PlacedEvent:
    start = appointment.scheduled_at
    return PlacedEvent(
        id=appointment.id,
        day=appointment.civil_date,
        start=start,
        end=appointment.ends_at,
        time_label=f"{start.hour:02d}:{start.minute:02d}",
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        patient_ref=appointment.patient_ref,
        dentist_ref=appointment.dentist_ref,
        title=label.title,
        color_class=label.color_class,
        **layout,
    )


def _row_extent(appointment: Appointment, options: GridOptions) -> tuple[int, int, bool]:
    """First row, row span and clipped flag for a timed view."""
    rows = options.rows_per_day
    start = appointment.scheduled_at.minute_of_day - options.window_start
    end = start + max(appointment.duration_minutes, 1)
    first = start // options.step
    last = -(-end // options.step) - 1
    clipped = first < 0 or last >= rows
    first = min(max(first, 0), rows - 1)
    last = min(max(last, first), rows - 1)
    return first, last - first + 1, clipped


def _assign_lanes(extents: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Equal-width lanes for row extents sorted by first row.

    Events whose rows overlap, directly or through a chain of others, form a
    cluster; each takes the first free lane and shares the cluster's lane count.
    """
    result: list[tuple[int, int]] = [(0, 1)] * len(extents)
    cluster: list[tuple[int, int]] = []  # (event index, lane)
    lane_ends: list[int] = []
    cluster_end = 0

    def close_cluster() -> None:
        for index, lane in cluster:
            result[index] = (lane, len(lane_ends))

    for index, (first, span) in enumerate(extents):
        if cluster and first >= cluster_end:
            close_cluster()
            cluster, lane_ends = [], []
        end = first + span
        for lane, lane_end in enumerate(lane_ends):
            if lane_end <= first:
                lane_ends[lane] = end
                break
        else:
            lane = len(lane_ends)
            lane_ends.append(end)
        cluster.append((index, lane))
        cluster_end = max(cluster_end, end) if len(cluster) > 1 else end
    if cluster:
        close_cluster()
    return result


def _place_timed(appointments: list[Appointment], options: GridOptions, label_for: Labeler) -> list[PlacedEvent]:
    measured = []
    for appointment in appointments:
        first, span, clipped = _row_extent(appointment, options)
        measured.append((first, -span, _by_start(appointment), appointment, span, clipped))
    measured.sort(key=lambda item: item[:3])
    lanes = _assign_lanes([(first, span) for first, _, _, _, span, _ in measured])
    return [
        _event(appointment, label_for(appointment), row=first, row_span=span, column=lane, columns=width, clipped=clipped)
        for (first, _, _, appointment, span, clipped), (lane, width) in zip(measured, lanes)
    ]


def _bucket_by_day(appointments: Iterable[Appointment], first: date, last: date) -> dict[date, list[Appointment]]:
    days: dict[date, list[Appointment]] = {}
    for appointment in appointments:
        day = appointment.civil_date
        if first <= day <= last:
            days.setdefault(day, []).append(appointment)
    return days


def _days(first: date, last: date) -> list[date]:
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def compute_grid(
    reference_date: date,
    view: Union[ViewMode, str],
    appointments: Iterable[Appointment],
    options: GridOptions | None = None,
    labeler: Labeler | None = None,
    today: date | None = None,
) -> Grid:
    """Lay ``appointments`` onto the ``view`` containing ``reference_date``.

    Every appointment whose civil day falls in the visible range appears
    exactly once in ``Grid.events``. Overlapping events share their cell in
    side-by-side lanes; month cells beyond ``max_events_per_cell`` are
    counted in ``overflow`` rather than discarded. ``today`` only sets the
    ``is_today`` flags.
    """
    options = options or GridOptions()
    view = ViewMode(view)
    label_for = labeler or project_label
    first, last = visible_range(reference_date, view, options)
    by_day = _bucket_by_day(appointments, first, last)
    label = _range_label(view, reference_date, first, last)

    if view is ViewMode.MONTH:
        weeks: list[list[MonthCell]] = []
        events: list[PlacedEvent] = []
        for offset, day in enumerate(_days(first, last)):
            if offset % 7 == 0:
                weeks.append([])
            day_events = [_event(a, label_for(a)) for a in sorted(by_day.get(day, []), key=_by_start)]
            events.extend(day_events)
            shown = day_events[: options.max_events_per_cell]
            overflow = len(day_events) - len(shown)
            weeks[-1].append(
                MonthCell(
                    day=day,
                    in_month=day.month == reference_date.month,
                    is_today=day == today,
                    events=shown,
                    overflow=overflow,
                    overflow_label=f"+{overflow} more" if overflow else None,
                )
            )
        return Grid(
            view=view, reference_date=reference_date, range_start=first, range_end=last,
            label=label, weeks=weeks, events=events,
        )

    columns = []
    events = []
    for day in _days(first, last):
        placed = _place_timed(by_day.get(day, []), options, label_for)
        events.extend(placed)
        columns.append(DayColumn(day=day, label=_column_label(day), is_today=day == today, events=placed))
    return Grid(
        view=view, reference_date=reference_date, range_start=first, range_end=last,
        label=label, rows=_time_rows(options), columns=columns, events=events,
    )
