"""Wall-clock codec.

Appointment times are stored as "the time the receptionist typed". The store
labels them UTC, but they carry no zone of their own: 16:00 on the wire must
render as 16:00 for every viewer. Everything that turns a wire timestamp into
something displayable, or back, goes through :func:`decode` and :func:`encode`.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import total_ordering
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import MalformedTimestamp

logger = logging.getLogger(__name__)

# strftime does not zero-pad years below 1000 on every platform
WIRE_FORMAT = "{0.year:04d}-{0.month:02d}-{0.day:02d}T{0.hour:02d}:{0.minute:02d}:00Z"


@total_ordering
class CivilInstant(BaseModel):
    """A date and clock time with no timezone attached."""

    model_config = ConfigDict(frozen=True)

    year: int = Field(ge=1, le=9999)
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    hour: int = Field(default=0, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

    @model_validator(mode="after")
    def _real_calendar_day(self) -> "CivilInstant":
        # raises ValueError for e.g. Feb 30
        date(self.year, self.month, self.day)
        return self

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CivilInstant):
            return NotImplemented
        return self.sort_key < other.sort_key

    @property
    def sort_key(self) -> tuple[int, int, int, int, int]:
        return (self.year, self.month, self.day, self.hour, self.minute)

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute

    def date(self) -> date:
        return date(self.year, self.month, self.day)

    def to_datetime(self) -> datetime:
        """Naive datetime with the same fields."""
        return datetime(self.year, self.month, self.day, self.hour, self.minute)

    def as_observer(self, tz: tzinfo) -> datetime:
        """The datetime a viewer in ``tz`` should render: same digits, ``tz`` attached."""
        return self.to_datetime().replace(tzinfo=tz)

    def plus_minutes(self, minutes: int) -> "CivilInstant":
        return CivilInstant.from_datetime(self.to_datetime() + timedelta(minutes=minutes))

    @classmethod
    def from_datetime(cls, value: datetime) -> "CivilInstant":
        """Read a picker/clock value by its digits, ignoring any tzinfo."""
        return cls(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
        )

    @classmethod
    def at(cls, day: date, hour: int = 0, minute: int = 0) -> "CivilInstant":
        return cls(year=day.year, month=day.month, day=day.day, hour=hour, minute=minute)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d} {self.hour:02d}:{self.minute:02d}"


def decode(value: Any) -> CivilInstant:
    """Turn a wire timestamp into the civil instant it stands for.

    The UTC-labelled fields are taken as-is. A naive value is treated as
    already UTC-labelled; a value with a non-zero offset is first expressed in
    UTC. The observer's own timezone never enters the computation.
    """
    if isinstance(value, CivilInstant):
        return value
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise MalformedTimestamp(value)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedTimestamp(value) from exc
    else:
        raise MalformedTimestamp(value)

    try:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return CivilInstant.from_datetime(parsed)
    except (ValueError, OverflowError) as exc:
        raise MalformedTimestamp(value) from exc


def encode(instant: CivilInstant) -> str:
    """Package a civil instant into the store's UTC-labelled wire format, unshifted."""
    return WIRE_FORMAT.format(instant)


def decode_or_none(value: Any, record_id: str | None = None) -> CivilInstant | None:
    """Like :func:`decode`, but logs and returns ``None`` for bad input."""
    try:
        return decode(value)
    except MalformedTimestamp:
        logger.warning("Skipping appointment %s: malformed timestamp %r", record_id or "<unknown>", value)
        return None
