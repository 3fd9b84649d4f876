from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_serializer, field_validator

from .codec import CivilInstant, decode, encode

DEFAULT_DURATION_MINUTES = 60


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def _ref_field(wire: str, legacy: str) -> Any:
    return Field(validation_alias=AliasChoices(wire, legacy), serialization_alias=wire)


def _id_to_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# stores that use serial keys send integers
IdStr = Annotated[str, BeforeValidator(_id_to_str)]


class Appointment(BaseModel):
    """A booking as confirmed by the appointment store.

    Accepts both the calendar's wire names (``patientRef``, ``scheduledAt``,
    ``durationMinutes``) and the store's legacy column names (``patientId``,
    ``scheduledDate``, ``duration``). ``scheduledAt`` is decoded by the
    wall-clock codec on the way in and encoded by it on the way out.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: IdStr
    patient_ref: IdStr = _ref_field("patientRef", "patientId")
    dentist_ref: IdStr = _ref_field("dentistRef", "dentistId")
    tenant_ref: Optional[IdStr] = Field(
        default=None, validation_alias=AliasChoices("tenantRef", "clinicId"), serialization_alias="tenantRef"
    )
    scheduled_at: CivilInstant = Field(
        validation_alias=AliasChoices("scheduledAt", "scheduledDate"), serialization_alias="scheduledAt"
    )
    duration_minutes: int = Field(
        default=DEFAULT_DURATION_MINUTES,
        validation_alias=AliasChoices("durationMinutes", "duration"),
        serialization_alias="durationMinutes",
    )
    procedure: Optional[str] = None
    status: str = AppointmentStatus.SCHEDULED.value
    notes: Optional[str] = None
    # real instants, passed through untouched
    created_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("createdAt"), serialization_alias="createdAt")
    updated_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("updatedAt"), serialization_alias="updatedAt")

    @field_validator("scheduled_at", mode="before")
    @classmethod
    def _decode_scheduled_at(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value
        return decode(value)

    @field_validator("duration_minutes", mode="before")
    @classmethod
    def _default_duration(cls, value: Any) -> Any:
        return DEFAULT_DURATION_MINUTES if value in (None, "", 0) else value

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> Any:
        if isinstance(value, AppointmentStatus):
            return value.value
        return value or AppointmentStatus.SCHEDULED.value

    @field_serializer("scheduled_at")
    def _encode_scheduled_at(self, value: CivilInstant) -> str:
        return encode(value)

    @property
    def ends_at(self) -> CivilInstant:
        return self.scheduled_at.plus_minutes(self.duration_minutes)

    @property
    def civil_date(self) -> date:
        return self.scheduled_at.date()

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> "Appointment":
        return cls.model_validate(payload)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AppointmentDraft(BaseModel):
    """Create intent as typed by a receptionist. Validated before dispatch, not on construction."""

    model_config = ConfigDict(populate_by_name=True)

    patient_ref: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("patientRef", "patientId"))
    dentist_ref: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("dentistRef", "dentistId"))
    scheduled_at: Union[CivilInstant, str, None] = Field(
        default=None, validation_alias=AliasChoices("scheduledAt", "scheduledDate")
    )
    duration_minutes: int = Field(
        default=DEFAULT_DURATION_MINUTES, validation_alias=AliasChoices("durationMinutes", "duration")
    )
    procedure: Optional[str] = None
    status: str = AppointmentStatus.SCHEDULED.value
    notes: Optional[str] = None

    @classmethod
    def from_slot(
        cls,
        start: CivilInstant,
        patient_ref: str | None = None,
        dentist_ref: str | None = None,
        duration_minutes: int = DEFAULT_DURATION_MINUTES,
        **fields: Any,
    ) -> "AppointmentDraft":
        """Seed a draft from a clicked calendar slot; the slot's digits are used as-is."""
        return cls(
            patient_ref=patient_ref,
            dentist_ref=dentist_ref,
            scheduled_at=start,
            duration_minutes=duration_minutes,
            **fields,
        )

    def to_wire(self, tenant_ref: str | None = None) -> dict[str, Any]:
        """Wire payload with ``scheduledAt`` encoded. Raises MalformedTimestamp on bad input."""
        payload: dict[str, Any] = {
            "patientRef": self.patient_ref,
            "dentistRef": self.dentist_ref,
            "scheduledAt": encode(decode(self.scheduled_at)),
            "durationMinutes": self.duration_minutes,
            "status": self.status,
        }
        if tenant_ref is not None:
            payload["tenantRef"] = tenant_ref
        if self.procedure is not None:
            payload["procedure"] = self.procedure
        if self.notes is not None:
            payload["notes"] = self.notes
        return payload


_PATCH_WIRE_NAMES = {
    "patient_ref": "patientRef",
    "dentist_ref": "dentistRef",
    "scheduled_at": "scheduledAt",
    "duration_minutes": "durationMinutes",
    "procedure": "procedure",
    "status": "status",
    "notes": "notes",
}


class AppointmentPatch(BaseModel):
    """Update intent. Only fields explicitly set are sent to the store."""

    model_config = ConfigDict(populate_by_name=True)

    patient_ref: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("patientRef", "patientId"))
    dentist_ref: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("dentistRef", "dentistId"))
    scheduled_at: Union[CivilInstant, str, None] = Field(
        default=None, validation_alias=AliasChoices("scheduledAt", "scheduledDate")
    )
    duration_minutes: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("durationMinutes", "duration")
    )
    procedure: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Python-named fields the caller set, in declaration order."""
        return {name: getattr(self, name) for name in type(self).model_fields if name in self.model_fields_set}

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, value in self.changes().items():
            if name == "scheduled_at" and value is not None:
                value = encode(decode(value))
            payload[_PATCH_WIRE_NAMES[name]] = value
        return payload

    def apply_to(self, current: Appointment) -> Appointment:
        """The whole entity this patch would produce. Never merges partially into ``current``."""
        data = current.model_dump()
        data.update(self.changes())
        return Appointment.model_validate(data)
