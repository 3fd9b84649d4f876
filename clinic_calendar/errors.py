"""Error taxonomy shared by the calendar engine and its HTTP surface."""
from __future__ import annotations

from typing import Any

import httpx


class CalendarError(Exception):
    """Base class for every error raised by this package."""


class MalformedTimestamp(CalendarError, ValueError):
    """A wire timestamp could not be parsed into a civil instant."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Malformed timestamp: {value!r}")


class ValidationError(CalendarError):
    """An appointment draft or patch failed validation before dispatch."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.field, self.reason) == (other.field, other.reason)

    def __hash__(self) -> int:
        return hash((self.field, self.reason))

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "reason": self.reason}


class MutationFailed(CalendarError):
    """The appointment store rejected a create/update/delete, or was unreachable."""

    def __init__(
        self,
        operation: str,
        detail: str,
        status_code: int | None = None,
        appointment_id: str | None = None,
    ):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        self.appointment_id = appointment_id
        super().__init__(f"{operation} failed: {detail}")

    @classmethod
    def from_http_error(
        cls, operation: str, exc: httpx.HTTPError, appointment_id: str | None = None
    ) -> "MutationFailed":
        """Build from an httpx error, keeping the server's message verbatim."""
        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            detail = response.reason_phrase or str(exc)
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("message"):
                detail = str(body["message"])
            return cls(operation, detail, status_code=response.status_code, appointment_id=appointment_id)
        return cls(operation, str(exc) or exc.__class__.__name__, appointment_id=appointment_id)
