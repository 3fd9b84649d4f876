"""Async client for the clinic's appointment store.
Uses a static bearer token when configured, otherwise OAuth2 client-credentials.
"""
from __future__ import annotations

import time
from typing import Any

import httpx

from . import config

_TOKEN_CACHE: dict[str, float | str | None] = {"token": None, "exp": 0.0}


async def _get_token() -> str:
    """Fetch and cache bearer token until 5 minutes before it expires."""
    if config.STORE_API_TOKEN:
        return config.STORE_API_TOKEN

    now = time.time()
    if _TOKEN_CACHE["token"] and now < _TOKEN_CACHE["exp"]:  # type: ignore[operator]
        return _TOKEN_CACHE["token"]  # type: ignore[return-value]

    async with httpx.AsyncClient(http2=True, timeout=config.STORE_TIMEOUT) as client:
        resp = await client.post(
            config.STORE_TOKEN_URL,
            data={"grant_type": "client_credentials"},
            auth=(config.STORE_CLIENT_ID, config.STORE_CLIENT_SECRET),
        )
        resp.raise_for_status()
        data = resp.json()
        token = data["access_token"]
        # default expires_in 3600 seconds = 1 hour
        _TOKEN_CACHE.update(token=token, exp=now + data.get("expires_in", 3600) - 300)
        return token


def _records(payload: Any) -> list[dict[str, Any]]:
    """Unwrap list endpoints; paginated ones wrap the rows in ``data``."""
    if isinstance(payload, dict):
        payload = payload.get("data", [])
    return [row for row in payload or [] if isinstance(row, dict)]


def _names(rows: list[dict[str, Any]]) -> dict[str, str]:
    return {str(row["id"]): row.get("fullName") or row.get("name") or "" for row in rows if row.get("id") is not None}


class HttpAppointmentStore:
    """AppointmentStore over the clinic backend's REST API."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or config.STORE_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.STORE_TIMEOUT

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {await _get_token()}", "Accept": "application/json"}
        async with httpx.AsyncClient(http2=True, timeout=self.timeout) as client:
            resp = await client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
            resp.raise_for_status()
            return resp

    async def list_appointments(self, clinic_id: str) -> list[dict[str, Any]]:
        resp = await self._request("GET", "/appointments", params={"clinicId": clinic_id})
        return _records(resp.json())

    async def list_today(self, clinic_id: str) -> list[dict[str, Any]]:
        resp = await self._request("GET", "/dashboard/today-appointments", params={"clinicId": clinic_id})
        return _records(resp.json())

    async def create_appointment(self, clinic_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request("POST", "/appointments", params={"clinicId": clinic_id}, json=payload)
        return resp.json()

    async def update_appointment(
        self, clinic_id: str, appointment_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        resp = await self._request(
            "PUT", f"/appointments/{appointment_id}", params={"clinicId": clinic_id}, json=payload
        )
        return resp.json()

    async def delete_appointment(self, clinic_id: str, appointment_id: str) -> None:
        """Store answers 204 No Content on success."""
        await self._request("DELETE", f"/appointments/{appointment_id}", params={"clinicId": clinic_id})

    async def patient_names(self, clinic_id: str) -> dict[str, str]:
        # the registry is paginated; one large page covers a clinic
        resp = await self._request(
            "GET", "/patients", params={"clinicId": clinic_id, "page": 1, "pageSize": 5000}
        )
        return _names(_records(resp.json()))

    async def dentist_names(self, clinic_id: str) -> dict[str, str]:
        resp = await self._request("GET", "/users", params={"clinicId": clinic_id})
        return _names([row for row in _records(resp.json()) if row.get("role") == "dentist"])
