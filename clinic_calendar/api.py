import logging
from datetime import date
from functools import lru_cache
from typing import Any, Optional

import httpx
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config
from .client import HttpAppointmentStore
from .errors import MutationFailed, ValidationError
from .grid import Grid, GridOptions, NavigateAction, compute_grid, navigate
from .models import AppointmentDraft, AppointmentPatch, ViewMode
from .offline import demo_store
from .projection import ALL_DENTISTS, AgendaDay, filter_by_dentist, group_by_day, labeler, lookup_from
from .sync import AppointmentStore, AppointmentSync

logging.basicConfig(
    level=config.CALENDAR_LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Clinic Calendar Service")

_STORE: Optional[AppointmentStore] = None


def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != config.CALENDAR_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_store() -> AppointmentStore:
    """Demo data in OFFLINE_MODE, the clinic backend otherwise."""
    global _STORE
    if _STORE is None:
        _STORE = demo_store() if config.offline_mode() else HttpAppointmentStore()
    return _STORE


@lru_cache(maxsize=config.CALENDAR_MAX_CLINICS)
def _sync_for(store: AppointmentStore, clinic_id: str) -> AppointmentSync:
    # least recently used clinics lose their cached collections first
    return AppointmentSync(store, clinic_id)


def get_sync(
    clinic_id: str = Query("default", description="Clinic whose appointments are shown"),
    store: AppointmentStore = Depends(get_store),
) -> AppointmentSync:
    return _sync_for(store, clinic_id)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(MutationFailed)
async def mutation_failed_handler(request: Request, exc: MutationFailed):
    # client errors from the store pass through, everything else is a bad gateway
    status = exc.status_code if exc.status_code and 400 <= exc.status_code < 500 else 502
    return JSONResponse(status_code=status, content={"detail": exc.detail, "operation": exc.operation})


@app.exception_handler(httpx.HTTPError)
async def store_unavailable_handler(request: Request, exc: httpx.HTTPError):
    logger.warning("Appointment store unavailable: %s", exc)
    return JSONResponse(status_code=502, content={"detail": "Appointment store unavailable"})


async def _names(fetch, clinic_id: str, kind: str) -> dict[str, str]:
    """Registry names, or nothing; projection falls back to id placeholders."""
    try:
        return await fetch(clinic_id)
    except httpx.HTTPError as exc:
        logger.warning("Could not load %s names for clinic %s: %s", kind, clinic_id, exc)
        return {}


@app.get("/health")
async def health():
    return {"status": "ok", "offline": config.offline_mode()}


# Calendar views -------------------------------------------------------------

@app.get("/calendar", dependencies=[Depends(verify_api_key)], response_model=Grid)
async def calendar_view(
    view: ViewMode = Query(ViewMode.WEEK),
    ref_date: Optional[date] = Query(None, alias="date", description="YYYY-MM-DD reference date, defaults to today"),
    dentist: str = Query(ALL_DENTISTS, description="Dentist id or 'all'"),
    sync: AppointmentSync = Depends(get_sync),
):
    """Day/week/month grid of the clinic's appointments."""
    today = date.today()
    appointments = filter_by_dentist(await sync.appointments(), dentist)
    patients = await _names(sync.store.patient_names, sync.clinic_id, "patient")
    dentists = await _names(sync.store.dentist_names, sync.clinic_id, "dentist")
    return compute_grid(
        ref_date or today,
        view,
        appointments,
        GridOptions(),
        labeler=labeler(lookup_from(patients), lookup_from(dentists)),
        today=today,
    )


@app.get("/calendar/navigate", dependencies=[Depends(verify_api_key)])
async def calendar_navigate(
    view: ViewMode = Query(...),
    ref_date: date = Query(..., alias="date"),
    action: NavigateAction = Query(...),
):
    """Reference date after moving one view unit, or jumping to today."""
    return {"date": navigate(ref_date, view, action).isoformat()}


@app.get("/agenda", dependencies=[Depends(verify_api_key)], response_model=list[AgendaDay])
async def agenda(sync: AppointmentSync = Depends(get_sync)):
    """Appointments grouped by civil day, earliest first."""
    return group_by_day(await sync.appointments())


# Appointment collection & mutations ------------------------------------------

@app.get("/appointments", dependencies=[Depends(verify_api_key)])
async def list_appointments(sync: AppointmentSync = Depends(get_sync)) -> list[dict[str, Any]]:
    return [appointment.to_wire() for appointment in await sync.appointments()]


@app.get("/appointments/today", dependencies=[Depends(verify_api_key)])
async def list_today(sync: AppointmentSync = Depends(get_sync)) -> list[dict[str, Any]]:
    return [appointment.to_wire() for appointment in await sync.today()]


@app.post("/appointments", dependencies=[Depends(verify_api_key)], status_code=201)
async def create_appointment(draft: AppointmentDraft = Body(...), sync: AppointmentSync = Depends(get_sync)):
    """Book an appointment; ``scheduledAt`` is stored exactly as typed."""
    created = await sync.create(draft)
    return created.to_wire()


@app.put("/appointments/{appointment_id}", dependencies=[Depends(verify_api_key)])
async def update_appointment(
    appointment_id: str,
    patch: AppointmentPatch = Body(...),
    sync: AppointmentSync = Depends(get_sync),
):
    updated = await sync.update(appointment_id, patch)
    return updated.to_wire()


@app.delete("/appointments/{appointment_id}", dependencies=[Depends(verify_api_key)], status_code=204)
async def delete_appointment(appointment_id: str, sync: AppointmentSync = Depends(get_sync)):
    await sync.remove(appointment_id)
    return Response(status_code=204)
