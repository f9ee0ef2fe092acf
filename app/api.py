"""HTTP route definitions for the service."""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.schemas import DeleteResponse, HealthResponse, MaintenanceResponse, Reading
from datastore.readings_table import ReadingsTable, build_default_table
from services.broadcaster import BroadcastChannel, build_default_channel
from services.coordinator import SamplingCoordinator, build_default_coordinator
from services.errors import PersistenceError, SynthesisError
from settings import get_settings

router = APIRouter()


def get_coordinator() -> SamplingCoordinator:
    return build_default_coordinator()


def get_table() -> ReadingsTable:
    return build_default_table()


def get_channel() -> BroadcastChannel:
    return build_default_channel()


def require_passkey(x_passkey: Optional[str] = Header(default=None)) -> None:
    expected = get_settings().delete_passkey
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Protected operations are disabled: no passkey configured.",
        )
    if x_passkey is None or not secrets.compare_digest(x_passkey, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid passkey.")


def _storage_unavailable(exc: PersistenceError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.api_route(
    "/api/motor/sample",
    methods=["GET", "POST"],
    response_model=Reading,
    summary="Take one sample: synthesize, persist and broadcast a reading.",
)
async def take_sample(
    coordinator: SamplingCoordinator = Depends(get_coordinator),
) -> Reading:
    try:
        return await coordinator.sample()
    except SynthesisError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc


@router.post(
    "/api/motor/maintenance",
    response_model=MaintenanceResponse,
    dependencies=[Depends(require_passkey)],
    summary="Record a service: bearings and oil replaced, running time kept.",
)
async def service_motor(
    coordinator: SamplingCoordinator = Depends(get_coordinator),
) -> MaintenanceResponse:
    try:
        state = await coordinator.service()
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc
    return MaintenanceResponse(
        machine_id=coordinator.machine_id,
        operating_hours=int(state.operating_seconds // 3600),
        bearing_wear=state.bearing_wear,
        oil_degradation=state.oil_degradation,
    )


@router.get(
    "/api/motor",
    response_model=list[Reading],
    summary="List the most recent readings, newest first.",
)
def list_readings(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    table: ReadingsTable = Depends(get_table),
) -> list[Reading]:
    count = limit if limit is not None else get_settings().default_limit
    try:
        return table.list_recent(count)
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/api/motor/{reading_id}",
    response_model=Reading,
    summary="Fetch a single reading by identifier.",
)
def get_reading(
    reading_id: int,
    table: ReadingsTable = Depends(get_table),
) -> Reading:
    try:
        return table.get(reading_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=exc.args[0],
        ) from exc
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc


@router.delete(
    "/api/motor",
    response_model=DeleteResponse,
    dependencies=[Depends(require_passkey)],
    summary="Irreversibly delete every stored reading.",
)
def delete_readings(table: ReadingsTable = Depends(get_table)) -> DeleteResponse:
    try:
        return DeleteResponse(deleted=table.delete_all())
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
def healthcheck(
    table: ReadingsTable = Depends(get_table),
    channel: BroadcastChannel = Depends(get_channel),
) -> HealthResponse:
    try:
        readings = table.count()
    except PersistenceError as exc:
        raise _storage_unavailable(exc) from exc
    return HealthResponse(status="ok", readings=readings, subscribers=channel.subscriber_count)


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
