"""Sync endpoints: run a window sync, read a summary, flush queued payloads."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, TypeVar

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import AppSettings, Outbox, PushClient, SyncService
from src.models.vitals import (
    FlushResponse,
    SummaryVitals,
    SyncRangeRequest,
    VitalsRangeResponse,
)
from src.vitalsync.base import PermissionDeniedError, SourceUnavailableError
from src.vitalsync.sync.outbox import build_sync_payload, flush_outbox
from src.vitalsync.windows import InvalidWindowError, TimeWindow, WindowKind, resolve_window

router = APIRouter(prefix="/vitals", tags=["vitals"])
logger = logging.getLogger("vitalsync.routers.vitals")

T = TypeVar("T")


def _window(kind: WindowKind, custom_start: str | None, custom_end: str | None) -> TimeWindow:
    try:
        return resolve_window(kind, custom_start, custom_end)
    except InvalidWindowError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


async def _guarded(call: Awaitable[T]) -> T:
    """Await a sync and map its domain errors onto HTTP status codes."""
    try:
        result = await call
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except SourceUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=409, detail="A sync is already in progress")
    return result


# ---------- Sync ----------

@router.post("/sync", response_model=VitalsRangeResponse)
async def sync_vitals(
    body: SyncRangeRequest,
    service: SyncService,
    outbox: Outbox,
    settings: AppSettings,
) -> Any:
    window = _window(body.range, body.custom_start, body.custom_end)
    result = await _guarded(service.sync_range(window, hourly=body.hourly))

    outbox.enqueue(
        build_sync_payload(
            result,
            settings.device_id,
            patient_profile_id=settings.patient_profile_id or None,
        )
    )
    return VitalsRangeResponse.model_validate(result)


@router.get("/summary", response_model=SummaryVitals)
async def vitals_summary(
    service: SyncService,
    range: WindowKind = Query(default=WindowKind.TODAY),
    custom_start: str | None = Query(default=None, alias="customStart"),
    custom_end: str | None = Query(default=None, alias="customEnd"),
) -> Any:
    window = _window(range, custom_start, custom_end)
    summary = await _guarded(service.sync_summary(window))
    return SummaryVitals.model_validate(summary)


# ---------- Outbox ----------

@router.post("/flush", response_model=FlushResponse)
async def flush_pending(outbox: Outbox, client: PushClient) -> Any:
    synced = await flush_outbox(outbox, client)
    return FlushResponse(synced=synced, pending=len(outbox))
