"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from src.config import Settings, get_settings
from src.vitalsync.adapters import get_adapter
from src.vitalsync.sync.outbox import InMemoryOutbox, VitalsPushClient
from src.vitalsync.sync.service import VitalsSyncService


@lru_cache
def get_sync_service() -> VitalsSyncService:
    """One service per process, so the in-flight guard covers every request."""
    settings = get_settings()
    adapter_cls = get_adapter(settings.source_platform)
    adapter = adapter_cls(base_url=settings.bridge_url, token=settings.bridge_token)
    return VitalsSyncService(adapter)


@lru_cache
def get_outbox() -> InMemoryOutbox:
    return InMemoryOutbox()


def get_push_client() -> VitalsPushClient:
    settings = get_settings()
    return VitalsPushClient(
        base_url=settings.api_base_url,
        api_token=settings.api_token,
        patient_profile_id=settings.patient_profile_id or None,
        timeout=settings.push_timeout_seconds,
    )


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
SyncService = Annotated[VitalsSyncService, Depends(get_sync_service)]
Outbox = Annotated[InMemoryOutbox, Depends(get_outbox)]
PushClient = Annotated[VitalsPushClient, Depends(get_push_client)]
