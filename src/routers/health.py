"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppSettings, Outbox, SyncService
from src.vitalsync.config_loader import ConfigValidationError, get_sync_config

router = APIRouter(tags=["system"])
logger = logging.getLogger("vitalsync.health")


@router.get("/health")
async def health_check(settings: AppSettings, service: SyncService, outbox: Outbox) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the reconciliation config loads and whether a sync
    is currently running.
    """
    config_version = None
    try:
        config_version = get_sync_config().version
    except (ConfigValidationError, FileNotFoundError) as exc:
        logger.warning("Health check config probe failed: %s", exc)

    return {
        "status": "healthy" if config_version else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "platform": service.adapter.PLATFORM,
        "source": service.adapter.SOURCE_ID,
        "sync_status": service.status.value,
        "pending_payloads": len(outbox),
        "config_version": config_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
