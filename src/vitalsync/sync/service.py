"""Sync orchestration for one platform adapter.

A sync request flows through:
1. Permission check (required capabilities must be granted)
2. Fetch planning: grouped or raw per metric, optional metrics skipped
3. Concurrent fetches, bounded by a semaphore and a per-fetch timeout
4. Reconciliation into day (or hour) records
5. Hourly rollup, gap filling, and the window summary

Only one sync runs at a time per service.  A request that arrives while a
sync is in flight is logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import tzinfo
from enum import Enum

from src.vitalsync.base import (
    FetchOutcome,
    MetricType,
    PermissionDeniedError,
    PermissionResult,
    SliceSize,
    SourceAdapter,
    SourceUnavailableError,
    SummaryRecord,
    SyncRangeResult,
)
from src.vitalsync.config_loader import SyncConfig, get_sync_config
from src.vitalsync.engine import ReconciliationEngine
from src.vitalsync.gap_filler import fill_missing_days
from src.vitalsync.rollup import collapse_hourly, reduce_summary, sleep_sessions
from src.vitalsync.windows import TimeWindow

logger = logging.getLogger("vitalsync.sync.service")


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class FetchJob:
    """One planned per-metric fetch.

    Attributes:
        metric:     Metric to fetch.
        shape:      'grouped' or 'raw'.
        slice_size: Bucket size for grouped fetches.
    """

    metric: MetricType
    shape: str
    slice_size: SliceSize | None = None


class VitalsSyncService:
    """Run window syncs against a single platform adapter.

    Usage::

        service = VitalsSyncService(HealthConnectAdapter(base_url=...))
        window = resolve_window("7d")
        result = await service.sync_range(window, hourly=True)
    """

    def __init__(
        self,
        adapter: SourceAdapter,
        config: SyncConfig | None = None,
        *,
        tz: tzinfo | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            adapter: Platform adapter to read from.
            config:  Sync config; the global singleton by default.
            tz:      Zone used for local day keys; system local by default.
        """
        self._adapter = adapter
        self._config = config or get_sync_config()
        self._tz = tz
        self._status = SyncStatus.IDLE

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def adapter(self) -> SourceAdapter:
        return self._adapter

    async def sync_summary(self, window: TimeWindow) -> SummaryRecord | None:
        """Window summary only, from day slices.  None if a sync is running."""
        result = await self.sync_range(window, hourly=False)
        return result.summary if result is not None else None

    async def sync_range(
        self, window: TimeWindow, hourly: bool = False
    ) -> SyncRangeResult | None:
        """Sync one window.

        Args:
            window: Resolved time window.
            hourly: Fetch hour slices and emit hourly points as well.

        Returns:
            SyncRangeResult, or None when another sync is already running.

        Raises:
            PermissionDeniedError:  A required capability is not granted.
            SourceUnavailableError: Every planned fetch failed.
        """
        if self._status is SyncStatus.SYNCING:
            logger.info(
                "Sync already in progress for %s; ignoring request", self._adapter.SOURCE_ID
            )
            return None

        self._status = SyncStatus.SYNCING
        try:
            return await self._run(window, hourly)
        finally:
            self._status = SyncStatus.IDLE

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, window: TimeWindow, hourly: bool) -> SyncRangeResult:
        source = self._adapter.SOURCE_ID
        logger.info(
            "Syncing %s for %s..%s (%s)",
            source,
            window.start_date,
            window.end_date,
            "hourly" if hourly else "daily",
        )

        permission = await self._adapter.check_permissions()
        self._ensure_permitted(permission)

        jobs = self._plan(permission, hourly)
        outcomes = await self._fetch_all(jobs, window)

        failed = [o.metric for o in outcomes if o.failed]
        if outcomes and len(failed) == len(outcomes):
            raise SourceUnavailableError(
                f"All {len(outcomes)} fetches from {source} failed"
            )

        engine = ReconciliationEngine(self._config, hourly=hourly, tz=self._tz)
        engine.fold_outcomes(outcomes)
        reconciled = engine.finalize()

        points = None
        if hourly:
            rollup = collapse_hourly(reconciled.records.values(), source=source)
            by_date = rollup.daily
            points = rollup.points
        else:
            by_date = reconciled.by_date()

        daily = fill_missing_days(window, by_date)
        summary = reduce_summary(daily, self._adapter.PLATFORM, reconciled.window_weight_kg)

        logger.info(
            "Synced %s: %d days, %d readings, %d failed metrics",
            source,
            len(daily),
            reconciled.folded,
            len(failed),
        )
        return SyncRangeResult(
            platform=self._adapter.PLATFORM,
            summary=summary,
            daily=daily,
            hourly=points,
            sleep_sessions=sleep_sessions(outcomes, source=source),
            failed_metrics=failed,
        )

    def _ensure_permitted(self, permission: PermissionResult) -> None:
        if not permission.granted:
            detail = "; ".join(permission.details) or "permission check failed"
            raise PermissionDeniedError(
                f"{self._adapter.DISPLAY_NAME} denied access: {detail}"
            )
        supported = set(self._adapter.supported_metrics())
        missing = sorted(
            m.value
            for m in self._config.permissions.required
            if m in supported and m not in permission.granted_capabilities
        )
        if missing:
            raise PermissionDeniedError(
                f"{self._adapter.DISPLAY_NAME} is missing required permissions: "
                + ", ".join(missing)
            )

    def _plan(self, permission: PermissionResult, hourly: bool) -> list[FetchJob]:
        slice_size = SliceSize.HOUR if hourly else SliceSize.DAY
        jobs = []
        for metric in self._adapter.supported_metrics():
            if metric not in permission.granted_capabilities:
                logger.info("Skipping %s: permission not granted", metric.value)
                continue
            shape = self._adapter.fetch_shape(metric)
            jobs.append(
                FetchJob(
                    metric=metric,
                    shape=shape,
                    slice_size=slice_size if shape == "grouped" else None,
                )
            )
        return jobs

    async def _fetch_all(
        self, jobs: list[FetchJob], window: TimeWindow
    ) -> list[FetchOutcome]:
        if not jobs:
            logger.warning("No readable metrics for %s", self._adapter.SOURCE_ID)
            return []
        semaphore = asyncio.Semaphore(self._config.fetch.max_concurrent)
        return list(
            await asyncio.gather(*(self._fetch_one(job, window, semaphore) for job in jobs))
        )

    async def _fetch_one(
        self, job: FetchJob, window: TimeWindow, semaphore: asyncio.Semaphore
    ) -> FetchOutcome:
        """Run one fetch; failures and timeouts become an empty outcome."""
        timeout = self._config.fetch.timeout_seconds
        async with semaphore:
            try:
                if job.shape == "grouped":
                    call = self._adapter.fetch_grouped(job.metric, window, job.slice_size)
                else:
                    call = self._adapter.fetch_raw(job.metric, window)
                readings = await asyncio.wait_for(call, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Fetch of %s from %s timed out after %.1fs",
                    job.metric.value,
                    self._adapter.SOURCE_ID,
                    timeout,
                )
                return FetchOutcome(metric=job.metric, error=f"timed out after {timeout}s")
            except Exception as exc:
                logger.warning(
                    "Fetch of %s from %s failed: %s",
                    job.metric.value,
                    self._adapter.SOURCE_ID,
                    exc,
                )
                return FetchOutcome(metric=job.metric, error=str(exc) or type(exc).__name__)

        logger.debug("Fetched %d %s readings", len(readings), job.metric.value)
        return FetchOutcome(metric=job.metric, readings=list(readings))
