"""VitalSync health-metrics reconciliation engine.

This package ingests physiological readings from on-device health platforms,
reconciles pre-aggregated buckets and raw samples into one record per day
(optionally refined per hour), fills the gaps, and summarizes the window.

Subpackages:
    adapters/ — Platform adapters (Health Connect, Apple HealthKit)
    sync/     — Sync orchestration and outbound delivery

Core modules:
    base          — SourceAdapter ABC and canonical data models
    windows       — Time window resolution and local day keys
    config_loader — Load/validate/hot-reload sync_config.yaml
    engine        — Per-metric reconciliation into period records
    rollup        — Hourly rollup, window summary, sleep sessions
    gap_filler    — One record per calendar day of a window
"""

from src.vitalsync.base import (
    DailyRecord,
    MetricBucket,
    MetricSample,
    MetricType,
    SourceAdapter,
    SummaryRecord,
    SyncRangeResult,
)
from src.vitalsync.config_loader import SyncConfig, get_sync_config
from src.vitalsync.windows import TimeWindow, resolve_window

__all__ = [
    "DailyRecord",
    "MetricBucket",
    "MetricSample",
    "MetricType",
    "SourceAdapter",
    "SummaryRecord",
    "SyncConfig",
    "SyncRangeResult",
    "TimeWindow",
    "get_sync_config",
    "resolve_window",
]
