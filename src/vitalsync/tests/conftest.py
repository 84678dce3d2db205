"""Shared fixtures, builders and a scripted adapter for VitalSync tests."""

from __future__ import annotations

import asyncio
import json
from datetime import date, datetime, timedelta
from pathlib import Path

import pytest

from src.vitalsync.base import (
    AggregationKind,
    MetricBucket,
    MetricSample,
    MetricType,
    PermissionResult,
    SliceSize,
    SourceAdapter,
)
from src.vitalsync.config_loader import SyncConfig, load_sync_config
from src.vitalsync.windows import TimeWindow, WindowKind, end_of_day

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Reference instant and the three-day window ending on it (all naive local time)
TEST_NOW = datetime(2024, 1, 3, 15, 30)
TEST_WINDOW = TimeWindow(
    start=datetime(2024, 1, 1),
    end=end_of_day(datetime(2024, 1, 3)),
    kind=WindowKind.CUSTOM,
)


# ---------------------------------------------------------------------------
# Reading builders
# ---------------------------------------------------------------------------


def day_bucket(
    day: date,
    metric: MetricType,
    value: float,
    kind: AggregationKind = AggregationKind.COUNT_TOTAL,
    unit: str | None = None,
) -> MetricBucket:
    start = datetime(day.year, day.month, day.day)
    return MetricBucket(
        period_start=start,
        period_end=start + timedelta(days=1),
        metric_type=metric,
        aggregation=kind,
        value=value,
        unit=unit,
    )


def hour_bucket(
    day: date,
    hour: int,
    metric: MetricType,
    value: float,
    kind: AggregationKind = AggregationKind.COUNT_TOTAL,
) -> MetricBucket:
    start = datetime(day.year, day.month, day.day, hour)
    return MetricBucket(
        period_start=start,
        period_end=start + timedelta(hours=1),
        metric_type=metric,
        aggregation=kind,
        value=value,
    )


def sample(
    timestamp: datetime, metric: MetricType, value: float, **kwargs: object
) -> MetricSample:
    return MetricSample(timestamp=timestamp, metric_type=metric, value=value, **kwargs)


# ---------------------------------------------------------------------------
# Scripted adapter
# ---------------------------------------------------------------------------


class FakeAdapter(SourceAdapter):
    """Adapter that serves canned readings and records every call.

    Args:
        grouped:  Metric → buckets returned by fetch_grouped.
        raw:      Metric → samples returned by fetch_raw.
        failures: Metric → exception raised instead of returning data.
        delays:   Metric → seconds to sleep before answering.
        granted:  Readable metrics; every supported metric by default.
        denied:   Report the platform itself as unusable.
    """

    SOURCE_ID = "fake"
    DISPLAY_NAME = "Fake Platform"
    PLATFORM = "android"

    GROUPED_METRICS = frozenset(
        {
            MetricType.STEPS,
            MetricType.CALORIES,
            MetricType.DISTANCE,
            MetricType.ACTIVE_MINUTES,
            MetricType.HEART_RATE,
        }
    )
    RAW_METRICS = frozenset(
        {MetricType.SLEEP, MetricType.BLOOD_PRESSURE, MetricType.WEIGHT}
    )

    def __init__(
        self,
        grouped: dict | None = None,
        raw: dict | None = None,
        failures: dict | None = None,
        delays: dict | None = None,
        granted: set | None = None,
        denied: bool = False,
    ) -> None:
        self.grouped = grouped or {}
        self.raw = raw or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.granted = granted
        self.denied = denied
        self.calls: list[tuple[MetricType, str, SliceSize | None]] = []

    async def check_permissions(self) -> PermissionResult:
        if self.denied:
            return PermissionResult(
                granted=False, platform=self.PLATFORM, details=["SDK unavailable"]
            )
        granted = self.granted if self.granted is not None else self.supported_metrics()
        return PermissionResult(
            granted=True, platform=self.PLATFORM, granted_capabilities=frozenset(granted)
        )

    async def _answer(self, metric: MetricType, data: dict) -> list:
        delay = self.delays.get(metric, 0)
        if delay:
            await asyncio.sleep(delay)
        if metric in self.failures:
            raise self.failures[metric]
        return list(data.get(metric, []))

    async def fetch_grouped(self, metric, window, slice_size):
        self.calls.append((metric, "grouped", slice_size))
        return await self._answer(metric, self.grouped)

    async def fetch_raw(self, metric, window):
        self.calls.append((metric, "raw", None))
        return await self._answer(metric, self.raw)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real sync config for tests."""
    return load_sync_config()


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def health_connect_permissions_raw() -> dict:
    return json.loads((FIXTURES_DIR / "health_connect_permissions.json").read_text())


@pytest.fixture
def health_connect_heart_rate_raw() -> dict:
    return json.loads((FIXTURES_DIR / "health_connect_heart_rate.json").read_text())


@pytest.fixture
def health_connect_blood_pressure_raw() -> dict:
    return json.loads((FIXTURES_DIR / "health_connect_blood_pressure.json").read_text())


@pytest.fixture
def healthkit_sleep_raw() -> dict:
    return json.loads((FIXTURES_DIR / "healthkit_sleep.json").read_text())


# ---------------------------------------------------------------------------
# Adapter fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def three_day_adapter() -> FakeAdapter:
    """Steps on days 1 and 3, heart rate and blood pressure on day 2."""
    return FakeAdapter(
        grouped={
            MetricType.STEPS: [
                day_bucket(date(2024, 1, 1), MetricType.STEPS, 1000),
                day_bucket(date(2024, 1, 3), MetricType.STEPS, 500),
            ],
            MetricType.CALORIES: [
                day_bucket(date(2024, 1, 2), MetricType.CALORIES, 2100, AggregationKind.SUM),
            ],
            MetricType.HEART_RATE: [
                day_bucket(date(2024, 1, 2), MetricType.HEART_RATE, 72, AggregationKind.AVERAGE),
                day_bucket(date(2024, 1, 2), MetricType.HEART_RATE, 55, AggregationKind.MIN),
                day_bucket(date(2024, 1, 2), MetricType.HEART_RATE, 140, AggregationKind.MAX),
            ],
        },
        raw={
            MetricType.BLOOD_PRESSURE: [
                sample(datetime(2024, 1, 2, 8), MetricType.BLOOD_PRESSURE, 120, secondary_value=80),
            ],
        },
    )
