"""Base classes and canonical data models for the VitalSync reconciliation engine.

Every platform adapter must subclass SourceAdapter and return the canonical
MetricBucket / MetricSample readings.  These types are the single vocabulary
shared by the reconciliation engine, the rollup reducers, the sync service
and the API layer.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from src.vitalsync.windows import TimeWindow

logger = logging.getLogger("vitalsync")


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class MetricType(str, Enum):
    """Physiological metric families understood by the engine."""

    STEPS = "steps"
    CALORIES = "calories"
    DISTANCE = "distance"
    ACTIVE_MINUTES = "active_minutes"
    HEART_RATE = "heart_rate"
    SLEEP = "sleep"
    BLOOD_PRESSURE = "blood_pressure"
    BLOOD_GLUCOSE = "blood_glucose"
    BODY_TEMPERATURE = "body_temperature"
    OXYGEN_SATURATION = "oxygen_saturation"
    RESPIRATORY_RATE = "respiratory_rate"
    WEIGHT = "weight"


class AggregationKind(str, Enum):
    """How an upstream platform pre-aggregated a bucket value."""

    COUNT_TOTAL = "count_total"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"


class SliceSize(str, Enum):
    """Bucket granularity requested from a grouped fetch."""

    DAY = "day"
    HOUR = "hour"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PermissionDeniedError(Exception):
    """A required capability was not granted by the platform."""


class SourceUnavailableError(Exception):
    """Every planned fetch of a sync failed; there is nothing to reconcile."""


# ---------------------------------------------------------------------------
# Readings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricSample:
    """A single raw measurement as reported by a platform.

    Attributes:
        timestamp:       When the measurement was taken (interval start for sleep).
        metric_type:     Metric family of the reading.
        value:           Primary value.  Systolic pressure for blood pressure,
                         duration in minutes for sleep.
        unit:            Unit of ``value``; ``None`` means already canonical.
        end:             Interval end, for interval samples such as sleep.
        stage:           Raw sleep stage label, e.g. ``"ASLEEP_REM"``.
        secondary_value: Diastolic pressure for blood-pressure samples.
        source:          Device or app that produced the sample.
    """

    timestamp: datetime
    metric_type: MetricType
    value: float
    unit: str | None = None
    end: datetime | None = None
    stage: str | None = None
    secondary_value: float | None = None
    source: str | None = None


@dataclass(frozen=True)
class MetricBucket:
    """A pre-aggregated value covering one time slice.

    A platform may emit several buckets for the same slice, one per
    aggregation kind (heart-rate average, minimum and maximum for example).
    """

    period_start: datetime
    period_end: datetime
    metric_type: MetricType
    aggregation: AggregationKind
    value: float
    unit: str | None = None
    source: str | None = None


Reading = Union[MetricSample, MetricBucket]


@dataclass
class FetchOutcome:
    """Settled result of one per-metric fetch.

    A failed fetch carries an ``error`` description and no readings.
    """

    metric: MetricType
    readings: list[Reading] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyRecord:
    """Reconciled view of one calendar day.

    ``None`` means no source reported the metric for that day.  Gap-filled
    days carry ``0`` for the cumulative fields instead.

    Attributes:
        date:                      Local calendar date.
        steps:                     Step count.
        calories:                  Energy burned (kcal).
        distance_km:               Distance covered (km).
        sleep_minutes:             Total sleep, all stages.
        sleep_awake_minutes:       Minutes awake inside sleep sessions.
        sleep_rem_minutes:         REM stage minutes.
        sleep_core_minutes:        Core / light stage minutes.
        sleep_deep_minutes:        Deep stage minutes.
        active_minutes:            Exercise minutes.
        average_heart_rate:        Rounded mean heart rate (bpm).
        min_heart_rate:            Lowest heart rate seen.
        max_heart_rate:            Highest heart rate seen.
        blood_pressure_systolic:   Latest systolic reading (mmHg).
        blood_pressure_diastolic:  Latest diastolic reading (mmHg).
        min_systolic:              Lowest systolic reading.
        max_systolic:              Highest systolic reading.
        min_diastolic:             Lowest diastolic reading.
        max_diastolic:             Highest diastolic reading.
        blood_glucose_mg_per_dl:   Blood glucose (mg/dL).
        body_temperature_c:        Body temperature (°C).
        oxygen_saturation_percent: SpO2 (%).
        respiratory_rate:          Breaths per minute.
        weight_kg:                 Body weight (kg).
    """

    date: date
    steps: float | None = None
    calories: float | None = None
    distance_km: float | None = None
    sleep_minutes: float | None = None
    sleep_awake_minutes: float | None = None
    sleep_rem_minutes: float | None = None
    sleep_core_minutes: float | None = None
    sleep_deep_minutes: float | None = None
    active_minutes: float | None = None
    average_heart_rate: int | None = None
    min_heart_rate: float | None = None
    max_heart_rate: float | None = None
    blood_pressure_systolic: float | None = None
    blood_pressure_diastolic: float | None = None
    min_systolic: float | None = None
    max_systolic: float | None = None
    min_diastolic: float | None = None
    max_diastolic: float | None = None
    blood_glucose_mg_per_dl: float | None = None
    body_temperature_c: float | None = None
    oxygen_saturation_percent: float | None = None
    respiratory_rate: float | None = None
    weight_kg: float | None = None


@dataclass(frozen=True)
class HourlyRecord(DailyRecord):
    """DailyRecord refined to a single local hour (0-23)."""

    hour: int = 0


#: Fields summed into the window summary and zero-filled on empty days.
CUMULATIVE_FIELDS: tuple[str, ...] = (
    "steps",
    "calories",
    "distance_km",
    "sleep_minutes",
    "active_minutes",
)

#: Fields the window summary takes from the first day that has them.
POINT_FIELDS: tuple[str, ...] = (
    "average_heart_rate",
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
    "blood_glucose_mg_per_dl",
    "body_temperature_c",
    "oxygen_saturation_percent",
    "respiratory_rate",
    "weight_kg",
)


@dataclass(frozen=True)
class HourlyPoint:
    """One non-missing hourly value, labelled for charting consumers."""

    date: date
    hour: int
    metric_type: str
    value: float
    unit: str
    source: str | None = None


@dataclass(frozen=True)
class SleepSession:
    """A single staged sleep interval, projected from raw sleep samples."""

    start: datetime
    end: datetime
    stage: str
    duration_minutes: int
    source: str | None = None


@dataclass(frozen=True)
class SummaryRecord:
    """Window-level aggregate.

    Cumulative fields are the sum over every day in the window.  Point
    metrics come from the first day (ascending) that carries a value.
    """

    platform: str
    steps: float = 0
    calories: float = 0
    distance_km: float = 0
    sleep_minutes: float = 0
    active_minutes: float = 0
    average_heart_rate: int | None = None
    blood_pressure_systolic: float | None = None
    blood_pressure_diastolic: float | None = None
    blood_glucose_mg_per_dl: float | None = None
    body_temperature_c: float | None = None
    oxygen_saturation_percent: float | None = None
    respiratory_rate: float | None = None
    weight_kg: float | None = None


@dataclass
class PermissionResult:
    """Outcome of a platform permission check.

    Attributes:
        granted:              Whether the platform is usable at all.
        platform:             Platform slug ('android', 'ios').
        details:              Human-readable notes for the caller.
        granted_capabilities: Metrics the platform allowed us to read.
    """

    granted: bool
    platform: str
    details: list[str] = field(default_factory=list)
    granted_capabilities: frozenset[MetricType] = frozenset()


@dataclass
class SyncRangeResult:
    """Everything one range sync produces."""

    platform: str
    summary: SummaryRecord
    daily: list[DailyRecord]
    hourly: list[HourlyPoint] | None = None
    sleep_sessions: list[SleepSession] = field(default_factory=list)
    failed_metrics: list[MetricType] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives.

    ``round()`` uses banker's rounding, which would turn 70.5 bpm into 70.
    """
    return math.floor(value + 0.5)


# ---------------------------------------------------------------------------
# Abstract adapter interface
# ---------------------------------------------------------------------------


class SourceAdapter(ABC):
    """Abstract base class for all platform adapters.

    Each adapter declares which metrics it can deliver as pre-aggregated
    buckets (``GROUPED_METRICS``) and which only as raw samples
    (``RAW_METRICS``).  The sync service uses this table to decide which
    fetch to issue per metric; grouped wins when a metric is in both.

    Subclasses must implement:
        - check_permissions()
        - fetch_grouped()
        - fetch_raw()

    Any of these may raise.  The sync service absorbs per-metric failures.
    """

    #: Unique slug used by the adapter registry (e.g. 'health_connect').
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Source"

    #: Platform label reported in summaries ('android', 'ios').
    PLATFORM: str = "unknown"

    GROUPED_METRICS: frozenset[MetricType] = frozenset()
    RAW_METRICS: frozenset[MetricType] = frozenset()

    @abstractmethod
    async def check_permissions(self) -> PermissionResult:
        """Ask the platform which metrics may be read.

        Returns:
            PermissionResult; ``granted=False`` when the platform is unusable.
        """

    @abstractmethod
    async def fetch_grouped(
        self, metric: MetricType, window: TimeWindow, slice_size: SliceSize
    ) -> list[MetricBucket]:
        """Fetch platform-aggregated buckets for one metric.

        Args:
            metric:     Metric to fetch.
            window:     Resolved time window.
            slice_size: Day or hour buckets.

        Returns:
            Sparse list of buckets; slices without data are simply absent.
        """

    @abstractmethod
    async def fetch_raw(
        self, metric: MetricType, window: TimeWindow
    ) -> list[MetricSample]:
        """Fetch raw samples for one metric inside the window."""

    # ------------------------------------------------------------------
    # Capability table
    # ------------------------------------------------------------------

    def supported_metrics(self) -> list[MetricType]:
        """All metrics this adapter can deliver, in MetricType order."""
        return [
            m for m in MetricType if m in self.GROUPED_METRICS or m in self.RAW_METRICS
        ]

    def fetch_shape(self, metric: MetricType) -> str | None:
        """Return ``"grouped"``, ``"raw"`` or ``None`` if unsupported."""
        if metric in self.GROUPED_METRICS:
            return "grouped"
        if metric in self.RAW_METRICS:
            return "raw"
        return None

    # ------------------------------------------------------------------
    # Shared helpers available to all adapters
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 datetime string, keeping its offset.

        Offsets are preserved so the engine can key readings by the local
        calendar day.  Returns None if the value is None or unparseable.
        """
        if not value:
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None
