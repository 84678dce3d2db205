"""Core reconciliation engine.

Folds the per-metric readings of one sync (pre-aggregated buckets and raw
samples, in any mix) into exactly one canonical record per period.  A period
is a local calendar day, or a local (day, hour) pair in hourly mode.

How readings combine is decided per metric by ``METRIC_RULES``; unit
conversions and sleep stage classification come from sync_config.yaml via
the config_loader module.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Iterable, NamedTuple

from src.vitalsync.base import (
    AggregationKind,
    DailyRecord,
    FetchOutcome,
    HourlyRecord,
    MetricBucket,
    MetricSample,
    MetricType,
    Reading,
    round_half_up,
)
from src.vitalsync.config_loader import SyncConfig, get_sync_config
from src.vitalsync.windows import to_local

logger = logging.getLogger("vitalsync.engine")


# ---------------------------------------------------------------------------
# Combination rules
# ---------------------------------------------------------------------------


class CombineRule(str, Enum):
    SUM = "sum"
    RUNNING_AVERAGE = "running_average"
    SLEEP = "sleep"
    BLOOD_PRESSURE = "blood_pressure"
    LATEST = "latest"
    WINDOW_LATEST = "window_latest"


# Metric → (rule, DailyRecord field it lands in)
METRIC_RULES: dict[MetricType, tuple[CombineRule, str]] = {
    MetricType.STEPS: (CombineRule.SUM, "steps"),
    MetricType.CALORIES: (CombineRule.SUM, "calories"),
    MetricType.DISTANCE: (CombineRule.SUM, "distance_km"),
    MetricType.ACTIVE_MINUTES: (CombineRule.SUM, "active_minutes"),
    MetricType.HEART_RATE: (CombineRule.RUNNING_AVERAGE, "average_heart_rate"),
    MetricType.SLEEP: (CombineRule.SLEEP, "sleep_minutes"),
    MetricType.BLOOD_PRESSURE: (CombineRule.BLOOD_PRESSURE, "blood_pressure_systolic"),
    MetricType.BLOOD_GLUCOSE: (CombineRule.LATEST, "blood_glucose_mg_per_dl"),
    MetricType.BODY_TEMPERATURE: (CombineRule.LATEST, "body_temperature_c"),
    MetricType.OXYGEN_SATURATION: (CombineRule.LATEST, "oxygen_saturation_percent"),
    MetricType.RESPIRATORY_RATE: (CombineRule.LATEST, "respiratory_rate"),
    MetricType.WEIGHT: (CombineRule.WINDOW_LATEST, "weight_kg"),
}

# Bucket aggregations each rule can use; anything else is skipped.
# Blood pressure is reconciled from raw samples only.
_BUCKET_KINDS: dict[CombineRule, frozenset[AggregationKind]] = {
    CombineRule.SUM: frozenset({AggregationKind.COUNT_TOTAL, AggregationKind.SUM}),
    CombineRule.SLEEP: frozenset({AggregationKind.COUNT_TOTAL, AggregationKind.SUM}),
    CombineRule.RUNNING_AVERAGE: frozenset(
        {AggregationKind.AVERAGE, AggregationKind.MIN, AggregationKind.MAX}
    ),
    CombineRule.BLOOD_PRESSURE: frozenset(),
    CombineRule.LATEST: frozenset({AggregationKind.AVERAGE}),
    CombineRule.WINDOW_LATEST: frozenset({AggregationKind.AVERAGE}),
}

# Range name → (min field, max field)
_RANGE_FIELDS: dict[str, tuple[str, str]] = {
    "heart_rate": ("min_heart_rate", "max_heart_rate"),
    "systolic": ("min_systolic", "max_systolic"),
    "diastolic": ("min_diastolic", "max_diastolic"),
}


class PeriodKey(NamedTuple):
    date: date
    hour: int | None = None


# ---------------------------------------------------------------------------
# Accumulation
# ---------------------------------------------------------------------------


@dataclass
class _PeriodAccumulator:
    """Running state for one period; turned into a record by ``finalize``."""

    key: PeriodKey
    sums: dict[str, float] = field(default_factory=dict)
    hr_sum: float = 0.0
    hr_count: int = 0
    ranges: dict[str, tuple[float, float]] = field(default_factory=dict)
    latest: dict[str, float] = field(default_factory=dict)
    averages: dict[str, tuple[float, int]] = field(default_factory=dict)

    def add(self, name: str, value: float) -> None:
        self.sums[name] = self.sums.get(name, 0.0) + value

    def track_range(self, name: str, value: float) -> None:
        low, high = self.ranges.get(name, (value, value))
        self.ranges[name] = (min(low, value), max(high, value))

    def average_in(self, name: str, value: float) -> None:
        total, count = self.averages.get(name, (0.0, 0))
        self.averages[name] = (total + value, count + 1)

    def finalize(self) -> DailyRecord:
        values: dict[str, float | int | None] = dict(self.sums)
        if self.hr_count:
            values["average_heart_rate"] = round_half_up(self.hr_sum / self.hr_count)
        for name, (low, high) in self.ranges.items():
            min_field, max_field = _RANGE_FIELDS[name]
            values[min_field] = low
            values[max_field] = high
        for name, (total, count) in self.averages.items():
            values[name] = total / count
        # A raw sample outranks a platform average for the same period.
        values.update(self.latest)

        if self.key.hour is None:
            return DailyRecord(date=self.key.date, **values)
        return HourlyRecord(date=self.key.date, hour=self.key.hour, **values)


@dataclass
class ReconciliationResult:
    """Finalized output of one engine run.

    Attributes:
        records:         One immutable record per period, ascending by key.
        hourly:          True when ``records`` are HourlyRecords.
        window_weight_kg: Latest weight seen anywhere in the window.
        folded:          Readings that contributed to a record.
        skipped:         Readings dropped (unknown unit, unusable aggregation).
    """

    records: dict[PeriodKey, DailyRecord]
    hourly: bool
    window_weight_kg: float | None = None
    folded: int = 0
    skipped: int = 0

    def by_date(self) -> dict[date, DailyRecord]:
        """Day-mode records keyed by their date."""
        if self.hourly:
            raise ValueError("Hourly results must be collapsed with collapse_hourly()")
        return {key.date: record for key, record in self.records.items()}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ReconciliationEngine:
    """Folds readings into per-period records for a single sync.

    Usage::

        engine = ReconciliationEngine(hourly=False)
        engine.fold(steps_buckets)
        engine.fold(heart_rate_buckets)
        result = engine.finalize()

    An engine is single-use: ``finalize()`` may be called once, and nothing
    may be folded afterwards.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        hourly: bool = False,
        tz: tzinfo | None = None,
    ) -> None:
        self._config = config or get_sync_config()
        self._hourly = hourly
        self._tz = tz
        self._periods: dict[PeriodKey, _PeriodAccumulator] = {}
        self._window_weight: tuple[datetime, float] | None = None
        self._folded = 0
        self._skipped = 0
        self._finalized = False

    def period_key(self, timestamp: datetime) -> PeriodKey:
        local = to_local(timestamp, self._tz)
        return PeriodKey(local.date(), local.hour if self._hourly else None)

    def fold_outcomes(self, outcomes: Iterable[FetchOutcome]) -> None:
        for outcome in outcomes:
            if outcome.failed:
                continue
            self.fold(outcome.readings)

    def fold(self, readings: Iterable[Reading]) -> int:
        """Fold readings into their periods, in the order given.

        Returns:
            Number of readings that contributed.

        Raises:
            RuntimeError: If the engine was already finalized.
        """
        if self._finalized:
            raise RuntimeError("Cannot fold readings into a finalized engine")

        folded = 0
        for reading in readings:
            if isinstance(reading, MetricBucket):
                ok = self._fold_bucket(reading)
            else:
                ok = self._fold_sample(reading)
            if ok:
                folded += 1
            else:
                self._skipped += 1
        self._folded += folded
        return folded

    def finalize(self) -> ReconciliationResult:
        """Produce the immutable per-period records.

        Raises:
            RuntimeError: On a second call.
        """
        if self._finalized:
            raise RuntimeError("ReconciliationEngine.finalize() called twice")
        self._finalized = True

        records = {
            key: self._periods[key].finalize()
            for key in sorted(self._periods, key=lambda k: (k.date, k.hour or 0))
        }
        logger.debug(
            "Reconciled %d readings into %d %s periods (%d skipped)",
            self._folded,
            len(records),
            "hourly" if self._hourly else "daily",
            self._skipped,
        )
        return ReconciliationResult(
            records=records,
            hourly=self._hourly,
            window_weight_kg=self._window_weight[1] if self._window_weight else None,
            folded=self._folded,
            skipped=self._skipped,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _period(self, timestamp: datetime) -> _PeriodAccumulator:
        key = self.period_key(timestamp)
        acc = self._periods.get(key)
        if acc is None:
            acc = self._periods[key] = _PeriodAccumulator(key=key)
        return acc

    def _normalize(self, metric: MetricType, value: float | None, unit: str | None) -> float | None:
        if value is None:
            return None
        canonical = self._config.canonical_unit(metric)
        converted = self._config.convert(value, unit, canonical)
        if converted is None:
            logger.warning(
                "No conversion from %r to %r for %s; reading skipped",
                unit,
                canonical,
                metric.value,
            )
        return converted

    def _note_weight(self, timestamp: datetime, value: float) -> None:
        # Compare as local wall-clock so naive and aware sources can mix.
        local = to_local(timestamp, self._tz).replace(tzinfo=None)
        if self._window_weight is None or local >= self._window_weight[0]:
            self._window_weight = (local, value)

    def _fold_bucket(self, bucket: MetricBucket) -> bool:
        rule, target = METRIC_RULES[bucket.metric_type]
        kind = bucket.aggregation
        if kind not in _BUCKET_KINDS[rule]:
            if rule is CombineRule.BLOOD_PRESSURE:
                logger.warning("Blood pressure is only reconciled from raw samples; bucket skipped")
            else:
                logger.debug("Ignoring %s bucket for %s", kind.value, target)
            return False

        value = self._normalize(bucket.metric_type, bucket.value, bucket.unit)
        if value is None:
            return False
        acc = self._period(bucket.period_start)

        if rule is CombineRule.SUM or rule is CombineRule.SLEEP:
            acc.add(target, value)
        elif rule is CombineRule.RUNNING_AVERAGE:
            if kind is AggregationKind.AVERAGE:
                acc.hr_sum += value
                acc.hr_count += 1
            else:
                acc.track_range("heart_rate", value)
        elif rule is CombineRule.WINDOW_LATEST:
            acc.latest[target] = value
            self._note_weight(bucket.period_start, value)
        else:
            acc.average_in(target, value)
        return True

    def _fold_sample(self, sample: MetricSample) -> bool:
        rule, target = METRIC_RULES[sample.metric_type]
        value = self._normalize(sample.metric_type, sample.value, sample.unit)
        if value is None:
            return False
        acc = self._period(sample.timestamp)

        if rule is CombineRule.SUM:
            acc.add(target, value)
        elif rule is CombineRule.RUNNING_AVERAGE:
            acc.hr_sum += value
            acc.hr_count += 1
            acc.track_range("heart_rate", value)
        elif rule is CombineRule.SLEEP:
            acc.add(target, value)
            stage = self._config.classify_sleep_stage(sample.stage)
            if stage is not None:
                acc.add(f"sleep_{stage}_minutes", value)
        elif rule is CombineRule.BLOOD_PRESSURE:
            acc.latest["blood_pressure_systolic"] = value
            acc.track_range("systolic", value)
            diastolic = self._normalize(
                sample.metric_type, sample.secondary_value, sample.unit
            )
            if diastolic is not None:
                acc.latest["blood_pressure_diastolic"] = diastolic
                acc.track_range("diastolic", diastolic)
        elif rule is CombineRule.WINDOW_LATEST:
            acc.latest[target] = value
            self._note_weight(sample.timestamp, value)
        else:
            acc.latest[target] = value
        return True


def reconcile(
    outcomes: Iterable[FetchOutcome],
    config: SyncConfig | None = None,
    *,
    hourly: bool = False,
    tz: tzinfo | None = None,
) -> ReconciliationResult:
    """Convenience wrapper: fold every successful outcome and finalize."""
    engine = ReconciliationEngine(config, hourly=hourly, tz=tz)
    engine.fold_outcomes(outcomes)
    return engine.finalize()
