"""Roll-up reducers.

``collapse_hourly`` turns hourly records into day records plus a flat list of
labelled hourly points.  ``reduce_summary`` turns a gap-filled day series into
the single window summary.  ``sleep_sessions`` projects raw sleep samples into
session records for the caller.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Sequence

from src.vitalsync.base import (
    CUMULATIVE_FIELDS,
    POINT_FIELDS,
    DailyRecord,
    FetchOutcome,
    HourlyPoint,
    HourlyRecord,
    MetricSample,
    MetricType,
    SleepSession,
    SummaryRecord,
    round_half_up,
)

logger = logging.getLogger("vitalsync.rollup")


# Hourly field → (point label, unit)
_HOURLY_POINT_FIELDS: list[tuple[str, str, str]] = [
    ("steps", "steps", "count"),
    ("average_heart_rate", "heart_rate", "bpm"),
    ("min_heart_rate", "heart_rate_min", "bpm"),
    ("max_heart_rate", "heart_rate_max", "bpm"),
    ("calories", "calories", "kcal"),
    ("distance_km", "distance", "km"),
    ("sleep_minutes", "sleep_minutes", "min"),
    ("sleep_awake_minutes", "sleep_awake", "min"),
    ("sleep_rem_minutes", "sleep_rem", "min"),
    ("sleep_core_minutes", "sleep_core", "min"),
    ("sleep_deep_minutes", "sleep_deep", "min"),
    ("active_minutes", "active_minutes", "min"),
    ("blood_pressure_systolic", "bp_systolic", "mmHg"),
    ("blood_pressure_diastolic", "bp_diastolic", "mmHg"),
    ("min_systolic", "bp_systolic_min", "mmHg"),
    ("max_systolic", "bp_systolic_max", "mmHg"),
    ("min_diastolic", "bp_diastolic_min", "mmHg"),
    ("max_diastolic", "bp_diastolic_max", "mmHg"),
    ("blood_glucose_mg_per_dl", "blood_glucose", "mg/dL"),
    ("body_temperature_c", "body_temp", "C"),
    ("oxygen_saturation_percent", "oxygen_sat", "%"),
    ("respiratory_rate", "respiratory_rate", "breaths/min"),
    ("weight_kg", "weight", "kg"),
]

_SUMMED_FIELDS: tuple[str, ...] = (
    "steps",
    "calories",
    "distance_km",
    "sleep_minutes",
    "sleep_awake_minutes",
    "sleep_rem_minutes",
    "sleep_core_minutes",
    "sleep_deep_minutes",
    "active_minutes",
)

_FIRST_SEEN_FIELDS: tuple[str, ...] = (
    "blood_pressure_systolic",
    "blood_pressure_diastolic",
    "blood_glucose_mg_per_dl",
    "body_temperature_c",
    "oxygen_saturation_percent",
    "respiratory_rate",
    "weight_kg",
)

_MIN_FIELDS: tuple[str, ...] = ("min_heart_rate", "min_systolic", "min_diastolic")
_MAX_FIELDS: tuple[str, ...] = ("max_heart_rate", "max_systolic", "max_diastolic")


@dataclass
class HourlyRollup:
    """Day records derived from hours, plus the hourly chart points."""

    daily: dict[date, DailyRecord]
    points: list[HourlyPoint]


# ---------------------------------------------------------------------------
# Hour → day
# ---------------------------------------------------------------------------


def _present(hours: Sequence[HourlyRecord], name: str) -> list[Any]:
    return [getattr(h, name) for h in hours if getattr(h, name) is not None]


def _collapse_day(day: date, hours: Sequence[HourlyRecord]) -> DailyRecord:
    """Collapse one day's hourly records (ascending by hour)."""
    values: dict[str, Any] = {}

    for name in _SUMMED_FIELDS:
        present = _present(hours, name)
        if present:
            values[name] = sum(present)

    # Average of hourly averages, counted over the hours that had one.
    hourly_hr = _present(hours, "average_heart_rate")
    if hourly_hr:
        values["average_heart_rate"] = round_half_up(sum(hourly_hr) / len(hourly_hr))

    for name in _MIN_FIELDS:
        present = _present(hours, name)
        if present:
            values[name] = min(present)
    for name in _MAX_FIELDS:
        present = _present(hours, name)
        if present:
            values[name] = max(present)

    for name in _FIRST_SEEN_FIELDS:
        present = _present(hours, name)
        if present:
            values[name] = present[0]

    return DailyRecord(date=day, **values)


def _hourly_points(record: HourlyRecord, source: str | None) -> list[HourlyPoint]:
    points = []
    for name, label, unit in _HOURLY_POINT_FIELDS:
        value = getattr(record, name)
        if value is None:
            continue
        points.append(
            HourlyPoint(
                date=record.date,
                hour=record.hour,
                metric_type=label,
                value=value,
                unit=unit,
                source=source,
            )
        )
    return points


def collapse_hourly(
    records: Iterable[HourlyRecord], source: str | None = None
) -> HourlyRollup:
    """Collapse hourly records to day records and emit hourly points.

    Args:
        records: Hourly records in any order.
        source:  Source label stamped on every emitted point.

    Returns:
        HourlyRollup with day records keyed by date and points ordered by
        (date, hour).
    """
    by_date: dict[date, list[HourlyRecord]] = defaultdict(list)
    for record in records:
        by_date[record.date].append(record)

    daily: dict[date, DailyRecord] = {}
    points: list[HourlyPoint] = []
    for day in sorted(by_date):
        hours = sorted(by_date[day], key=lambda r: r.hour)
        daily[day] = _collapse_day(day, hours)
        for record in hours:
            points.extend(_hourly_points(record, source))

    logger.debug("Collapsed %d days into %d hourly points", len(daily), len(points))
    return HourlyRollup(daily=daily, points=points)


# ---------------------------------------------------------------------------
# Day → window summary
# ---------------------------------------------------------------------------


def reduce_summary(
    daily: Iterable[DailyRecord],
    platform: str,
    window_weight_kg: float | None = None,
) -> SummaryRecord:
    """Reduce an ascending day series into one window summary.

    Cumulative fields are summed with missing values counted as zero.  Point
    metrics take the first day (ascending) that carries a value.  Weight
    falls back to ``window_weight_kg`` when no day has one.

    Args:
        daily:            Day records, ascending by date.
        platform:         Platform label for the summary.
        window_weight_kg: Window-level latest weight, if any.
    """
    totals: dict[str, float] = {name: 0 for name in CUMULATIVE_FIELDS}
    points: dict[str, Any] = {name: None for name in POINT_FIELDS}

    for record in daily:
        for name in CUMULATIVE_FIELDS:
            totals[name] += getattr(record, name) or 0
        for name in POINT_FIELDS:
            if points[name] is None:
                points[name] = getattr(record, name)

    if points["weight_kg"] is None:
        points["weight_kg"] = window_weight_kg

    return SummaryRecord(platform=platform, **totals, **points)


# ---------------------------------------------------------------------------
# Sleep sessions
# ---------------------------------------------------------------------------


def sleep_sessions(outcomes: Iterable[FetchOutcome], source: str | None = None) -> list[SleepSession]:
    """Project raw sleep samples with an interval into SleepSession records."""
    sessions = []
    for outcome in outcomes:
        if outcome.metric is not MetricType.SLEEP:
            continue
        for reading in outcome.readings:
            if not isinstance(reading, MetricSample) or reading.end is None:
                continue
            duration = (reading.end - reading.timestamp).total_seconds() / 60
            sessions.append(
                SleepSession(
                    start=reading.timestamp,
                    end=reading.end,
                    stage=(reading.stage or "unknown").lower(),
                    duration_minutes=round_half_up(duration),
                    source=reading.source or source,
                )
            )
    sessions.sort(key=lambda s: s.start)
    return sessions
