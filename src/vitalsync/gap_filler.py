"""Complete a sparse day series so it covers every day of a window.

Days no source reported on are synthesized with zero activity and no point
metrics, so charts and summaries always see one record per calendar day.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date
from typing import Mapping

from src.vitalsync.base import CUMULATIVE_FIELDS, DailyRecord
from src.vitalsync.windows import TimeWindow, iter_days

logger = logging.getLogger("vitalsync.gap_filler")


def empty_day(day: date) -> DailyRecord:
    """A day with zero cumulative activity and every point metric absent."""
    return DailyRecord(
        date=day,
        steps=0,
        calories=0,
        distance_km=0,
        sleep_minutes=0,
        active_minutes=0,
    )


def _zero_missing_activity(record: DailyRecord) -> DailyRecord:
    """Default absent cumulative fields to 0; point metrics stay absent."""
    missing = {name: 0 for name in CUMULATIVE_FIELDS if getattr(record, name) is None}
    return replace(record, **missing) if missing else record


def fill_missing_days(
    window: TimeWindow, records: Mapping[date, DailyRecord]
) -> list[DailyRecord]:
    """Return exactly one record per local calendar day of ``window``.

    Args:
        window:  Resolved window.
        records: Reconciled day records keyed by date; may be sparse and may
                 contain days outside the window, which are dropped.

    Returns:
        Records in strictly ascending date order.  Cumulative fields are
        never None; a reported day with no steps still counts 0 steps.
    """
    series: list[DailyRecord] = []
    synthesized = 0
    for day in iter_days(window):
        record = records.get(day)
        if record is None:
            record = empty_day(day)
            synthesized += 1
        else:
            record = _zero_missing_activity(record)
        series.append(record)

    outside = sum(1 for day in records if not window.start_date <= day <= window.end_date)
    if outside:
        logger.debug("Dropped %d records outside %s..%s", outside, window.start_date, window.end_date)
    if synthesized:
        logger.debug("Synthesized %d empty days of %d", synthesized, len(series))
    return series
