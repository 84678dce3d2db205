"""Time window resolution for sync requests.

A window is always a pair of local wall-clock bounds running from the start
of the first day (00:00:00.000) to the end of the last day (23:59:59.999).
Every engine component keys readings by the *local* calendar date, so the
helpers here are the one place where timestamps are turned into day keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Iterator

logger = logging.getLogger("vitalsync.windows")


class WindowKind(str, Enum):
    TODAY = "today"
    TRAILING_7 = "7d"
    TRAILING_30 = "30d"
    CUSTOM = "custom"


# Inclusive day counts for the fixed windows.
_WINDOW_DAYS: dict[WindowKind, int] = {
    WindowKind.TODAY: 1,
    WindowKind.TRAILING_7: 7,
    WindowKind.TRAILING_30: 30,
}


class InvalidWindowError(ValueError):
    """Raised when a custom window ends before it starts."""


@dataclass(frozen=True)
class TimeWindow:
    """Resolved [start, end] bounds of a sync request.

    Attributes:
        start: Start of the first local day.
        end:   End of the last local day (23:59:59.999).
        kind:  How the window was requested.
        tz:    Zone the bounds were resolved in; None means the system zone
               (or naive local time when the bounds are naive).
    """

    start: datetime
    end: datetime
    kind: WindowKind = WindowKind.CUSTOM
    tz: tzinfo | None = None

    @property
    def start_date(self) -> date:
        return to_local(self.start, self.tz).date()

    @property
    def end_date(self) -> date:
        return to_local(self.end, self.tz).date()

    @property
    def day_count(self) -> int:
        """Number of calendar days covered, inclusive of both ends."""
        return (self.end_date - self.start_date).days + 1


# ---------------------------------------------------------------------------
# Day arithmetic
# ---------------------------------------------------------------------------


def to_local(value: datetime, tz: tzinfo | None = None) -> datetime:
    """Express a timestamp as local wall-clock time.

    Naive datetimes are taken to already be local.  Aware ones are converted
    to ``tz``, or to the system zone when ``tz`` is None.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(tz)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999000)


def day_key(value: date | datetime, tz: tzinfo | None = None) -> str:
    """Return the ``YYYY-MM-DD`` key of the local calendar day of ``value``."""
    if isinstance(value, datetime):
        value = to_local(value, tz).date()
    return value.isoformat()


def today_key(now: datetime | None = None) -> str:
    return day_key(now or datetime.now())


def iter_days(window: TimeWindow) -> Iterator[date]:
    """Yield every local calendar day of ``window``, first to last."""
    cursor = window.start_date
    last = window.end_date
    while cursor <= last:
        yield cursor
        cursor += timedelta(days=1)


# ---------------------------------------------------------------------------
# Window resolution
# ---------------------------------------------------------------------------


_END_OF_DAY = time(23, 59, 59, 999000)


def _localize(day: date, at: time, tz: tzinfo | None, aware: bool) -> datetime:
    """Wall-clock ``at`` on ``day``, with the UTC offset that applies on that day.

    Offsets are looked up per date so a window spanning a DST change still
    starts and ends at local midnight.
    """
    if not aware:
        return datetime.combine(day, at)
    if tz is None:
        return datetime.combine(day, at).astimezone()
    return datetime.combine(day, at, tzinfo=tz)


def _parse_bound(value: object, side: str) -> datetime | None:
    """Parse one custom bound.  Returns None (and logs) when unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time())
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning(
                "Malformed custom range %s %r; falling back to today", side, value
            )
            return None
    logger.warning(
        "Unsupported custom range %s of type %s; falling back to today",
        side,
        type(value).__name__,
    )
    return None


def resolve_window(
    kind: WindowKind | str,
    custom_start: object = None,
    custom_end: object = None,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> TimeWindow:
    """Resolve a window request into concrete local bounds.

    Day arithmetic runs on local calendar dates, and each bound is then
    localized for its own date, so windows crossing a DST change keep their
    day count.

    Args:
        kind:         'today', '7d', '30d' or 'custom'.
        custom_start: Start bound for custom windows (ISO string, date or datetime).
        custom_end:   End bound for custom windows.
        now:          Reference instant; defaults to the current local time.
        tz:           Zone to resolve in; None means the system zone.  Ignored
                      when ``now`` is naive, which yields naive bounds.

    Returns:
        TimeWindow spanning whole local days.

    Raises:
        ValueError:         ``kind`` is not a known window kind.
        InvalidWindowError: A custom window whose end precedes its start.
    """
    kind = WindowKind(kind)
    current = now if now is not None else datetime.now().astimezone()
    aware = current.tzinfo is not None
    today = to_local(current, tz).date()

    first = last = today
    if kind in _WINDOW_DAYS:
        first = today - timedelta(days=_WINDOW_DAYS[kind] - 1)
    else:
        parsed_start = _parse_bound(custom_start, "start")
        parsed_end = _parse_bound(custom_end, "end")
        if parsed_start is not None:
            first = to_local(parsed_start, tz).date()
        if parsed_end is not None:
            last = to_local(parsed_end, tz).date()
        if last < first:
            raise InvalidWindowError(
                f"Custom window ends before it starts: {first.isoformat()} > {last.isoformat()}"
            )

    return TimeWindow(
        start=_localize(first, time(), tz, aware),
        end=_localize(last, _END_OF_DAY, tz, aware),
        kind=kind,
        tz=tz,
    )
