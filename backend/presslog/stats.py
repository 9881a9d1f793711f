from __future__ import annotations

import datetime as dt
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Tuple

from .utils import as_utc

PERIODS = ("daily", "weekly", "monthly")


def _active(history: Iterable[Any]) -> List[Any]:
    return [entry for entry in history if entry.is_active]


def _local(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    return as_utc(value).astimezone(tz)


def reference_start(now: dt.datetime, hour: int, minute: int, tz: dt.tzinfo) -> dt.datetime:
    """Most recent local ``hour:minute`` at or before ``now``."""
    local_now = _local(now, tz)
    start = dt.datetime.combine(local_now.date(), dt.time(hour, minute), tzinfo=tz)
    if start > local_now:
        start = dt.datetime.combine(local_now.date() - dt.timedelta(days=1), dt.time(hour, minute), tzinfo=tz)
    return start


def presses_since(history: Iterable[Any], now: dt.datetime, hour: int, minute: int, tz: dt.tzinfo) -> int:
    start = reference_start(now, hour, minute, tz)
    return sum(1 for entry in _active(history) if as_utc(entry.timestamp) >= start)


def presses_today(history: Iterable[Any], now: dt.datetime, day_start_hour: int, tz: dt.tzinfo) -> int:
    """Count active presses since the user's day started."""
    return presses_since(history, now, day_start_hour, 0, tz)


def _bucket(value: dt.datetime, period: str) -> str:
    if period == "daily":
        return f"{value.hour}:00"
    if period == "weekly":
        return value.strftime("%a")
    return value.strftime("%d")


def press_counts(history: Iterable[Any], period: str, tz: dt.tzinfo) -> List[Dict[str, Any]]:
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}")
    counts: Dict[Tuple[str, int], int] = defaultdict(int)
    for entry in _active(history):
        counts[(_bucket(_local(entry.timestamp, tz), period), entry.timer_id)] += 1
    return [
        {"timestamp": bucket, "timer_id": timer_id, "count": count}
        for (bucket, timer_id), count in counts.items()
    ]


def _minutes_between(later: dt.datetime, earlier: dt.datetime) -> int:
    # whole minutes, truncated towards zero
    return int((as_utc(later) - as_utc(earlier)).total_seconds() / 60)


def _by_timer(history: Iterable[Any]) -> Dict[int, List[Any]]:
    grouped: Dict[int, List[Any]] = defaultdict(list)
    for entry in _active(history):
        grouped[entry.timer_id].append(entry)
    for entries in grouped.values():
        entries.sort(key=lambda entry: (as_utc(entry.timestamp), entry.id))
    return grouped


def average_interval_by_day(history: Iterable[Any], tz: dt.tzinfo) -> List[Dict[str, Any]]:
    averages: List[Dict[str, Any]] = []
    for timer_id, entries in _by_timer(history).items():
        days: Dict[dt.date, List[dt.datetime]] = defaultdict(list)
        for entry in entries:
            days[_local(entry.timestamp, tz).date()].append(entry.timestamp)
        for day, stamps in sorted(days.items()):
            if len(stamps) < 2:
                continue
            gaps = [_minutes_between(stamps[index], stamps[index - 1]) for index in range(1, len(stamps))]
            averages.append(
                {
                    "date": day.isoformat(),
                    "timer_id": timer_id,
                    "average_minutes": round(sum(gaps) / len(gaps)),
                }
            )
    return averages


def press_intervals(history: Iterable[Any]) -> List[Dict[str, Any]]:
    intervals: List[Dict[str, Any]] = []
    for timer_id, entries in _by_timer(history).items():
        for previous, current in zip(entries, entries[1:]):
            intervals.append(
                {
                    "timestamp": as_utc(current.timestamp),
                    "timer_id": timer_id,
                    "minutes_since_last": _minutes_between(current.timestamp, previous.timestamp),
                }
            )
    return intervals
