"""Derived timer state: elapsed time, progress and press readiness.

Everything here is pure arithmetic over already validated values. The server
uses it for every read and the desktop companion re-runs it once per second
between refetches, so both sides agree up to clock skew.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .utils import as_utc


@dataclass(frozen=True)
class TimerProjection:
    last_pressed: Optional[dt.datetime]
    elapsed_time: int
    progress: float
    can_press: bool

    @property
    def is_pressable(self) -> bool:
        return is_pressable(self.last_pressed, self.can_press)


def elapsed_seconds(last_pressed: Optional[dt.datetime], now: dt.datetime) -> int:
    if last_pressed is None:
        return 0
    delta = as_utc(now) - as_utc(last_pressed)
    return max(0, math.floor(delta.total_seconds()))


def calculate_progress(elapsed_time: int, min_time: int, max_time: Optional[int]) -> float:
    """Map elapsed seconds onto 0-100 with ``min_time`` at 50 and ``max_time`` at 100.

    Without a usable ``max_time`` the scale runs from 0 to ``min_time`` instead.
    """
    if max_time and min_time < max_time:
        if elapsed_time <= min_time:
            if min_time == 0:
                # minimum goal is met immediately
                return 50.0
            return (elapsed_time / min_time) * 50
        if elapsed_time >= max_time:
            return 100.0
        return 50 + ((elapsed_time - min_time) / (max_time - min_time)) * 50
    if min_time > 0:
        return min(100.0, (elapsed_time / min_time) * 100)
    return 0.0


def is_pressable(last_pressed: Optional[dt.datetime], can_press: bool) -> bool:
    # the very first press is always allowed
    return last_pressed is None or can_press


def latest_active(history: Iterable[Any]) -> Optional[Any]:
    """Return the newest active entry of ``history``, ignoring undone ones."""
    latest = None
    for entry in history:
        if not entry.is_active:
            continue
        if latest is None or _entry_key(entry) > _entry_key(latest):
            latest = entry
    return latest


def project(
    min_time: int,
    max_time: Optional[int],
    last_pressed: Optional[dt.datetime],
    now: dt.datetime,
) -> TimerProjection:
    elapsed = elapsed_seconds(last_pressed, now)
    return TimerProjection(
        last_pressed=as_utc(last_pressed) if last_pressed is not None else None,
        elapsed_time=elapsed,
        progress=calculate_progress(elapsed, min_time or 0, max_time),
        can_press=elapsed >= (min_time or 0),
    )


def project_timer(timer: Any, active_history: Iterable[Any], now: dt.datetime) -> TimerProjection:
    """Project a timer record from its history entries.

    ``active_history`` may contain inactive entries as well; only active
    entries count towards ``last_pressed``.
    """
    latest = latest_active(active_history)
    last_pressed = latest.timestamp if latest is not None else None
    return project(timer.min_time, timer.max_time, last_pressed, now)


def _entry_key(entry: Any) -> tuple:
    return (as_utc(entry.timestamp), entry.id or 0)
