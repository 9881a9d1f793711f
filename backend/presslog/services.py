from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Tuple

from zoneinfo import ZoneInfo

from fastapi import HTTPException, status

from .auth import issue_token
from .config import settings
from .ledger import PressLedger
from .models import Timer, TimerHistory, User
from .projection import project_timer
from .schemas import EnhancedTimerResponse, TimerResponse
from .stats import (
    average_interval_by_day,
    press_counts,
    press_intervals,
    presses_today,
    reference_start,
)
from .storage import Storage

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

SAMPLE_TIMERS: Tuple[Dict[str, Any], ...] = (
    {
        "label": "Last Cigarette",
        "min_time": 4 * 60 * 60,
        "max_time": 24 * 60 * 60,
        "color": "#007AFF",
        "presses": ((0, 7, 30), (0, 12, 15), (0, 18, 0), (1, 8, 0), (1, 13, 0), (1, 17, 30), (1, 22, 0)),
    },
    {
        "label": "Fed Cat",
        "min_time": 6 * 60 * 60,
        "max_time": 8 * 60 * 60,
        "color": "#FF9500",
        "presses": ((0, 6, 0), (0, 14, 0), (0, 20, 0)),
    },
    {
        "label": "Took Medication",
        "min_time": 22 * 60 * 60,
        "max_time": 24 * 60 * 60,
        "color": "#34C759",
        "presses": ((0, 8, 0),),
    },
)


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def _ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=LOCAL_TZ)
    return value.astimezone(UTC)


# ----------------------------------------------------------------------
# Projection helpers
# ----------------------------------------------------------------------
def enhance_timer(storage: Storage, timer: Timer, now: Optional[dt.datetime] = None) -> EnhancedTimerResponse:
    projection = project_timer(timer, storage.get_active_history(timer.id), now or _now())
    data = TimerResponse.model_validate(timer).model_dump()
    data.update(
        last_pressed=projection.last_pressed,
        elapsed_time=projection.elapsed_time,
        progress=projection.progress,
        can_press=projection.can_press,
    )
    return EnhancedTimerResponse(**data)


def _enhance_all(storage: Storage, timers: List[Timer]) -> List[EnhancedTimerResponse]:
    # one clock reading so all timers of a response agree
    now = _now()
    return [enhance_timer(storage, timer, now) for timer in timers]


# ----------------------------------------------------------------------
# Ownership
# ----------------------------------------------------------------------
def get_owned_timer(storage: Storage, user: User, timer_id: int) -> Timer:
    timer = storage.get_timer(timer_id)
    if not timer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Timer not found")
    if timer.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You don't have permission to access this timer")
    return timer


def get_owned_entry(storage: Storage, user: User, entry_id: int) -> Tuple[TimerHistory, Timer]:
    entry = storage.get_history_entry(entry_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="History record not found")
    timer = storage.get_timer(entry.timer_id)
    if not timer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Associated timer not found")
    if timer.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You don't have permission to update this history")
    return entry, timer


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------
def register_user(storage: Storage, username: str, day_start_hour: int = 0) -> Tuple[User, str]:
    if storage.get_user_by_username(username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
    user = storage.create_user(username, day_start_hour)
    token_value, _ = issue_token(storage, user)
    logger.info("Registered user %s (%s)", user.id, user.username)
    if settings.seed_sample_data:
        seed_sample_timers(storage, user)
    return user, token_value


def update_user(storage: Storage, user: User, changes: Dict[str, Any]) -> User:
    updated = storage.update_user(user.id, changes)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return updated


def seed_sample_timers(storage: Storage, user: User, now: Optional[dt.datetime] = None) -> List[Timer]:
    """Create the demo timers with a couple of presses from today and yesterday."""
    now = now or _now()
    today = now.astimezone(LOCAL_TZ).date()
    created: List[Timer] = []
    for sample in SAMPLE_TIMERS:
        values = {key: value for key, value in sample.items() if key != "presses"}
        timer = storage.create_timer(user.id, values)
        for days_ago, hour, minute in sample["presses"]:
            day = today - dt.timedelta(days=days_ago)
            stamp = dt.datetime.combine(day, dt.time(hour, minute), tzinfo=LOCAL_TZ)
            if stamp <= now:
                storage.create_history(timer.id, timestamp=stamp)
        created.append(timer)
    logger.info("Seeded %s sample timers for user %s", len(created), user.id)
    return created


# ----------------------------------------------------------------------
# Timers
# ----------------------------------------------------------------------
def list_enhanced_timers(storage: Storage, user: User, include_archived: bool = False) -> List[EnhancedTimerResponse]:
    return _enhance_all(storage, storage.list_timers(user.id, include_archived))


def list_archived_timers(storage: Storage, user: User) -> List[EnhancedTimerResponse]:
    return _enhance_all(storage, storage.list_archived_timers(user.id))


def get_enhanced_timer(storage: Storage, user: User, timer_id: int) -> EnhancedTimerResponse:
    return enhance_timer(storage, get_owned_timer(storage, user, timer_id))


def create_timer(storage: Storage, user: User, values: Dict[str, Any]) -> Timer:
    timer = storage.create_timer(user.id, values)
    logger.info("Created timer %s (%s) for user %s", timer.id, timer.label, user.id)
    return timer


def update_timer(storage: Storage, user: User, timer_id: int, changes: Dict[str, Any]) -> Timer:
    timer = get_owned_timer(storage, user, timer_id)

    owner = changes.pop("user_id", None)
    if owner is not None and owner != user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change timer ownership")

    min_time = changes.get("min_time", timer.min_time)
    max_time = changes["max_time"] if "max_time" in changes else timer.max_time
    if max_time is not None and max_time <= min_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Maximum time must be greater than minimum time",
        )

    updated = storage.update_timer(timer.id, changes)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Timer not found")
    return updated


def archive_timer(storage: Storage, user: User, timer_id: int) -> Timer:
    timer = get_owned_timer(storage, user, timer_id)
    archived = storage.archive_timer(timer.id)
    logger.info("Archived timer %s", timer.id)
    return archived


def restore_timer(storage: Storage, user: User, timer_id: int) -> Timer:
    timer = get_owned_timer(storage, user, timer_id)
    restored = storage.restore_timer(timer.id)
    logger.info("Restored timer %s", timer.id)
    return restored


def delete_timer(storage: Storage, user: User, timer_id: int) -> None:
    timer = get_owned_timer(storage, user, timer_id)
    storage.delete_timer(timer.id)
    logger.info("Deleted timer %s", timer.id)


def clear_archived_timers(storage: Storage, user: User) -> int:
    count = storage.clear_archived_timers(user.id)
    logger.info("Cleared %s archived timers for user %s", count, user.id)
    return count


# ----------------------------------------------------------------------
# Presses and history
# ----------------------------------------------------------------------
def press_timer(
    storage: Storage,
    user: User,
    timer_id: int,
    timestamp: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    timer = get_owned_timer(storage, user, timer_id)
    ledger = PressLedger(storage, timer.id)
    entry = ledger.press(_ensure_utc(timestamp) if timestamp else None)
    return {"history": entry, "timer": enhance_timer(storage, timer)}


def _ledger_action(storage: Storage, user: User, timer_id: int, action: str) -> Dict[str, Any]:
    timer = get_owned_timer(storage, user, timer_id)
    ledger = PressLedger(storage, timer.id)
    result = ledger.undo() if action == "undo" else ledger.redo()
    return {
        "action": result.action,
        "changed": result.changed,
        "message": result.message,
        "history": result.entry,
        "timer": enhance_timer(storage, timer),
        "can_undo": ledger.can_undo,
        "can_redo": ledger.can_redo,
    }


def undo_press(storage: Storage, user: User, timer_id: int) -> Dict[str, Any]:
    return _ledger_action(storage, user, timer_id, "undo")


def redo_press(storage: Storage, user: User, timer_id: int) -> Dict[str, Any]:
    return _ledger_action(storage, user, timer_id, "redo")


def update_history_entry(
    storage: Storage,
    user: User,
    entry_id: int,
    is_active: Optional[bool] = None,
    timestamp: Optional[dt.datetime] = None,
) -> Dict[str, Any]:
    if is_active is None and timestamp is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="isActive or timestamp is required")
    entry, timer = get_owned_entry(storage, user, entry_id)
    stamp = _ensure_utc(timestamp) if timestamp is not None else None
    entry = PressLedger(storage, timer.id).update(entry.id, is_active=is_active, timestamp=stamp)
    logger.info("Updated history entry %s of timer %s", entry.id, timer.id)
    return {"history": entry, "timers": list_enhanced_timers(storage, user)}


def delete_history_entry(storage: Storage, user: User, entry_id: int) -> None:
    entry, timer = get_owned_entry(storage, user, entry_id)
    PressLedger(storage, timer.id).delete(entry.id)


def list_timer_history(storage: Storage, user: User, timer_id: int) -> List[TimerHistory]:
    timer = get_owned_timer(storage, user, timer_id)
    return storage.get_timer_history(timer.id)


def _parse_bound(value: str, end_of_day: bool) -> dt.datetime:
    text = value.strip()
    try:
        if len(text) == 10:
            day = dt.date.fromisoformat(text)
            if end_of_day:
                return dt.datetime.combine(day, dt.time.max, tzinfo=LOCAL_TZ).astimezone(UTC)
            return dt.datetime.combine(day, dt.time.min, tzinfo=LOCAL_TZ).astimezone(UTC)
        return _ensure_utc(dt.datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid date format. Use ISO format (YYYY-MM-DD)",
        ) from exc


def parse_range(start_value: str, end_value: str) -> Tuple[dt.datetime, dt.datetime]:
    start = _parse_bound(start_value, end_of_day=False)
    end = _parse_bound(end_value, end_of_day=True)
    if end < start:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid range")
    return start, end


def history_by_range(storage: Storage, user: User, start: dt.datetime, end: dt.datetime) -> List[TimerHistory]:
    timer_ids = [timer.id for timer in storage.list_timers(user.id, include_archived=True)]
    return storage.get_history_by_date_range(start, end, timer_ids)


# ----------------------------------------------------------------------
# Statistics
# ----------------------------------------------------------------------
def timer_stats(storage: Storage, user: User, timer_id: int) -> Dict[str, Any]:
    timer = get_owned_timer(storage, user, timer_id)
    ledger = PressLedger(storage, timer.id)
    history = ledger.entries()
    now = _now()
    return {
        "timer_id": timer.id,
        "presses_today": presses_today(history, now, user.day_start_hour or 0, LOCAL_TZ),
        "total_presses": sum(1 for entry in history if entry.is_active),
        "can_undo": ledger.can_undo,
        "can_redo": ledger.can_redo,
        "day_start": reference_start(now, user.day_start_hour or 0, 0, LOCAL_TZ),
    }


def history_stats(
    storage: Storage,
    user: User,
    start: dt.datetime,
    end: dt.datetime,
    period: str,
) -> Dict[str, Any]:
    history = history_by_range(storage, user, start, end)
    try:
        counts = press_counts(history, period, LOCAL_TZ)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {
        "period": period,
        "counts": counts,
        "average_time_between_presses": average_interval_by_day(history, LOCAL_TZ),
        "press_events": press_intervals(history),
    }
