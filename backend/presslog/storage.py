from __future__ import annotations

import datetime as dt
import itertools
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from .models import DEFAULT_CATEGORY, DEFAULT_COLOR, ApiToken, Timer, TimerHistory, User, utcnow
from .utils import as_utc

TIMER_FIELDS = (
    "label",
    "category",
    "min_time",
    "max_time",
    "is_enabled",
    "play_sound",
    "color",
    "display_type",
    "show_total_seconds",
    "is_archived",
)

USER_FIELDS = ("day_start_hour",)


class Storage(Protocol):
    """Persistence capabilities shared by the SQL and in-memory backends.

    Lookups of unknown ids return ``None`` (or ``False`` for deletes) instead
    of raising; turning that into HTTP errors is the caller's job.
    """

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def create_user(self, username: str, day_start_hour: int = 0) -> User: ...

    def update_user(self, user_id: int, changes: Dict[str, Any]) -> Optional[User]: ...

    def add_token(self, user_id: int, token_hash: str) -> ApiToken: ...

    def get_user_by_token_hash(self, token_hash: str) -> Optional[User]: ...

    def list_timers(self, user_id: int, include_archived: bool = False) -> List[Timer]: ...

    def list_archived_timers(self, user_id: int) -> List[Timer]: ...

    def get_timer(self, timer_id: int) -> Optional[Timer]: ...

    def create_timer(self, user_id: int, values: Dict[str, Any]) -> Timer: ...

    def update_timer(self, timer_id: int, changes: Dict[str, Any]) -> Optional[Timer]: ...

    def archive_timer(self, timer_id: int) -> Optional[Timer]: ...

    def restore_timer(self, timer_id: int) -> Optional[Timer]: ...

    def delete_timer(self, timer_id: int) -> bool: ...

    def clear_archived_timers(self, user_id: int) -> int: ...

    def get_timer_history(self, timer_id: int) -> List[TimerHistory]: ...

    def get_active_history(self, timer_id: int) -> List[TimerHistory]: ...

    def get_history_entry(self, entry_id: int) -> Optional[TimerHistory]: ...

    def create_history(
        self,
        timer_id: int,
        timestamp: Optional[dt.datetime] = None,
        is_active: bool = True,
    ) -> TimerHistory: ...

    def set_history_active(self, entry_id: int, is_active: bool) -> Optional[TimerHistory]: ...

    def set_history_timestamp(self, entry_id: int, timestamp: dt.datetime) -> Optional[TimerHistory]: ...

    def update_history(
        self,
        entry_id: int,
        is_active: Optional[bool] = None,
        timestamp: Optional[dt.datetime] = None,
    ) -> Optional[TimerHistory]: ...

    def delete_history(self, entry_id: int) -> bool: ...

    def get_history_by_date_range(
        self,
        start: dt.datetime,
        end: dt.datetime,
        timer_ids: Optional[Iterable[int]] = None,
    ) -> List[TimerHistory]: ...


def _timer_values(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if key in TIMER_FIELDS}


class SqlStorage:
    """Storage backed by a SQLAlchemy session; every mutation commits."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).one_or_none()

    def create_user(self, username: str, day_start_hour: int = 0) -> User:
        user = User(username=username, day_start_hour=day_start_hour)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def update_user(self, user_id: int, changes: Dict[str, Any]) -> Optional[User]:
        user = self.db.get(User, user_id)
        if not user:
            return None
        for key, value in changes.items():
            if key in USER_FIELDS:
                setattr(user, key, value)
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def add_token(self, user_id: int, token_hash: str) -> ApiToken:
        token = ApiToken(user_id=user_id, token_hash=token_hash)
        self.db.add(token)
        self.db.commit()
        self.db.refresh(token)
        return token

    def get_user_by_token_hash(self, token_hash: str) -> Optional[User]:
        token = self.db.query(ApiToken).filter(ApiToken.token_hash == token_hash).one_or_none()
        if not token:
            return None
        token.last_used_at = utcnow()
        self.db.add(token)
        self.db.commit()
        return self.db.get(User, token.user_id)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def list_timers(self, user_id: int, include_archived: bool = False) -> List[Timer]:
        query = self.db.query(Timer).filter(Timer.user_id == user_id)
        if not include_archived:
            query = query.filter(Timer.is_archived.is_(False))
        return query.order_by(Timer.id.asc()).all()

    def list_archived_timers(self, user_id: int) -> List[Timer]:
        return (
            self.db.query(Timer)
            .filter(Timer.user_id == user_id, Timer.is_archived.is_(True))
            .order_by(Timer.id.asc())
            .all()
        )

    def get_timer(self, timer_id: int) -> Optional[Timer]:
        return self.db.get(Timer, timer_id)

    def create_timer(self, user_id: int, values: Dict[str, Any]) -> Timer:
        timer = Timer(user_id=user_id, **_timer_values(values))
        self.db.add(timer)
        self.db.commit()
        self.db.refresh(timer)
        return timer

    def update_timer(self, timer_id: int, changes: Dict[str, Any]) -> Optional[Timer]:
        timer = self.db.get(Timer, timer_id)
        if not timer:
            return None
        for key, value in _timer_values(changes).items():
            setattr(timer, key, value)
        self.db.add(timer)
        self.db.commit()
        self.db.refresh(timer)
        return timer

    def archive_timer(self, timer_id: int) -> Optional[Timer]:
        return self.update_timer(timer_id, {"is_archived": True})

    def restore_timer(self, timer_id: int) -> Optional[Timer]:
        return self.update_timer(timer_id, {"is_archived": False})

    def delete_timer(self, timer_id: int) -> bool:
        timer = self.db.get(Timer, timer_id)
        if not timer:
            return False
        self.db.delete(timer)
        self.db.commit()
        return True

    def clear_archived_timers(self, user_id: int) -> int:
        archived = self.list_archived_timers(user_id)
        for timer in archived:
            self.db.delete(timer)
        self.db.commit()
        return len(archived)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def _history_query(self, timer_id: int):
        return (
            self.db.query(TimerHistory)
            .filter(TimerHistory.timer_id == timer_id)
            .order_by(TimerHistory.timestamp.desc(), TimerHistory.id.desc())
        )

    def get_timer_history(self, timer_id: int) -> List[TimerHistory]:
        return self._history_query(timer_id).all()

    def get_active_history(self, timer_id: int) -> List[TimerHistory]:
        return self._history_query(timer_id).filter(TimerHistory.is_active.is_(True)).all()

    def get_history_entry(self, entry_id: int) -> Optional[TimerHistory]:
        return self.db.get(TimerHistory, entry_id)

    def create_history(
        self,
        timer_id: int,
        timestamp: Optional[dt.datetime] = None,
        is_active: bool = True,
    ) -> TimerHistory:
        entry = TimerHistory(
            timer_id=timer_id,
            timestamp=as_utc(timestamp) if timestamp else utcnow(),
            is_active=is_active,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def set_history_active(self, entry_id: int, is_active: bool) -> Optional[TimerHistory]:
        entry = self.db.get(TimerHistory, entry_id)
        if not entry:
            return None
        entry.is_active = is_active
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def set_history_timestamp(self, entry_id: int, timestamp: dt.datetime) -> Optional[TimerHistory]:
        entry = self.db.get(TimerHistory, entry_id)
        if not entry:
            return None
        entry.timestamp = as_utc(timestamp)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def update_history(
        self,
        entry_id: int,
        is_active: Optional[bool] = None,
        timestamp: Optional[dt.datetime] = None,
    ) -> Optional[TimerHistory]:
        """Apply both edits in one commit; a failed commit leaves the row as it was."""
        entry = self.db.get(TimerHistory, entry_id)
        if not entry:
            return None
        if timestamp is not None:
            entry.timestamp = as_utc(timestamp)
        if is_active is not None:
            entry.is_active = is_active
        self.db.add(entry)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(entry)
        return entry

    def delete_history(self, entry_id: int) -> bool:
        entry = self.db.get(TimerHistory, entry_id)
        if not entry:
            return False
        self.db.delete(entry)
        self.db.commit()
        return True

    def get_history_by_date_range(
        self,
        start: dt.datetime,
        end: dt.datetime,
        timer_ids: Optional[Iterable[int]] = None,
    ) -> List[TimerHistory]:
        query = self.db.query(TimerHistory).filter(
            TimerHistory.timestamp >= as_utc(start),
            TimerHistory.timestamp <= as_utc(end),
            TimerHistory.is_active.is_(True),
        )
        if timer_ids is not None:
            ids = list(timer_ids)
            if not ids:
                return []
            query = query.filter(TimerHistory.timer_id.in_(ids))
        return query.order_by(TimerHistory.timestamp.asc(), TimerHistory.id.asc()).all()


class MemoryStorage:
    """Process-local storage holding detached model instances."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._users: Dict[int, User] = {}
        self._tokens: Dict[str, ApiToken] = {}
        self._timers: Dict[int, Timer] = {}
        self._history: Dict[int, TimerHistory] = {}
        self._user_ids = itertools.count(1)
        self._token_ids = itertools.count(1)
        self._timer_ids = itertools.count(1)
        self._history_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            return next((user for user in self._users.values() if user.username == username), None)

    def create_user(self, username: str, day_start_hour: int = 0) -> User:
        with self._lock:
            user = User(
                id=next(self._user_ids),
                username=username,
                day_start_hour=day_start_hour,
                created_at=utcnow(),
            )
            self._users[user.id] = user
            return user

    def update_user(self, user_id: int, changes: Dict[str, Any]) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            if not user:
                return None
            for key, value in changes.items():
                if key in USER_FIELDS:
                    setattr(user, key, value)
            return user

    def add_token(self, user_id: int, token_hash: str) -> ApiToken:
        with self._lock:
            token = ApiToken(
                id=next(self._token_ids),
                user_id=user_id,
                token_hash=token_hash,
                created_at=utcnow(),
            )
            self._tokens[token_hash] = token
            return token

    def get_user_by_token_hash(self, token_hash: str) -> Optional[User]:
        with self._lock:
            token = self._tokens.get(token_hash)
            if not token:
                return None
            token.last_used_at = utcnow()
            return self._users.get(token.user_id)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def list_timers(self, user_id: int, include_archived: bool = False) -> List[Timer]:
        with self._lock:
            return [
                timer
                for timer in sorted(self._timers.values(), key=lambda item: item.id)
                if timer.user_id == user_id and (include_archived or not timer.is_archived)
            ]

    def list_archived_timers(self, user_id: int) -> List[Timer]:
        with self._lock:
            return [
                timer
                for timer in sorted(self._timers.values(), key=lambda item: item.id)
                if timer.user_id == user_id and timer.is_archived
            ]

    def get_timer(self, timer_id: int) -> Optional[Timer]:
        with self._lock:
            return self._timers.get(timer_id)

    def create_timer(self, user_id: int, values: Dict[str, Any]) -> Timer:
        fields = {
            "category": DEFAULT_CATEGORY,
            "min_time": 0,
            "max_time": None,
            "is_enabled": True,
            "play_sound": True,
            "color": DEFAULT_COLOR,
            "display_type": "bar",
            "show_total_seconds": False,
            "is_archived": False,
        }
        fields.update(_timer_values(values))
        with self._lock:
            timer = Timer(id=next(self._timer_ids), user_id=user_id, created_at=utcnow(), **fields)
            self._timers[timer.id] = timer
            return timer

    def update_timer(self, timer_id: int, changes: Dict[str, Any]) -> Optional[Timer]:
        with self._lock:
            timer = self._timers.get(timer_id)
            if not timer:
                return None
            for key, value in _timer_values(changes).items():
                setattr(timer, key, value)
            return timer

    def archive_timer(self, timer_id: int) -> Optional[Timer]:
        return self.update_timer(timer_id, {"is_archived": True})

    def restore_timer(self, timer_id: int) -> Optional[Timer]:
        return self.update_timer(timer_id, {"is_archived": False})

    def delete_timer(self, timer_id: int) -> bool:
        with self._lock:
            if self._timers.pop(timer_id, None) is None:
                return False
            self._drop_history_for({timer_id})
            return True

    def clear_archived_timers(self, user_id: int) -> int:
        with self._lock:
            archived = {timer.id for timer in self.list_archived_timers(user_id)}
            for timer_id in archived:
                del self._timers[timer_id]
            self._drop_history_for(archived)
            return len(archived)

    def _drop_history_for(self, timer_ids: set) -> None:
        for entry_id in [key for key, entry in self._history.items() if entry.timer_id in timer_ids]:
            del self._history[entry_id]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    @staticmethod
    def _newest_first(entries: Iterable[TimerHistory]) -> List[TimerHistory]:
        return sorted(entries, key=lambda entry: (as_utc(entry.timestamp), entry.id), reverse=True)

    def get_timer_history(self, timer_id: int) -> List[TimerHistory]:
        with self._lock:
            return self._newest_first(entry for entry in self._history.values() if entry.timer_id == timer_id)

    def get_active_history(self, timer_id: int) -> List[TimerHistory]:
        return [entry for entry in self.get_timer_history(timer_id) if entry.is_active]

    def get_history_entry(self, entry_id: int) -> Optional[TimerHistory]:
        with self._lock:
            return self._history.get(entry_id)

    def create_history(
        self,
        timer_id: int,
        timestamp: Optional[dt.datetime] = None,
        is_active: bool = True,
    ) -> TimerHistory:
        with self._lock:
            entry = TimerHistory(
                id=next(self._history_ids),
                timer_id=timer_id,
                timestamp=as_utc(timestamp) if timestamp else utcnow(),
                is_active=is_active,
            )
            self._history[entry.id] = entry
            return entry

    def set_history_active(self, entry_id: int, is_active: bool) -> Optional[TimerHistory]:
        with self._lock:
            entry = self._history.get(entry_id)
            if not entry:
                return None
            entry.is_active = is_active
            return entry

    def set_history_timestamp(self, entry_id: int, timestamp: dt.datetime) -> Optional[TimerHistory]:
        with self._lock:
            entry = self._history.get(entry_id)
            if not entry:
                return None
            entry.timestamp = as_utc(timestamp)
            return entry

    def update_history(
        self,
        entry_id: int,
        is_active: Optional[bool] = None,
        timestamp: Optional[dt.datetime] = None,
    ) -> Optional[TimerHistory]:
        with self._lock:
            entry = self._history.get(entry_id)
            if not entry:
                return None
            stamp = as_utc(timestamp) if timestamp is not None else entry.timestamp
            active = entry.is_active if is_active is None else is_active
            entry.timestamp = stamp
            entry.is_active = active
            return entry

    def delete_history(self, entry_id: int) -> bool:
        with self._lock:
            return self._history.pop(entry_id, None) is not None

    def get_history_by_date_range(
        self,
        start: dt.datetime,
        end: dt.datetime,
        timer_ids: Optional[Iterable[int]] = None,
    ) -> List[TimerHistory]:
        start_utc = as_utc(start)
        end_utc = as_utc(end)
        allowed = set(timer_ids) if timer_ids is not None else None
        with self._lock:
            entries = [
                entry
                for entry in self._history.values()
                if entry.is_active
                and start_utc <= as_utc(entry.timestamp) <= end_utc
                and (allowed is None or entry.timer_id in allowed)
            ]
        return sorted(entries, key=lambda entry: (as_utc(entry.timestamp), entry.id))
