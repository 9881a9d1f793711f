"""Local tick loop that keeps timer views current between server syncs.

The server stays authoritative: a full refetch replaces local state every
``refetch_seconds`` (or on demand). In between, each tick re-projects the cached
timers from their ``last_pressed`` with the same projector the server uses.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from presslog.projection import project

from .api_client import ApiClient, ApiError
from .models import ClientTimer, LedgerOutcome

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[List[ClientTimer]], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PressRejected(RuntimeError):
    """A press was refused locally before reaching the server."""


class TimerTicker:
    """Owns the cached timers, the tick thread and the last sync time.

    ``tick`` can be driven by hand (tests, other event loops); ``start``
    runs it on a daemon thread every ``tick_seconds`` until ``stop``.
    """

    def __init__(
        self,
        api: ApiClient,
        tick_seconds: float = 1.0,
        refetch_seconds: float = 60.0,
        clock: Clock = utc_now,
        on_update: Optional[Listener] = None,
    ) -> None:
        self.api = api
        self.tick_seconds = tick_seconds
        self.refetch_seconds = refetch_seconds
        self.clock = clock
        self.on_update = on_update

        self._lock = threading.RLock()
        self._timers: Dict[int, ClientTimer] = {}
        self._order: List[int] = []
        self._updating: set[int] = set()
        # bumped on every applied mutation; refresh keeps entries newer than its fetch
        self._generation = 0
        self._applied: Dict[int, int] = {}
        self._last_sync: Optional[datetime] = None
        self._refresh_requested = False

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_sync(self) -> Optional[datetime]:
        with self._lock:
            return self._last_sync

    def start(self) -> None:
        if self.is_running:
            logger.warning("Timer ticker already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="presslog-ticker", daemon=True)
        self._thread.start()
        logger.info("Timer ticker started (tick %.1fs, refetch %.0fs)", self.tick_seconds, self.refetch_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Timer ticker stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the ticker is stopped or ``timeout`` passes."""
        return self._stop_event.wait(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("Timer tick failed")
            self._stop_event.wait(self.tick_seconds)

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------
    def request_refresh(self) -> None:
        """Force a refetch on the next tick, e.g. when the window regains focus."""
        with self._lock:
            self._refresh_requested = True

    def refresh(self, now: Optional[datetime] = None) -> bool:
        """Replace local state with the server's list. Returns False on failure."""
        now = now or self.clock()
        with self._lock:
            started = self._generation
        try:
            timers = self.api.list_timers()
        except ApiError as exc:
            logger.warning("Refetch failed, keeping previous state: %s", exc)
            with self._lock:
                # wait a full interval before retrying
                self._last_sync = now
                self._refresh_requested = False
            return False
        with self._lock:
            fetched = {timer.id: timer for timer in timers}
            order = [timer.id for timer in timers]
            for timer_id, generation in self._applied.items():
                if generation > started and timer_id in self._timers:
                    if timer_id not in fetched:
                        order.append(timer_id)
                    fetched[timer_id] = self._timers[timer_id]
            self._timers = fetched
            self._order = order
            self._applied = {key: value for key, value in self._applied.items() if value > started}
            self._last_sync = now
            self._refresh_requested = False
        logger.debug("Synced %s timers", len(timers))
        return True

    def _refetch_due(self, now: datetime) -> bool:
        with self._lock:
            if self._refresh_requested or self._last_sync is None:
                return True
            return (now - self._last_sync).total_seconds() >= self.refetch_seconds

    def tick(self, now: Optional[datetime] = None) -> List[ClientTimer]:
        now = now or self.clock()
        if self._refetch_due(now):
            self.refresh(now)
        with self._lock:
            for timer_id, timer in self._timers.items():
                # never pressed timers keep the server's view
                if timer.last_pressed is None:
                    continue
                self._timers[timer_id] = self._reproject(timer, now)
        snapshot = self.snapshot()
        if self.on_update is not None:
            self.on_update(snapshot)
        return snapshot

    @staticmethod
    def _reproject(timer: ClientTimer, now: datetime) -> ClientTimer:
        view = project(timer.min_time, timer.max_time, timer.last_pressed, now)
        return replace(
            timer,
            last_pressed=view.last_pressed,
            elapsed_time=view.elapsed_time,
            progress=view.progress,
            can_press=view.can_press,
        )

    def snapshot(self) -> List[ClientTimer]:
        with self._lock:
            return [replace(self._timers[timer_id]) for timer_id in self._order if timer_id in self._timers]

    def get(self, timer_id: int) -> Optional[ClientTimer]:
        with self._lock:
            timer = self._timers.get(timer_id)
            return replace(timer) if timer is not None else None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def is_updating(self, timer_id: int) -> bool:
        with self._lock:
            return timer_id in self._updating

    def _claim(self, timer_id: int) -> None:
        with self._lock:
            if timer_id in self._updating:
                raise PressRejected(f"Timer {timer_id} is already updating")
            self._updating.add(timer_id)

    def _release(self, timer_id: int) -> None:
        with self._lock:
            self._updating.discard(timer_id)

    def _apply(self, timer: ClientTimer) -> None:
        with self._lock:
            self._generation += 1
            self._applied[timer.id] = self._generation
            if timer.id not in self._timers:
                self._order.append(timer.id)
            self._timers[timer.id] = timer

    def press(self, timer_id: int, timestamp: Optional[datetime] = None) -> ClientTimer:
        """Record a press and adopt the server's refreshed view of the timer.

        Raises ``PressRejected`` when the timer is unknown, still below its
        minimum time or already has a request in flight. ``ApiError`` leaves
        the local state untouched.
        """
        with self._lock:
            current = self._timers.get(timer_id)
            if current is None:
                raise PressRejected(f"Unknown timer {timer_id}")
            if not current.is_pressable:
                raise PressRejected(f"Timer {timer_id} cannot be pressed yet")
            self._claim(timer_id)
        try:
            _, timer = self.api.press(timer_id, timestamp)
        finally:
            self._release(timer_id)
        self._apply(timer)
        logger.info("Pressed timer %s", timer_id)
        return replace(timer)

    def _ledger(self, timer_id: int, action: str) -> LedgerOutcome:
        self._claim(timer_id)
        try:
            outcome = self.api.undo(timer_id) if action == "undo" else self.api.redo(timer_id)
        finally:
            self._release(timer_id)
        self._apply(outcome.timer)
        if not outcome.changed:
            logger.info("%s on timer %s: %s", action.capitalize(), timer_id, outcome.message)
        return outcome

    def undo(self, timer_id: int) -> LedgerOutcome:
        return self._ledger(timer_id, "undo")

    def redo(self, timer_id: int) -> LedgerOutcome:
        return self._ledger(timer_id, "redo")


__all__ = ["PressRejected", "TimerTicker", "utc_now"]
