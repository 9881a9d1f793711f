from __future__ import annotations

import datetime as dt
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from presslog_desktop.api_client import ApiError
from presslog_desktop.models import ClientTimer, HistoryEntry, LedgerOutcome
from presslog_desktop.ticker import PressRejected, TimerTicker

START = dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += dt.timedelta(seconds=seconds)


class FakeApi:
    """Serves timers from memory; projections are frozen at fetch time like the real server."""

    def __init__(self, clock: FakeClock, timers: List[ClientTimer]) -> None:
        self.clock = clock
        self.timers: Dict[int, ClientTimer] = {timer.id: timer for timer in timers}
        self.list_calls = 0
        self.fail = False
        self.pressed: List[int] = []

    def list_timers(self, include_archived: bool = False) -> List[ClientTimer]:
        self.list_calls += 1
        if self.fail:
            raise ApiError("connection refused")
        return [replace(timer) for timer in self.timers.values()]

    def press(self, timer_id: int, timestamp: Optional[dt.datetime] = None):
        if self.fail:
            raise ApiError("connection refused")
        self.pressed.append(timer_id)
        stamp = timestamp or self.clock()
        timer = replace(self.timers[timer_id], last_pressed=stamp, elapsed_time=0, progress=0.0, can_press=False)
        self.timers[timer_id] = timer
        entry = HistoryEntry(id=len(self.pressed), timer_id=timer_id, timestamp=stamp, is_active=True)
        return entry, replace(timer)

    def undo(self, timer_id: int) -> LedgerOutcome:
        timer = replace(self.timers[timer_id], last_pressed=None, elapsed_time=0, progress=0.0, can_press=False)
        self.timers[timer_id] = timer
        return LedgerOutcome(action="undo", changed=True, message="Press undone", timer=replace(timer),
                             can_undo=False, can_redo=True)

    def redo(self, timer_id: int) -> LedgerOutcome:
        return LedgerOutcome(action="redo", changed=False, message="Nothing to redo",
                             timer=replace(self.timers[timer_id]), can_undo=False, can_redo=False)


def _timer(timer_id: int, last_pressed: Optional[dt.datetime], min_time: int = 3600,
           max_time: Optional[int] = 7200, **extra) -> ClientTimer:
    return ClientTimer(id=timer_id, label=f"Timer {timer_id}", min_time=min_time, max_time=max_time,
                       last_pressed=last_pressed, **extra)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture()
def api(clock) -> FakeApi:
    return FakeApi(
        clock,
        [
            _timer(1, START - dt.timedelta(seconds=5400), elapsed_time=5400, progress=75.0, can_press=True),
            _timer(2, None, min_time=600, max_time=None),
        ],
    )


@pytest.fixture()
def ticker(api, clock) -> TimerTicker:
    return TimerTicker(api, tick_seconds=1, refetch_seconds=60, clock=clock)


def test_first_tick_fetches_from_server(ticker, api):
    timers = ticker.tick()
    assert api.list_calls == 1
    assert [timer.id for timer in timers] == [1, 2]
    assert ticker.last_sync == START


def test_ticks_reproject_locally_between_refetches(ticker, api, clock):
    ticker.tick()
    clock.advance(1800)
    ticker.refetch_seconds = 3600
    pressed, never = ticker.tick()

    assert api.list_calls == 1
    assert pressed.elapsed_time == 7200
    assert pressed.progress == 100
    assert never.elapsed_time == 0
    assert never.last_pressed is None
    assert never.is_pressable is True


def test_refetch_after_interval_replaces_local_state(ticker, api, clock):
    ticker.tick()
    api.timers[1] = replace(api.timers[1], label="Renamed on server")
    clock.advance(59)
    assert ticker.tick()[0].label == "Timer 1"
    clock.advance(1)
    assert ticker.tick()[0].label == "Renamed on server"
    assert api.list_calls == 2


def test_request_refresh_forces_refetch(ticker, api):
    ticker.tick()
    ticker.request_refresh()
    ticker.tick()
    assert api.list_calls == 2


def test_failed_refetch_keeps_previous_state(ticker, api, clock):
    ticker.tick()
    api.fail = True
    clock.advance(60)
    timers = ticker.tick()
    assert [timer.id for timer in timers] == [1, 2]
    assert timers[0].elapsed_time == 5460
    assert ticker.refresh() is False


def test_snapshots_are_copies(ticker):
    snapshot = ticker.tick()
    snapshot[0].label = "Mutated"
    assert ticker.get(1).label == "Timer 1"


def test_press_applies_server_response(ticker, api, clock):
    ticker.tick()
    timer = ticker.press(1)
    assert api.pressed == [1]
    assert timer.last_pressed == clock()
    assert ticker.get(1).can_press is False
    assert ticker.is_updating(1) is False

    clock.advance(10)
    assert ticker.tick()[0].elapsed_time == 10


def test_first_press_is_allowed_despite_can_press_false(ticker, api):
    ticker.tick()
    assert ticker.get(2).can_press is False
    ticker.press(2)
    assert api.pressed == [2]


def test_press_below_min_time_is_rejected_locally(ticker, api):
    ticker.tick()
    ticker.press(1)
    with pytest.raises(PressRejected):
        ticker.press(1)
    assert api.pressed == [1]


def test_press_while_updating_is_rejected(ticker, api):
    ticker.tick()
    ticker._claim(1)
    with pytest.raises(PressRejected):
        ticker.press(1)
    assert api.pressed == []


def test_press_failure_leaves_state_untouched(ticker, api):
    ticker.tick()
    before = ticker.get(1)
    api.fail = True
    with pytest.raises(ApiError):
        ticker.press(1)
    assert ticker.get(1) == before
    assert ticker.is_updating(1) is False


def test_unknown_timer_cannot_be_pressed(ticker):
    ticker.tick()
    with pytest.raises(PressRejected):
        ticker.press(99)


def test_undo_and_redo_apply_the_returned_timer(ticker):
    ticker.tick()
    outcome = ticker.undo(1)
    assert outcome.changed is True
    assert ticker.get(1).last_pressed is None

    outcome = ticker.redo(1)
    assert outcome.changed is False
    assert outcome.message == "Nothing to redo"


def test_listener_receives_each_tick(api, clock):
    seen = []
    ticker = TimerTicker(api, clock=clock, on_update=seen.append)
    ticker.tick()
    ticker.tick()
    assert len(seen) == 2


def test_thread_lifecycle(api, clock):
    seen = []
    ticker = TimerTicker(api, tick_seconds=0.01, clock=clock, on_update=seen.append)
    ticker.start()
    assert ticker.is_running
    ticker.wait(0.1)
    ticker.stop()
    assert not ticker.is_running
    assert seen


def test_press_during_refetch_survives_the_stale_list(api, clock):
    ticker = TimerTicker(api, clock=clock)
    ticker.tick()
    clock.advance(60)
    fetch = api.list_timers

    def slow_list_timers(include_archived: bool = False):
        stale = fetch(include_archived)
        ticker.press(1)
        return stale

    api.list_timers = slow_list_timers
    ticker.refresh()

    assert ticker.get(1).last_pressed == clock()
    assert ticker.get(1).is_pressable is False
    with pytest.raises(PressRejected):
        ticker.press(1)

    api.list_timers = fetch
    ticker.refresh()
    assert ticker.get(1).last_pressed == clock()
