from __future__ import annotations

import datetime as dt

import pytest

from presslog.ledger import NOTHING_TO_REDO, NOTHING_TO_UNDO, PressLedger
from presslog.projection import project_timer
from presslog.utils import as_utc


@pytest.fixture()
def timer(storage):
    user = storage.create_user("ledger-user")
    return storage.create_timer(user.id, {"label": "Stretch", "min_time": 3600, "max_time": 7200})


@pytest.fixture()
def ledger(storage, timer) -> PressLedger:
    return PressLedger(storage, timer.id)


def _view(storage, timer, now):
    return project_timer(timer, storage.get_active_history(timer.id), now)


def test_press_appends_active_entry(ledger, now):
    entry = ledger.press(now - dt.timedelta(minutes=5))
    assert entry.is_active is True
    assert as_utc(entry.timestamp) == now - dt.timedelta(minutes=5)
    assert [item.id for item in ledger.entries()] == [entry.id]
    assert ledger.can_undo is True
    assert ledger.can_redo is False


def test_press_undo_redo_restores_the_same_view(storage, timer, ledger, now):
    ledger.press(now - dt.timedelta(hours=3))
    ledger.press(now - dt.timedelta(seconds=5400))
    before = _view(storage, timer, now)

    undone = ledger.undo()
    assert undone.changed is True
    assert undone.entry.is_active is False
    middle = _view(storage, timer, now)
    assert middle.elapsed_time == 3 * 3600
    assert middle.progress == 100

    redone = ledger.redo()
    assert redone.changed is True
    assert redone.entry.id == undone.entry.id
    assert _view(storage, timer, now) == before


def test_repeated_undo_walks_back_one_press_at_a_time(ledger, now):
    first = ledger.press(now - dt.timedelta(hours=2))
    second = ledger.press(now - dt.timedelta(hours=1))

    assert ledger.undo().entry.id == second.id
    assert ledger.undo().entry.id == first.id
    assert ledger.can_undo is False
    assert ledger.can_redo is True
    assert len(ledger.entries()) == 2


def test_undo_without_active_entries_is_a_no_op(storage, timer, ledger, now):
    before = _view(storage, timer, now)
    result = ledger.undo()
    assert result.changed is False
    assert result.entry is None
    assert result.message == NOTHING_TO_UNDO
    assert ledger.can_undo is False
    assert _view(storage, timer, now) == before


def test_redo_without_inactive_entries_is_a_no_op(ledger, now):
    ledger.press(now)
    result = ledger.redo()
    assert result.changed is False
    assert result.message == NOTHING_TO_REDO
    assert ledger.can_undo is True


def test_edit_timestamp_keeps_state(ledger, now):
    entry = ledger.press(now)
    ledger.undo()
    edited = ledger.edit_timestamp(entry.id, now - dt.timedelta(days=1))
    assert as_utc(edited.timestamp) == now - dt.timedelta(days=1)
    assert edited.is_active is False


def test_set_active_reactivates_a_specific_entry(ledger, now):
    first = ledger.press(now - dt.timedelta(hours=2))
    ledger.press(now - dt.timedelta(hours=1))
    ledger.set_active(first.id, False)
    assert [entry.id for entry in ledger.entries() if not entry.is_active] == [first.id]
    ledger.set_active(first.id, True)
    assert ledger.can_redo is False


def test_delete_removes_entry_regardless_of_state(ledger, now):
    active = ledger.press(now - dt.timedelta(hours=1))
    inactive = ledger.press(now)
    ledger.undo()
    assert ledger.delete(inactive.id) is True
    assert ledger.delete(active.id) is True
    assert ledger.entries() == []
    assert ledger.delete(active.id) is False
