"""Press history of a timer with non-destructive undo and redo.

An entry is either active or inactive. Undo deactivates the newest active
entry, redo reactivates the newest inactive one, so repeated undos walk back
through the presses one at a time. Nothing is deleted except through an
explicit ``delete``.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import List, Optional

from .models import TimerHistory
from .storage import Storage
from .utils import as_utc

logger = logging.getLogger(__name__)

UNDO = "undo"
REDO = "redo"

NOTHING_TO_UNDO = "Nothing to undo"
NOTHING_TO_REDO = "Nothing to redo"


@dataclass
class LedgerResult:
    action: str
    entry: Optional[TimerHistory]
    changed: bool
    message: str


class PressLedger:
    """Undo/redo transitions for the press history of a single timer."""

    def __init__(self, storage: Storage, timer_id: int):
        self.storage = storage
        self.timer_id = timer_id

    def entries(self) -> List[TimerHistory]:
        return self.storage.get_timer_history(self.timer_id)

    def newest(self, is_active: bool) -> Optional[TimerHistory]:
        # get_timer_history is newest first
        for entry in self.entries():
            if bool(entry.is_active) is is_active:
                return entry
        return None

    @property
    def can_undo(self) -> bool:
        return self.newest(True) is not None

    @property
    def can_redo(self) -> bool:
        return self.newest(False) is not None

    def press(self, timestamp: Optional[dt.datetime] = None) -> TimerHistory:
        entry = self.storage.create_history(self.timer_id, timestamp=timestamp, is_active=True)
        logger.info("Recorded press %s for timer %s at %s", entry.id, self.timer_id, as_utc(entry.timestamp).isoformat())
        return entry

    def undo(self) -> LedgerResult:
        target = self.newest(True)
        if target is None:
            logger.debug("Undo on timer %s is a no-op", self.timer_id)
            return LedgerResult(action=UNDO, entry=None, changed=False, message=NOTHING_TO_UNDO)
        entry = self.storage.set_history_active(target.id, False)
        logger.info("Undid press %s of timer %s", target.id, self.timer_id)
        return LedgerResult(action=UNDO, entry=entry, changed=True, message="Press undone")

    def redo(self) -> LedgerResult:
        target = self.newest(False)
        if target is None:
            logger.debug("Redo on timer %s is a no-op", self.timer_id)
            return LedgerResult(action=REDO, entry=None, changed=False, message=NOTHING_TO_REDO)
        entry = self.storage.set_history_active(target.id, True)
        logger.info("Redid press %s of timer %s", target.id, self.timer_id)
        return LedgerResult(action=REDO, entry=entry, changed=True, message="Press restored")

    def set_active(self, entry_id: int, is_active: bool) -> Optional[TimerHistory]:
        return self.storage.set_history_active(entry_id, is_active)

    def edit_timestamp(self, entry_id: int, timestamp: dt.datetime) -> Optional[TimerHistory]:
        return self.storage.set_history_timestamp(entry_id, timestamp)

    def update(
        self,
        entry_id: int,
        is_active: Optional[bool] = None,
        timestamp: Optional[dt.datetime] = None,
    ) -> Optional[TimerHistory]:
        return self.storage.update_history(entry_id, is_active=is_active, timestamp=timestamp)

    def delete(self, entry_id: int) -> bool:
        deleted = self.storage.delete_history(entry_id)
        if deleted:
            logger.info("Deleted history entry %s of timer %s", entry_id, self.timer_id)
        return deleted
