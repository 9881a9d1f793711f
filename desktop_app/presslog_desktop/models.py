"""Client-side views of timers and press history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from presslog.projection import is_pressable


@dataclass(slots=True)
class ClientTimer:
    """Last known state of a timer, re-projected locally between refetches."""

    id: int
    label: str
    min_time: int
    max_time: Optional[int]
    last_pressed: Optional[datetime]
    elapsed_time: int = 0
    progress: float = 0.0
    can_press: bool = False
    category: Optional[str] = None
    color: str = "#007AFF"
    display_type: str = "bar"
    is_enabled: bool = True
    is_archived: bool = False
    show_total_seconds: bool = False

    @property
    def is_pressable(self) -> bool:
        return is_pressable(self.last_pressed, self.can_press)


@dataclass(slots=True)
class HistoryEntry:
    """A single press of a timer."""

    id: int
    timer_id: int
    timestamp: datetime
    is_active: bool


@dataclass(slots=True)
class LedgerOutcome:
    """Result of an undo or redo request."""

    action: str
    changed: bool
    message: str
    timer: ClientTimer
    can_undo: bool
    can_redo: bool
    entry: Optional[HistoryEntry] = None


__all__ = ["ClientTimer", "HistoryEntry", "LedgerOutcome"]
