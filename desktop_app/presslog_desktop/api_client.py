"""HTTP client for the PressLog API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Union
from urllib.parse import urljoin

import requests

from .models import ClientTimer, HistoryEntry, LedgerOutcome


class ApiError(RuntimeError):
    """Failure while talking to the API."""

    def __init__(self, message: str, *, response: Optional[requests.Response] = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None


class ApiClient:
    """Wraps the HTTP calls to the PressLog API."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: int = 15,
                 session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs):
        url = urljoin(self.base_url, path.lstrip("/"))
        kwargs.setdefault("timeout", self.timeout)
        headers = kwargs.setdefault("headers", {})
        headers.update(self._headers())
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise ApiError(str(exc)) from exc

        if response.status_code >= 400:
            raise ApiError(f"API error {response.status_code}: {response.text}", response=response)

        if response.headers.get("Content-Type", "").startswith("application/json"):
            return response.json()
        return response.content

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------
    def register(self, username: str, day_start_hour: int = 0) -> str:
        """Create an account and remember its token."""
        data = self._request("POST", "/api/users", json={"username": username, "dayStartHour": day_start_hour})
        self.token = data["token"]
        return self.token

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def list_timers(self, include_archived: bool = False) -> list[ClientTimer]:
        params = {"includeArchived": "true"} if include_archived else None
        data = self._request("GET", "/api/timers", params=params) or []
        return [self._parse_timer(item) for item in data]

    def get_timer(self, timer_id: int) -> ClientTimer:
        return self._parse_timer(self._request("GET", f"/api/timers/{timer_id}"))

    def create_timer(self, label: str, min_time: int = 0, max_time: Optional[int] = None,
                     **extra: Any) -> int:
        payload = {"label": label, "minTime": min_time, "maxTime": max_time}
        payload.update(extra)
        data = self._request("POST", "/api/timers", json=payload)
        return int(data["id"])

    # ------------------------------------------------------------------
    # Presses
    # ------------------------------------------------------------------
    def press(self, timer_id: int, timestamp: Optional[datetime] = None) -> tuple[HistoryEntry, ClientTimer]:
        payload = {"timestamp": timestamp.isoformat()} if timestamp else None
        data = self._request("POST", f"/api/timers/{timer_id}/press", json=payload)
        return self._parse_entry(data["history"]), self._parse_timer(data["timer"])

    def undo(self, timer_id: int) -> LedgerOutcome:
        return self._parse_outcome(self._request("POST", f"/api/timers/{timer_id}/undo"))

    def redo(self, timer_id: int) -> LedgerOutcome:
        return self._parse_outcome(self._request("POST", f"/api/timers/{timer_id}/redo"))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def timer_history(self, timer_id: int) -> list[HistoryEntry]:
        data = self._request("GET", f"/api/timers/{timer_id}/history") or []
        return [self._parse_entry(item) for item in data]

    def history_range(self, start: Union[date, datetime], end: Union[date, datetime]) -> list[HistoryEntry]:
        params = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        data = self._request("GET", "/api/history", params=params) or []
        return [self._parse_entry(item) for item in data]

    def update_history(self, entry_id: int, *, is_active: Optional[bool] = None,
                       timestamp: Optional[datetime] = None) -> HistoryEntry:
        payload: dict[str, Any] = {}
        if is_active is not None:
            payload["isActive"] = is_active
        if timestamp is not None:
            payload["timestamp"] = timestamp.isoformat()
        data = self._request("PATCH", f"/api/history/{entry_id}", json=payload)
        return self._parse_entry(data["history"])

    def delete_history(self, entry_id: int) -> None:
        self._request("DELETE", f"/api/history/{entry_id}")

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    @classmethod
    def _parse_timer(cls, item: dict[str, Any]) -> ClientTimer:
        return ClientTimer(
            id=int(item["id"]),
            label=item.get("label", ""),
            min_time=int(item.get("minTime") or 0),
            max_time=item.get("maxTime"),
            last_pressed=cls._parse_datetime(item.get("lastPressed")),
            elapsed_time=int(item.get("elapsedTime") or 0),
            progress=float(item.get("progress") or 0.0),
            can_press=bool(item.get("canPress", False)),
            category=item.get("category"),
            color=item.get("color", "#007AFF"),
            display_type=item.get("displayType", "bar"),
            is_enabled=bool(item.get("isEnabled", True)),
            is_archived=bool(item.get("isArchived", False)),
            show_total_seconds=bool(item.get("showTotalSeconds", False)),
        )

    @classmethod
    def _parse_entry(cls, item: dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=int(item["id"]),
            timer_id=int(item["timerId"]),
            timestamp=cls._parse_datetime(item.get("timestamp")),
            is_active=bool(item.get("isActive", True)),
        )

    @classmethod
    def _parse_outcome(cls, data: dict[str, Any]) -> LedgerOutcome:
        history = data.get("history")
        return LedgerOutcome(
            action=data["action"],
            changed=bool(data.get("changed")),
            message=data.get("message", ""),
            timer=cls._parse_timer(data["timer"]),
            can_undo=bool(data.get("canUndo")),
            can_redo=bool(data.get("canRedo")),
            entry=cls._parse_entry(history) if history else None,
        )

    @staticmethod
    def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None


__all__ = ["ApiClient", "ApiError"]
