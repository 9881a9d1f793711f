from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

import pytest
import requests

from presslog_desktop.api_client import ApiClient, ApiError
from presslog_desktop.app import render_timer

TIMER_JSON = {
    "id": 3,
    "userId": 1,
    "label": "Fed Cat",
    "category": "Default",
    "minTime": 21600,
    "maxTime": 28800,
    "isEnabled": True,
    "playSound": True,
    "color": "#FF9500",
    "displayType": "wheel",
    "showTotalSeconds": False,
    "isArchived": False,
    "createdAt": "2024-03-01T08:00:00+00:00",
    "lastPressed": "2024-03-01T06:00:00+00:00",
    "elapsedTime": 25200,
    "progress": 75.0,
    "canPress": True,
}

ENTRY_JSON = {"id": 9, "timerId": 3, "timestamp": "2024-03-01T13:00:00+00:00", "isActive": True}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = {"Content-Type": "application/json"} if payload is not None else {}
        self.text = str(payload)
        self.content = b""

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, *responses: FakeResponse) -> None:
        self.responses = list(responses)
        self.calls: List[dict] = []

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)


def _client(*responses: FakeResponse, token: Optional[str] = "secret") -> tuple[ApiClient, FakeSession]:
    session = FakeSession(*responses)
    return ApiClient("http://presslog.test/", token=token, session=session), session


def test_list_timers_parses_camel_case():
    client, session = _client(FakeResponse(payload=[TIMER_JSON]))
    timer = client.list_timers(include_archived=True)[0]

    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "http://presslog.test/api/timers"
    assert call["params"] == {"includeArchived": "true"}
    assert call["headers"]["Authorization"] == "Bearer secret"

    assert timer.min_time == 21600
    assert timer.display_type == "wheel"
    assert timer.last_pressed == dt.datetime(2024, 3, 1, 6, 0, tzinfo=dt.timezone.utc)
    assert timer.progress == 75.0
    assert timer.is_pressable is True


def test_press_returns_entry_and_timer():
    client, session = _client(FakeResponse(201, {"history": ENTRY_JSON, "timer": TIMER_JSON}))
    stamp = dt.datetime(2024, 3, 1, 13, 0, tzinfo=dt.timezone.utc)
    entry, timer = client.press(3, stamp)

    assert session.calls[0]["json"] == {"timestamp": "2024-03-01T13:00:00+00:00"}
    assert entry.timestamp == stamp
    assert entry.timer_id == 3
    assert timer.id == 3


def test_undo_outcome_without_history():
    payload = {
        "action": "undo",
        "changed": False,
        "message": "Nothing to undo",
        "history": None,
        "timer": dict(TIMER_JSON, lastPressed=None, canPress=False),
        "canUndo": False,
        "canRedo": False,
    }
    client, session = _client(FakeResponse(payload=payload))
    outcome = client.undo(3)
    assert session.calls[0]["url"].endswith("/api/timers/3/undo")
    assert outcome.changed is False
    assert outcome.entry is None
    assert outcome.timer.last_pressed is None
    assert outcome.timer.is_pressable is True


def test_update_history_sends_only_given_fields():
    client, session = _client(FakeResponse(payload={"history": dict(ENTRY_JSON, isActive=False), "timers": []}))
    entry = client.update_history(9, is_active=False)
    assert session.calls[0]["method"] == "PATCH"
    assert session.calls[0]["json"] == {"isActive": False}
    assert entry.is_active is False


def test_history_range_passes_dates():
    client, session = _client(FakeResponse(payload=[ENTRY_JSON]))
    entries = client.history_range(dt.date(2024, 3, 1), dt.date(2024, 3, 2))
    assert session.calls[0]["params"] == {"startDate": "2024-03-01", "endDate": "2024-03-02"}
    assert [entry.id for entry in entries] == [9]


def test_error_status_raises_api_error():
    client, _ = _client(FakeResponse(404, {"detail": "Timer not found"}))
    with pytest.raises(ApiError) as excinfo:
        client.get_timer(42)
    assert excinfo.value.status_code == 404


def test_connection_errors_are_wrapped():
    class BrokenSession:
        def request(self, *args, **kwargs):
            raise requests.ConnectionError("refused")

    client = ApiClient("http://presslog.test", session=BrokenSession())
    with pytest.raises(ApiError) as excinfo:
        client.list_timers()
    assert excinfo.value.status_code is None


def test_register_stores_token():
    client, session = _client(FakeResponse(201, {"user": {}, "token": "fresh"}), token=None)
    assert client.register("carol") == "fresh"
    assert "Authorization" not in session.calls[0]["headers"]
    assert client.token == "fresh"


def test_render_timer_line():
    timer = ApiClient._parse_timer(TIMER_JSON)
    line = render_timer(timer)
    assert line.startswith("Fed Cat")
    assert "[###############-----]" in line
    assert "7h" in line
    assert line.endswith("ready")

    never = ApiClient._parse_timer(dict(TIMER_JSON, lastPressed=None, elapsedTime=0, progress=0, canPress=False))
    assert "never pressed" in render_timer(never)


def test_history_and_timer_management_calls():
    client, session = _client(
        FakeResponse(payload=[ENTRY_JSON]),
        FakeResponse(204),
        FakeResponse(201, dict(TIMER_JSON, id=11)),
    )
    assert [entry.id for entry in client.timer_history(3)] == [9]
    client.delete_history(9)
    assert client.create_timer("Walk", min_time=600, color="#34C759") == 11

    assert [call["method"] for call in session.calls] == ["GET", "DELETE", "POST"]
    assert session.calls[1]["url"].endswith("/api/history/9")
    assert session.calls[2]["json"] == {"label": "Walk", "minTime": 600, "maxTime": None, "color": "#34C759"}
