from __future__ import annotations

import datetime as dt
from typing import List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


class ApiModel(BaseModel):
    """Base for request and response bodies; the wire format is camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _clean_label(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    label = value.strip()
    if not label:
        raise ValueError("Label is required")
    return label


# ----------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------
class UserCreateRequest(ApiModel):
    username: str = Field(min_length=1, max_length=100)
    day_start_hour: int = Field(default=0, ge=0, le=23)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, value: str) -> str:
        username = value.strip()
        if not username:
            raise ValueError("Username is required")
        return username


class UserUpdateRequest(ApiModel):
    day_start_hour: int = Field(ge=0, le=23)


class UserResponse(ApiModel):
    id: int
    username: str
    day_start_hour: int
    created_at: dt.datetime

    @field_serializer("created_at", when_used="json")
    def _serialize_created_at(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class UserCreatedResponse(ApiModel):
    user: UserResponse
    token: str


# ----------------------------------------------------------------------
# Timers
# ----------------------------------------------------------------------
class TimerCreateRequest(ApiModel):
    label: str
    category: Optional[str] = "Default"
    min_time: int = Field(default=0, ge=0)
    max_time: Optional[int] = Field(default=None, ge=0)
    is_enabled: bool = True
    play_sound: bool = True
    color: str = Field(default="#007AFF", max_length=20)
    display_type: Literal["bar", "wheel"] = "bar"
    show_total_seconds: bool = False
    is_archived: bool = False

    @field_validator("label")
    @classmethod
    def _check_label(cls, value: Optional[str]) -> Optional[str]:
        return _clean_label(value)

    @model_validator(mode="after")
    def _check_bounds(self) -> "TimerCreateRequest":
        if self.max_time is not None and self.max_time <= self.min_time:
            raise ValueError("Maximum time must be greater than minimum time")
        return self


class TimerUpdateRequest(ApiModel):
    """Partial update; only the fields present in the body are applied."""

    user_id: Optional[int] = None
    label: Optional[str] = None
    category: Optional[str] = None
    min_time: Optional[int] = Field(default=None, ge=0)
    max_time: Optional[int] = Field(default=None, ge=0)
    is_enabled: Optional[bool] = None
    play_sound: Optional[bool] = None
    color: Optional[str] = Field(default=None, max_length=20)
    display_type: Optional[Literal["bar", "wheel"]] = None
    show_total_seconds: Optional[bool] = None
    is_archived: Optional[bool] = None

    @field_validator("label")
    @classmethod
    def _check_label(cls, value: Optional[str]) -> Optional[str]:
        return _clean_label(value)

    @model_validator(mode="after")
    def _reject_nulls(self) -> "TimerUpdateRequest":
        nullable = {"max_time", "category", "user_id"}
        for name in self.model_fields_set - nullable:
            if getattr(self, name) is None:
                raise ValueError(f"{to_camel(name)} cannot be null")
        return self


class TimerResponse(ApiModel):
    id: int
    user_id: int
    label: str
    category: Optional[str]
    min_time: int
    max_time: Optional[int]
    is_enabled: bool
    play_sound: bool
    color: str
    display_type: str
    show_total_seconds: bool
    is_archived: bool
    created_at: dt.datetime

    @field_serializer("created_at", when_used="json")
    def _serialize_created_at(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class EnhancedTimerResponse(TimerResponse):
    last_pressed: Optional[dt.datetime]
    elapsed_time: int
    progress: float
    can_press: bool

    @field_serializer("last_pressed", when_used="json")
    def _serialize_last_pressed(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value) if value else None


class ClearArchivedResponse(ApiModel):
    message: str
    deleted: int


# ----------------------------------------------------------------------
# History
# ----------------------------------------------------------------------
class HistoryEntryResponse(ApiModel):
    id: int
    timer_id: int
    timestamp: dt.datetime
    is_active: bool

    @field_serializer("timestamp", when_used="json")
    def _serialize_timestamp(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class PressRequest(ApiModel):
    timestamp: Optional[dt.datetime] = None


class PressResponse(ApiModel):
    history: HistoryEntryResponse
    timer: EnhancedTimerResponse


class HistoryUpdateRequest(ApiModel):
    is_active: Optional[bool] = None
    timestamp: Optional[dt.datetime] = None


class HistoryUpdateResponse(ApiModel):
    history: HistoryEntryResponse
    timers: List[EnhancedTimerResponse]


class LedgerActionResponse(ApiModel):
    action: Literal["undo", "redo"]
    changed: bool
    message: str
    history: Optional[HistoryEntryResponse] = None
    timer: EnhancedTimerResponse
    can_undo: bool
    can_redo: bool


# ----------------------------------------------------------------------
# Statistics
# ----------------------------------------------------------------------
class TimerStatsResponse(ApiModel):
    timer_id: int
    presses_today: int
    total_presses: int
    can_undo: bool
    can_redo: bool
    day_start: dt.datetime

    @field_serializer("day_start", when_used="json")
    def _serialize_day_start(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class PressCountPoint(ApiModel):
    timestamp: str
    timer_id: int
    count: int


class AverageIntervalPoint(ApiModel):
    date: str
    timer_id: int
    average_minutes: int


class PressIntervalPoint(ApiModel):
    timestamp: dt.datetime
    timer_id: int
    minutes_since_last: int

    @field_serializer("timestamp", when_used="json")
    def _serialize_timestamp(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class HistoryStatsResponse(ApiModel):
    period: Literal["daily", "weekly", "monthly"]
    counts: List[PressCountPoint]
    average_time_between_presses: List[AverageIntervalPoint]
    press_events: List[PressIntervalPoint]
