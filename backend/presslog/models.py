from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


DEFAULT_CATEGORY = "Default"
DEFAULT_COLOR = "#007AFF"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), nullable=False, unique=True)
    day_start_hour = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    tokens = relationship("ApiToken", back_populates="user", cascade="all, delete-orphan")


class ApiToken(Base):
    __tablename__ = "api_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="tokens")


class Timer(Base):
    __tablename__ = "timers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    label = Column(String(200), nullable=False)
    category = Column(String(100), nullable=True, default=DEFAULT_CATEGORY)
    min_time = Column(Integer, nullable=False, default=0)  # seconds
    max_time = Column(Integer, nullable=True)  # seconds
    is_enabled = Column(Boolean, nullable=False, default=True)
    play_sound = Column(Boolean, nullable=False, default=True)
    color = Column(String(20), nullable=False, default=DEFAULT_COLOR)
    display_type = Column(String(10), nullable=False, default="bar")
    show_total_seconds = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    history = relationship(
        "TimerHistory",
        back_populates="timer",
        cascade="all, delete-orphan",
    )


class TimerHistory(Base):
    __tablename__ = "timer_history"

    id = Column(Integer, primary_key=True, index=True)
    timer_id = Column(Integer, ForeignKey("timers.id"), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    timer = relationship("Timer", back_populates="history")
