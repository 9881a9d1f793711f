"""Configuration of the PressLog companion."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_TICK_SECONDS = 1.0
DEFAULT_REFETCH_SECONDS = 60.0


@dataclass(slots=True)
class AppConfig:
    """Settings of the companion process."""

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: Optional[str] = None
    tick_seconds: float = DEFAULT_TICK_SECONDS
    refetch_seconds: float = DEFAULT_REFETCH_SECONDS


def load_config() -> AppConfig:
    """Read the configuration from the environment and an optional `.env` file."""

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return AppConfig(
        api_base_url=os.getenv("PRESSLOG_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_token=os.getenv("PRESSLOG_API_TOKEN"),
        tick_seconds=float(os.getenv("PRESSLOG_TICK_SECONDS", DEFAULT_TICK_SECONDS)),
        refetch_seconds=float(os.getenv("PRESSLOG_REFETCH_SECONDS", DEFAULT_REFETCH_SECONDS)),
    )


__all__ = ["AppConfig", "load_config"]
