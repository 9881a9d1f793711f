from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "PressLog"
    environment: str = "development"
    host: str = os.getenv("PL_HOST", "127.0.0.1")
    port: int = int(os.getenv("PL_PORT", "8080"))

    storage_backend: str = os.getenv("PL_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("PL_SQLITE_PATH", "./data/presslog.db"))

    timezone: str = os.getenv("TZ", "Europe/Berlin")

    token_secret: str = os.getenv("PL_TOKEN_SECRET", "change-me")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("PL_CORS_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173").split(",")
            if origin.strip()
        ]
    )

    seed_sample_data: bool = os.getenv("PL_SEED_SAMPLE_DATA", "false").lower() == "true"
    log_level: str = os.getenv("PL_LOG_LEVEL", "INFO")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("storage_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"sqlite", "memory"}:
            raise ValueError(f"Unsupported storage backend: {value}")
        return normalized


settings = Settings()

settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
