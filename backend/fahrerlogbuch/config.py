from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")
    """Application runtime configuration."""

    app_name: str = "Fahrerlogbuch"
    environment: str = "development"
    host: str = os.getenv("FL_HOST", "127.0.0.1")
    port: int = int(os.getenv("FL_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("FL_CORS_ORIGINS", "http://127.0.0.1:3000,http://localhost:3000").split(",")
            if origin.strip()
        ]
    )

    storage_backend: str = os.getenv("FL_STORAGE", "sqlite")
    sqlite_path: Path = Path(os.getenv("FL_SQLITE_PATH", "./data/fahrerlogbuch.db"))
    json_dir: Path = Path(os.getenv("FL_JSON_DIR", "./data/state"))

    export_dir: Path = Path(os.getenv("FL_EXPORT_DIR", "./data/exports"))
    log_dir: Path = Path(os.getenv("FL_LOG_DIR", "./data/logs"))
    log_level: str = os.getenv("FL_LOG_LEVEL", "INFO")

    locale: str = os.getenv("FL_LOCALE", "de-DE")
    timezone: str = os.getenv("TZ", "Europe/Berlin")

    token_secret: str = os.getenv("FL_TOKEN_SECRET", "change-me")
    session_ttl_hours: int = int(os.getenv("FL_SESSION_TTL_HOURS", "24"))

    max_attachment_bytes: int = int(os.getenv("FL_MAX_ATTACHMENT_BYTES", str(5 * 1024 * 1024)))

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
        if normalized not in {"sqlite", "json"}:
            raise ValueError("storage_backend must be 'sqlite' or 'json'")
        return normalized


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
settings.json_dir.mkdir(parents=True, exist_ok=True)
settings.log_dir.mkdir(parents=True, exist_ok=True)
