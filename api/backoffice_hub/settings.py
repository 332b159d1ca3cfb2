# backoffice_hub/settings.py
"""
Backoffice Hub settings - embedded SQLite store, logs under the data root.
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, field_validator

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (database file, logs)
    # =========================================================================
    BACKOFFICE_DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "backoffice-data"),
        validation_alias=AliasChoices("BACKOFFICE_DATA_ROOT", "data_root"),
    )

    # =========================================================================
    # Database
    # =========================================================================
    # Empty means <BACKOFFICE_DATA_ROOT>/backoffice.db through aiosqlite
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "BACKOFFICE_DB_URL"),
    )
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # =========================================================================
    # Expiry tracking
    # =========================================================================
    EXPIRY_WARNING_DAYS: int = Field(
        default=90,
        description="Default look-ahead window for expiring batches",
    )

    # =========================================================================
    # Logging (rotating file under <BACKOFFICE_DATA_ROOT>/logs)
    # =========================================================================
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    LOG_FILE_NAME: str = Field(default="backoffice_hub.log", validation_alias="LOG_FILE_NAME")
    LOG_MAX_BYTES: int = Field(default=5_000_000, validation_alias="LOG_MAX_BYTES")
    LOG_BACKUP_COUNT: int = Field(default=3, validation_alias="LOG_BACKUP_COUNT")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _known_level(cls, v):
        level = str(v or "INFO").strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def log_dir(self) -> Path:
        return Path(self.BACKOFFICE_DATA_ROOT).expanduser() / "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

settings = Settings()
