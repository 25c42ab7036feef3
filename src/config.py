"""
Keep In Touch — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Telegram
    TELEGRAM_BOT_TOKEN: str

    # SQLite
    DATABASE_PATH: str = "data/keepintouch.db"

    # Users allowed to run /runscan and /runstatus by hand
    ADMIN_USER_IDS: list[int] = []

    # Scheduling
    TIMEZONE: str = "UTC"
    REMINDER_SCAN_HOUR: int = 9
    EVENT_STATUS_INTERVAL_SECONDS: int = 60
    EVENT_REMINDER_INTERVAL_SECONDS: int = 60
    ENABLE_SCHEDULER: bool = True

    # Notification delivery
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_BASE_SECONDS: float = 1.0
    SENT_CACHE_TTL_HOURS: int = 24

    @field_validator("ADMIN_USER_IDS", mode="before")
    @classmethod
    def parse_user_ids(cls, v: str | list[int]) -> list[int]:
        if isinstance(v, list):
            return v
        if isinstance(v, str) and v.strip():
            return [int(uid.strip()) for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("REMINDER_SCAN_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError(f"REMINDER_SCAN_HOUR must be 0-23, got {hour}")
        return hour

    @field_validator("EVENT_STATUS_INTERVAL_SECONDS", "EVENT_REMINDER_INTERVAL_SECONDS",
                     "NOTIFICATION_MAX_ATTEMPTS", "SENT_CACHE_TTL_HOURS", mode="before")
    @classmethod
    def parse_positive(cls, v: str | int) -> int:
        value = int(v)
        if value <= 0:
            raise ValueError(f"Expected a positive integer, got {value}")
        return value

    @field_validator("ENABLE_SCHEDULER", mode="before")
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    token = os.getenv("TELEGRAM_BOT_TOKEN", "")

    if not token or token.startswith("your-"):
        print("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    return Settings(
        TELEGRAM_BOT_TOKEN=token,
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/keepintouch.db"),
        ADMIN_USER_IDS=os.getenv("ADMIN_USER_IDS", ""),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        REMINDER_SCAN_HOUR=os.getenv("REMINDER_SCAN_HOUR", "9"),
        EVENT_STATUS_INTERVAL_SECONDS=os.getenv("EVENT_STATUS_INTERVAL_SECONDS", "60"),
        EVENT_REMINDER_INTERVAL_SECONDS=os.getenv("EVENT_REMINDER_INTERVAL_SECONDS", "60"),
        ENABLE_SCHEDULER=os.getenv("ENABLE_SCHEDULER", "true"),
        NOTIFICATION_MAX_ATTEMPTS=os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3"),
        NOTIFICATION_RETRY_BASE_SECONDS=os.getenv("NOTIFICATION_RETRY_BASE_SECONDS", "1.0"),
        SENT_CACHE_TTL_HOURS=os.getenv("SENT_CACHE_TTL_HOURS", "24"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
