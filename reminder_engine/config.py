"""
Reminder Engine — Centralized configuration.

Loads all settings from .env and validates them.
Every module that needs a tunable (window lengths, queue caps, retention,
sweep schedule) reads it from here.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from reminder_engine/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # SQLite
    DATABASE_PATH: str = "data/reminders.db"
    DB_TIMEOUT_SECONDS: float = 5.0

    # Plan tiers: materialization window (days ahead) and Today queue cap
    FREE_WINDOW_DAYS: int = 30
    PRO_WINDOW_DAYS: int = 90
    FREE_QUEUE_CAP: int = 10
    PRO_QUEUE_CAP: int = 25

    # Pruning: terminal instances vs. everything
    TERMINAL_RETENTION_DAYS: int = 30
    HARD_RETENTION_DAYS: int = 90

    # Snooze
    DEFAULT_SNOOZE_DAYS: int = 1

    # Nightly sweep
    SWEEP_HOUR: int = 3
    SWEEP_MINUTE: int = 0
    TIMEZONE: str = "UTC"

    LOG_LEVEL: str = "INFO"

    @field_validator(
        "FREE_WINDOW_DAYS",
        "PRO_WINDOW_DAYS",
        "FREE_QUEUE_CAP",
        "PRO_QUEUE_CAP",
        "TERMINAL_RETENTION_DAYS",
        "HARD_RETENTION_DAYS",
        "DEFAULT_SNOOZE_DAYS",
        mode="before",
    )
    @classmethod
    def parse_positive_int(cls, v: str | int) -> int:
        value = int(v)
        if value < 1:
            raise ValueError(f"must be a positive integer, got {value}")
        return value

    @field_validator("SWEEP_HOUR", mode="before")
    @classmethod
    def parse_hour(cls, v: str | int) -> int:
        hour = int(v)
        if not 0 <= hour <= 23:
            raise ValueError(f"hour out of range: {hour}")
        return hour

    @field_validator("SWEEP_MINUTE", mode="before")
    @classmethod
    def parse_minute(cls, v: str | int) -> int:
        minute = int(v)
        if not 0 <= minute <= 59:
            raise ValueError(f"minute out of range: {minute}")
        return minute

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def parse_log_level(cls, v: str) -> str:
        return str(v).upper()


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/reminders.db"),
        DB_TIMEOUT_SECONDS=os.getenv("DB_TIMEOUT_SECONDS", "5.0"),
        FREE_WINDOW_DAYS=os.getenv("FREE_WINDOW_DAYS", "30"),
        PRO_WINDOW_DAYS=os.getenv("PRO_WINDOW_DAYS", "90"),
        FREE_QUEUE_CAP=os.getenv("FREE_QUEUE_CAP", "10"),
        PRO_QUEUE_CAP=os.getenv("PRO_QUEUE_CAP", "25"),
        TERMINAL_RETENTION_DAYS=os.getenv("TERMINAL_RETENTION_DAYS", "30"),
        HARD_RETENTION_DAYS=os.getenv("HARD_RETENTION_DAYS", "90"),
        DEFAULT_SNOOZE_DAYS=os.getenv("DEFAULT_SNOOZE_DAYS", "1"),
        SWEEP_HOUR=os.getenv("SWEEP_HOUR", "3"),
        SWEEP_MINUTE=os.getenv("SWEEP_MINUTE", "0"),
        TIMEZONE=os.getenv("TIMEZONE", "UTC"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )


# Singleton — imported by all other modules as:
#   from reminder_engine.config import settings
settings = _load_settings()
