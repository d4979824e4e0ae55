"""
Update Relay - Centralized configuration.

Loads per-platform bot settings from .env. A platform without a token is
allowed: its client simply refuses to start.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from relay/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)

_TRUTHY = ("1", "true", "yes", "on")


class BotSettings(BaseModel):
    """Settings for one chat platform."""

    prefix: str
    token: str = ""
    enabled: bool = False   # start automatically with the process
    owners: list[str] = []

    @field_validator("owners", mode="before")
    @classmethod
    def parse_owner_ids(cls, v: str | list) -> list[str]:
        if isinstance(v, list):
            return [str(uid).strip() for uid in v if str(uid).strip()]
        if isinstance(v, str) and v.strip():
            return [uid.strip() for uid in v.split(",") if uid.strip()]
        return []

    @field_validator("enabled", mode="before")
    @classmethod
    def parse_enabled(cls, v: str | bool) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in _TRUTHY
        return bool(v)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    TELEGRAM: BotSettings
    DISCORD: BotSettings
    LOG_LEVEL: str = "INFO"


def _load_bot_settings(platform: str, default_prefix: str) -> BotSettings:
    key = platform.upper()
    return BotSettings(
        prefix=os.getenv(f"{key}_PREFIX", default_prefix),
        token=os.getenv(f"{key}_TOKEN", ""),
        enabled=os.getenv(f"{key}_ENABLED", "true"),
        owners=os.getenv(f"{key}_OWNERS", ""),
    )


def _load_settings() -> Settings:
    """Load settings from environment."""
    return Settings(
        TELEGRAM=_load_bot_settings("telegram", "/"),
        DISCORD=_load_bot_settings("discord", "!"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


# Singleton - imported by all other modules as:
#   from relay.config import settings
settings = _load_settings()
