"""
Crewboard configuration — all environment variables in one place.

Read from environment at runtime. Never hardcode secrets.
"""

from __future__ import annotations

import os
from pathlib import Path


class Settings:
    """Application settings from environment variables."""

    # Database (the hosted Postgres behind the managed backend)
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = int(os.environ.get("DB_POOL_MIN_SIZE", "1"))
    DB_POOL_MAX_SIZE: int = int(os.environ.get("DB_POOL_MAX_SIZE", "10"))
    DB_COMMAND_TIMEOUT: float = float(os.environ.get("DB_COMMAND_TIMEOUT", "30"))

    # Change feed: channel the notify trigger publishes on
    CHANGE_CHANNEL: str = os.environ.get("CHANGE_CHANNEL", "roster_changes")

    # Auth service (GoTrue-compatible REST API)
    SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
    SUPABASE_ANON_KEY: str = os.environ.get("SUPABASE_ANON_KEY", "")
    AUTH_TIMEOUT_SECONDS: float = float(os.environ.get("AUTH_TIMEOUT_SECONDS", "30"))

    # Status channel
    STATUS_CLEAR_SECONDS: float = float(os.environ.get("STATUS_CLEAR_SECONDS", "3"))

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")

    @property
    def SESSION_FILE(self) -> Path:
        path = os.environ.get("SESSION_FILE")
        if path:
            return Path(path)
        return Path.home() / ".crewboard" / "session.json"

    @property
    def AUTH_URL(self) -> str:
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1"


# Singleton instance
settings = Settings()
