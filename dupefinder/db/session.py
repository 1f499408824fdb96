"""Database engine helpers."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from dupefinder.config import Settings


def create_engine_from_settings(settings: Settings | None = None) -> Engine:
    """Create an engine for ``settings.database_url`` (read from the environment by default)."""
    settings = settings or Settings.from_env()
    return create_engine(settings.database_url, pool_pre_ping=True)
