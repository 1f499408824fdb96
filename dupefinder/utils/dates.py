"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime

import pendulum


def utcnow() -> datetime:
    """Naive UTC timestamp for ``created_at``/``updated_at`` columns."""
    return pendulum.now("UTC").naive()


def parse_review_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = pendulum.parse(value, strict=False)
    except ValueError:
        return None
    if isinstance(parsed, pendulum.DateTime):
        return parsed.in_timezone("UTC").naive()
    if isinstance(parsed, pendulum.Date):
        return datetime(parsed.year, parsed.month, parsed.day)
    return None
