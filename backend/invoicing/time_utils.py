# Overview: UTC helpers; every stored datetime is naive and implicitly UTC.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the form stored in every column)."""
    return _as_naive_utc(datetime.now(timezone.utc))


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse client-supplied ISO-8601 text into a naive UTC datetime.

    Blank input gives None. Text without an offset ("2026-03-01" or
    "2026-03-01T09:30") is already UTC; a "Z" suffix or explicit offset is
    shifted to UTC. Malformed text raises ValueError from fromisoformat.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_naive_utc(datetime.fromisoformat(text))


def coerce_datetime(value) -> Optional[datetime]:
    """Accept a datetime or an ISO string; aware values are shifted to UTC-naive."""
    if value is None or isinstance(value, datetime):
        return value if value is None else _as_naive_utc(value)
    return parse_iso_datetime(str(value))


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render for API responses: whole seconds, 'Z' suffix."""
    if dt is None:
        return None
    return _as_naive_utc(dt).replace(microsecond=0).isoformat() + "Z"
