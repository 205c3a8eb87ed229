from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    # naive UTC, matches what the DateTime columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_utc(s: Optional[str]) -> Optional[datetime]:
    """
    Robust ISO parser -> naive UTC datetime.
    Accepts '2025-09-29T19:45:00Z', '+00:00' offsets, or naive (assumed UTC).
    Returns None if parsing fails.
    """
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(str(s)[:10])
    except ValueError:
        return None


def parse_percent(s) -> Optional[float]:
    """'45%' -> 45.0"""
    if s is None:
        return None
    try:
        return float(str(s).strip().rstrip("%"))
    except ValueError:
        return None
