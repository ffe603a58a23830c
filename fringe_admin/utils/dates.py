"""Timestamp helpers shared by the API and the persistence layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Return the current UTC time in the ISO-8601 form the database stores."""

    return to_iso(utcnow())


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings (``Z`` suffix allowed) and dates into aware datetimes.

    Returns ``None`` for blank or unparseable input so callers can decide how
    strict they want to be.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def date_stamp(value: Optional[datetime] = None) -> str:
    """``YYYY-MM-DD`` for filenames and daily statistic periods."""

    return (value or utcnow()).strftime("%Y-%m-%d")
