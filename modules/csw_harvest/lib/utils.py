from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return format_iso(utcnow())


def format_iso(dt: datetime) -> str:
    """
    Render a datetime as UTC ISO-8601 with a 'Z' suffix.
    Naive datetimes are taken to be UTC already.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(ts: str | None) -> datetime | None:
    """Parse ISO-8601 string (date or date-time) to timezone-aware UTC datetime."""
    if not ts:
        return None
    ts = ts.strip()

    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    if "T" not in ts and " " in ts:
        ts = ts.replace(" ", "T", 1)

    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        return None

    dt = dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)
    return dt


def getenv_str(name: str, default: str | None = None) -> str | None:
    """
    Typed wrapper for environment access.
    """
    val = os.getenv(name)
    return val if val not in (None, "") else default
