"""
Cursor state machine and its persisted JSON form.

    Idle(last_end)              --invocation--> window = [last_end, now), offset 1
    InProgress(window, offset)  --invocation--> same window, same offset

After the pages of an invocation:
    window exhausted     -> Idle(window.end)
    budget ran out       -> InProgress(window, next offset)

A window's end is fixed when the window is created and never moves, so the
set of records a window can return is bounded and the harvest converges.

Persisted shape (one JSON document per harvest target):
    {"lastRun": str | null,
     "pending": {"startDate": str, "endDate": str, "startPosition": int} | null}
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from .models import Cursor, Idle, InProgress, Window, WindowResult
from .utils import format_iso, parse_iso

DEFAULT_LOOKBACK = timedelta(minutes=15)


class CursorFormatError(ValueError):
    """Raised when a persisted cursor document cannot be decoded."""


def seed_cursor(now: datetime, lookback: timedelta = DEFAULT_LOOKBACK) -> Idle:
    """Initial state for a target that has never run."""
    return Idle(last_completed_window_end=now - lookback)


def plan(cursor: Cursor, now: datetime) -> tuple[Window, int]:
    """
    Decide what this invocation requests: (window, start offset).
    An Idle cursor opens a new window ending at `now`; an InProgress cursor
    resumes its stored window unchanged.
    """
    if isinstance(cursor, InProgress):
        return cursor.window, cursor.resume_offset
    if isinstance(cursor, Idle):
        return Window(start=cursor.last_completed_window_end, end=now), 1
    raise TypeError(f"Not a cursor: {cursor!r}")


def advance(window: Window, result: WindowResult) -> Cursor:
    """State to persist after the invocation's pages were fetched successfully."""
    if window.end is None:
        raise ValueError("Cursor windows must have a fixed end")
    if result.exhausted:
        return Idle(last_completed_window_end=window.end)
    if result.next_offset is None or result.next_offset < 1:
        raise ValueError("An unexhausted window needs a resume offset")
    return InProgress(window=window, resume_offset=result.next_offset)


# ---- JSON codec -------------------------------------------------------------


def encode_cursor(cursor: Cursor) -> dict[str, Any]:
    if isinstance(cursor, Idle):
        return {"lastRun": format_iso(cursor.last_completed_window_end), "pending": None}
    if isinstance(cursor, InProgress):
        if cursor.window.end is None:
            raise ValueError("InProgress cursor needs a window end")
        return {
            "lastRun": format_iso(cursor.window.start),
            "pending": {
                "startDate": format_iso(cursor.window.start),
                "endDate": format_iso(cursor.window.end),
                "startPosition": int(cursor.resume_offset),
            },
        }
    raise TypeError(f"Not a cursor: {cursor!r}")


def decode_cursor(doc: dict[str, Any] | None) -> Cursor | None:
    """
    Decode a persisted document. Returns None for an empty document
    ({"lastRun": null, "pending": null}), meaning "never run".
    """
    if not doc:
        return None
    if not isinstance(doc, dict):
        raise CursorFormatError("Cursor document must be a JSON object.")

    pending = doc.get("pending")
    if pending:
        if not isinstance(pending, dict):
            raise CursorFormatError("'pending' must be an object or null.")
        start = _required_ts(pending, "startDate")
        end = _required_ts(pending, "endDate")
        try:
            position = int(pending.get("startPosition"))
        except (TypeError, ValueError) as e:
            raise CursorFormatError("'pending.startPosition' must be an integer.") from e
        if position < 1:
            raise CursorFormatError(f"'pending.startPosition' must be >= 1 (got {position}).")
        return InProgress(window=Window(start=start, end=end), resume_offset=position)

    last_run = doc.get("lastRun")
    if last_run:
        return Idle(last_completed_window_end=_required_ts(doc, "lastRun"))
    return None


def dumps_cursor(cursor: Cursor) -> str:
    return json.dumps(encode_cursor(cursor), separators=(",", ":"))


def loads_cursor(raw: str | None) -> Cursor | None:
    if raw is None or not raw.strip():
        return None
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CursorFormatError(f"Cursor is not valid JSON: {e}") from e
    return decode_cursor(doc)


def _required_ts(container: dict[str, Any], key: str) -> datetime:
    value = container.get(key)
    ts = parse_iso(value) if isinstance(value, str) else None
    if ts is None:
        raise CursorFormatError(f"'{key}' must be an ISO-8601 timestamp (got {value!r}).")
    return ts
