# modules/csw_harvest/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .aggregator import fetch_window, iter_pages
from .backfill import backfill_windows, run_backfill
from .config import ConfigurationError, Settings
from .cursor import advance, decode_cursor, encode_cursor, plan, seed_cursor
from .engine import run_once
from .errors import ExtractionError, HarvestError, TransportError
from .extractor import FIELD_PATTERNS, Field, extract, match_field
from .fetcher import DEFAULT_CSW_ENDPOINT, fetch_page
from .models import Cursor, Idle, InProgress, PageResult, Record, Window, WindowResult
from .request import build_get_records

__all__ = [
    "DEFAULT_CSW_ENDPOINT",
    "FIELD_PATTERNS",
    "ConfigurationError",
    "Cursor",
    "ExtractionError",
    "Field",
    "HarvestError",
    "Idle",
    "InProgress",
    "PageResult",
    "Record",
    "Settings",
    "TransportError",
    "Window",
    "WindowResult",
    "advance",
    "backfill_windows",
    "build_get_records",
    "decode_cursor",
    "encode_cursor",
    "extract",
    "fetch_page",
    "fetch_window",
    "iter_pages",
    "plan",
    "run_backfill",
    "run_once",
    "seed_cursor",
]
