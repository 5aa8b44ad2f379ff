"""
Historical harvest over a fixed date range.

The range is cut into contiguous fixed-interval windows (the last one is
clipped to the range end). Each window is fetched to exhaustion, one after
another, with no cursor: backfill is an operator-driven one-off.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import Any

from . import logging_bridge
from .aggregator import FetchPage, fetch_window
from .fetcher import DEFAULT_PAGE_SIZE, fetch_page
from .models import Window, WindowResult
from .utils import format_iso

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(hours=6)


def backfill_windows(
    start: datetime,
    end: datetime,
    interval: timedelta = DEFAULT_INTERVAL,
) -> Iterator[Window]:
    """Contiguous windows covering [start, end); the final one ends exactly at `end`."""
    if interval <= timedelta(0):
        raise ValueError("interval must be positive")
    if start >= end:
        raise ValueError(f"start ({format_iso(start)}) must be before end ({format_iso(end)})")

    current = start
    while current < end:
        nxt = min(current + interval, end)
        yield Window(start=current, end=nxt)
        current = nxt


def run_backfill(
    endpoint: str,
    start: datetime,
    end: datetime,
    *,
    interval: timedelta = DEFAULT_INTERVAL,
    page_size: int = DEFAULT_PAGE_SIZE,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], Any] = time.sleep,
    fetch: FetchPage = fetch_page,
    **fetch_kwargs: Any,
) -> Iterator[tuple[Window, WindowResult]]:
    """
    Yield (window, result) for each window of the range, in order.
    A failing window raises and stops the backfill; windows already yielded
    are complete.
    """
    for window in backfill_windows(start, end, interval):
        log.info("Backfill window %s", window.describe())
        result = fetch_window(
            endpoint,
            window,
            page_size,
            delay_seconds=delay_seconds,
            sleep=sleep,
            fetch=fetch,
            **fetch_kwargs,
        )
        logging_bridge.activity({
            "component": "csw_harvest.backfill",
            "op": "window",
            "window": window.describe(),
            **result.summary(),
        })
        yield window, result
