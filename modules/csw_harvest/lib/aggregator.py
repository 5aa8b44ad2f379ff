"""
Pagination over one date window.

Pages are fetched strictly in offset order, one at a time. The loop stops when
a page reports hasMore=false (window exhausted) or when a cap is hit
(max_pages / max_records); in the latter case WindowResult.next_offset is the
exact startPosition to resume from.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from typing import Any

from .errors import ExtractionError
from .fetcher import DEFAULT_PAGE_SIZE, fetch_page
from .models import PageResult, Window, WindowResult

log = logging.getLogger(__name__)

PageObserver = Callable[[PageResult, int], None]  # (page, 1-based page number)
FetchPage = Callable[..., PageResult]


def iter_pages(
    endpoint: str,
    window: Window,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    start_offset: int = 1,
    max_records: int | None = None,
    max_pages: int | None = None,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], Any] = time.sleep,
    fetch: FetchPage = fetch_page,
    **fetch_kwargs: Any,
) -> Iterator[tuple[int, int, PageResult]]:
    """
    Yield (page_number, requested_offset, page) for each page fetched.

    The final page is shrunk so the total never exceeds max_records.
    delay_seconds is slept between pages, never after the last one.
    """
    offset = start_offset
    page_number = 0
    fetched = 0

    while True:
        if max_pages is not None and page_number >= max_pages:
            return
        if max_records is not None and fetched >= max_records:
            return

        size = page_size if max_records is None else min(page_size, max_records - fetched)
        if page_number and delay_seconds > 0:
            log.debug("Sleeping %.1fs before page %d", delay_seconds, page_number + 1)
            sleep(delay_seconds)

        page_number += 1
        page = fetch(endpoint, window.start, window.end, size, offset, **fetch_kwargs)
        fetched += len(page.records)

        if page.has_more and page.next_offset <= offset:
            raise ExtractionError(
                f"nextRecord={page.next_offset} does not advance past startPosition={offset}"
            )

        yield page_number, offset, page

        if not page.has_more:
            return
        offset = page.next_offset


def fetch_window(
    endpoint: str,
    window: Window,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    start_offset: int = 1,
    max_records: int | None = None,
    max_pages: int | None = None,
    on_page: PageObserver | None = None,
    delay_seconds: float = 0.0,
    sleep: Callable[[float], Any] = time.sleep,
    fetch: FetchPage = fetch_page,
    **fetch_kwargs: Any,
) -> WindowResult:
    """
    Fetch pages of `window` from `start_offset` until exhausted or a cap is hit.

    on_page is an observer: it is called after every page and its return
    value is ignored. Exceptions from fetching (TransportError,
    ExtractionError) propagate. Pages already handed to on_page stay
    delivered, so a retried window may deliver them again.
    """
    result = WindowResult(next_offset=start_offset)

    for page_number, _offset, page in iter_pages(
        endpoint,
        window,
        page_size,
        start_offset=start_offset,
        max_records=max_records,
        max_pages=max_pages,
        delay_seconds=delay_seconds,
        sleep=sleep,
        fetch=fetch,
        **fetch_kwargs,
    ):
        result.records.extend(page.records)
        result.pages_fetched = page_number
        result.total_matched = page.total_matched
        result.exhausted = not page.has_more
        result.next_offset = page.next_offset if page.has_more else None

        if on_page:
            on_page(page, page_number)

    return result
