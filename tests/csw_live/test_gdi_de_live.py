# tests/csw_live/test_gdi_de_live.py
from __future__ import annotations

from datetime import timedelta

import pytest

from modules.csw_harvest.lib.aggregator import fetch_window
from modules.csw_harvest.lib.fetcher import DEFAULT_CSW_ENDPOINT, fetch_page
from modules.csw_harvest.lib.models import Window
from modules.csw_harvest.lib.utils import utcnow


def _print_records(label: str, records, max_items: int = 10) -> None:
    print(f"\n=== {label}: {len(records)} record(s) ===")
    for r in records[:max_items]:
        print(f"- {r.modified or '?'} | {r.title or '(untitled)'} | {r.source or ''}")


@pytest.mark.live
def test_gdi_de_last_day_first_page_live():
    """
    Live smoke test against the GDI-DE catalogue.
    Zero hits are tolerated (the catalogue may be quiet), the pagination shape is not.
    """
    end = utcnow()
    start = end - timedelta(days=1)

    page = fetch_page(DEFAULT_CSW_ENDPOINT, start, end, page_size=10, offset=1)

    assert page.total_matched >= 0
    assert page.returned == len(page.records)
    assert page.has_more == (0 < page.next_offset <= page.total_matched)
    _print_records("gdi-de first page", list(page.records))


@pytest.mark.live
def test_gdi_de_two_small_pages_live():
    end = utcnow()
    window = Window(end - timedelta(days=7), end)

    result = fetch_window(DEFAULT_CSW_ENDPOINT, window, 5, max_pages=2, delay_seconds=2.0)

    assert result.pages_fetched <= 2
    assert len(result.records) <= 10
    if result.records:
        assert any(r.title for r in result.records)
    _print_records("gdi-de two pages", list(result.records))
