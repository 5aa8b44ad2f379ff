# tests/conftest.py
import os
import tempfile
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from modules.csw_harvest.lib import config as csw_config
from modules.csw_harvest.lib.models import PageResult, Record


CSW_NS = "http://www.opengis.net/cat/csw/2.0.2"
GMD_NS = "http://www.isotc211.org/2005/gmd"
GCO_NS = "http://www.isotc211.org/2005/gco"
GMX_NS = "http://www.isotc211.org/2005/gmx"


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", tempfile.mkdtemp(prefix="csw-pytest-logs-"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")

    # Nothing from the developer's shell may leak into Settings
    for name in ("CONFIG_PATH", "CSW_ENDPOINT", "CSW_SQLITE_PATH", "CSW_CURSOR", "TIME_OFFSET_DAYS"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# CSW response bodies
# ---------------------------------------------------------------------
def record_xml(
    source: str | None = None,
    title: str | None = None,
    modified: str | None = None,
    *,
    anchor: bool = False,
    date_only: bool = False,
) -> str:
    """One gmd:MD_Metadata element; omitted fields are left out of the XML."""
    parts = []
    if modified is not None:
        tag = "gco:Date" if date_only else "gco:DateTime"
        parts.append(f"<gmd:dateStamp><{tag}>{modified}</{tag}></gmd:dateStamp>")

    citation = []
    if title is not None:
        citation.append(f"<gmd:title><gco:CharacterString>{title}</gco:CharacterString></gmd:title>")
    if source is not None:
        code = (
            f'<gmx:Anchor xlink:href="{source}" xmlns:xlink="http://www.w3.org/1999/xlink">{source}</gmx:Anchor>'
            if anchor
            else f"<gco:CharacterString>{source}</gco:CharacterString>"
        )
        citation.append(f"<gmd:identifier><gmd:MD_Identifier><gmd:code>{code}</gmd:code></gmd:MD_Identifier></gmd:identifier>")
    if citation:
        parts.append(
            "<gmd:identificationInfo><gmd:MD_DataIdentification><gmd:citation><gmd:CI_Citation>"
            + "".join(citation)
            + "</gmd:CI_Citation></gmd:citation></gmd:MD_DataIdentification></gmd:identificationInfo>"
        )
    return "<gmd:MD_Metadata>" + "".join(parts) + "</gmd:MD_Metadata>"


def search_response(records: list[str], matched: int, returned: int | None = None, next_record: int = 0) -> str:
    """A GetRecordsResponse wrapping the given record elements."""
    returned = len(records) if returned is None else returned
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f'<csw:GetRecordsResponse xmlns:csw="{CSW_NS}" xmlns:gmd="{GMD_NS}" xmlns:gco="{GCO_NS}" xmlns:gmx="{GMX_NS}">'
        '<csw:SearchStatus timestamp="2025-01-01T00:00:00Z"/>'
        f'<csw:SearchResults numberOfRecordsMatched="{matched}" numberOfRecordsReturned="{returned}" '
        f'nextRecord="{next_record}" recordSchema="{GMD_NS}" elementSet="full">'
        + "".join(records)
        + "</csw:SearchResults></csw:GetRecordsResponse>"
    )


@pytest.fixture
def csw_xml():
    """Builders for GetRecords response bodies: csw_xml.record(...), csw_xml.response(...)."""

    class Builders:
        record = staticmethod(record_xml)
        response = staticmethod(search_response)

    return Builders


# ---------------------------------------------------------------------
# Fake catalogue: a fetch_page stand-in serving records 1..total
# ---------------------------------------------------------------------
class FakeCatalogue:
    """
    Serves `total` records sorted by modification date, honouring
    startPosition/maxRecords like a CSW server. `fail_on_call` makes the
    n-th call (1-based) raise `fail_with`.
    """

    def __init__(self, total: int, fail_on_call: int | None = None, fail_with: Exception | None = None):
        self.total = total
        self.fail_on_call = fail_on_call
        self.fail_with = fail_with
        self.calls: list[dict] = []

    @staticmethod
    def record(i: int) -> Record:
        return Record(
            source=f"urn:csw:rec:{i}",
            title=f"Dataset {i}",
            modified=f"2025-01-01T00:{i // 60 % 60:02d}:{i % 60:02d}Z",
        )

    def __call__(self, endpoint, start, end, page_size, offset, **kwargs) -> PageResult:
        self.calls.append({
            "endpoint": endpoint,
            "start": start,
            "end": end,
            "page_size": page_size,
            "offset": offset,
            "kwargs": kwargs,
        })
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.fail_with or RuntimeError("fake failure")

        last = min(offset + page_size - 1, self.total)
        records = tuple(self.record(i) for i in range(offset, last + 1))
        nxt = last + 1 if last < self.total else 0
        return PageResult(records=records, total_matched=self.total, returned=len(records), next_offset=nxt)


@pytest.fixture
def fake_catalogue():
    return FakeCatalogue


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------
@pytest.fixture
def csw_settings(tmp_path):
    """
    Return a **brand-new** Settings instance for *each* test, backed by a
    per-test SQLite file and with no inter-page delay.
    """
    return csw_config.Settings.from_env_and_kwargs({
        "endpoint": "https://csw.example.org/csw",
        "sqlite_path": str(tmp_path / "cursor.db"),
        "page_size": 100,
        "max_pages": 1,
        "delay_seconds": 0,
    })


@pytest.fixture
def fixed_now():
    return datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
