# tests/test_engine.py
import dataclasses
import json
from datetime import timedelta

import pytest

from modules.csw_harvest.lib import engine
from modules.csw_harvest.lib.errors import ExtractionError, TransportError
from modules.csw_harvest.lib.extractor import extract
from modules.csw_harvest.lib.models import Idle, InProgress, Window
from modules.csw_harvest.lib.store import SqliteCursorStore
from service import logging_utils


def _store(settings):
    return SqliteCursorStore(settings.sqlite_path, settings.target)


# ----------------------------------------------------------------------
# 1. First run seeds the cursor and harvests the lookback window
# ----------------------------------------------------------------------
def test_first_run_seeds_and_completes_window(csw_settings, fake_catalogue, fixed_now):
    catalogue = fake_catalogue(total=5)

    meta = engine.run_once(csw_settings, fetch=catalogue, now=fixed_now, sink=lambda records: None)

    call = catalogue.calls[0]
    assert call["start"] == fixed_now - timedelta(minutes=15)
    assert call["end"] == fixed_now
    assert call["offset"] == 1
    assert _store(csw_settings).read() == Idle(fixed_now)
    assert meta["message"] == "Window complete. lastRun updated to 2025-01-01T12:00:00Z"
    assert meta["records"] == 5


# ----------------------------------------------------------------------
# 2. Page budget exhausted → InProgress at the next offset
# ----------------------------------------------------------------------
def test_page_limit_saves_resume_position(csw_settings, fake_catalogue, fixed_now):
    catalogue = fake_catalogue(total=250)

    meta = engine.run_once(csw_settings, fetch=catalogue, now=fixed_now, sink=lambda records: None)

    window = Window(fixed_now - timedelta(minutes=15), fixed_now)
    assert _store(csw_settings).read() == InProgress(window, 101)
    assert meta["message"] == "Page limit reached. Cursor saved at position 101"
    assert meta["cursor"]["pending"]["startPosition"] == 101


# ----------------------------------------------------------------------
# 3. Resume: the stored window is reused as-is, whatever the clock says
# ----------------------------------------------------------------------
def test_resume_uses_stored_window_and_offset(csw_settings, fake_catalogue, fixed_now):
    window = Window(fixed_now - timedelta(hours=6), fixed_now - timedelta(hours=5))
    _store(csw_settings).write(InProgress(window, 201))
    catalogue = fake_catalogue(total=250)

    engine.run_once(csw_settings, fetch=catalogue, now=fixed_now + timedelta(days=3), sink=lambda records: None)

    call = catalogue.calls[0]
    assert (call["start"], call["end"], call["offset"]) == (window.start, window.end, 201)
    assert _store(csw_settings).read() == Idle(window.end)


# ----------------------------------------------------------------------
# 4. A failing page leaves the cursor exactly as it was
# ----------------------------------------------------------------------
@pytest.mark.parametrize("error", [TransportError("bad gateway", status_code=502), ExtractionError("broken")])
def test_failure_mid_window_leaves_cursor_untouched(csw_settings, fake_catalogue, fixed_now, error):
    settings = dataclasses.replace(csw_settings, max_pages=3)
    window = Window(fixed_now - timedelta(hours=1), fixed_now)
    before = InProgress(window, 51)
    _store(settings).write(before)
    catalogue = fake_catalogue(total=350, fail_on_call=2, fail_with=error)

    with pytest.raises(type(error)):
        engine.run_once(settings, fetch=catalogue, now=fixed_now, sink=lambda records: None)

    assert [c["offset"] for c in catalogue.calls] == [51, 151]
    assert _store(settings).read() == before


def test_failure_is_written_to_error_log(csw_settings, fake_catalogue, fixed_now):
    catalogue = fake_catalogue(total=10, fail_on_call=1, fail_with=TransportError("down", status_code=503))

    with pytest.raises(TransportError):
        engine.run_once(csw_settings, fetch=catalogue, now=fixed_now)

    error_log = logging_utils.get_activity_log_path().replace("activity-test", "error-test")
    with open(error_log, encoding="utf-8") as f:
        rows = [json.loads(line) for line in f]
    assert rows[-1]["op"] == "fetch_window"
    assert rows[-1]["status_code"] == 503


# ----------------------------------------------------------------------
# 5. Records reach the sink page by page
# ----------------------------------------------------------------------
def test_sink_receives_each_page(csw_settings, fake_catalogue, fixed_now):
    settings = dataclasses.replace(csw_settings, page_size=10, max_pages=5)
    batches = []

    engine.run_once(settings, fetch=fake_catalogue(total=25), now=fixed_now, sink=batches.append)

    assert [len(b) for b in batches] == [10, 10, 5]
    assert batches[0][0].source == "urn:csw:rec:1"


def test_inter_page_delay_uses_configured_seconds(csw_settings, fake_catalogue, fixed_now):
    settings = dataclasses.replace(csw_settings, page_size=10, max_pages=3, delay_seconds=60)
    sleeps = []

    engine.run_once(
        settings, fetch=fake_catalogue(total=100), now=fixed_now, sleep=sleeps.append, sink=lambda records: None
    )

    assert sleeps == [60, 60]


# ----------------------------------------------------------------------
# 6. Clock handling: time offset and second truncation
# ----------------------------------------------------------------------
def test_time_offset_shifts_the_clock(csw_settings, fake_catalogue, fixed_now):
    settings = dataclasses.replace(csw_settings, time_offset_days=2)
    catalogue = fake_catalogue(total=0)

    engine.run_once(settings, fetch=catalogue, now=fixed_now.replace(microsecond=987654))

    assert catalogue.calls[0]["end"] == fixed_now - timedelta(days=2)
    assert _store(settings).read() == Idle(fixed_now - timedelta(days=2))


# ----------------------------------------------------------------------
# 7. skip_network → nothing fetched, nothing written
# ----------------------------------------------------------------------
def test_skip_network_fetches_nothing(csw_settings, fake_catalogue, fixed_now):
    settings = dataclasses.replace(csw_settings, skip_network=True)
    catalogue = fake_catalogue(total=10)

    meta = engine.run_once(settings, fetch=catalogue, now=fixed_now)

    assert catalogue.calls == []
    assert meta["pages"] == 0
    assert _store(settings).read() is None


# ----------------------------------------------------------------------
# 8. Default HTTP path: one client per invocation, closed afterwards
# ----------------------------------------------------------------------
def test_default_fetch_uses_shared_client(monkeypatch, csw_settings, fake_catalogue, fixed_now):
    clients = []

    class StubClient:
        def __init__(self, timeout):
            self.timeout = timeout
            self.closed = False
            clients.append(self)

        def close(self):
            self.closed = True

    catalogue = fake_catalogue(total=3)
    monkeypatch.setattr(engine, "HttpClient", StubClient)
    monkeypatch.setattr(engine, "fetch_page", catalogue)
    settings = dataclasses.replace(csw_settings, verbose=True)

    engine.run_once(settings, now=fixed_now, sink=lambda records: None)

    (client,) = clients
    assert client.closed is True
    kwargs = catalogue.calls[0]["kwargs"]
    assert kwargs["client"] is client
    assert kwargs["on_request"] is engine._log_request
    assert kwargs["on_response"] is engine._log_response


def test_make_store_follows_settings(csw_settings):
    assert isinstance(engine.make_store(csw_settings), SqliteCursorStore)
    env_settings = dataclasses.replace(csw_settings, cursor_store="env", cursor_env="X_CURSOR")
    store = engine.make_store(env_settings)
    assert store.var_name == "X_CURSOR"


# ----------------------------------------------------------------------
# 9. A 200 response that is not a result page fails the invocation
# ----------------------------------------------------------------------
def test_exception_report_page_leaves_cursor_untouched(csw_settings, fixed_now):
    window = Window(fixed_now - timedelta(hours=1), fixed_now)
    before = InProgress(window, 101)
    _store(csw_settings).write(before)
    report = (
        '<ows:ExceptionReport xmlns:ows="http://www.opengis.net/ows">'
        "<ows:Exception><ows:ExceptionText>Search failed</ows:ExceptionText></ows:Exception>"
        "</ows:ExceptionReport>"
    ).encode("utf-8")

    def fetch(endpoint, start, end, page_size, offset, **kwargs):
        return extract(report)

    with pytest.raises(ExtractionError):
        engine.run_once(csw_settings, fetch=fetch, now=fixed_now, sink=lambda records: None)

    assert _store(csw_settings).read() == before
