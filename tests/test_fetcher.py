# tests/test_fetcher.py
from unittest import mock

import pytest
import requests

from modules.csw_harvest.lib import fetcher
from modules.csw_harvest.lib.errors import ExtractionError, TransportError
from modules.csw_harvest.lib.http_client import HttpClient

ENDPOINT = "https://csw.example.org/csw"


class StubResponse:
    """Just enough of requests.Response for fetch_page."""

    def __init__(self, body: bytes = b"", status_code: int = 200, reason: str = "OK", broken_stream: bool = False):
        self._body = body
        self.status_code = status_code
        self.reason = reason
        self.encoding = "utf-8"
        self.broken_stream = broken_stream
        self.closed = False

    @property
    def content(self) -> bytes:
        return self._body

    def iter_content(self, chunk_size=1):
        if self.broken_stream:
            yield self._body[:10]
            raise requests.exceptions.ChunkedEncodingError("connection reset")
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i : i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


def _client_returning(resp):
    client = mock.Mock(spec=HttpClient)
    client.post_xml.return_value = resp
    return client


def test_fetch_page_posts_request_and_extracts(csw_xml):
    body = csw_xml.response([csw_xml.record("urn:a", "A", "2025-01-01T00:00:00Z")], matched=3, next_record=2)
    resp = StubResponse(body.encode("utf-8"))
    client = _client_returning(resp)

    page = fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None, page_size=1, offset=1, client=client)

    assert [r.source for r in page.records] == ["urn:a"]
    assert page.next_offset == 2 and page.has_more
    url, sent_body = client.post_xml.call_args.args
    assert url == ENDPOINT
    assert 'maxRecords="1"' in sent_body and 'startPosition="1"' in sent_body
    assert resp.closed is True
    client.close.assert_not_called()


def test_hooks_see_request_and_raw_response(csw_xml):
    body = csw_xml.response([], matched=0)
    client = _client_returning(StubResponse(body.encode("utf-8")))
    seen = {}

    fetcher.fetch_page(
        ENDPOINT,
        "2025-01-01T00:00:00Z",
        None,
        client=client,
        on_request=lambda endpoint, req: seen.update(endpoint=endpoint, request=req),
        on_response=lambda raw: seen.update(response=raw),
    )

    assert seen["endpoint"] == ENDPOINT
    assert "<csw:GetRecords" in seen["request"]
    assert seen["response"] == body


@pytest.mark.parametrize("status", [400, 404, 500, 503])
def test_non_2xx_raises_transport_error_with_status(status):
    client = _client_returning(StubResponse(b"<error/>", status_code=status, reason="Nope"))
    with pytest.raises(TransportError) as ei:
        fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None, client=client)
    assert ei.value.status_code == status
    assert str(status) in str(ei.value)


def test_network_failure_raises_transport_error_without_status():
    client = mock.Mock(spec=HttpClient)
    client.post_xml.side_effect = requests.ConnectionError("dns failure")
    with pytest.raises(TransportError) as ei:
        fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None, client=client)
    assert ei.value.status_code is None


def test_interrupted_stream_raises_transport_error(csw_xml):
    body = csw_xml.response([csw_xml.record("urn:a")], matched=1).encode("utf-8")
    client = _client_returning(StubResponse(body, broken_stream=True))
    with pytest.raises(TransportError):
        fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None, client=client)


def test_malformed_body_raises_extraction_error():
    client = _client_returning(StubResponse(b"<csw:GetRecordsResponse><oops>"))
    with pytest.raises(ExtractionError):
        fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None, client=client)


def test_own_client_is_closed(monkeypatch, csw_xml):
    body = csw_xml.response([], matched=0).encode("utf-8")
    closed = []
    monkeypatch.setattr(HttpClient, "post_xml", lambda self, url, body_: StubResponse(body))
    monkeypatch.setattr(HttpClient, "close", lambda self: closed.append(True))

    fetcher.fetch_page(ENDPOINT, "2025-01-01T00:00:00Z", None)
    assert closed == [True]


def test_http_client_posts_xml_streaming():
    client = HttpClient(timeout=12)
    with mock.patch.object(client.session, "post", return_value="resp") as post:
        assert client.post_xml(ENDPOINT, "<x/>") == "resp"

    kwargs = post.call_args.kwargs
    assert post.call_args.args == (ENDPOINT,)
    assert kwargs["headers"]["Content-Type"] == "application/xml"
    assert kwargs["data"] == b"<x/>"
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == 12.0
    client.close()


def test_http_client_does_not_retry_by_default():
    client = HttpClient()
    adapter = client.session.get_adapter(ENDPOINT)
    assert adapter.max_retries.total == 0
    client.close()


def test_curl_command_is_single_line():
    cmd = fetcher.curl_command(ENDPOINT, "<a>\n  <b>it's</b>\n</a>")
    assert "\n" not in cmd
    assert cmd.startswith(f"curl -s -X POST '{ENDPOINT}' -H 'Content-Type: application/xml' --data-raw '")
    assert "<a> <b>it'\\''s</b> </a>" in cmd
