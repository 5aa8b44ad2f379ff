from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime

import requests

from .errors import TransportError
from .extractor import extract
from .http_client import HttpClient
from .models import PageResult
from .request import build_get_records

log = logging.getLogger(__name__)

DEFAULT_CSW_ENDPOINT = "https://gdk.gdi-de.org/geonetwork/srv/eng/csw"
DEFAULT_PAGE_SIZE = 100

_CHUNK_SIZE = 64 * 1024
_WS_RE = re.compile(r"\s+")

RequestHook = Callable[[str, str], None]  # (endpoint, request body)
ResponseHook = Callable[[str], None]  # (raw response body)


def curl_command(endpoint: str, body: str) -> str:
    """Single-line curl equivalent of a GetRecords POST, for request logging."""
    single_line = _WS_RE.sub(" ", body).strip().replace("'", "'\\''")
    return f"curl -s -X POST '{endpoint}' -H 'Content-Type: application/xml' --data-raw '{single_line}'"


def fetch_page(
    endpoint: str,
    start: datetime | str,
    end: datetime | str | None,
    page_size: int = DEFAULT_PAGE_SIZE,
    offset: int = 1,
    *,
    client: HttpClient | None = None,
    on_request: RequestHook | None = None,
    on_response: ResponseHook | None = None,
) -> PageResult:
    """
    One GetRecords round trip.

    The body is streamed into the extractor chunk by chunk unless an
    on_response hook asks for the raw text, in which case it is read whole.

    Raises:
        TransportError: network failure or non-2xx status (no retry here)
        ExtractionError: malformed response body
    """
    body = build_get_records(start, end, page_size, offset)
    if on_request:
        on_request(endpoint, body)

    own_client = client is None
    http = client or HttpClient()
    try:
        try:
            resp = http.post_xml(endpoint, body)
        except requests.RequestException as e:
            raise TransportError(f"CSW request failed: {e}") from e

        with resp:
            if not 200 <= resp.status_code < 300:
                raise TransportError(
                    f"CSW request failed: {resp.status_code} {resp.reason or ''}".rstrip(),
                    status_code=resp.status_code,
                )
            try:
                if on_response:
                    raw = resp.content
                    on_response(raw.decode(resp.encoding or "utf-8", errors="replace"))
                    page = extract(raw)
                else:
                    page = extract(resp.iter_content(chunk_size=_CHUNK_SIZE))
            except requests.RequestException as e:
                raise TransportError(f"CSW response interrupted: {e}", status_code=resp.status_code) from e
    finally:
        if own_client:
            http.close()

    log.debug(
        "CSW page offset=%d size=%d -> %d records (matched=%d next=%d)",
        offset,
        page_size,
        len(page.records),
        page.total_matched,
        page.next_offset,
    )
    return page
