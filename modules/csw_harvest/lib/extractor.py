"""
Streaming extractor for CSW GetRecords responses (ISO 19139 / gmd output schema).

The response is never materialized as a tree: lxml drives a parser *target*
(start/data/end callbacks) while the body is fed in chunks. State kept:
  - the path stack of open tag names
  - the record currently being filled (or None)
  - one bounded text accumulator, reset on every open tag

Namespace policy: lxml reports names in Clark notation ("{uri}local"). Every
tag and attribute name is rewritten to "<prefix>:<local>" using the fixed
NAMESPACES table before any comparison, whatever prefixes the server used.
Names in namespaces outside the table keep their Clark form and therefore
never match a pattern.

Fields are single-valued: the first non-empty occurrence wins.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable, Sequence

from lxml import etree

from .errors import ExtractionError
from .models import PageResult, Record

log = logging.getLogger(__name__)

NAMESPACES: dict[str, str] = {
    "http://www.opengis.net/cat/csw/2.0.2": "csw",
    "http://www.isotc211.org/2005/gmd": "gmd",
    "http://www.isotc211.org/2005/gco": "gco",
    "http://www.isotc211.org/2005/gmx": "gmx",
    "http://www.isotc211.org/2005/srv": "srv",
    "http://www.opengis.net/ogc": "ogc",
    "http://www.opengis.net/ows": "ows",
    "http://www.opengis.net/ows/1.1": "ows",
}

SEARCH_RESULTS_TAG = "csw:SearchResults"
EXCEPTION_TEXT_TAG = "ows:ExceptionText"
RECORD_ROOT_TAG = "gmd:MD_Metadata"

# Upper bound on characters kept for a single node's text.
MAX_TEXT_CHARS = 64 * 1024

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")


class Field(enum.Enum):
    SOURCE = "source"
    TITLE = "title"
    MODIFIED = "modified"


# (suffix pattern, field). "*" matches exactly one element of any name.
# Evaluated in order against the tail of the path stack; first match wins.
FIELD_PATTERNS: tuple[tuple[str, Field], ...] = (
    ("gmd:citation/gmd:CI_Citation/gmd:identifier/*/gmd:code/gco:CharacterString", Field.SOURCE),
    ("gmd:citation/gmd:CI_Citation/gmd:identifier/*/gmd:code/gmx:Anchor", Field.SOURCE),
    ("gmd:dateStamp/gco:DateTime", Field.MODIFIED),
    ("gmd:dateStamp/gco:Date", Field.MODIFIED),
    ("gmd:citation/gmd:CI_Citation/gmd:title/gco:CharacterString", Field.TITLE),
)

_COMPILED_PATTERNS: tuple[tuple[tuple[str, ...], Field], ...] = tuple(
    (tuple(pattern.split("/")), fld) for pattern, fld in FIELD_PATTERNS
)


def canonical_name(name: str) -> str:
    """'{http://www.isotc211.org/2005/gmd}title' -> 'gmd:title'; unqualified names pass through."""
    if not name.startswith("{"):
        return name
    uri, _, local = name[1:].partition("}")
    prefix = NAMESPACES.get(uri)
    return f"{prefix}:{local}" if prefix else name


def match_field(path: str | Sequence[str]) -> Field | None:
    """
    Return the field whose suffix pattern matches `path`, or None.
    `path` is either a '/'-joined string or a sequence of canonical tag names.
    """
    segments = tuple(path.split("/")) if isinstance(path, str) else tuple(path)
    for pattern, fld in _COMPILED_PATTERNS:
        n = len(pattern)
        if n > len(segments):
            continue
        tail = segments[-n:]
        if all(p == "*" or p == s for p, s in zip(pattern, tail)):
            return fld
    return None


def _int_attr(attrs: dict[str, str], name: str) -> int:
    try:
        return int(str(attrs.get(name, "0")).strip())
    except ValueError:
        return 0


class ResultsExtractor:
    """
    lxml parser target. Receives open/text/close events in document order and
    builds the PageResult returned from close().
    """

    def __init__(self) -> None:
        self._path: list[str] = []
        self._current: dict[Field, str] | None = None
        self._text: list[str] = []
        self._text_len = 0
        self._records: list[Record] = []
        self._total_matched = 0
        self._returned = 0
        self._next_offset = 0
        self.saw_search_results = False
        self.exception_text: str | None = None

    # ---- parser target protocol ----
    def start(self, tag: str, attrib: dict[str, str]) -> None:
        name = canonical_name(tag)
        self._path.append(name)
        self._text = []
        self._text_len = 0

        if name == SEARCH_RESULTS_TAG:
            self.saw_search_results = True
            attrs = {canonical_name(k): v for k, v in attrib.items()}
            self._total_matched = _int_attr(attrs, "numberOfRecordsMatched")
            self._returned = _int_attr(attrs, "numberOfRecordsReturned")
            self._next_offset = _int_attr(attrs, "nextRecord")
        elif name == RECORD_ROOT_TAG:
            self._current = {}

    def data(self, text: str) -> None:
        room = MAX_TEXT_CHARS - self._text_len
        if room <= 0:
            return
        chunk = text[:room]
        self._text.append(chunk)
        self._text_len += len(chunk)

    def end(self, tag: str) -> None:
        name = canonical_name(tag)

        if name == EXCEPTION_TEXT_TAG and self.exception_text is None:
            self.exception_text = "".join(self._text).strip() or None

        if self._current is not None:
            fld = match_field(self._path)
            if fld is not None and fld not in self._current:
                value = "".join(self._text).strip()
                if value:
                    self._current[fld] = value

            if name == RECORD_ROOT_TAG:
                self._records.append(
                    Record(
                        source=self._current.get(Field.SOURCE),
                        title=self._current.get(Field.TITLE),
                        modified=self._current.get(Field.MODIFIED),
                    )
                )
                self._current = None

        if self._path:
            self._path.pop()

    def close(self) -> PageResult:
        return PageResult(
            records=tuple(self._records),
            total_matched=self._total_matched,
            returned=self._returned,
            next_offset=self._next_offset,
        )


def _new_parser(target: ResultsExtractor) -> etree.XMLParser:
    return etree.XMLParser(
        target=target,
        resolve_entities=False,
        no_network=True,
    )


def extract(body: bytes | str | Iterable[bytes]) -> PageResult:
    """
    Parse a GetRecords response body (whole, or as an iterable of byte chunks)
    into a PageResult.

    Raises ExtractionError on malformed or empty input, and on a well-formed
    body without csw:SearchResults (e.g. an ows:ExceptionReport served with
    HTTP 200); no partial result is ever returned.

    A str body is already decoded, so its XML declaration is dropped before
    feeding: an encoding named there no longer describes the text.
    """
    if isinstance(body, str):
        chunks: Iterable[bytes] = (_XML_DECLARATION.sub("", body, count=1).encode("utf-8"),)
    elif isinstance(body, (bytes, bytearray)):
        chunks = (bytes(body),)
    else:
        chunks = body

    target = ResultsExtractor()
    parser = _new_parser(target)
    fed = False
    try:
        for chunk in chunks:
            if not chunk:
                continue
            parser.feed(chunk)
            fed = True
        if not fed:
            raise ExtractionError("empty response body")
        result: PageResult = parser.close()
    except etree.XMLSyntaxError as e:
        raise ExtractionError(str(e)) from e

    if not target.saw_search_results:
        detail = f" (server said: {target.exception_text})" if target.exception_text else ""
        raise ExtractionError(f"response has no csw:SearchResults element{detail}")

    if result.returned != len(result.records):
        log.warning(
            "numberOfRecordsReturned=%d but %d records extracted",
            result.returned,
            len(result.records),
        )
    return result
