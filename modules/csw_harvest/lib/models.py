from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from .utils import format_iso, parse_iso


@dataclass(frozen=True)
class Record:
    """
    One harvested catalogue entry (one closed gmd:MD_Metadata element).
    Any field may be None when the record did not carry it.
    """

    source: str | None = None  # citation identifier code, usually a URL
    title: str | None = None
    modified: str | None = None  # dateStamp text as delivered (Date or DateTime)

    @property
    def modified_at(self) -> datetime | None:
        return parse_iso(self.modified)

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, "title": self.title, "dateStamp": self.modified}


def has_more(next_offset: int, total_matched: int) -> bool:
    return 0 < next_offset <= total_matched


@dataclass(frozen=True)
class PageResult:
    """
    Records and pagination of one GetRecords response.
    `has_more` is derived so it always agrees with next_offset/total_matched.
    """

    records: tuple[Record, ...] = ()
    total_matched: int = 0
    returned: int = 0
    next_offset: int = 0

    @property
    def has_more(self) -> bool:
        return has_more(self.next_offset, self.total_matched)

    def pagination(self) -> dict[str, Any]:
        return {
            "totalMatched": self.total_matched,
            "returned": self.returned,
            "nextRecord": self.next_offset,
            "hasMore": self.has_more,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"records": [r.to_dict() for r in self.records], "pagination": self.pagination()}


@dataclass(frozen=True)
class Window:
    """Modification-date range [start, end). end=None means open-ended."""

    start: datetime
    end: datetime | None = None

    def describe(self) -> str:
        end = format_iso(self.end) if self.end else "now"
        return f"{format_iso(self.start)} -> {end}"


@dataclass(frozen=True)
class Idle:
    """No harvest in progress; the next window starts at last_completed_window_end."""

    last_completed_window_end: datetime


@dataclass(frozen=True)
class InProgress:
    """A window is partway through; resume exactly here."""

    window: Window
    resume_offset: int


Cursor = Union[Idle, InProgress]


@dataclass
class WindowResult:
    """
    Outcome of the pagination loop over one window.
    - exhausted: the last fetched page reported hasMore=false
    - next_offset: where to resume when a cap stopped the loop early (None if exhausted)
    """

    records: list[Record] = field(default_factory=list)
    pages_fetched: int = 0
    total_matched: int = 0
    next_offset: int | None = None
    exhausted: bool = False

    def summary(self) -> dict[str, int]:
        return {
            "totalMatched": self.total_matched,
            "totalFetched": len(self.records),
            "pagesRequested": self.pages_fetched,
        }
