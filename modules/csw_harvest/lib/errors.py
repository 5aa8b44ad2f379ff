from __future__ import annotations


class HarvestError(Exception):
    """Base exception for harvest failures."""


class TransportError(HarvestError):
    """
    The CSW endpoint could not be reached or answered with a non-2xx status.
    `status_code` is None for network-level failures (DNS, connect, timeout).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(HarvestError):
    """
    A response body could not be turned into a PageResult.
    `diagnostic` carries the parser's message (line/column where available).
    """

    def __init__(self, diagnostic: str) -> None:
        super().__init__(f"XML parsing error: {diagnostic}")
        self.diagnostic = diagnostic
