from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlsplit

from .fetcher import DEFAULT_CSW_ENDPOINT
from .utils import getenv_str, truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigurationError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings. Fatal before any network call."""


CURSOR_STORES = ("sqlite", "env")


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class Settings:
    """
    Canonical configuration for one 'csw_harvest' invocation.

    page budget (max_pages) and delay_seconds trade throughput against the
    host's per-invocation time limit; they are configuration, not state.
    """

    endpoint: str = DEFAULT_CSW_ENDPOINT
    target: str = ""  # cursor key; derived from the endpoint host when empty

    # Paging
    page_size: int = 200
    max_pages: int = 1
    max_records: int | None = None
    delay_seconds: float = 60.0

    # Window clock
    lookback_minutes: int = 15
    time_offset_days: int = 0

    # Cursor persistence
    cursor_store: str = "sqlite"
    sqlite_path: str = "/app/local/state/csw_harvest.db"
    cursor_env: str = "CSW_CURSOR"

    # Runtime behavior
    timeout: float = 30.0
    verbose: bool = False
    skip_network: bool = False

    @property
    def lookback(self) -> timedelta:
        return timedelta(minutes=self.lookback_minutes)

    @property
    def time_offset(self) -> timedelta:
        return timedelta(days=self.time_offset_days)

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            endpoint: str = GDI-DE CSW        (env CSW_ENDPOINT)
            endpoint_env: str                 (endpoint value resolved by the runner from a named env var)
            target: str = <endpoint host>
            page_size: int = 200
            max_pages: int = 1
            max_records: int | None = None
            delay_seconds: float = 60
            lookback_minutes: int = 15
            time_offset_days: int = 0         (env TIME_OFFSET_DAYS)
            cursor_store: "sqlite" | "env" = "sqlite"
            sqlite_path: str                  (env CSW_SQLITE_PATH)
            cursor_env: str = "CSW_CURSOR"
            timeout: float = 30
            verbose: bool = false
            skip_network: bool = false
        """
        kw = dict(kwargs or {})

        endpoint = str(
            kw.get("endpoint") or kw.get("endpoint_env") or getenv_str("CSW_ENDPOINT") or DEFAULT_CSW_ENDPOINT
        ).strip()
        target = str(kw.get("target") or "").strip() or _target_from_endpoint(endpoint)

        settings = cls(
            endpoint=endpoint,
            target=target,
            page_size=_to_int(kw.get("page_size"), 200, "page_size"),
            max_pages=_to_int(kw.get("max_pages"), 1, "max_pages"),
            max_records=_to_optional_int(kw.get("max_records"), "max_records"),
            delay_seconds=_to_float(kw.get("delay_seconds"), 60.0, "delay_seconds"),
            lookback_minutes=_to_int(kw.get("lookback_minutes"), 15, "lookback_minutes"),
            time_offset_days=_to_int(
                kw.get("time_offset_days", getenv_str("TIME_OFFSET_DAYS")), 0, "time_offset_days"
            ),
            cursor_store=str(kw.get("cursor_store") or "sqlite").strip().lower(),
            sqlite_path=str(
                kw.get("sqlite_path") or getenv_str("CSW_SQLITE_PATH") or "/app/local/state/csw_harvest.db"
            ),
            cursor_env=str(kw.get("cursor_env") or "CSW_CURSOR").strip(),
            timeout=_to_float(kw.get("timeout"), 30.0, "timeout"),
            verbose=truthy(kw.get("verbose")),
            skip_network=truthy(kw.get("skip_network")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _target_from_endpoint(endpoint: str) -> str:
    parts = urlsplit(endpoint)
    raw = f"{parts.netloc}{parts.path}" or endpoint
    s = re.sub(r"[^0-9a-zA-Z]+", "_", raw.lower())
    return re.sub(r"_{2,}", "_", s).strip("_")


def _to_int(value: Any, default: int, field: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"'{field}' must be an integer (got {value!r}).") from err


def _to_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return _to_int(value, 0, field)


def _to_float(value: Any, default: float, field: str) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigurationError(f"'{field}' must be a number (got {value!r}).") from err


def _validate_settings(s: Settings) -> None:
    parts = urlsplit(s.endpoint)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"'endpoint' must be an http(s) URL (got {s.endpoint!r}).")
    if not s.target:
        raise ConfigurationError("'target' cannot be empty.")

    if s.page_size <= 0:
        raise ConfigurationError("'page_size' must be >= 1.")
    if s.max_pages <= 0:
        raise ConfigurationError("'max_pages' must be >= 1.")
    if s.max_records is not None and s.max_records <= 0:
        raise ConfigurationError("'max_records' must be >= 1 when provided.")
    if s.delay_seconds < 0:
        raise ConfigurationError("'delay_seconds' must be >= 0.")
    if s.lookback_minutes < 0:
        raise ConfigurationError("'lookback_minutes' must be >= 0.")
    if s.timeout <= 0:
        raise ConfigurationError("'timeout' must be > 0.")

    if s.cursor_store not in CURSOR_STORES:
        raise ConfigurationError(f"'cursor_store' must be one of {', '.join(CURSOR_STORES)}.")
    if s.cursor_store == "sqlite" and not s.sqlite_path.strip():
        raise ConfigurationError("'sqlite_path' cannot be empty.")
    if s.cursor_store == "env" and not s.cursor_env:
        raise ConfigurationError("'cursor_env' cannot be empty.")
