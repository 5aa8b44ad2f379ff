# service/logging_utils.py
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from typing import Any

# Env-driven settings are read on every write so tests (and long-running
# processes) can redirect LOG_DIR without re-importing this module.
#   LOG_DIR                  base directory (default /app/local/logs)
#   ACTIVITY_LOG_PREFIX      default "activity"
#   ERROR_LOG_PREFIX         default "error"
#   ACTIVITY_LOG_MAX_BYTES   size-based rotation; <=0 disables it

# Key substrings to redact (case-insensitive)
_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
})
_REDACTED = "***REDACTED***"

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record to today's activity JSONL file.
    Never mutates the passed-in dict. Raises OSError on unrecoverable I/O.
    """
    _write_jsonl(_log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one structured error record, parallel to the activity log."""
    _write_jsonl(_log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def get_activity_log_path() -> str:
    return _log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity"))


def redact(record: dict[str, Any]) -> dict[str, Any]:
    """Redacted deep copy of `record`: values under secret-looking keys are masked."""
    return _redact_deep(record)


# ---- Internal helpers --------------------------------------------------------


def _log_dir() -> str:
    return os.getenv("LOG_DIR", "/app/local/logs")


def _log_path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _rotate_if_needed(path: str) -> None:
    """Size-based rotation; date rotation is inherent in the filename."""
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{_dt.datetime.now().strftime('%Y%m%d-%H%M%S')}")


def _redact_deep(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _REDACTED if isinstance(k, str) and any(p in k.lower() for p in _REDACT_KEYS) else _redact_deep(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v) for v in value]
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Redact, stamp with host/pid, and append a single line (POSIX O_APPEND).
    Serialization happens before any file operation.
    """
    payload = _redact_deep(record)
    payload["_meta"] = {"host": _HOSTNAME, "pid": _PID}
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    os.makedirs(os.path.dirname(path), exist_ok=True)
    _rotate_if_needed(path)

    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)
