from __future__ import annotations

import copy
import logging
from typing import Any

# Route structured records to the service's JSONL logs when the module runs
# inside the service; plain stdlib logging otherwise (scripts, tests).
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except ImportError:
    _logging_backend = None

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact obvious secret-like fields at top level.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record to the service JSONL log if available.
    Falls back to stdlib logging as structured info.
    """
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_activity_log(payload)
            return
        except OSError:
            logging.getLogger("csw_harvest.activity").debug("activity log write failed", exc_info=True)
    logging.getLogger("csw_harvest.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record to the service JSONL log if available.
    Falls back to stdlib logging as structured error.
    """
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_error_log(payload)
            return
        except OSError:
            logging.getLogger("csw_harvest.error").debug("error log write failed", exc_info=True)
    logging.getLogger("csw_harvest.error").error(payload)
