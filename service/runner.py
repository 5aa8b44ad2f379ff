# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from service import logging_utils

log = logging.getLogger(__name__)

_TRUE_WORDS = frozenset({"true", "t", "yes", "y", "on"})
_FALSE_WORDS = frozenset({"false", "f", "no", "n", "off"})

# Names a variable the env cursor store reads itself.
_PASSTHROUGH_ENV_KEYS = frozenset({"cursor_env"})


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ---- kwarg coercion ----------------------------------------------------------


def _coerce_scalar(text: str) -> Any:
    """'yes' -> True, '50' -> 50, '1.5' -> 1.5; anything else stays a string.

    '1' and '0' are numbers here, never booleans: page budgets like
    max_pages=1 must reach Settings as ints.
    """
    low = text.lower()
    if low in _TRUE_WORDS:
        return True
    if low in _FALSE_WORDS:
        return False
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _coerce_value(key: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = value.strip()
    if key.endswith("_env") and key not in _PASSTHROUGH_ENV_KEYS:
        return os.getenv(text, "")
    if text[:1] in ("{", "[") and text[-1:] in ("}", "]"):
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            log.debug("kwarg %r looks like JSON but does not parse; kept as text", key)
    return _coerce_scalar(text)


def normalize_kwargs(kwargs: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Turn job kwargs (often strings from CLI k=v pairs or YAML) into the
    types a module's run() expects.

    Keys ending in "_env" hold an environment variable NAME and are replaced
    by that variable's value, except the keys in _PASSTHROUGH_ENV_KEYS.
    JSON-looking strings are parsed; bool and number words are coerced.
    """
    return {k: _coerce_value(str(k), v) for k, v in (kwargs or {}).items()}


# ---- module resolution and results -------------------------------------------


def _resolve_entrypoint(module_path: str) -> Callable[..., Any]:
    mod = importlib.import_module(module_path)
    entry = getattr(mod, "run", None)
    if not callable(entry):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return entry


@dataclass
class RunResult:
    ok: bool
    message: str
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_return(cls, value: Any) -> RunResult:
        """A module may return None, a message string, or a meta dict."""
        if value is None:
            return cls(ok=True, message="OK")
        if isinstance(value, str):
            return cls(ok=True, message=value)
        if isinstance(value, dict):
            return cls(ok=True, message=str(value.get("message", "OK")), meta=value)
        raise TypeError(f"run() returned {type(value).__name__}; expected None, str or dict")

    @classmethod
    def from_exception(cls, exc: BaseException) -> RunResult:
        meta: dict[str, Any] = {"exception_type": type(exc).__name__}
        status = getattr(exc, "status_code", None)
        if status is not None:
            meta["status_code"] = status
        return cls(ok=False, message=str(exc), meta=meta)


def _record_run(record: dict[str, Any]) -> None:
    try:
        logging_utils.write_activity_log(record)
    except OSError as e:
        log.error("Failed to write activity JSONL: %s", e)


# ---- public API --------------------------------------------------------------


def run_module_once(
    module: str,
    kwargs: dict[str, Any] | None = None,
    trigger_type: str = "scheduled",
    job_context: dict[str, Any] | None = None,
    timeout_sec: int | None = None,
) -> tuple[dict[str, Any] | None, str]:
    """
    Import `module`, call its run(**kwargs) once and log one activity row.

    Returns (meta_or_none, run_id). Exceptions from the module, and a
    TimeoutError when timeout_sec elapses, are re-raised after logging.
    """
    run_id = uuid.uuid4().hex
    context = {"run_id": run_id, "module": module, "trigger_type": trigger_type, "started_at": _stamp()}
    for k, v in (job_context or {}).items():
        context.setdefault(k, v)

    kw = normalize_kwargs(kwargs)
    entry = _resolve_entrypoint(module)

    failure: BaseException | None = None
    started = time.monotonic()
    try:
        # The pool joins its worker on exit, so a timed-out harvest still
        # finishes before the next invocation can start.
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"run-{run_id[:8]}") as pool:
            value = pool.submit(entry, **kw).result(timeout=timeout_sec or None)
        result = RunResult.from_return(value)
    except FutureTimeout:
        failure = TimeoutError(f"Module run timed out after {timeout_sec}s")
        result = RunResult(ok=False, message=str(failure), meta={"timeout_sec": timeout_sec})
    except Exception as e:
        failure = e
        result = RunResult.from_exception(e)
    duration_ms = int((time.monotonic() - started) * 1000)

    _record_run({
        "ts": _stamp(),
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": result.ok,
        "message": result.message,
        "duration_ms": duration_ms,
        "context": context,
        "kwargs": kw,
        "meta": result.meta,
    })

    if failure is not None:
        raise failure
    return (result.meta or None), run_id
