# service/config_schema.py
"""
Job configuration for the scheduler: loading (JSON or YAML) and validation.

Shape:
    timezone: "UTC"                      # optional, falls back to $TZ then UTC
    jobs:
      - id: gdi-de                       # optional, derived from name/module
        module: modules.csw_harvest
        trigger: {cron: "*/15 * * * *"}  # or {interval: {minutes: 15}}
        kwargs: {max_pages: 1}
        timeout_sec: 600                 # optional
        max_instances / coalesce / misfire_grace_time / summary   # optional

A job module may expose `validate_kwargs(kwargs)`; validate() calls it so a
bad page size or endpoint is reported before the scheduler starts.
"""

from __future__ import annotations

import importlib
import importlib.util
import json
import logging
import os
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


TRIGGER_FIELDS = ("cron", "interval")
_INTERVAL_FIELDS = ("weeks", "days", "hours", "minutes", "seconds", "jitter")

# field -> zero allowed
_JOB_INT_FIELDS = {"timeout_sec": True, "max_instances": False, "misfire_grace_time": True}
_JOB_STR_FIELDS = ("summary", "description")


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Read the config from `path`, else $CONFIG_PATH, else an empty job list.

    Job ids are derived and numeric/bool job options coerced here, so the
    scheduler and CLI see the same normalized jobs.
    """
    source = path or os.environ.get("CONFIG_PATH")
    if source:
        cfg = _read_any(source)
    else:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        cfg = {}

    jobs = cfg.get("jobs")
    cfg["jobs"] = [_normalize_job(job, idx) for idx, job in enumerate(jobs if isinstance(jobs, list) else [])]
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError describing the first problem found."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")
    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        raise ConfigError("Config needs a top-level 'jobs' list.")
    if cfg.get("timezone") is not None and not isinstance(cfg["timezone"], str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen: set[str] = set()
    for idx, raw in enumerate(jobs):
        job = _normalize_job(raw, idx)
        job_id = job["id"]
        if not isinstance(job.get("module"), str) or not job["module"].strip():
            raise ConfigError(f"Job {idx}: 'module' is required and must be a non-empty string.")
        if job_id in seen:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen.add(job_id)

        _validate_trigger(job.get("trigger"), job_id)

        kwargs = job.get("kwargs", {})
        if not isinstance(kwargs, dict):
            raise ConfigError(f"Job '{job_id}': 'kwargs' must be a dict if provided.")
        for name in _JOB_STR_FIELDS:
            if name in job and not isinstance(job[name], str):
                raise ConfigError(f"Job '{job_id}': '{name}' must be a string if provided.")

        _validate_module_kwargs(job["module"], kwargs, job_id)


# ---- helpers -----------------------------------------------------------------


def _normalize_job(job: Any, idx: int) -> dict[str, Any]:
    if not isinstance(job, dict):
        raise ConfigError(f"Job at index {idx} must be an object/dict.")
    out = dict(job)
    out["id"] = _derive_job_id(out, idx)
    if "coalesce" in out:
        out["coalesce"] = _to_bool(out["coalesce"], field="coalesce", job_id=out["id"])
    for name, allow_zero in _JOB_INT_FIELDS.items():
        if name in out:
            out[name] = _to_int(out[name], field=name, job_id=out["id"], allow_zero=allow_zero)
    return out


def _validate_trigger(trigger: Any, job_id: str) -> None:
    if not isinstance(trigger, dict):
        raise ConfigError(f"Job '{job_id}': 'trigger' is required and must be an object.")

    present = [k for k in TRIGGER_FIELDS if trigger.get(k) is not None]
    if len(present) != 1:
        raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(TRIGGER_FIELDS)}.")

    value = trigger[present[0]]
    if present[0] == "cron":
        if isinstance(value, str):
            if len(value.split()) not in (5, 6):
                raise ConfigError(f"Job '{job_id}': cron string must have 5 or 6 fields.")
        elif not isinstance(value, dict):
            raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")
        return

    if not isinstance(value, dict):
        raise ConfigError(f"Job '{job_id}': interval must be an object of time kwargs.")
    for k in _INTERVAL_FIELDS:
        if k in value:
            _to_int(value[k], field=f"interval.{k}", job_id=job_id, allow_zero=True)


def _validate_module_kwargs(module: str, kwargs: dict[str, Any], job_id: str) -> None:
    try:
        found = importlib.util.find_spec(module) is not None
    except ModuleNotFoundError:
        found = False
    if not found:
        logger.debug("Job '%s': module %s not importable here; kwargs not checked", job_id, module)
        return

    check = getattr(importlib.import_module(module), "validate_kwargs", None)
    if check is None:
        return
    try:
        check(kwargs)
    except ValueError as e:
        raise ConfigError(f"Job '{job_id}': invalid kwargs: {e}") from e


def _derive_job_id(job: dict[str, Any], idx: int) -> str:
    for key in ("id", "name", "module"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _to_bool(value: Any, *, field: str, job_id: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Job '{job_id}': '{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    is_yaml = path.lower().endswith((".yml", ".yaml"))
    try:
        data = (yaml.safe_load(text) or {}) if is_yaml else json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Invalid {'YAML' if is_yaml else 'JSON'} in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return data
