# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from datetime import tzinfo as _dt_tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

# Harvest jobs rely on "one active invocation per job": a job that is still
# running when its next fire time comes is skipped, and missed fires coalesce.
JOB_DEFAULTS: dict[str, Any] = {"coalesce": True, "max_instances": 1}


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler.triggers.base.BaseTrigger
    module: str
    kwargs: dict[str, Any]
    timeout_sec: int | None
    max_instances: int
    coalesce: bool
    misfire_grace_time: int | None
    summary: str | None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """A small façade around APScheduler so the CLI can manage lifecycle cleanly."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; jobs in-flight are allowed to finish.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """True if stopped before timeout."""
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def build_scheduler(cfg: dict[str, Any]) -> BackgroundScheduler:
    """
    Build a (not yet started) BackgroundScheduler with every valid job of `cfg`.
    Jobs with a bad definition are logged and skipped.

    APScheduler 3.x prefers a pytz scheduler timezone; triggers may carry
    their own zoneinfo timezone.
    """
    tz = _resolve_timezone(cfg)
    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults=dict(JOB_DEFAULTS),
        executors={"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 10))},
        jobstores={"default": MemoryJobStore()},
    )

    jobs_cfg = cfg.get("jobs", [])
    if not isinstance(jobs_cfg, list):
        raise ValueError("config.jobs must be a list")

    for raw in jobs_cfg:
        try:
            spec = _make_job_spec(raw, tz=tz)
        except (KeyError, TypeError, ValueError):
            LOG.exception("Skipping job due to config error: %r", raw)
            continue
        _add_job(scheduler, spec)

    return scheduler


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load configuration, build an APScheduler instance, add jobs, and start.
    Returns a SchedulerController that exposes stop() and join().
    """
    scheduler = build_scheduler(config_schema.load_config(config_path))
    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


# ---- Helpers ----------------------------------------------------------------


def preview_trigger(trigger: Any, tz: Any, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Next `count` fire times of `trigger`, strictly after `start` (default now).
    """
    now = start or datetime.now(tz=tz)
    prev = now
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _resolve_timezone(cfg: dict[str, Any]) -> Any:
    """config['timezone'], else env TZ, else UTC; as a pytz timezone."""
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def _make_job_spec(raw: dict[str, Any], tz: Any) -> JobSpec:
    jid = str(raw.get("id") or raw.get("name") or _require(raw, "module"))
    return JobSpec(
        id=jid,
        trigger=_build_trigger(_require(raw, "trigger"), tz),
        module=_require(raw, "module"),
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        max_instances=_int_or(raw.get("max_instances"), JOB_DEFAULTS["max_instances"]),
        coalesce=bool(raw.get("coalesce", JOB_DEFAULTS["coalesce"])),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        summary=raw.get("summary") or raw.get("description"),
    )


def _tz(z: Any) -> _dt_tzinfo | None:
    if not z:
        return None
    if isinstance(z, _dt_tzinfo):
        return z
    return ZoneInfo(str(z))


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     "*/15 * * * *"}  # crontab, scheduler tz

    A trigger block's own 'timezone' wins over the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    default_tz = _tz(tz)

    present = [k for k in config_schema.TRIGGER_FIELDS if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron'} must be provided")

    if present[0] == "interval":
        return _interval_trigger(trig_def["interval"], default_tz)
    return _cron_trigger(trig_def["cron"], default_tz)


def _interval_trigger(spec: Any, default_tz: _dt_tzinfo | None) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")

    allowed = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    def _as_int_ge0(name: str) -> int:
        try:
            v = int(spec.get(name, 0))
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        return v

    iv = {k: _as_int_ge0(k) for k in ("weeks", "days", "hours", "minutes", "seconds")}
    kwargs: dict[str, Any] = {k: v for k, v in iv.items() if v}
    if not kwargs:
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    jitter = _as_int_ge0("jitter")
    if jitter:
        kwargs["jitter"] = jitter
    for k in ("start_date", "end_date"):
        if k in spec:
            kwargs[k] = spec[k]

    return IntervalTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **kwargs)


def _cron_trigger(spec: Any, default_tz: _dt_tzinfo | None) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.strip().split()
        if len(fields) not in (5, 6):
            raise ValueError(f"cron string must have 5 or 6 fields (got {len(fields)}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)

    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")

    allowed = {
        "second",
        "minute",
        "hour",
        "day",
        "day_of_week",
        "month",
        "timezone",
        "start_date",
        "end_date",
        "jitter",
    }
    unknown = set(spec) - allowed
    if unknown:
        raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")

    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        hour=spec.get("hour"),
        day=spec.get("day"),
        day_of_week=spec.get("day_of_week"),
        month=spec.get("month"),
        start_date=spec.get("start_date"),
        end_date=spec.get("end_date"),
        jitter=spec.get("jitter"),
        timezone=_tz(spec.get("timezone")) or default_tz,
    )


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register the job with a wrapper that runs the module via
    runner.run_module_once(trigger_type="scheduled"), logs start/finish and
    writes a job_run activity record. Exceptions end the run, never the
    scheduler; the next fire re-runs the module from its persisted state.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            meta, _run_id = runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs),
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
                timeout_sec=spec.timeout_sec,
            )
        except Exception:
            LOG.exception("Job[%s] raised an exception.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return

        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs: %s", spec.id, duration, (meta or {}).get("message", "OK"))
        _write_activity(spec, status="ok", duration_s=duration)

    if os.getenv("SCHEDULER_PREVIEW") == "1":
        preview = preview_trigger(spec.trigger, scheduler.timezone, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        print(f"PREVIEW[{spec.id}]:", ", ".join(t.isoformat() for t in preview) if preview else "(none)")

    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=spec.max_instances,
        coalesce=spec.coalesce,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    LOG.debug(
        "Registered job[%s] (module=%s, summary=%r, trigger=%s, max_instances=%s, coalesce=%s)",
        spec.id,
        spec.module,
        spec.summary,
        spec.trigger,
        spec.max_instances,
        spec.coalesce,
    )


def _write_activity(spec: JobSpec, status: str, duration_s: float) -> None:
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "summary": spec.summary,
            },
        })
    except OSError:
        LOG.warning("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _require(d: dict[str, Any], key: str) -> Any:
    if key not in d or d[key] in (None, ""):
        raise ValueError(f"Missing required key: {key}")
    return d[key]


def _int_or(v: Any, default: int | None) -> int | None:
    """Return int(v) or default if v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _build_job_context(spec: JobSpec) -> dict[str, Any]:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }
