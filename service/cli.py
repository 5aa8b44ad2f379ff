# service/cli.py
"""
Command-line entrypoints for the harvester container.

  serve                         run the scheduler until SIGINT/SIGTERM
  run MODULE [--kwargs k=v ..]  one ad-hoc invocation through the runner
  list-jobs                     configured jobs with their triggers
  validate-config               exit 1 when the job config is invalid
  show-cursor [--job ID]        the persisted cursor of a csw_harvest job
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from modules.csw_harvest.lib.config import ConfigurationError, Settings
from modules.csw_harvest.lib.cursor import CursorFormatError, encode_cursor
from modules.csw_harvest.lib.engine import make_store
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

_EMPTY_CURSOR = {"lastRun": None, "pending": None}


def _ensure_logging() -> None:
    if logging.getLogger().handlers:
        return
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _split_pairs(pairs: Iterable[str] | None) -> dict[str, str]:
    """k=v strings to a dict of raw strings; typing is left to the runner."""
    out: dict[str, str] = {}
    for raw in pairs or []:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        out[key.strip()] = value.strip()
    return out


def _print_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers)]
    sep = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def line(cells: Sequence[str]) -> str:
        return "| " + " | ".join(c.ljust(w) for c, w in zip(cells, widths)) + " |"

    print(sep)
    print(line(headers))
    print(sep)
    for r in rows:
        print(line(r))
    print(sep)


def _describe_trigger(trigger: dict[str, Any]) -> str:
    if "cron" in trigger:
        cron = trigger["cron"]
        return f"cron {cron}" if isinstance(cron, str) else "cron " + json.dumps(cron, sort_keys=True)
    if isinstance(trigger.get("interval"), dict):
        return "every " + ", ".join(f"{v} {k}" for k, v in sorted(trigger["interval"].items()) if k != "timezone")
    return "?"


def _job_settings(cfg: dict[str, Any], job_id: str | None, overrides: dict[str, str]) -> Settings:
    kwargs: dict[str, Any] = {}
    if job_id:
        job = next((j for j in cfg.get("jobs") or [] if j.get("id") == job_id), None)
        if job is None:
            raise ConfigurationError(f"no job with id {job_id!r}")
        kwargs.update(job.get("kwargs") or {})
    kwargs.update(overrides)
    return Settings.from_env_and_kwargs(_runner.normalize_kwargs(kwargs))


# ---- subcommands -------------------------------------------------------------


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        _config_schema.validate(_config_schema.load_config(args.config))
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print("OK: configuration is valid.")
    return 0


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    jobs = cfg.get("jobs") or []
    if not jobs:
        print("No jobs found in config.")
        return 0
    rows = [
        (str(j.get("id")), str(j.get("module")), _describe_trigger(j.get("trigger") or {}), str(j.get("summary") or ""))
        for j in jobs
    ]
    _print_table(("JOB", "MODULE", "TRIGGER", "SUMMARY"), rows)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    started = time.monotonic()
    kwargs = _split_pairs(args.kwargs)
    try:
        meta, run_id = _runner.run_module_once(
            module=args.module,
            kwargs=kwargs,
            trigger_type="adhoc",
            timeout_sec=args.timeout,
        )
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _stamp(),
            "where": "cli.run",
            "module": args.module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return 1

    print(f"DONE: {(meta or {}).get('message', 'Module run completed.')}")
    if meta:
        print(json.dumps(meta, indent=2, ensure_ascii=False, default=str))
    LOG.debug("run_id=%s", run_id)
    return 0


def cmd_show_cursor(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config) if args.job else {}
        settings = _job_settings(cfg, args.job, _split_pairs(args.kwargs))
        cursor = make_store(settings).read()
    except (_config_schema.ConfigError, ConfigurationError, CursorFormatError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    doc = encode_cursor(cursor) if cursor is not None else dict(_EMPTY_CURSOR)
    print(json.dumps({"target": settings.target, "cursor": doc}, indent=2))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until a termination signal arrives."""
    L.write_activity_log({"ts": _stamp(), "event": "serve_start"})
    stop = threading.Event()
    controller: _scheduler.SchedulerController | None = None

    def _on_signal(signum, frame):
        LOG.info("Signal %s received; stopping scheduler", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        controller = _scheduler.start(config_path=args.config)
        while not stop.wait(0.5):
            pass
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception:
        LOG.exception("serve failed")
        return 1
    finally:
        if controller is not None:
            controller.stop()
            controller.join(timeout=10.0)
        L.write_activity_log({"ts": _stamp(), "event": "serve_stop"})


# ---- argparse ----------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="csw-harvest-service", description="CSW harvester service tools")
    p.add_argument("--config", help="Job config file (JSON or YAML); defaults to $CONFIG_PATH.")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Run the scheduler.").set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Run one module invocation now.")
    sp.add_argument("module", help="Dotted module path, e.g. modules.csw_harvest")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Module keyword arguments.")
    sp.add_argument("--timeout", type=int, default=None, help="Give up after this many seconds.")
    sp.set_defaults(func=cmd_run)

    sub.add_parser("list-jobs", help="List configured jobs.").set_defaults(func=cmd_list_jobs)
    sub.add_parser("validate-config", help="Check the job config.").set_defaults(func=cmd_validate_config)

    sp = sub.add_parser("show-cursor", help="Print a harvest target's persisted cursor.")
    sp.add_argument("--job", help="Job id whose kwargs select the store and target.")
    sp.add_argument("--kwargs", metavar="k=v", nargs="*", help="Settings overrides, e.g. sqlite_path=...")
    sp.set_defaults(func=cmd_show_cursor)
    return p


def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
