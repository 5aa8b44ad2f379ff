from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'csw_harvest' module: one harvest invocation.

    Accepts kwargs (from scheduler/runner), including:
      endpoint: str = GDI-DE CSW
      target: str = <endpoint host>
      page_size: int = 200
      max_pages: int = 1          # page budget per invocation
      delay_seconds: float = 60   # between pages
      cursor_store: "sqlite" | "env" = "sqlite"
      sqlite_path: str = "/app/local/state/csw_harvest.db"
      skip_network: bool = False

    Returns:
      meta dict (message, window, pages, records, cursor); the runner logs it.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "csw_harvest.main",
        "op": "start",
        "target": settings.target,
        "endpoint": settings.endpoint,
        "cursor_store": settings.cursor_store,
        "flags": {
            "skip_network": settings.skip_network,
            "verbose": settings.verbose,
        },
    })

    return _run_engine(settings)


def validate_kwargs(kwargs: dict[str, Any]) -> None:
    """
    Config-time check of job kwargs; raises ConfigurationError (a ValueError).

    *_env keys still hold variable names at this point, so they are left out.
    """
    Settings.from_env_and_kwargs({k: v for k, v in kwargs.items() if not k.endswith("_env") or k == "cursor_env"})
