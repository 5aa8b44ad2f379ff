from __future__ import annotations

import contextlib
import os
import sqlite3
import sys
from abc import ABC, abstractmethod
from typing import TextIO

from .cursor import dumps_cursor, loads_cursor
from .logging_bridge import error as log_error
from .models import Cursor
from .utils import now_iso


class CursorStore(ABC):
    """
    Durable home of one harvest target's cursor.

    Contract:
      - read() is called once at invocation start; None means "never run".
      - write() is called at most once, at invocation end, only on success.
      - No compare-and-set: the scheduler guarantees one invocation at a time.
    """

    @abstractmethod
    def read(self) -> Cursor | None:
        raise NotImplementedError

    @abstractmethod
    def write(self, cursor: Cursor) -> None:
        raise NotImplementedError


# ---- SQLite -----------------------------------------------------------------


class SqliteCursorStore(CursorStore):
    """One row per harvest target holding the cursor's JSON document."""

    def __init__(self, sqlite_path: str, target: str) -> None:
        self.sqlite_path = sqlite_path
        self.target = target

    def read(self) -> Cursor | None:
        if not os.path.exists(self.sqlite_path):
            return None
        with contextlib.closing(_connect(self.sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)
            row = conn.execute("SELECT document FROM cursors WHERE target = ?", (self.target,)).fetchone()
        return loads_cursor(row[0]) if row else None

    def write(self, cursor: Cursor) -> None:
        init_db(self.sqlite_path)
        document = dumps_cursor(cursor)
        try:
            with contextlib.closing(_connect(self.sqlite_path)) as conn:
                _apply_pragmas(conn)
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                cur.execute(
                    """
                    INSERT INTO cursors (target, document, updated_utc) VALUES (?, ?, ?)
                    ON CONFLICT(target) DO UPDATE SET
                      document = excluded.document,
                      updated_utc = excluded.updated_utc
                    """,
                    (self.target, document, now_iso()),
                )
                conn.commit()
        except Exception as e:
            log_error({
                "component": "csw_harvest.store",
                "op": "write",
                "sqlite_path": self.sqlite_path,
                "target": self.target,
                "error": repr(e),
            })
            raise


def init_db(sqlite_path: str) -> None:
    """
    Ensure the SQLite database and schema exist.
    Safe to call multiple times.
    """
    _ensure_dir(sqlite_path)
    with contextlib.closing(_connect(sqlite_path)) as conn:
        _apply_pragmas(conn)
        _ensure_schema(conn)


def reset_db(sqlite_path: str) -> None:
    """
    Remove the DB file entirely (for pytest fixtures).
    Safe if it doesn't exist.
    """
    with contextlib.suppress(FileNotFoundError):
        os.remove(sqlite_path)


def _ensure_dir(sqlite_path: str) -> None:
    d = os.path.dirname(os.path.abspath(sqlite_path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; we'll manage transactions explicitly.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=FULL;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cursors (
          target TEXT PRIMARY KEY,
          document TEXT NOT NULL,
          updated_utc TEXT NOT NULL
        );
        """
    )


# ---- Environment variable ---------------------------------------------------


class EnvCursorStore(CursorStore):
    """
    Cursor kept by the host outside this process (e.g. a CI repository variable).
    read() parses the JSON in `var_name`; write() prints the updated JSON as a
    single line on `stream` for the host to store back.
    """

    def __init__(self, var_name: str = "CSW_CURSOR", stream: TextIO | None = None) -> None:
        self.var_name = var_name
        self.stream = stream

    def read(self) -> Cursor | None:
        return loads_cursor(os.getenv(self.var_name))

    def write(self, cursor: Cursor) -> None:
        out = self.stream or sys.stdout
        out.write(dumps_cursor(cursor) + "\n")
        out.flush()
