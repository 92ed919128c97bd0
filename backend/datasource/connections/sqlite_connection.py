# datasource/connections/sqlite_connection.py
# -*- coding: utf-8 -*-
"""
SQLiteConnection
- initializes the auth ledger + profile tables
- every wait on the database is bounded by the busy timeout
"""

from __future__ import annotations
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional


CORE_DDL = r"""
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

-- keyed counters: consumed nonces and rate-limit windows
CREATE TABLE IF NOT EXISTS auth_ledger (
  key          TEXT PRIMARY KEY,
  count        INTEGER NOT NULL DEFAULT 0,
  window_start INTEGER NOT NULL DEFAULT 0,
  expires_at   INTEGER NOT NULL,
  updated_at   TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_auth_ledger_expires
  ON auth_ledger (expires_at);

-- one profile per wallet address
CREATE TABLE IF NOT EXISTS profiles (
  id           TEXT PRIMARY KEY,
  eth_address  TEXT NOT NULL UNIQUE,
  name         TEXT,
  email        TEXT,
  description  TEXT,
  twitter      TEXT,
  discord      TEXT,
  website      TEXT,
  avatar_url   TEXT,
  role         TEXT NOT NULL DEFAULT 'user',
  created_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
  updated_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_profiles_role
  ON profiles (role, created_at DESC);
"""


class StoreUnavailable(RuntimeError):
    """The database could not answer within the busy timeout (retryable)."""


class SQLiteConnection:
    """SQLite core connection layer (no business logic)."""

    def __init__(self, db_path: Optional[str] = None, timeout_ms: int = 2000) -> None:
        default_path = Path(os.getcwd()) / "db" / "auth.sqlite3"
        self.db_path = Path(db_path or os.getenv("AUTH_DB_PATH", default_path))
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout_s = max(int(timeout_ms), 1) / 1000.0

        self._conn = sqlite3.connect(
            self.db_path.as_posix(),
            timeout=self.timeout_s,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        self._init_core_schema()

    def _init_core_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(CORE_DDL)

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self.timeout_s):
            raise StoreUnavailable("timed out waiting for the database lock")

    # ---------- basic operations ----------
    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def query_all(self, sql: str, params: Iterable[Any] = ()) -> list[dict]:
        self._acquire()
        try:
            cur = self._conn.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            self._lock.release()

    def query_one(self, sql: str, params: Iterable[Any] = ()) -> Optional[dict]:
        self._acquire()
        try:
            cur = self._conn.execute(sql, params)
            row = cur.fetchone()
            return dict(row) if row else None
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction: statements inside run under one SQLite write lock
        and commit together (rollback on error).
        """
        self._acquire()
        try:
            with self._conn:
                self._conn.execute("BEGIN IMMEDIATE")
                yield self._conn
        except sqlite3.OperationalError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            self._lock.release()

    def ping(self) -> bool:
        try:
            return self.query_one("SELECT 1 AS ok") is not None
        except StoreUnavailable:
            return False

    def close(self) -> None:
        try:
            self._conn.close()
        except Exception:
            pass
