# datasource/sqlstores/ledger_store.py
# -*- coding: utf-8 -*-
"""
LedgerStore
- keyed counters with an optional fixed window and a retention deadline
- backs nonce consumption ("nonce:<value>"), session revocation ("revoked:<jti>")
  and rate limiting ("rl:<route>:<subject>")
"""

from __future__ import annotations
import itertools
import threading
from typing import Any, Dict, Optional

from ..connections.sqlite_connection import SQLiteConnection

Row = Dict[str, Any]


class LedgerStore:
    def __init__(
        self,
        conn: SQLiteConnection | None = None,
        *,
        max_keys: int = 100_000,
        purge_every: int = 500,
        evictable_prefix: str = "rl:",
    ) -> None:
        self.conn = conn or SQLiteConnection()
        self.max_keys = int(max_keys)
        self.purge_every = max(int(purge_every), 1)
        self.evictable_prefix = evictable_prefix
        self._writes = itertools.count(1)
        self._writes_lock = threading.Lock()

    def increment(self, key: str, *, window_start: int, expires_at: int, now: int) -> int:
        """
        Atomically bump the counter for `key` and return the new count.

        The count restarts at 1 when the stored window differs from
        `window_start` or the stored row has expired.
        """
        with self.conn.transaction() as db:
            db.execute(
                """
                INSERT INTO auth_ledger(key, count, window_start, expires_at)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  count = CASE
                    WHEN auth_ledger.window_start = excluded.window_start
                     AND auth_ledger.expires_at > ?
                    THEN auth_ledger.count + 1
                    ELSE 1
                  END,
                  window_start = excluded.window_start,
                  expires_at = MAX(auth_ledger.expires_at, excluded.expires_at),
                  updated_at = datetime('now')
                """,
                (key, int(window_start), int(expires_at), int(now)),
            )
            row = db.execute("SELECT count FROM auth_ledger WHERE key = ?", (key,)).fetchone()
        self._after_write(now)
        return int(row["count"])

    def consume(self, key: str, *, expires_at: int, now: int) -> bool:
        """Mark `key` as used; True only for the first use before it expires."""
        return self.increment(key, window_start=0, expires_at=expires_at, now=now) == 1

    def get(self, key: str) -> Optional[Row]:
        return self.conn.query_one("SELECT * FROM auth_ledger WHERE key = ?", (key,))

    def is_active(self, key: str, now: int) -> bool:
        row = self.get(key)
        return bool(row) and int(row["expires_at"]) > int(now)

    def count(self) -> int:
        row = self.conn.query_one("SELECT COUNT(*) AS total FROM auth_ledger")
        return int(row["total"] if row else 0)

    def purge_expired(self, now: int) -> int:
        with self.conn.transaction() as db:
            cur = db.execute("DELETE FROM auth_ledger WHERE expires_at <= ?", (int(now),))
            return int(cur.rowcount or 0)

    def evict_overflow(self) -> int:
        """
        Drop evictable rows closest to expiry until at most max_keys remain.

        Only keys under `evictable_prefix` (rate-limit windows) are dropped;
        consumed nonces and revocations stay until they expire, otherwise a
        used message would become acceptable again.
        """
        if self.max_keys <= 0:
            return 0
        with self.conn.transaction() as db:
            total = db.execute("SELECT COUNT(*) AS total FROM auth_ledger").fetchone()["total"]
            overflow = int(total) - self.max_keys
            if overflow <= 0:
                return 0
            cur = db.execute(
                """
                DELETE FROM auth_ledger
                 WHERE key IN (
                   SELECT key FROM auth_ledger
                    WHERE substr(key, 1, ?) = ?
                    ORDER BY expires_at ASC
                    LIMIT ?
                 )
                """,
                (len(self.evictable_prefix), self.evictable_prefix, overflow),
            )
            return int(cur.rowcount or 0)

    def _after_write(self, now: int) -> None:
        with self._writes_lock:
            n = next(self._writes)
        if n % self.purge_every:
            return
        self.purge_expired(now)
        self.evict_overflow()
