# datasource/base.py
# -*- coding: utf-8 -*-

from __future__ import annotations
from typing import Optional

from settings.config import Settings

from datasource.connections.sqlite_connection import SQLiteConnection
from datasource.sqlstores.ledger_store import LedgerStore
from datasource.sqlstores.profile_store import ProfileStore


class Datasource:
    """
    Auth service Datasource
    - owns connections and aggregates stores
    - no business logic
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

        # ---------- SQLite ----------
        self.sqlite_conn = SQLiteConnection(
            db_path=self.settings.sqlite_path,
            timeout_ms=self.settings.store_timeout_ms,
        )
        self.ledger = LedgerStore(
            self.sqlite_conn,
            max_keys=self.settings.ledger_max_keys,
            purge_every=self.settings.ledger_purge_every,
        )
        self.profiles = ProfileStore(self.sqlite_conn)

    def close(self):
        try:
            if self.sqlite_conn:
                self.sqlite_conn.close()
        except Exception:
            pass
