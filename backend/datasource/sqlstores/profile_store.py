# datasource/sqlstores/profile_store.py
# -*- coding: utf-8 -*-
"""
ProfileStore
- one row per wallet address (eth_address, lowercased)
- self-service columns and the role column are written through separate methods
"""

from __future__ import annotations
import uuid
from typing import Any, Dict, List, Optional

from ..connections.sqlite_connection import SQLiteConnection

Row = Dict[str, Any]

SELF_SERVICE_FIELDS = ("name", "email", "description", "twitter", "discord", "website", "avatar_url")


class ProfileStore:
    def __init__(self, conn: SQLiteConnection | None = None) -> None:
        self.conn = conn or SQLiteConnection()

    def get_by_address(self, eth_address: str) -> Optional[Row]:
        return self.conn.query_one(
            "SELECT * FROM profiles WHERE eth_address = ?",
            (eth_address,),
        )

    def create(self, eth_address: str, role: str = "user", **fields: Any) -> Row:
        """Insert a profile if the address has none yet; return the stored row."""
        values = {k: fields.get(k) for k in SELF_SERVICE_FIELDS}
        with self.conn.transaction() as db:
            db.execute(
                """
                INSERT INTO profiles(id, eth_address, role, name, email, description,
                                     twitter, discord, website, avatar_url)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(eth_address) DO NOTHING
                """,
                (
                    str(uuid.uuid4()),
                    eth_address,
                    role,
                    values["name"],
                    values["email"],
                    values["description"],
                    values["twitter"],
                    values["discord"],
                    values["website"],
                    values["avatar_url"],
                ),
            )
            row = db.execute("SELECT * FROM profiles WHERE eth_address = ?", (eth_address,)).fetchone()
        return dict(row)

    def update_fields(self, eth_address: str, fields: Dict[str, Any]) -> Optional[Row]:
        updates = {k: v for k, v in fields.items() if k in SELF_SERVICE_FIELDS}
        if not updates:
            return self.get_by_address(eth_address)
        assignments = ", ".join(f"{col} = ?" for col in updates)
        params: List[Any] = list(updates.values())
        params.append(eth_address)
        with self.conn.transaction() as db:
            db.execute(
                f"""
                UPDATE profiles
                   SET {assignments},
                       updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                 WHERE eth_address = ?
                """,
                tuple(params),
            )
            row = db.execute("SELECT * FROM profiles WHERE eth_address = ?", (eth_address,)).fetchone()
        return dict(row) if row else None

    def set_role(self, eth_address: str, role: str) -> Optional[Row]:
        with self.conn.transaction() as db:
            db.execute(
                """
                UPDATE profiles
                   SET role = ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                 WHERE eth_address = ?
                """,
                (role, eth_address),
            )
            row = db.execute("SELECT * FROM profiles WHERE eth_address = ?", (eth_address,)).fetchone()
        return dict(row) if row else None

    def list(self, *, role: Optional[str] = None, limit: int = 20, offset: int = 0) -> List[Row]:
        if role:
            return self.conn.query_all(
                """
                SELECT * FROM profiles
                 WHERE role = ?
                 ORDER BY created_at DESC
                 LIMIT ? OFFSET ?
                """,
                (role, limit, offset),
            )
        return self.conn.query_all(
            "SELECT * FROM profiles ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )

    def count(self, *, role: Optional[str] = None) -> int:
        if role:
            row = self.conn.query_one("SELECT COUNT(*) AS total FROM profiles WHERE role = ?", (role,))
        else:
            row = self.conn.query_one("SELECT COUNT(*) AS total FROM profiles")
        return int(row["total"] if row else 0)
