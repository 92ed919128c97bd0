# identity/models.py
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """Access tier on a profile; later members outrank earlier ones."""

    USER = "user"
    EDITOR = "editor"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    def satisfies(self, required: "Role") -> bool:
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: Optional[str]) -> "Role":
        # unknown or missing roles stored in the table get the lowest tier
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.USER


@dataclass
class Profile:
    """
    Persisted per-address record. `role` is only ever written by an admin
    (or by provisioning), every other field is self-service.
    """
    id: str
    eth_address: str
    role: Role = Role.USER
    name: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    twitter: Optional[str] = None
    discord: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        return cls(
            id=str(row["id"]),
            eth_address=str(row["eth_address"]),
            role=Role.parse(row.get("role")),
            name=row.get("name"),
            email=row.get("email"),
            description=row.get("description"),
            twitter=row.get("twitter"),
            discord=row.get("discord"),
            website=row.get("website"),
            avatar_url=row.get("avatar_url"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def public_fields(self) -> Dict[str, Any]:
        """Fields the owner sees on GET /profile."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "description": self.description,
            "twitter": self.twitter,
            "discord": self.discord,
            "website": self.website,
            "avatar_url": self.avatar_url,
            "created_at": self.created_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        return data
