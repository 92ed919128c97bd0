# identity/identity_manager.py
# -*- coding: utf-8 -*-

from __future__ import annotations
from typing import Any, Dict, List, Optional

from common.logger import get_logger
from common.normalize import normalize_wallet_id
from datasource.sqlstores.profile_store import ProfileStore
from .models import Profile, Role
from .policy import Decision, evaluate

logger = get_logger(__name__)


class IdentityManager:
    """
    Identity layer entry point:
    - address -> Profile lookup
    - profile provisioning (first sign-in / admin creation)
    - authorization decisions via identity.policy.evaluate
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        super_admin_wallet_id: Optional[str] = None,
    ):
        self.profile_store = profile_store
        self.super_admin_wallet_id = normalize_wallet_id(super_admin_wallet_id) or None

    def is_super_admin(self, address: Optional[str]) -> bool:
        address = normalize_wallet_id(address)
        return bool(address) and address == self.super_admin_wallet_id

    # ---------- lookup ----------
    def get_profile(self, address: Optional[str]) -> Optional[Profile]:
        address = normalize_wallet_id(address)
        if not address:
            return None
        row = self.profile_store.get_by_address(address)
        return Profile.from_row(row) if row else None

    # ---------- gate ----------
    def authorize(self, address: Optional[str], required: Role) -> Decision:
        address = normalize_wallet_id(address) or None
        profile = self.get_profile(address) if address else None
        decision = evaluate(address, profile, required)
        if not decision.allowed:
            logger.info(
                "authorization_rejected",
                address=address,
                required_role=required.value,
                verdict=decision.verdict.value,
            )
        return decision

    # ---------- provisioning ----------
    def ensure_profile(self, address: str) -> Profile:
        """Return the profile for `address`, creating a default one if missing."""
        address = normalize_wallet_id(address)
        existing = self.get_profile(address)
        if existing:
            return existing
        role = Role.ADMIN if self.is_super_admin(address) else Role.USER
        row = self.profile_store.create(address, role=role.value)
        logger.info("profile_provisioned", address=address, role=row.get("role"))
        return Profile.from_row(row)

    def create_profile(self, address: str, role: Role, fields: Dict[str, Any]) -> Optional[Profile]:
        """Administrative creation; None when the address already has a profile."""
        address = normalize_wallet_id(address)
        if self.get_profile(address):
            return None
        row = self.profile_store.create(address, role=role.value, **fields)
        logger.info("profile_created", address=address, role=role.value)
        return Profile.from_row(row)

    # ---------- mutation ----------
    def update_profile(self, address: str, fields: Dict[str, Any]) -> Optional[Profile]:
        row = self.profile_store.update_fields(normalize_wallet_id(address), fields)
        return Profile.from_row(row) if row else None

    def set_role(self, address: str, role: Role) -> Optional[Profile]:
        row = self.profile_store.set_role(normalize_wallet_id(address), role.value)
        if row:
            logger.info("profile_role_changed", address=row["eth_address"], role=role.value)
        return Profile.from_row(row) if row else None

    def list_profiles(self, *, role: Optional[Role] = None, limit: int = 20, offset: int = 0) -> List[Profile]:
        rows = self.profile_store.list(role=role.value if role else None, limit=limit, offset=offset)
        return [Profile.from_row(r) for r in rows]

    def count_profiles(self, *, role: Optional[Role] = None) -> int:
        return self.profile_store.count(role=role.value if role else None)
