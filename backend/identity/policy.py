# identity/policy.py
# -*- coding: utf-8 -*-
"""
Role policy: the single place that turns (identity, profile, required role)
into an accept/reject decision. No I/O here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from identity.models import Profile, Role


class Verdict(str, Enum):
    ACCEPT = "accept"
    UNAUTHENTICATED = "unauthenticated"
    NO_PROFILE = "no_profile"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    profile: Optional[Profile] = None

    @property
    def allowed(self) -> bool:
        return self.verdict is Verdict.ACCEPT


def evaluate(identity: Optional[str], profile: Optional[Profile], required: Role) -> Decision:
    if not identity:
        return Decision(Verdict.UNAUTHENTICATED)
    if profile is None:
        return Decision(Verdict.NO_PROFILE)
    if not profile.role.satisfies(required):
        return Decision(Verdict.FORBIDDEN, profile)
    return Decision(Verdict.ACCEPT, profile)
