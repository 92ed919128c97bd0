# api/deps.py
# -*- coding: utf-8 -*-

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Callable

from api.auth.envelope import now_ms
from api.auth.jwt_service import SessionService
from api.auth.siwe import SiweVerifier
from api.rate_limit import RateLimiter
from common.logger import get_logger
from datasource.base import Datasource
from identity.identity_manager import IdentityManager
from settings.config import Settings

logger = get_logger(__name__)


# -------------------------------------------------
# Settings
# -------------------------------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if settings.jwt_secret_generated:
        logger.warning("jwt_secret_generated", hint="set JWT_SECRET to share sessions across workers and restarts")
    return settings


@dataclass
class Deps:
    settings: Settings
    datasource: Datasource

    identity_manager: IdentityManager
    session_service: SessionService
    siwe_verifier: SiweVerifier
    rate_limiter: RateLimiter

    clock: Callable[[], int] = now_ms


def build_deps(settings: Settings, clock: Callable[[], int] = now_ms) -> Deps:
    datasource = Datasource(settings)
    return Deps(
        settings=settings,
        datasource=datasource,
        identity_manager=IdentityManager(
            profile_store=datasource.profiles,
            super_admin_wallet_id=settings.super_admin_wallet_id,
        ),
        session_service=SessionService(
            jwt_secret=settings.jwt_secret,
            session_ttl_ms=settings.session_ttl_ms,
            clock=clock,
        ),
        siwe_verifier=SiweVerifier(
            expected_domain=settings.expected_domain,
            ledger=datasource.ledger,
            challenge_ttl_ms=settings.challenge_ttl_ms,
            clock=clock,
        ),
        rate_limiter=RateLimiter(datasource.ledger, clock=clock),
        clock=clock,
    )


# -------------------------------------------------
# Deps (single API-level dependency)
# -------------------------------------------------
@lru_cache(maxsize=1)
def get_deps() -> Deps:
    return build_deps(get_settings())
