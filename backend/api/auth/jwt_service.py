# -*- coding: utf-8 -*-

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

import jwt

from common.logger import get_logger
from common.normalize import is_evm_address, normalize_wallet_id

from .envelope import now_ms
from .siwe import VerifiedIdentity

logger = get_logger(__name__)

ALGORITHM = "HS256"
TOKEN_TYPE = "session"


@dataclass(frozen=True)
class IssuedSession:
    address: str
    token: str
    session_id: str
    issued_at_ms: int
    expires_at_ms: int


@dataclass(frozen=True)
class ResolvedSession:
    address: str
    session_id: str
    expires_at_ms: int


class SessionService:
    """
    Stateless HS256 session tokens.

    Notes:
    - tokens are immutable: a session is extended only by issuing a new one.
    - resolve() never raises and never reads the store; every bad token is None.
    - expiry is kept in ms ("exp_ms") next to the standard "exp" so that a
      token issued with expiry T is accepted strictly before T.
    """

    def __init__(
        self,
        *,
        jwt_secret: str,
        session_ttl_ms: int,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.jwt_secret = jwt_secret
        self.session_ttl_ms = int(session_ttl_ms)
        self.clock = clock

    def issue(self, verified: VerifiedIdentity) -> IssuedSession:
        if not isinstance(verified, VerifiedIdentity):
            raise TypeError("sessions can only be issued for a verified identity")
        address = normalize_wallet_id(verified.address)
        issued_at = self.clock()
        expires_at = issued_at + self.session_ttl_ms
        session_id = secrets.token_hex(16)

        token = jwt.encode(
            {
                "sub": address,
                "typ": TOKEN_TYPE,
                "jti": session_id,
                "iat": issued_at // 1000,
                "exp": -(-expires_at // 1000),
                "exp_ms": expires_at,
            },
            self.jwt_secret,
            algorithm=ALGORITHM,
        )
        logger.info("session_issued", address=address, session_id=session_id, expires_at=expires_at)
        return IssuedSession(
            address=address,
            token=token,
            session_id=session_id,
            issued_at_ms=issued_at,
            expires_at_ms=expires_at,
        )

    def resolve(self, token: Optional[str]) -> Optional[ResolvedSession]:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[ALGORITHM],
                # time checks run against self.clock below
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp", "jti"]},
            )
        except jwt.PyJWTError as exc:
            logger.debug("session_token_rejected", reason=str(exc))
            return None

        if payload.get("typ") != TOKEN_TYPE:
            return None
        address = normalize_wallet_id(payload.get("sub"))
        if not is_evm_address(address):
            return None
        try:
            expires_at = int(payload.get("exp_ms") or int(payload["exp"]) * 1000)
        except (TypeError, ValueError):
            return None
        if self.clock() >= expires_at:
            logger.debug("session_token_expired", address=address)
            return None
        return ResolvedSession(address=address, session_id=str(payload["jti"]), expires_at_ms=expires_at)
