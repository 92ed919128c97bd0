# -*- coding: utf-8 -*-

from __future__ import annotations

from typing import Optional

from fastapi import Request

from api.auth.jwt_service import ResolvedSession, SessionService


def _parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return (parts[1] or "").strip() or None


def session_token_from_request(request: Request, cookie_name: str) -> Optional[str]:
    """Bearer header wins over the session cookie."""
    return _parse_bearer(request.headers.get("authorization")) or request.cookies.get(cookie_name) or None


def resolve_session(request: Request, deps) -> Optional[ResolvedSession]:
    """
    Return the caller's session, or None.

    A missing, malformed, forged or expired token all look the same here:
    the caller is simply unauthenticated.
    """
    service: SessionService = deps.session_service
    token = session_token_from_request(request, deps.settings.session_cookie_name)
    return service.resolve(token)


def revocation_key(session: ResolvedSession) -> str:
    return f"revoked:{session.session_id}"


def revoke_session(deps, session: ResolvedSession) -> None:
    """Deny `session` from now until its own expiry (explicit sign-out)."""
    deps.datasource.ledger.consume(
        revocation_key(session),
        expires_at=session.expires_at_ms,
        now=deps.clock(),
    )


def is_revoked(deps, session: ResolvedSession) -> bool:
    return deps.datasource.ledger.is_active(revocation_key(session), deps.clock())
