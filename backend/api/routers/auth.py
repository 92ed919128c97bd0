# -*- coding: utf-8 -*-

from __future__ import annotations

from eth_utils import to_checksum_address
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from api.auth.deps import revoke_session
from api.auth.envelope import ok
from api.pipeline import RequestContext, RoutePolicy, guarded
from api.schemas.auth import AuthChallengeRequest, AuthVerifyRequest

router = APIRouter(prefix="/api/v1/public/auth", tags=["auth"])


def _set_session_cookie(settings, response: JSONResponse, token: str, max_age: int) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=max(int(max_age), 1),
        httponly=True,
        secure=bool(settings.cookie_secure),
        samesite=str(settings.cookie_samesite or "lax").lower(),
        path="/",
    )


def _clear_session_cookie(settings, response: JSONResponse) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        "",
        max_age=0,
        httponly=True,
        secure=bool(settings.cookie_secure),
        samesite=str(settings.cookie_samesite or "lax").lower(),
        path="/",
    )


@router.post("/challenge")
@guarded(RoutePolicy("auth.challenge", body=AuthChallengeRequest))
def auth_challenge(ctx: RequestContext):
    req: AuthChallengeRequest = ctx.body
    verifier = ctx.deps.siwe_verifier
    message = verifier.build_challenge(
        to_checksum_address(req.address),
        uri=ctx.deps.settings.site_origin,
        chain_id=req.chain_id,
    )
    return {
        "address": message.address,
        "message": message.prepare(),
        "nonce": message.nonce,
        "issuedAt": message.issued_at,
        "expiresAt": message.expiration_time,
    }


@router.post("/verify")
@guarded(RoutePolicy("auth.verify", body=AuthVerifyRequest))
def auth_verify(ctx: RequestContext):
    req: AuthVerifyRequest = ctx.body
    deps = ctx.deps

    verified = deps.siwe_verifier.verify(req.message, req.signature.strip())
    profile = None
    if deps.settings.auto_provision_profiles:
        profile = deps.identity_manager.ensure_profile(verified.address)
    else:
        profile = deps.identity_manager.get_profile(verified.address)

    issued = deps.session_service.issue(verified)
    resp = JSONResponse(
        ok(
            {
                "address": issued.address,
                "token": issued.token,
                "expiresAt": issued.expires_at_ms,
                "role": profile.role.value if profile else None,
            }
        )
    )
    _set_session_cookie(deps.settings, resp, issued.token, int(deps.settings.session_ttl_ms / 1000))
    return resp


@router.get("/session")
@guarded(RoutePolicy("auth.session"))
def auth_session(ctx: RequestContext):
    session = ctx.require_session()
    return {"address": session.address, "expiresAt": session.expires_at_ms}


@router.post("/logout")
@guarded(RoutePolicy("auth.logout"))
def auth_logout(ctx: RequestContext):
    """Drop the cookie and deny the presented token until it would have expired."""
    if ctx.session:
        revoke_session(ctx.deps, ctx.session)
    resp = JSONResponse(ok({"logout": True}))
    _clear_session_cookie(ctx.deps.settings, resp)
    return resp
