# -*- coding: utf-8 -*-
"""
Per-route request pipeline.

    @router.put("/profile")
    @guarded(RoutePolicy("profile.update", body=ProfileUpdate, required_role=Role.USER))
    def update_profile(ctx: RequestContext): ...

Stages, in order, each able to end the request with an error envelope:
session resolution (pure token check, then the sign-out denylist) ->
rate limit -> body validation -> authorization gate -> handler. CORS headers
come from the app-level CORSMiddleware, which wraps every response this
module produces, errors included.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Type

from fastapi import Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from api.auth.deps import is_revoked, resolve_session
from api.auth.envelope import ok
from api.auth.errors import ApiError, ErrorKind
from api.auth.jwt_service import ResolvedSession
from api.deps import get_deps
from api.rate_limit import RateLimitRule, client_ip
from common.logger import get_logger
from datasource.connections.sqlite_connection import StoreUnavailable
from identity.models import Profile, Role
from identity.policy import Decision, Verdict

logger = get_logger(__name__)

_REJECTIONS = {
    Verdict.UNAUTHENTICATED: (ErrorKind.UNAUTHENTICATED, "Authentication required"),
    Verdict.NO_PROFILE: (ErrorKind.NO_PROFILE, "No profile for this address"),
    Verdict.FORBIDDEN: (ErrorKind.FORBIDDEN, "Insufficient permissions"),
}


@dataclass(frozen=True)
class RoutePolicy:
    name: str
    body: Optional[Type[BaseModel]] = None
    required_role: Optional[Role] = None
    rate_limited: bool = True


@dataclass
class RequestContext:
    request: Request
    deps: Any
    session: Optional[ResolvedSession] = None
    body: Optional[BaseModel] = None
    profile: Optional[Profile] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def address(self) -> Optional[str]:
        return self.session.address if self.session else None

    def require_session(self) -> ResolvedSession:
        if not self.session:
            raise ApiError(ErrorKind.UNAUTHENTICATED, "Authentication required")
        return self.session


def raise_for_decision(decision: Decision) -> Profile:
    if decision.allowed:
        return decision.profile
    kind, message = _REJECTIONS[decision.verdict]
    raise ApiError(kind, message)


def validation_issues(exc: ValidationError) -> list:
    return [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())),
            "message": err.get("msg", ""),
            "code": err.get("type", ""),
        }
        for err in exc.errors()
    ]


async def _read_body(request: Request, schema: Type[BaseModel]) -> BaseModel:
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw.strip() else {}
    except ValueError as exc:
        raise ApiError(ErrorKind.INVALID_INPUT, "Request body must be valid JSON") from exc
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ApiError(
            ErrorKind.INVALID_INPUT,
            "Request validation failed",
            details={"issues": validation_issues(exc)},
        ) from exc


async def run_pipeline(policy: RoutePolicy, handler: Callable, request: Request, deps) -> Response:
    started = time.perf_counter()
    ctx = RequestContext(request=request, deps=deps)
    try:
        ctx.session = resolve_session(request, deps)
        if ctx.session and await run_in_threadpool(is_revoked, deps, ctx.session):
            ctx.session = None

        if policy.rate_limited:
            max_requests, window_ms = deps.settings.rate_rule(policy.name)
            subject = ctx.address or client_ip(request, deps.settings.trusted_proxies)
            result = await run_in_threadpool(
                deps.rate_limiter.check, policy.name, subject, RateLimitRule(max_requests, window_ms)
            )
            ctx.headers.update(result.headers())
            if not result.allowed:
                logger.warning("rate_limit_exceeded", route=policy.name, subject=subject, limit=result.limit)
                raise ApiError(
                    ErrorKind.TOO_MANY_REQUESTS,
                    f"Rate limit exceeded. Try again in {result.retry_after_s} seconds.",
                    details={"retryAfter": result.retry_after_s},
                )

        if policy.body is not None:
            ctx.body = await _read_body(request, policy.body)

        if policy.required_role is not None:
            decision = await run_in_threadpool(
                deps.identity_manager.authorize, ctx.address, policy.required_role
            )
            ctx.profile = raise_for_decision(decision)

        result = await run_in_threadpool(handler, ctx)
        response = result if isinstance(result, Response) else JSONResponse(ok(result))
    except ApiError as exc:
        response = exc.to_response()
    except StoreUnavailable as exc:
        logger.error("store_unavailable", route=policy.name, error=str(exc))
        response = ApiError(
            ErrorKind.UPSTREAM_UNAVAILABLE,
            "Service temporarily unavailable, retry later",
            headers={"Retry-After": "1"},
        ).to_response()
    except Exception:
        logger.exception("unhandled_error", route=policy.name)
        response = ApiError(ErrorKind.INTERNAL, "An unexpected error occurred").to_response()

    for key, value in ctx.headers.items():
        response.headers.setdefault(key, value)
    logger.info(
        "api_request",
        route=policy.name,
        method=request.method,
        status=response.status_code,
        address=ctx.address,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    return response


def guarded(policy: RoutePolicy):
    """Wrap `handler(ctx)` into a FastAPI endpoint running the pipeline."""

    def decorator(handler: Callable[[RequestContext], Any]):
        async def endpoint(request: Request, deps=Depends(get_deps)) -> Response:
            return await run_pipeline(policy, handler, request, deps)

        # name/doc only: FastAPI must keep reading the endpoint's own signature
        endpoint.__name__ = handler.__name__
        endpoint.__qualname__ = handler.__qualname__
        endpoint.__doc__ = handler.__doc__
        return endpoint

    return decorator
