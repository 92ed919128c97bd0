# -*- coding: utf-8 -*-
"""
Fixed-window rate limiting on top of the ledger.

Key: rl:<route>:<subject>, subject being the session address when known,
otherwise the client IP (X-Forwarded-For is honoured only behind
TRUSTED_PROXIES). Counters live in the shared store, so every worker sees
the same window.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from fastapi import Request

from datasource.sqlstores.ledger_store import LedgerStore

from .auth.envelope import now_ms


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_ms: int
    retry_after_s: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(-(-self.reset_ms // 1000)),
        }
        if self.retry_after_s is not None:
            headers["Retry-After"] = str(self.retry_after_s)
        return headers


def _is_trusted(host: str, trusted: Sequence[str]) -> bool:
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return host in trusted
    for entry in trusted:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def client_ip(request: Request, trusted_proxies: Sequence[str] = ()) -> str:
    """
    Network origin of the caller.

    X-Forwarded-For is only read when the peer itself is a trusted proxy;
    hops are then walked right to left and the first untrusted one wins.
    """
    peer = request.client.host if request.client else "unknown"
    if not trusted_proxies or not _is_trusted(peer, trusted_proxies):
        return peer
    hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, trusted_proxies):
            return hop
    return hops[0] if hops else peer


class RateLimiter:
    def __init__(self, ledger: LedgerStore, clock: Callable[[], int] = now_ms) -> None:
        self.ledger = ledger
        self.clock = clock

    def check(self, route: str, subject: str, rule: RateLimitRule) -> RateLimitResult:
        now = self.clock()
        window_start = now - (now % rule.window_ms)
        reset_at = window_start + rule.window_ms
        count = self.ledger.increment(
            f"rl:{route}:{subject}",
            window_start=window_start,
            expires_at=reset_at,
            now=now,
        )
        allowed = count <= rule.max_requests
        return RateLimitResult(
            allowed=allowed,
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - count),
            reset_ms=reset_at,
            retry_after_s=None if allowed else max(1, -(-(reset_at - now) // 1000)),
        )
