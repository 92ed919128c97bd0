# -*- coding: utf-8 -*-

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from .envelope import fail


class ErrorKind(str, Enum):
    # authentication
    INVALID_SIGNATURE = "InvalidSignature"
    DOMAIN_MISMATCH = "DomainMismatch"
    CHALLENGE_EXPIRED = "ChallengeExpired"
    NONCE_REPLAYED = "NonceReplayed"
    # authorization
    UNAUTHENTICATED = "Unauthenticated"
    NO_PROFILE = "NoProfile"
    FORBIDDEN = "Forbidden"
    # middleware
    TOO_MANY_REQUESTS = "TooManyRequests"
    INVALID_INPUT = "InvalidInput"
    # handlers / infrastructure
    NOT_FOUND = "NotFound"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    INTERNAL = "Internal"


STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_SIGNATURE: 401,
    ErrorKind.DOMAIN_MISMATCH: 401,
    ErrorKind.CHALLENGE_EXPIRED: 401,
    ErrorKind.NONCE_REPLAYED: 401,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NO_PROFILE: 403,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.TOO_MANY_REQUESTS: 429,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}


class ApiError(Exception):
    """
    Terminal request failure with a stable machine-readable kind.

    `message` is returned to the client as-is, so it must never carry
    secrets or raw store errors; put those in the log instead.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details
        self.headers = dict(headers or {})

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.UPSTREAM_UNAVAILABLE

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            fail(self.status_code, self.message, kind=self.kind.value, data=self.details),
            status_code=self.status_code,
            headers=self.headers or None,
        )

    def __repr__(self) -> str:
        return f"ApiError({self.kind.value}, {self.message!r})"
