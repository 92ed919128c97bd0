# -*- coding: utf-8 -*-
"""
Sign-In with Ethereum (EIP-4361) messages and their verification.

A client asks for a challenge, signs it with personal_sign and posts
{message, signature} back. SiweVerifier checks the domain binding, the
validity window and the signer, and consumes the nonce in the ledger so a
signed message can be used once.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from common.logger import get_logger
from common.normalize import is_evm_address, normalize_wallet_id
from datasource.sqlstores.ledger_store import LedgerStore

from .envelope import now_ms
from .errors import ApiError, ErrorKind

logger = get_logger(__name__)

HEADER_SUFFIX = " wants you to sign in with your Ethereum account:"
DEFAULT_STATEMENT = "Sign in to the Forgotten Runes community."
NONCE_RE = re.compile(r"^[A-Za-z0-9]{8,}$")
# nonces stay in the ledger this long past the message expiry
NONCE_GRACE_MS = 60 * 1000
# tolerated lead of a client clock on Issued At
CLOCK_SKEW_MS = 60 * 1000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FIELDS = {
    "URI": "uri",
    "Version": "version",
    "Chain ID": "chain_id",
    "Nonce": "nonce",
    "Issued At": "issued_at",
    "Expiration Time": "expiration_time",
    "Not Before": "not_before",
    "Request ID": "request_id",
}

_TIMESTAMP_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def format_timestamp(ms: int) -> str:
    dt = EPOCH + timedelta(milliseconds=int(ms))
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> int:
    """RFC 3339 date-time to epoch ms; fractions beyond milliseconds are truncated."""
    match = _TIMESTAMP_RE.match((value or "").strip())
    if not match:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    if offset in ("Z", "z"):
        offset = "+00:00"
    dt = datetime.fromisoformat(f"{date}T{clock}{offset}")
    millis = int((fraction or "0")[:3].ljust(3, "0"))
    return (dt - EPOCH) // timedelta(milliseconds=1) + millis


def generate_nonce() -> str:
    return secrets.token_hex(8)


class MalformedMessage(ValueError):
    pass


@dataclass
class SiweMessage:
    domain: str
    address: str
    uri: str
    version: str
    chain_id: int
    nonce: str
    issued_at: str
    statement: Optional[str] = None
    expiration_time: Optional[str] = None
    not_before: Optional[str] = None
    request_id: Optional[str] = None
    resources: List[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str) -> "SiweMessage":
        lines = (text or "").replace("\r\n", "\n").split("\n")
        if len(lines) < 3 or not lines[0].endswith(HEADER_SUFFIX):
            raise MalformedMessage("missing SIWE header")
        domain = lines[0][: -len(HEADER_SUFFIX)].strip()
        address = lines[1].strip()
        if not domain or not is_evm_address(address):
            raise MalformedMessage("invalid domain or address")

        idx = 2
        while idx < len(lines) and not lines[idx].strip():
            idx += 1
        statement = None
        if idx < len(lines) and not lines[idx].startswith("URI: "):
            statement = lines[idx].strip()
            idx += 1

        values: dict = {}
        resources: List[str] = []
        in_resources = False
        for line in lines[idx:]:
            if not line.strip():
                continue
            if in_resources:
                if not line.startswith("- "):
                    raise MalformedMessage("invalid resource line")
                resources.append(line[2:].strip())
                continue
            if line.strip() == "Resources:":
                in_resources = True
                continue
            key, sep, value = line.partition(": ")
            if not sep or key not in _FIELDS:
                raise MalformedMessage(f"unexpected line: {line[:40]!r}")
            values[_FIELDS[key]] = value.strip()

        for required in ("uri", "version", "chain_id", "nonce", "issued_at"):
            if not values.get(required):
                raise MalformedMessage(f"missing {required}")
        if values["version"] != "1":
            raise MalformedMessage("unsupported version")
        if not NONCE_RE.match(values["nonce"]):
            raise MalformedMessage("invalid nonce")
        try:
            chain_id = int(values.pop("chain_id"))
            for ts in ("issued_at", "expiration_time", "not_before"):
                if values.get(ts):
                    parse_timestamp(values[ts])
        except ValueError as exc:
            raise MalformedMessage(str(exc)) from exc

        return cls(
            domain=domain,
            address=address,
            statement=statement,
            chain_id=chain_id,
            resources=resources,
            **values,
        )

    def prepare(self) -> str:
        """Render the canonical EIP-4361 text that gets signed."""
        parts = [f"{self.domain}{HEADER_SUFFIX}", self.address, ""]
        if self.statement:
            parts.extend([self.statement, ""])
        parts.append(f"URI: {self.uri}")
        parts.append(f"Version: {self.version}")
        parts.append(f"Chain ID: {self.chain_id}")
        parts.append(f"Nonce: {self.nonce}")
        parts.append(f"Issued At: {self.issued_at}")
        if self.expiration_time:
            parts.append(f"Expiration Time: {self.expiration_time}")
        if self.not_before:
            parts.append(f"Not Before: {self.not_before}")
        if self.request_id:
            parts.append(f"Request ID: {self.request_id}")
        if self.resources:
            parts.append("Resources:")
            parts.extend(f"- {r}" for r in self.resources)
        return "\n".join(parts)

    def expires_at_ms(self, max_ttl_ms: int) -> int:
        """End of the validity window, capped at Issued At + max_ttl_ms."""
        latest = parse_timestamp(self.issued_at) + int(max_ttl_ms)
        if self.expiration_time:
            return min(parse_timestamp(self.expiration_time), latest)
        return latest


@dataclass(frozen=True)
class VerifiedIdentity:
    """Only SiweVerifier.verify hands these out; sessions are minted from them."""
    address: str
    nonce: str
    verified_at_ms: int


class SiweVerifier:
    def __init__(
        self,
        *,
        expected_domain: str,
        ledger: LedgerStore,
        challenge_ttl_ms: int,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.expected_domain = (expected_domain or "").strip().lower()
        self.ledger = ledger
        self.challenge_ttl_ms = int(challenge_ttl_ms)
        self.clock = clock

    def build_challenge(
        self,
        address: str,
        *,
        uri: str,
        chain_id: int = 1,
        statement: str = DEFAULT_STATEMENT,
    ) -> SiweMessage:
        issued = self.clock()
        return SiweMessage(
            domain=self.expected_domain,
            address=address,
            statement=statement,
            uri=uri,
            version="1",
            chain_id=int(chain_id),
            nonce=generate_nonce(),
            issued_at=format_timestamp(issued),
            expiration_time=format_timestamp(issued + self.challenge_ttl_ms),
        )

    def verify(self, message: str, signature: str) -> VerifiedIdentity:
        try:
            parsed = SiweMessage.parse(message)
        except MalformedMessage as exc:
            logger.info("siwe_malformed_message", reason=str(exc))
            raise ApiError(ErrorKind.INVALID_SIGNATURE, "Malformed sign-in message") from exc

        now = self.clock()
        address = normalize_wallet_id(parsed.address)
        expires_at = parsed.expires_at_ms(self.challenge_ttl_ms)

        failure: Optional[ApiError] = None
        try:
            self._check_domain(parsed)
            self._check_window(parsed, now, expires_at)
            self._check_signer(message, signature, address)
        except ApiError as exc:
            failure = exc

        # consumed on failure too, so a rejected message cannot be retried
        first_use = self.ledger.consume(
            f"nonce:{parsed.nonce}",
            expires_at=max(expires_at, now) + NONCE_GRACE_MS,
            now=now,
        )
        if failure is not None:
            logger.info("siwe_verify_failed", address=address, kind=failure.kind.value, nonce=parsed.nonce)
            raise failure
        if not first_use:
            logger.warning("siwe_nonce_replayed", address=address, nonce=parsed.nonce)
            raise ApiError(ErrorKind.NONCE_REPLAYED, "Sign-in message was already used")

        logger.info("siwe_verified", address=address, chain_id=parsed.chain_id)
        return VerifiedIdentity(address=address, nonce=parsed.nonce, verified_at_ms=now)

    def _check_domain(self, parsed: SiweMessage) -> None:
        if parsed.domain.strip().lower() != self.expected_domain:
            raise ApiError(
                ErrorKind.DOMAIN_MISMATCH,
                "Sign-in message was issued for a different domain",
            )

    def _check_window(self, parsed: SiweMessage, now: int, expires_at: int) -> None:
        if now >= expires_at:
            raise ApiError(ErrorKind.CHALLENGE_EXPIRED, "Sign-in message has expired")
        if parse_timestamp(parsed.issued_at) > now + CLOCK_SKEW_MS:
            raise ApiError(ErrorKind.CHALLENGE_EXPIRED, "Sign-in message is not valid yet")
        if parsed.not_before and now < parse_timestamp(parsed.not_before):
            raise ApiError(ErrorKind.CHALLENGE_EXPIRED, "Sign-in message is not valid yet")

    def _check_signer(self, message: str, signature: str, address: str) -> None:
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as exc:
            raise ApiError(ErrorKind.INVALID_SIGNATURE, "Invalid signature") from exc
        if normalize_wallet_id(recovered) != address:
            raise ApiError(ErrorKind.INVALID_SIGNATURE, "Invalid signature")
