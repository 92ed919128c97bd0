"""
Sign-in message parsing and credential verification.
"""

from __future__ import annotations

import pytest
from eth_account import Account

from api.auth.errors import ApiError, ErrorKind
from api.auth.siwe import SiweMessage, SiweVerifier, format_timestamp, parse_timestamp
from api.rate_limit import RateLimitRule

from conftest import SITE_ORIGIN, sign

EXAMPLE = """runes.example wants you to sign in with your Ethereum account:
0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2

Sign in to the Forgotten Runes community.

URI: https://runes.example
Version: 1
Chain ID: 1
Nonce: 32891756abcd
Issued At: 2021-09-30T16:25:24.000Z
Expiration Time: 2021-09-30T16:30:24.000Z
Resources:
- ipfs://bafybeiemxf5abjwjbikoz4mc3a3dla6ual3jsgpdr4cjr3oz3evfyavhwq/
- https://example.com/my-web2-claim.json"""


def _challenge(deps, account, **kwargs):
    return deps.siwe_verifier.build_challenge(account.address, uri=SITE_ORIGIN, **kwargs)


def test_parse_example_message():
    msg = SiweMessage.parse(EXAMPLE)
    assert msg.domain == "runes.example"
    assert msg.address == "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
    assert msg.statement == "Sign in to the Forgotten Runes community."
    assert msg.chain_id == 1
    assert msg.nonce == "32891756abcd"
    assert len(msg.resources) == 2
    assert msg.prepare() == EXAMPLE


def test_parse_message_without_statement():
    text = EXAMPLE.replace("Sign in to the Forgotten Runes community.\n\n", "")
    msg = SiweMessage.parse(text)
    assert msg.statement is None
    assert msg.uri == "https://runes.example"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "hello world",
        EXAMPLE.replace("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", "not-an-address"),
        EXAMPLE.replace("Nonce: 32891756abcd", "Nonce: short"),
        EXAMPLE.replace("Version: 1", "Version: 2"),
        EXAMPLE.replace("Issued At: 2021-09-30T16:25:24.000Z", "Issued At: yesterday"),
    ],
)
def test_malformed_message_is_invalid_signature(deps, text):
    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, "0x00")
    assert info.value.kind is ErrorKind.INVALID_SIGNATURE


def test_timestamp_roundtrip_keeps_milliseconds():
    assert parse_timestamp(format_timestamp(1_700_000_000_123)) == 1_700_000_000_123


def test_verify_succeeds_once_then_nonce_replayed(deps, user_account):
    text = _challenge(deps, user_account).prepare()
    signature = sign(user_account, text)

    verified = deps.siwe_verifier.verify(text, signature)
    assert verified.address == user_account.address.lower()

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, signature)
    assert info.value.kind is ErrorKind.NONCE_REPLAYED


def test_domain_mismatch_even_with_valid_signature(deps, user_account, clock):
    other = SiweVerifier(
        expected_domain="evil.example",
        ledger=deps.datasource.ledger,
        challenge_ttl_ms=60_000,
        clock=clock,
    )
    text = other.build_challenge(user_account.address, uri="https://evil.example").prepare()
    signature = sign(user_account, text)

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, signature)
    assert info.value.kind is ErrorKind.DOMAIN_MISMATCH


def test_expired_challenge(deps, user_account, clock, settings):
    text = _challenge(deps, user_account).prepare()
    signature = sign(user_account, text)
    clock.advance(settings.challenge_ttl_ms)

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, signature)
    assert info.value.kind is ErrorKind.CHALLENGE_EXPIRED


def test_not_before_in_future_is_rejected(deps, user_account, clock):
    msg = _challenge(deps, user_account)
    msg.not_before = format_timestamp(clock() + 60_000)
    text = msg.prepare()

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, sign(user_account, text))
    assert info.value.kind is ErrorKind.CHALLENGE_EXPIRED


def test_missing_expiration_uses_challenge_ttl(deps, user_account, clock, settings):
    msg = _challenge(deps, user_account)
    msg.expiration_time = None
    text = msg.prepare()
    signature = sign(user_account, text)
    clock.advance(settings.challenge_ttl_ms + 1)

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, signature)
    assert info.value.kind is ErrorKind.CHALLENGE_EXPIRED


def test_signature_from_other_key_is_invalid(deps, user_account):
    text = _challenge(deps, user_account).prepare()
    intruder = Account.create()

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, sign(intruder, text))
    assert info.value.kind is ErrorKind.INVALID_SIGNATURE


def test_garbage_signature_is_invalid(deps, user_account):
    text = _challenge(deps, user_account).prepare()
    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, "0xdeadbeef")
    assert info.value.kind is ErrorKind.INVALID_SIGNATURE


def test_failed_attempt_consumes_nonce(deps, user_account):
    text = _challenge(deps, user_account).prepare()
    with pytest.raises(ApiError):
        deps.siwe_verifier.verify(text, sign(Account.create(), text))

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, sign(user_account, text))
    assert info.value.kind is ErrorKind.NONCE_REPLAYED


def test_verification_is_case_insensitive_on_domain(deps, user_account):
    msg = _challenge(deps, user_account)
    msg.domain = msg.domain.upper()
    text = msg.prepare()
    verified = deps.siwe_verifier.verify(text, sign(user_account, text))
    assert verified.address == user_account.address.lower()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2021-09-30T16:25:24Z", 1633019124000),
        ("2021-09-30T16:25:24.5z", 1633019124500),
        ("2021-09-30T16:25:24.123456789Z", 1633019124123),
        ("2021-09-30T18:25:24.000+02:00", 1633019124000),
    ],
)
def test_parse_rfc3339_variants(value, expected):
    assert parse_timestamp(value) == expected


def test_long_expiration_is_capped_at_challenge_ttl(deps, user_account, clock, settings):
    msg = _challenge(deps, user_account)
    msg.expiration_time = format_timestamp(clock() + 10 * 365 * 24 * 3600 * 1000)
    assert msg.expires_at_ms(settings.challenge_ttl_ms) == parse_timestamp(msg.issued_at) + settings.challenge_ttl_ms

    text = msg.prepare()
    clock.advance(settings.challenge_ttl_ms)
    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, sign(user_account, text))
    assert info.value.kind is ErrorKind.CHALLENGE_EXPIRED


def test_issued_in_the_future_is_rejected(deps, user_account, clock):
    msg = _challenge(deps, user_account)
    msg.issued_at = format_timestamp(clock() + 10 * 60 * 1000)
    msg.expiration_time = None
    text = msg.prepare()

    with pytest.raises(ApiError) as info:
        deps.siwe_verifier.verify(text, sign(user_account, text))
    assert info.value.kind is ErrorKind.CHALLENGE_EXPIRED


def test_replay_rejected_after_ledger_fills_up(settings_factory, clock, user_account):
    from api.deps import build_deps

    deps = build_deps(settings_factory(ledger_max_keys=3, ledger_purge_every=1), clock=clock)
    try:
        text = _challenge(deps, user_account).prepare()
        signature = sign(user_account, text)
        deps.siwe_verifier.verify(text, signature)

        for _ in range(4):
            other = Account.create()
            msg = _challenge(deps, other)
            msg.expiration_time = format_timestamp(clock() + 10 * 365 * 24 * 3600 * 1000)
            filler = msg.prepare()
            deps.siwe_verifier.verify(filler, sign(other, filler))
        for n in range(4):
            deps.rate_limiter.check("auth.verify", f"10.0.0.{n}", RateLimitRule(5, 60_000))

        with pytest.raises(ApiError) as info:
            deps.siwe_verifier.verify(text, signature)
        assert info.value.kind is ErrorKind.NONCE_REPLAYED
    finally:
        deps.datasource.close()
