#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Smoke-test a running auth service: health, sign-in, session, profile,
admin gate and logout.

    python backend/scripts/smoke_auth_flow.py --api-base http://127.0.0.1:8000 \
        --private-key 0x...
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Any, List

from eth_account import Account

from auth_client import AuthClient, resolve_test_private_key


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ""
    payload: Any | None = None


def run_check(client: AuthClient, name: str, method: str, path: str, payload: Any = None, expect: int = 200) -> CheckResult:
    status, body = client.request(method, path, payload)
    if status != expect:
        return CheckResult(name, False, f"expected {expect}, got {status} {body}")
    return CheckResult(name, True, payload=body.get("data") if isinstance(body, dict) else body)


def signed_in_checks(client: AuthClient, expect_admin: bool) -> List[CheckResult]:
    return [
        run_check(client, "auth.session", "GET", "/api/v1/public/auth/session"),
        run_check(client, "profile.read", "GET", "/api/v1/profile"),
        run_check(client, "profile.role_write", "PUT", "/api/v1/profile", {"role": "admin"}, expect=400),
        run_check(client, "admin.users", "GET", "/api/v1/admin/users?limit=5", expect=200 if expect_admin else 403),
    ]


def format_payload(payload: Any) -> str:
    if payload is None:
        return ""
    try:
        text = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        text = str(payload)
    return text if len(text) <= 320 else f"{text[:320]}..."


def print_results(results: List[CheckResult]) -> None:
    for res in results:
        mark = "OK " if res.ok else "FAIL"
        detail = f" {res.detail}" if res.detail else ""
        payload = format_payload(res.payload)
        payload_str = f" payload={payload}" if payload else ""
        print(f"[{mark}] {res.name}{detail}{payload_str}")

    passed = len([r for r in results if r.ok])
    print(f"\nSummary: {passed}/{len(results)} passed.")


def main() -> int:
    parser = argparse.ArgumentParser(description="Smoke-test wallet sign-in and role-gated routes.")
    parser.add_argument("--api-base", default="http://127.0.0.1:8000", help="API base URL")
    parser.add_argument("--private-key", default="", help="EVM private key (or env AUTH_TEST_PRIVATE_KEY); random if omitted")
    parser.add_argument("--expect-admin", action="store_true", help="The key belongs to an admin profile")
    parser.add_argument("--timeout", type=int, default=15, help="HTTP timeout seconds")
    args = parser.parse_args()

    client = AuthClient(args.api_base, timeout=args.timeout)
    private_key = resolve_test_private_key(args.private_key) or Account.create().key.hex()

    results: List[CheckResult] = [
        run_check(client, "health", "GET", "/health"),
        run_check(client, "profile.anonymous", "GET", "/api/v1/profile", expect=401),
    ]
    try:
        address = client.login(private_key)
    except RuntimeError as exc:
        results.append(CheckResult("auth.login", False, str(exc)))
        print_results(results)
        return 1
    results.append(CheckResult("auth.login", True, address))
    results.extend(signed_in_checks(client, args.expect_admin))
    results.append(run_check(client, "auth.logout", "POST", "/api/v1/public/auth/logout"))

    print_results(results)
    return 0 if all(r.ok for r in results) else 1


if __name__ == "__main__":
    sys.exit(main())
