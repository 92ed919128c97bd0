#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Minimal HTTP client for the auth service, used by the smoke scripts.

    client = AuthClient("http://127.0.0.1:8000")
    address = client.login(private_key)
    status, body = client.request("GET", "/api/v1/profile")
"""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from typing import Any, Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct


class AuthClient:
    def __init__(self, api_base: str, *, timeout: int = 10) -> None:
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.token: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(self, method: str, path: str, payload: Any = None) -> Tuple[int, Any]:
        """Send one JSON request; returns (status, decoded body) for errors too."""
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            f"{self.api_base}{path}",
            data=data,
            headers=self.headers(),
            method=method,
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return resp.status, _decode(resp.read())
        except urllib.error.HTTPError as e:
            return e.code, _decode(e.read()) or e.reason

    def login(self, private_key: str) -> str:
        """Sign in with a local key (challenge -> personal_sign -> verify); returns the address."""
        acct = Account.from_key(private_key.strip())

        status, body = self.request("POST", "/api/v1/public/auth/challenge", {"address": acct.address})
        message = envelope_data(body, "message")
        if status >= 400 or not message:
            raise RuntimeError(f"auth challenge failed: {status} {body}")

        signed = Account.sign_message(encode_defunct(text=message), private_key=acct.key)
        status, body = self.request(
            "POST",
            "/api/v1/public/auth/verify",
            {"message": message, "signature": "0x" + bytes(signed.signature).hex()},
        )
        token = envelope_data(body, "token")
        if status >= 400 or not token:
            raise RuntimeError(f"auth verify failed: {status} {body}")
        self.token = token
        return acct.address.lower()


def _decode(raw: bytes) -> Any:
    text = raw.decode("utf-8") if raw else ""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


def envelope_data(payload: Any, key: str) -> Optional[str]:
    data = payload.get("data") if isinstance(payload, dict) else None
    value = data.get(key) if isinstance(data, dict) else None
    return value if isinstance(value, str) else None


def resolve_test_private_key(cli_value: Optional[str] = None) -> Optional[str]:
    return (cli_value or os.getenv("AUTH_TEST_PRIVATE_KEY") or "").strip() or None
