# -*- coding: utf-8 -*-

from __future__ import annotations

import re

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_wallet_id(wallet_id: str | None) -> str:
    """
    Normalize wallet id for comparisons/storage.

    EVM addresses are case-insensitive, lowercasing is enough for equality
    checks (we don't checksum here).
    """
    return (wallet_id or "").strip().lower()


def is_evm_address(value: str | None) -> bool:
    return bool(_EVM_ADDRESS.match((value or "").strip()))
