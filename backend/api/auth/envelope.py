# -*- coding: utf-8 -*-

from __future__ import annotations

import time
from typing import Any, Dict, Optional


def now_ms() -> int:
    return int(time.time() * 1000)


def ok(data: Any) -> Dict[str, Any]:
    return {"code": 0, "message": "ok", "data": data, "timestamp": now_ms()}


def fail(code: int, message: str, kind: Optional[str] = None, data: Any = None) -> Dict[str, Any]:
    body = {"code": int(code), "message": str(message), "data": data, "timestamp": now_ms()}
    if kind:
        body["kind"] = kind
    return body
