# -*- coding: utf-8 -*-

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.auth.envelope import fail, ok
from api.deps import get_deps

router = APIRouter(tags=["health"])


@router.get("/health")
def health(deps=Depends(get_deps)):
    store_ok = deps.datasource.sqlite_conn.ping()
    data = {"status": "ok" if store_ok else "degraded", "store": store_ok}
    if not store_ok:
        return JSONResponse(fail(503, "store unavailable", kind="UpstreamUnavailable", data=data), status_code=503)
    return ok(data)
