# -*- coding: utf-8 -*-

from __future__ import annotations

from fastapi import APIRouter

from api.auth.errors import ApiError, ErrorKind
from api.pipeline import RequestContext, RoutePolicy, guarded
from api.schemas.profile import ProfileOut, ProfileUpdate
from identity.models import Role

router = APIRouter(prefix="/api/v1", tags=["profile"])


@router.get("/profile")
@guarded(RoutePolicy("profile.read", required_role=Role.USER))
def get_profile(ctx: RequestContext):
    return ProfileOut.model_validate(ctx.profile.public_fields()).model_dump()


@router.put("/profile")
@guarded(RoutePolicy("profile.update", body=ProfileUpdate, required_role=Role.USER))
def update_profile(ctx: RequestContext):
    req: ProfileUpdate = ctx.body
    updated = ctx.deps.identity_manager.update_profile(ctx.profile.eth_address, req.provided())
    if updated is None:
        raise ApiError(ErrorKind.NO_PROFILE, "No profile for this address")
    return ProfileOut.model_validate(updated.public_fields()).model_dump()
