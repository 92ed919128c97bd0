# -*- coding: utf-8 -*-

from __future__ import annotations

from fastapi import APIRouter

from api.auth.errors import ApiError, ErrorKind
from api.pipeline import RequestContext, RoutePolicy, guarded
from api.schemas.profile import AdminCreateUser, AdminUserList, RoleUpdate
from common.normalize import is_evm_address, normalize_wallet_id
from identity.models import Role

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _int_param(ctx: RequestContext, name: str, default: int, lo: int, hi: int) -> int:
    raw = ctx.request.query_params.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = lo - 1
    if not lo <= value <= hi:
        raise ApiError(
            ErrorKind.INVALID_INPUT,
            "Query validation failed",
            details={"issues": [{"field": name, "message": f"must be an integer in [{lo}, {hi}]", "code": "range"}]},
        )
    return value


@router.get("/users")
@guarded(RoutePolicy("admin.users.list", required_role=Role.ADMIN))
def list_users(ctx: RequestContext):
    limit = _int_param(ctx, "limit", 20, 1, 200)
    offset = _int_param(ctx, "offset", 0, 0, 1_000_000)
    role_raw = ctx.request.query_params.get("role")
    try:
        role = Role(role_raw) if role_raw else None
    except ValueError as exc:
        raise ApiError(ErrorKind.INVALID_INPUT, f"Unknown role: {role_raw}") from exc

    manager = ctx.deps.identity_manager
    items = [p.to_dict() for p in manager.list_profiles(role=role, limit=limit, offset=offset)]
    return AdminUserList(items=items, total=manager.count_profiles(role=role)).model_dump()


@router.post("/users")
@guarded(RoutePolicy("admin.users.create", body=AdminCreateUser, required_role=Role.ADMIN))
def create_user(ctx: RequestContext):
    req: AdminCreateUser = ctx.body
    profile = ctx.deps.identity_manager.create_profile(req.address, req.role, req.profile_fields())
    if profile is None:
        raise ApiError(
            ErrorKind.INVALID_INPUT,
            "A profile already exists for this address",
            details={"issues": [{"field": "address", "message": "already registered", "code": "conflict"}]},
        )
    return profile.to_dict()


@router.put("/users/{address}/role")
@guarded(RoutePolicy("admin.users.role", body=RoleUpdate, required_role=Role.ADMIN))
def set_user_role(ctx: RequestContext):
    address = normalize_wallet_id(ctx.request.path_params.get("address"))
    if not is_evm_address(address):
        raise ApiError(ErrorKind.INVALID_INPUT, "Invalid address")
    req: RoleUpdate = ctx.body
    manager = ctx.deps.identity_manager
    if address == ctx.profile.eth_address and req.role is not Role.ADMIN:
        raise ApiError(ErrorKind.FORBIDDEN, "Admins cannot demote themselves")
    profile = manager.set_role(address, req.role)
    if profile is None:
        raise ApiError(ErrorKind.NOT_FOUND, "No profile for this address")
    return profile.to_dict()
