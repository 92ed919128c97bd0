# api/main.py

from typing import Optional

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware

from api.auth.errors import ApiError
from api.deps import build_deps, get_deps, get_settings
from api.routers.admin import router as admin_router
from api.routers.auth import router as auth_router
from api.routers.health import router as health_router
from api.routers.profile import router as profile_router
from settings.config import Settings


def create_app(settings: Optional[Settings] = None, deps=None) -> FastAPI:
    """
    Build the app. With no arguments the process-wide deps from api.deps are
    used; passing settings (or ready deps) gives an isolated app, as tests do.
    """
    app = FastAPI(
        title="Runes Auth Service",
        version="1.0.0",
    )

    if deps is None and settings is not None:
        deps = build_deps(settings)
    if deps is not None:
        app.dependency_overrides[get_deps] = lambda: deps
    cors_settings = deps.settings if deps is not None else get_settings()

    # wraps every response, error envelopes included
    allow_all = cors_settings.cors_allow_all
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else cors_settings.cors_allow_origins,
        allow_credentials=not allow_all,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    @app.exception_handler(ApiError)
    async def _api_error_handler(request, exc: ApiError):
        return exc.to_response()

    api_router = APIRouter()
    api_router.include_router(health_router)
    api_router.include_router(auth_router)
    api_router.include_router(profile_router)
    api_router.include_router(admin_router)
    app.include_router(api_router)

    return app


app = create_app()
