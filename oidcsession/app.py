from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI

from oidcsession.api.routes import create_router, enforce_default_session
from oidcsession.logging import get_logger, set_correlation_id
from oidcsession.service.runtime import IdentityService

logger = get_logger(__name__)

__version__ = "0.1.0"


def install_identity(app: FastAPI, identity: IdentityService) -> None:
    """Attach the identity routes and service to ``app``.

    With ``ON_BY_DEFAULT`` every route registered after this call requires a
    session unless its endpoint is marked with ``allow_anonymous``.
    """
    app.state.identity = identity
    app.include_router(create_router(identity.settings))
    if identity.settings.on_by_default:
        app.router.dependencies.append(Depends(enforce_default_session))

    @app.middleware("http")
    async def add_correlation_id(request, call_next):
        """Tag every log line of a request with X-Request-ID (generated if absent)."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response


def create_app(identity: Optional[IdentityService] = None) -> FastAPI:
    """Application factory; builds the service from the environment if not given."""
    identity = identity or IdentityService.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        try:
            await identity.close()
            logger.info("identity_service_closed")
        except Exception as exc:
            logger.error("shutdown_failed", error=str(exc))

    app = FastAPI(title="OIDC Session", version=__version__, lifespan=lifespan)
    install_identity(app, identity)
    return app
