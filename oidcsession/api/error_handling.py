from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.routing import APIRoute

from oidcsession.logging import get_logger
from oidcsession.service.errors import ServiceError
from oidcsession.service.paths import local_redirect_url
from oidcsession.storage.errors import BackendError

logger = get_logger(__name__)


def as_response(result) -> Response:
    """Coerce a truthy hook result into a response."""
    if isinstance(result, Response):
        return result
    return JSONResponse(content=result)


def error_redirect(request: Request, error_code: str, message: str) -> RedirectResponse:
    """Redirect to the configured error path with diagnostic query fields."""
    settings = request.app.state.identity.settings
    url = local_redirect_url(
        settings.disallowed_redirect_path,
        settings.app_domain,
        {"errorMessage": error_code, "errorDescription": message},
    )
    return RedirectResponse(url, status_code=302)


async def _run_on_error(request: Request, exc: Exception):
    hooks = request.app.state.identity.hooks
    try:
        return await hooks.run("on_error", exc, request)
    except Exception as hook_exc:
        logger.exception("on_error_hook_failed", error=str(hook_exc))
        return None


async def handle_identity_error(request: Request, exc: Exception) -> Response:
    """Turn an error raised by an identity route into a response.

    The ``on_error`` hook gets the first chance; otherwise the user is sent to
    the error page.
    """
    if isinstance(exc, ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        error_code, message = exc.error_code, exc.message
    elif isinstance(exc, BackendError):
        logger.error(
            "cache_backend_error",
            path=request.url.path,
            method=request.method,
            operation=exc.operation,
            error=str(exc.__cause__ or exc),
        )
        error_code, message = "backend_error", exc.message
    else:
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        error_code, message = "server_error", "internal server error"

    handled = await _run_on_error(request, exc)
    if handled:
        return as_response(handled)
    return error_redirect(request, error_code, message)


class IdentityRoute(APIRoute):
    """Route class for the identity endpoints.

    Errors escaping these endpoints are handled here, so the host
    application's own routes and exception handlers are left untouched.
    """

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def identity_route_handler(request: Request) -> Response:
            try:
                return await original_route_handler(request)
            except (HTTPException, RequestValidationError):
                raise
            except Exception as exc:
                return await handle_identity_error(request, exc)

        return identity_route_handler
