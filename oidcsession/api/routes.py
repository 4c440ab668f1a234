from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Form, HTTPException, Query, Request, Response, status
from fastapi.responses import HTMLResponse, RedirectResponse

from oidcsession.api.cookies import (
    clear_session_cookie,
    read_session_handle,
    set_session_cookie,
)
from oidcsession.api.error_handling import IdentityRoute, as_response
from oidcsession.config import Settings
from oidcsession.logging import get_logger
from oidcsession.service.errors import AuthorizationRejectedError
from oidcsession.service.paths import fully_qualified_local_path
from oidcsession.service.runtime import IdentityService
from oidcsession.storage.models import Session

logger = get_logger(__name__)

POST_AUTH_REDIRECT_JS = """(function () {
  var input = document.getElementById('backToPath');
  if (input && input.value) {
    window.location.replace(input.value);
  }
})();
"""


def get_identity(request: Request) -> IdentityService:
    return request.app.state.identity


async def require_session(request: Request) -> Session:
    """Dependency for routes that need a logged-in user.

    Without a session the user is sent to log in (``LOGIN_ON_DISALLOW``) or to
    the disallowed path.
    """
    identity = get_identity(request)
    settings = identity.settings
    handle = read_session_handle(request, settings)
    credentials = await identity.get_credentials(handle, request)
    if credentials:
        return credentials

    if settings.login_on_disallow:
        back_to = request.url.path
        if request.url.query:
            back_to = f"{back_to}?{request.url.query}"
        location = identity.generate_authentication_url(back_to)
    else:
        location = fully_qualified_local_path(
            settings.disallowed_redirect_path, settings.app_domain
        )
    logger.info("session_required_redirect", path=request.url.path, login=settings.login_on_disallow)
    raise HTTPException(
        status_code=status.HTTP_302_FOUND,
        detail="Not authenticated",
        headers={"Location": location},
    )


ANONYMOUS_ATTR = "__oidcsession_anonymous__"


def allow_anonymous(endpoint):
    """Mark a host endpoint as reachable without a session under ``ON_BY_DEFAULT``."""
    setattr(endpoint, ANONYMOUS_ATTR, True)
    return endpoint


async def enforce_default_session(request: Request) -> None:
    """App-wide dependency installed when ``ON_BY_DEFAULT`` is set."""
    if getattr(request.scope.get("endpoint"), ANONYMOUS_ATTR, False):
        return
    await require_session(request)


def create_router(settings: Settings) -> APIRouter:
    """Routes for the configured outbound, callback, logout and script paths."""
    router = APIRouter(tags=["identity"], route_class=IdentityRoute)

    @allow_anonymous
    async def outbound(
        request: Request,
        back_to_path: str = Query("", alias="backToPath", max_length=2048),
        policy_name: str = Query("", alias="policyName", max_length=256),
        journey: str = Query("", max_length=256),
        force_login: str = Query("", alias="forceLogin", max_length=8),
        state: str = Query("", max_length=1024),
        nonce: str = Query("", max_length=1024),
        scope: str = Query("", max_length=1024),
        ga: Optional[str] = Query(None, alias="_ga", max_length=256),
    ):
        identity = get_identity(request)
        url = await identity.generate_outbound_redirect_url(
            back_to_path,
            policy_name,
            force_login,
            journey,
            ga,
            state=state,
            nonce=nonce,
            scope=scope,
            ctx=request,
        )
        return RedirectResponse(url, status_code=status.HTTP_302_FOUND)

    @allow_anonymous
    async def callback(
        request: Request,
        state: str = Form(""),
        code: str = Form(""),
        error: Optional[str] = Form(None),
        error_description: Optional[str] = Form(None),
    ):
        identity = get_identity(request)
        if error:
            outcome = await identity.callback.handle_authorisation_error(
                state, error, error_description, ctx=request
            )
            return RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)
        if not code:
            raise AuthorizationRejectedError("callback is missing an authorization code")

        outcome = await identity.callback.complete(
            state,
            code,
            session_handle=read_session_handle(request, identity.settings),
            request=request,
            ctx=request,
        )
        if outcome.hook_response:
            response = as_response(outcome.hook_response)
        else:
            response = HTMLResponse(outcome.html)
        set_session_cookie(response, outcome.session_handle, identity.settings)
        return response

    @allow_anonymous
    async def logout(request: Request):
        identity = get_identity(request)
        handle = read_session_handle(request, identity.settings)
        handled = await identity.credentials.logout(handle, request, ctx=request)
        if handled:
            response = as_response(handled)
        else:
            response = RedirectResponse(
                fully_qualified_local_path(
                    identity.settings.default_back_to_path, identity.settings.app_domain
                ),
                status_code=status.HTTP_302_FOUND,
            )
        clear_session_cookie(response, identity.settings)
        return response

    @allow_anonymous
    async def post_authentication_redirect_js():
        return Response(POST_AUTH_REDIRECT_JS, media_type="application/javascript")

    router.add_api_route(settings.outbound_path, outbound, methods=["GET"])
    router.add_api_route(settings.redirect_uri, callback, methods=["POST"])
    if settings.logout_path:
        router.add_api_route(settings.logout_path, logout, methods=["GET"])
    router.add_api_route(
        settings.post_authentication_redirect_js_path,
        post_authentication_redirect_js,
        methods=["GET"],
        include_in_schema=False,
    )
    return router
