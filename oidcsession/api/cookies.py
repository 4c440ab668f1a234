from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional

from fastapi import Request, Response

from oidcsession.config import Settings


def _signature(handle: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), handle.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def sign_handle(handle: str, secret: str) -> str:
    return f"{handle}.{_signature(handle, secret)}"


def unsign_handle(value: Optional[str], secret: str) -> Optional[str]:
    """Return the session handle from a cookie value, or None if it was tampered with."""
    if not value or "." not in value:
        return None
    handle, _, signature = value.rpartition(".")
    if not handle or not hmac.compare_digest(signature, _signature(handle, secret)):
        return None
    return handle


def read_session_handle(request: Request, settings: Settings) -> Optional[str]:
    return unsign_handle(request.cookies.get(settings.cookie_name), settings.cookie_password)


def set_session_cookie(response: Response, handle: str, settings: Settings) -> None:
    response.set_cookie(
        settings.cookie_name,
        sign_handle(handle, settings.cookie_password),
        max_age=settings.cache_ttl_seconds,
        httponly=True,
        secure=settings.is_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.cookie_name,
        path="/",
        secure=settings.is_secure,
        httponly=True,
        samesite="lax",
    )
