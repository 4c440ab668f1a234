from __future__ import annotations

import os
import secrets
import uuid
from typing import Any
from urllib.parse import urljoin, urlparse

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidcsession.logging import get_logger

logger = get_logger(__name__)

MIN_COOKIE_PASSWORD_LENGTH = 32


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the identity session layer."""

    # Identity provider
    identity_app_url: str | None = env_field(
        None,
        "IDENTITY_APP_URL",
        description="OpenID discovery document URL; '{policy}' is replaced with the policy name",
    )
    service_id: str | None = env_field(None, "SERVICE_ID")
    client_id: str | None = env_field(None, "CLIENT_ID")
    client_secret: str | None = env_field(None, "CLIENT_SECRET")
    default_policy: str = env_field("", "DEFAULT_POLICY")
    default_journey: str = env_field("", "DEFAULT_JOURNEY")
    default_scope: str = env_field("offline_access openid", "DEFAULT_SCOPE")
    retry_delay_multiplier_secs: float = env_field(
        1.5,
        "RETRY_DELAY_MULTIPLIER_SECS",
        description="Delay before retry n is multiplier * n seconds",
    )
    retry_max_attempts: int = env_field(3, "RETRY_MAX_ATTEMPTS", ge=1)

    # Cookie & cache
    cookie_password: str | None = env_field(
        None, "COOKIE_PASSWORD", validate_default=True
    )
    cookie_name: str = env_field("idm", "COOKIE_NAME")
    cache_segment: str = env_field("idm", "CACHE_SEGMENT")
    cache_cookie_ttl_ms: int = env_field(24 * 60 * 60 * 1000, "CACHE_COOKIE_TTL_MS")
    pass_request_to_cache_methods: bool = env_field(False, "PASS_REQUEST_TO_CACHE_METHODS")
    redis_url: str | None = env_field(None, "REDIS_URL")
    is_secure: bool = env_field(False, "IS_SECURE")

    # Paths
    app_domain: str = env_field("http://localhost:8000", "APP_DOMAIN")
    outbound_path: str = env_field("/login/out", "OUTBOUND_PATH")
    redirect_uri: str = env_field("/login/return", "REDIRECT_URI")
    auth_redirect_uri_fqdn: str | None = env_field(None, "AUTH_REDIRECT_URI_FQDN")
    logout_path: str = env_field(
        "/logout", "LOGOUT_PATH", description="Empty string disables the logout route"
    )
    disallowed_redirect_path: str = env_field("/error", "DISALLOWED_REDIRECT_PATH")
    login_on_disallow: bool = env_field(False, "LOGIN_ON_DISALLOW")
    on_by_default: bool = env_field(
        False,
        "ON_BY_DEFAULT",
        description="Require a session on every host route unless marked allow_anonymous",
    )
    default_back_to_path: str = env_field("/", "DEFAULT_BACK_TO_PATH")
    post_authentication_redirect_js_path: str = env_field(
        "/postAuthRedirect", "POST_AUTHENTICATION_REDIRECT_JS_PATH"
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def redirect_uri_fqdn(self) -> str:
        if self.auth_redirect_uri_fqdn:
            return self.auth_redirect_uri_fqdn
        return urljoin(self.app_domain, self.redirect_uri)

    @property
    def cache_ttl_seconds(self) -> int:
        return max(1, self.cache_cookie_ttl_ms // 1000)

    @field_validator("service_id", "client_id")
    @classmethod
    def _validate_guid(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            uuid.UUID(value)
        except ValueError as exc:
            raise ValueError(f"expected a GUID, got {value!r}") from exc
        return value

    @field_validator("app_domain")
    @classmethod
    def _validate_app_domain(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("app_domain must be an absolute http(s) URL")
        return value

    @field_validator(
        "outbound_path",
        "redirect_uri",
        "disallowed_redirect_path",
        "default_back_to_path",
        "post_authentication_redirect_js_path",
    )
    @classmethod
    def _validate_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("paths must start with '/'")
        return value

    @field_validator("logout_path")
    @classmethod
    def _validate_logout_path(cls, value: str) -> str:
        if value and not value.startswith("/"):
            raise ValueError("logout_path must start with '/' or be empty")
        return value

    @field_validator("cookie_password")
    @classmethod
    def _ensure_cookie_password(cls, value: str | None) -> str:
        if value:
            if len(value) < MIN_COOKIE_PASSWORD_LENGTH:
                raise ValueError(
                    f"cookie_password must be at least {MIN_COOKIE_PASSWORD_LENGTH} characters"
                )
            return value
        # Cookies signed with a generated password do not survive a restart
        logger.warning(
            "cookie_password_generated",
            message="COOKIE_PASSWORD not set; sessions are invalidated on restart",
        )
        return secrets.token_urlsafe(48)


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
