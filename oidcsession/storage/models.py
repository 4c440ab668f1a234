from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional, Union

Claims = Dict[str, Any]
ClaimsSource = Union[Claims, Callable[[], Claims], None]


@dataclass
class TokenSet:
    """Provider-issued token bundle.

    ``claims`` is either a plain mapping or a zero-argument callable that
    computes it; it is materialised before the token set is persisted.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_at: Optional[int] = None
    scope: Optional[str] = None
    claims: ClaimsSource = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TokenSet":
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = dict(data.get("extra") or {})
        extra.update({k: v for k, v in data.items() if k not in known and k != "extra"})
        if kwargs.get("expires_at") is None and data.get("expires_in") is not None:
            kwargs["expires_at"] = int(time.time()) + int(data["expires_in"])
            extra.pop("expires_in", None)
        return cls(**kwargs, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        if callable(self.claims):
            raise TypeError("claims must be materialised before serialising a token set")
        return asdict(self)


# camelCase keys accepted in caller-supplied state cache data
_ATTEMPT_ALIASES = {
    "stateKey": "state_key",
    "codeVerifier": "code_verifier",
    "codeChallenge": "code_challenge",
    "policyName": "policy_name",
    "forceLogin": "force_login",
    "backToPath": "back_to_path",
    "disallowedRedirectPath": "disallowed_redirect_path",
}


@dataclass(frozen=True)
class AuthorizationAttempt:
    state_key: str
    code_verifier: str
    code_challenge: str
    nonce: Optional[str] = None
    policy_name: str = ""
    journey: str = ""
    force_login: bool = False
    back_to_path: str = ""
    disallowed_redirect_path: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuthorizationAttempt":
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = dict(data.get("extra") or {})
        for key, value in data.items():
            if key == "extra":
                continue
            name = _ATTEMPT_ALIASES.get(key, key)
            if name in known:
                kwargs[name] = value
            else:
                extra[key] = value
        return cls(**kwargs, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    token_set: TokenSet
    claims: Optional[Claims] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if not self.claims:
            return True
        exp = self.claims.get("exp")
        if exp is None:
            return False
        current = time.time() if now is None else now
        return float(exp) < current

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        return cls(
            token_set=TokenSet.from_dict(data.get("token_set") or {}),
            claims=data.get("claims"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"token_set": self.token_set.to_dict(), "claims": self.claims}
