"""Bearer credential storage in the ``auth_token`` HttpOnly cookie.

The upstream issues opaque bearer tokens in response bodies
(``{"data": {"access_token": ...}}``). The gateway keeps the token in an
HttpOnly cookie so browser JavaScript never sees it, and re-attaches it as an
``Authorization: Bearer`` header on every forwarded call.

Lifecycle:
    - created at login (first response carrying a token)
    - silently rotated on any later response carrying a fresh token
    - cleared on logout
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

from starlette.responses import Response

from libs.bff_auth.canonical import parse_json
from libs.bff_auth.constants import AUTH_COOKIE_MAX_AGE_SECONDS, AUTH_COOKIE_NAME

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

SameSite = Literal["lax", "strict", "none"]


@dataclass(frozen=True)
class CredentialCookieConfig:
    """Cookie attributes for the bearer credential."""

    name: str = AUTH_COOKIE_NAME
    secure: bool = True
    httponly: bool = True
    samesite: SameSite = "lax"
    path: str = "/"
    max_age: int = AUTH_COOKIE_MAX_AGE_SECONDS
    domain: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialCookieConfig:
        secure = (
            settings.auth_cookie_secure
            if settings.auth_cookie_secure is not None
            else settings.is_production
        )
        return cls(secure=secure, domain=settings.auth_cookie_domain)

    def get_cookie_flags(self) -> dict[str, Any]:
        flags: dict[str, Any] = {
            "httponly": self.httponly,
            "secure": self.secure,
            "samesite": self.samesite,
            "path": self.path,
        }
        if self.domain:
            flags["domain"] = self.domain
        return flags


class CredentialStore:
    """Read, issue and clear the bearer credential cookie."""

    def __init__(self, config: CredentialCookieConfig) -> None:
        self.config = config

    def read(self, cookies: Mapping[str, str]) -> str | None:
        """Return the stored token, treating an empty cookie as absent."""
        token = cookies.get(self.config.name)
        return token or None

    def issue(self, response: Response, token: str) -> None:
        """Set (or rotate) the credential cookie with a fresh 15-day window."""
        response.set_cookie(
            key=self.config.name,
            value=token,
            max_age=self.config.max_age,
            expires=self.config.max_age,
            **self.config.get_cookie_flags(),
        )

    def clear(self, response: Response) -> None:
        """Expire the credential cookie immediately."""
        response.set_cookie(
            key=self.config.name,
            value="",
            max_age=0,
            expires=0,
            **self.config.get_cookie_flags(),
        )

    @staticmethod
    def extract_access_token(body: bytes) -> str | None:
        """Return ``data.access_token`` from a JSON response body, if any.

        Unparseable bodies, non-object payloads and missing or non-string
        tokens all yield None; none of them is an error.
        """
        if not body:
            return None
        try:
            payload = parse_json(body)
        except ValueError:
            return None

        if not isinstance(payload, dict):
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        token = data.get("access_token")
        if isinstance(token, str) and token:
            return token
        return None


__all__ = ["CredentialCookieConfig", "CredentialStore"]
