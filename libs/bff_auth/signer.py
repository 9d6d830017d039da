"""HMAC request signing for gateway -> upstream calls.

Signed payload format (colon-delimited, no trailing content):

    "{timestamp}:{METHOD}:{path}:{body_hash}"

- timestamp: whole seconds since the epoch (not milliseconds)
- METHOD: upper-case HTTP verb
- path: request path without leading slash and without query string
- body_hash: lowercase hex SHA-256 of the canonical body, "" without body

signature = lowercase hex HMAC-SHA256(secret, payload)

The signature is only valid for the canonical body encoding, so the bytes
returned in :class:`SignedOutbound` are the ones that must be transmitted.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from libs.bff_auth.canonical import canonical_json_bytes
from libs.bff_auth.constants import HEADER_BFF_ID, HEADER_BFF_SIGNATURE, HEADER_BFF_TIMESTAMP
from libs.common.exceptions import ConfigurationError

if TYPE_CHECKING:
    from config.settings import Settings

Clock = Callable[[], float]


@dataclass(frozen=True)
class HmacHeaderSet:
    """The three X-BFF-* headers for one outbound request. Never reused."""

    bff_id: str
    timestamp: str
    signature: str

    def as_headers(self) -> dict[str, str]:
        return {
            HEADER_BFF_ID: self.bff_id,
            HEADER_BFF_TIMESTAMP: self.timestamp,
            HEADER_BFF_SIGNATURE: self.signature,
        }


@dataclass(frozen=True)
class SignedOutbound:
    """Result of signing: headers plus the canonical body bytes to send (if any)."""

    headers: HmacHeaderSet
    body: bytes | None
    payload: str


def normalize_signing_path(path: str) -> str:
    """Strip the leading slash and any query string from a request path.

    The root path normalizes to "/" so it never produces an empty payload field.

    Example:
        >>> normalize_signing_path("/api/v1/users?page=2")
        'api/v1/users'
    """
    path = path.split("?", 1)[0].lstrip("/")
    return path or "/"


def build_payload(timestamp: str | int, method: str, path: str, body_hash: str) -> str:
    """Build the exact string fed to HMAC."""
    return f"{timestamp}:{method.upper()}:{normalize_signing_path(path)}:{body_hash}"


def compute_signature(secret: str | bytes, payload: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``payload`` under ``secret``."""
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    return hmac.new(key, payload.encode("utf-8"), hashlib.sha256).hexdigest()


class BffSigner:
    """Signs outbound requests on behalf of the gateway.

    Stateless apart from the configured secret and id, so one instance is
    shared by all concurrent requests.

    Example:
        >>> signer = BffSigner(secret="s" * 64, bff_id="nextjs-bff-prod")
        >>> signed = signer.sign("POST", "api/v1/auth/login", {"password": "x", "email": "a@b.c"})
        >>> signed.body
        b'{"email":"a@b.c","password":"x"}'
    """

    def __init__(self, secret: str, bff_id: str, clock: Clock = time.time) -> None:
        if not secret:
            raise ConfigurationError("BFF_HMAC_SECRET environment variable is not set")
        if not bff_id:
            raise ConfigurationError("BFF_ID must not be empty")
        self._secret = secret.encode("utf-8")
        self.bff_id = bff_id
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> BffSigner:
        return cls(
            secret=settings.bff_hmac_secret.get_secret_value(),
            bff_id=settings.bff_id,
        )

    def sign(self, method: str, path: str, body: Any = None) -> SignedOutbound:
        """Sign one request.

        Args:
            method: HTTP method (any case; signed upper-case)
            path: Upstream path, leading slash optional, no query string
            body: Parsed JSON body, or None for "no body"

        Returns:
            SignedOutbound with fresh headers and canonical body bytes

        Raises:
            CanonicalizationError: If the body is not JSON-encodable
        """
        timestamp = str(int(self._clock()))

        canonical_body: bytes | None = None
        body_hash = ""
        if body is not None:
            canonical_body = canonical_json_bytes(body)
            body_hash = hashlib.sha256(canonical_body).hexdigest()

        payload = build_payload(timestamp, method, path, body_hash)
        signature = compute_signature(self._secret, payload)

        return SignedOutbound(
            headers=HmacHeaderSet(bff_id=self.bff_id, timestamp=timestamp, signature=signature),
            body=canonical_body,
            payload=payload,
        )


__all__ = [
    "BffSigner",
    "HmacHeaderSet",
    "SignedOutbound",
    "build_payload",
    "compute_signature",
    "normalize_signing_path",
]
