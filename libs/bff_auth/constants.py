"""Wire-level constants shared by the signing gateway and the validating upstream.

Changing any of these values is a protocol change: both services must be
redeployed together.
"""

from __future__ import annotations

from typing import Final

# Request headers (HTTP header names are case-insensitive on the wire)
HEADER_BFF_ID: Final = "X-BFF-Id"
HEADER_BFF_TIMESTAMP: Final = "X-BFF-Timestamp"
HEADER_BFF_SIGNATURE: Final = "X-BFF-Signature"
REQUIRED_HEADERS: Final = (HEADER_BFF_ID, HEADER_BFF_TIMESTAMP, HEADER_BFF_SIGNATURE)

# Replay window (seconds, inclusive, both directions)
TIMESTAMP_TOLERANCE_SECONDS: Final = 300

# Lowercase hex SHA-256 length
SIGNATURE_HEX_LENGTH: Final = 64

# Upstream routes proxied by the gateway live under this prefix
API_PREFIX: Final = "api/v1"

# Routes that may be forwarded without a bearer credential (still HMAC-signed)
PUBLIC_ROUTES: Final = (
    "api/v1/auth/login",
    "api/v1/auth/register",
    "api/v1/auth/providers",
)

LOGOUT_ROUTE: Final = "api/v1/auth/logout"

# Bearer credential cookie
AUTH_COOKIE_NAME: Final = "auth_token"
AUTH_COOKIE_MAX_AGE_SECONDS: Final = 15 * 24 * 60 * 60  # 15 days

# Methods whose body is never read or signed
BODYLESS_METHODS: Final = frozenset({"GET", "HEAD"})

PROXY_METHODS: Final = ("GET", "POST", "PUT", "PATCH", "DELETE")

__all__ = [
    "API_PREFIX",
    "AUTH_COOKIE_MAX_AGE_SECONDS",
    "AUTH_COOKIE_NAME",
    "BODYLESS_METHODS",
    "HEADER_BFF_ID",
    "HEADER_BFF_SIGNATURE",
    "HEADER_BFF_TIMESTAMP",
    "LOGOUT_ROUTE",
    "PROXY_METHODS",
    "PUBLIC_ROUTES",
    "REQUIRED_HEADERS",
    "SIGNATURE_HEX_LENGTH",
    "TIMESTAMP_TOLERANCE_SECONDS",
]
