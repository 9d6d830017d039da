"""Error taxonomy for BFF request signing, validation and forwarding.

Authentication and path errors carry detailed reasons for server-side logs
only. HTTP handlers must render them with a generic message so an external
caller cannot learn which check failed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from libs.common.exceptions import ConfigurationError, PlatformError


class BffErrorCode(str, Enum):
    """Stable error codes exposed in gateway JSON error bodies."""

    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MISSING_HEADERS = "MISSING_HEADERS"
    TIMESTAMP_EXPIRED = "TIMESTAMP_EXPIRED"
    INVALID_BFF_ID = "INVALID_BFF_ID"
    PATH_REJECTED = "PATH_REJECTED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"


AUTHENTICATION_CODES = frozenset(
    {
        BffErrorCode.MISSING_HEADERS,
        BffErrorCode.INVALID_BFF_ID,
        BffErrorCode.TIMESTAMP_EXPIRED,
        BffErrorCode.INVALID_SIGNATURE,
    }
)


class BffError(PlatformError):
    """Base exception for controlled BFF failures."""

    code: BffErrorCode = BffErrorCode.UPSTREAM_ERROR

    def __init__(self, message: str, code: BffErrorCode | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class BffAuthenticationError(BffError):
    """Raised when an inbound signed request fails validation.

    ``code`` is one of MISSING_HEADERS, INVALID_BFF_ID, TIMESTAMP_EXPIRED or
    INVALID_SIGNATURE.
    """

    def __init__(self, code: BffErrorCode, message: str, details: Any = None) -> None:
        if code not in AUTHENTICATION_CODES:
            raise ValueError(f"{code} is not an authentication error code")
        super().__init__(message, code=code, details=details)


class PathRejectedError(BffError):
    """Raised when a path segment could cause traversal or SSRF."""

    code = BffErrorCode.PATH_REJECTED

    def __init__(self, reason: str, segment: str | None = None) -> None:
        super().__init__(f"Invalid path: {reason}", details={"segment": segment})
        self.reason = reason
        self.segment = segment


class CanonicalizationError(ValueError):
    """Raised when a value cannot be encoded as canonical JSON."""


class UpstreamTimeoutError(BffError):
    """Raised when the upstream call exceeds the forwarding deadline."""

    code = BffErrorCode.TIMEOUT


class UpstreamUnreachableError(BffError):
    """Raised when the upstream cannot be reached at all (DNS, refused, reset)."""

    code = BffErrorCode.NETWORK_ERROR


class UpstreamError(BffError):
    """An upstream non-2xx response.

    The forwarder relays these transparently and never raises this class; it
    builds one per relayed failure to log its structured form.
    """

    code = BffErrorCode.UPSTREAM_ERROR

    def __init__(
        self, status_code: int, message: str = "Upstream error", details: Any = None
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code


__all__ = [
    "AUTHENTICATION_CODES",
    "BffAuthenticationError",
    "BffError",
    "BffErrorCode",
    "CanonicalizationError",
    "ConfigurationError",
    "PathRejectedError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "UpstreamUnreachableError",
]
