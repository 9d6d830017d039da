"""BFF signature middleware for the upstream API.

Every request under ``/api/v1/`` must carry a valid X-BFF-* header set
produced by the gateway. Validation runs before routing, so a rejected
request never reaches business logic.

Design Rationale:
    - Fail-closed security: missing or invalid headers -> 403
    - Generic response body; the failing stage is only logged server-side
    - Raw body bytes are hashed exactly as received (canonical re-encoding
      when they parse as JSON)
    - Paths outside ``/api/v1/`` (health checks, metrics, OAuth callbacks)
      are not HMAC-checked

Usage:
    from apps.upstream_api.middleware import verify_bff_signature

    app.state.bff_validator = BffRequestValidator.from_settings(settings)
    app.middleware("http")(verify_bff_signature)
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from libs.bff_auth.validator import GENERIC_REJECTION_MESSAGE, BffRequestValidator
from libs.common.network_utils import extract_client_ip

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "/api/v1/"


def is_protected_path(path: str) -> bool:
    """True for paths that require a BFF signature."""
    return path.startswith(PROTECTED_PREFIX)


async def verify_bff_signature(request: Request, call_next: Any) -> Any:
    """Validate the BFF HMAC headers before the request is routed.

    Args:
        request: FastAPI request object
        call_next: Next middleware or endpoint handler

    Returns:
        Response from next handler, or 403 if validation fails

    Security Notes:
        - The validator is read from ``app.state.bff_validator``; a missing
          validator is a wiring error and fails closed with 403
        - Successful validation sets ``request.state.bff_verified = True``
    """
    if not is_protected_path(request.url.path):
        return await call_next(request)

    validator: BffRequestValidator | None = getattr(request.app.state, "bff_validator", None)
    if validator is None:
        logger.error(
            "BFF validator not configured; rejecting request",
            extra={"path": request.url.path},
        )
        return _forbidden()

    body = await request.body()
    outcome = validator.validate(
        headers=request.headers,
        method=request.method,
        path=request.url.path,
        body=body,
        client_ip=extract_client_ip(request),
    )
    if not outcome.ok:
        return _forbidden()

    request.state.bff_verified = True
    return await call_next(request)


def _forbidden() -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={"error": "Forbidden", "message": GENERIC_REJECTION_MESSAGE},
    )


__all__ = ["PROTECTED_PREFIX", "is_protected_path", "verify_bff_signature"]
