"""Client IP extraction with trusted proxy validation.

Both services log the caller IP alongside every authentication or path
rejection. The upstream API normally sits behind a load balancer, so the
X-Forwarded-For header is honoured only when the immediate peer is listed in
TRUSTED_PROXY_IPS; otherwise the socket peer address is used.
"""

from __future__ import annotations

import logging
import os

from starlette.requests import Request

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_IP = "unknown"


def _trusted_proxies() -> list[str]:
    raw = os.getenv("TRUSTED_PROXY_IPS", "")
    return [ip.strip() for ip in raw.split(",") if ip.strip()]


def get_remote_addr(request: Request) -> str:
    """Return the immediate peer address, or ``"unknown"`` without a client."""
    return request.client.host if request.client else UNKNOWN_CLIENT_IP


def extract_client_ip(request: Request) -> str:
    """Extract the originating client IP for audit logging.

    Order of precedence:
    1. Validate the socket peer against TRUSTED_PROXY_IPS
    2. If trusted, use the first X-Forwarded-For entry (original client)
    3. Otherwise use the socket peer address

    Args:
        request: Incoming Starlette/FastAPI request

    Returns:
        Client IP address (original client, not proxy)
    """
    remote_addr = get_remote_addr(request)
    trusted_proxies = _trusted_proxies()

    if not trusted_proxies:
        return remote_addr

    if remote_addr not in trusted_proxies:
        x_forwarded_for = request.headers.get("X-Forwarded-For")
        if x_forwarded_for:
            # Spoofed or misrouted header from a non-proxy peer
            logger.warning(
                "Ignoring X-Forwarded-For from untrusted proxy",
                extra={"remote_addr": remote_addr, "x_forwarded_for": x_forwarded_for},
            )
        return remote_addr

    x_forwarded_for = request.headers.get("X-Forwarded-For", "").strip()
    if x_forwarded_for:
        # X-Forwarded-For format: "client, proxy1, proxy2, ..."
        return x_forwarded_for.split(",")[0].strip() or remote_addr

    return remote_addr


__all__ = ["UNKNOWN_CLIENT_IP", "extract_client_ip", "get_remote_addr"]
