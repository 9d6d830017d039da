"""Path segment validation and pinned upstream URL construction.

Applied by the gateway to every inbound path segment before any outbound URL
is built. Checks run in this order and the first failing check wins:

    empty segment              -> "malformed path"
    "." or ".."                -> "traversal attempt"
    contains "://" or "//..."  -> "absolute URL / SSRF attempt"
    not [A-Za-z0-9_-]+         -> "forbidden characters"

After joining the validated segments onto the configured base authority the
resulting URL's scheme, host and port are compared with the base again. This
is the last line of defense against SSRF should URL parsing ever disagree
with the segment checks.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

import httpx

from libs.bff_auth.exceptions import PathRejectedError

logger = logging.getLogger(__name__)

SAFE_PATH_SEGMENT = re.compile(r"[A-Za-z0-9_-]+")

REASON_MALFORMED = "malformed path"
REASON_TRAVERSAL = "traversal attempt"
REASON_ABSOLUTE_URL = "absolute URL / SSRF attempt"
REASON_FORBIDDEN_CHARACTERS = "forbidden characters"
REASON_HOST_MISMATCH = "host mismatch"


def split_route_path(raw_path: str) -> list[str]:
    """Split a catch-all route value into segments, keeping empty ones.

    Example:
        >>> split_route_path("users/42/roles")
        ['users', '42', 'roles']
        >>> split_route_path("users//42")
        ['users', '', '42']
    """
    return raw_path.split("/")


def check_segment(segment: str) -> str | None:
    """Return the rejection reason for one segment, or None if it is safe."""
    if not segment:
        return REASON_MALFORMED
    if segment in (".", ".."):
        return REASON_TRAVERSAL
    if "://" in segment or segment.startswith("//"):
        return REASON_ABSOLUTE_URL
    if not SAFE_PATH_SEGMENT.fullmatch(segment):
        return REASON_FORBIDDEN_CHARACTERS
    return None


def validate_segments(segments: Sequence[str]) -> None:
    """Validate every segment.

    Raises:
        PathRejectedError: On the first unsafe segment (or an empty path)
    """
    if not segments:
        raise PathRejectedError(REASON_MALFORMED)
    for segment in segments:
        reason = check_segment(segment)
        if reason is not None:
            raise PathRejectedError(reason, segment=segment)


def build_upstream_path(prefix: str, segments: Sequence[str]) -> str:
    """Join a fixed prefix and validated segments (no leading slash)."""
    validate_segments(segments)
    return "/".join([prefix.strip("/"), *segments])


def build_upstream_url(base_url: str, upstream_path: str) -> httpx.URL:
    """Build the absolute upstream URL and re-check that it stays on the base authority.

    Args:
        base_url: Configured upstream base (scheme://host[:port])
        upstream_path: Path without leading slash, e.g. "api/v1/users/42"

    Raises:
        PathRejectedError: If the joined URL's scheme, host or port differ from the base
    """
    base = httpx.URL(base_url)
    url = base.join("/" + upstream_path.lstrip("/"))

    if (url.scheme, url.host, url.port) != (base.scheme, base.host, base.port):
        logger.error(
            "Upstream URL escaped configured authority",
            extra={"expected_host": base.host, "actual_host": url.host},
        )
        raise PathRejectedError(REASON_HOST_MISMATCH)
    return url


__all__ = [
    "REASON_ABSOLUTE_URL",
    "REASON_FORBIDDEN_CHARACTERS",
    "REASON_HOST_MISMATCH",
    "REASON_MALFORMED",
    "REASON_TRAVERSAL",
    "SAFE_PATH_SEGMENT",
    "build_upstream_path",
    "build_upstream_url",
    "check_segment",
    "split_route_path",
    "validate_segments",
]
