"""HMAC authentication protocol between the BFF gateway and the upstream API.

Sending side:   BffSigner (libs.bff_auth.signer)
Receiving side: BffRequestValidator (libs.bff_auth.validator)
Shared:         canonical JSON (libs.bff_auth.canonical), path guard, constants
"""

from libs.bff_auth.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    canonical_json_bytes,
    canonicalize,
    hash_body,
    hash_raw_body,
)
from libs.bff_auth.exceptions import (
    BffAuthenticationError,
    BffError,
    BffErrorCode,
    CanonicalizationError,
    PathRejectedError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnreachableError,
)
from libs.bff_auth.path_guard import build_upstream_url, check_segment, validate_segments
from libs.bff_auth.signer import BffSigner, HmacHeaderSet, SignedOutbound
from libs.bff_auth.validator import (
    GENERIC_REJECTION_MESSAGE,
    BffRequestValidator,
    ValidationOutcome,
)

__all__ = [
    "CANONICAL_VERSION",
    "GENERIC_REJECTION_MESSAGE",
    "BffAuthenticationError",
    "BffError",
    "BffErrorCode",
    "BffRequestValidator",
    "BffSigner",
    "CanonicalizationError",
    "HmacHeaderSet",
    "PathRejectedError",
    "SignedOutbound",
    "UpstreamError",
    "UpstreamTimeoutError",
    "UpstreamUnreachableError",
    "ValidationOutcome",
    "build_upstream_url",
    "canonical_json",
    "canonical_json_bytes",
    "canonicalize",
    "check_segment",
    "hash_body",
    "hash_raw_body",
    "validate_segments",
]
