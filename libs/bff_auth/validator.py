"""Validation of HMAC-signed requests arriving from the BFF gateway.

Runs in the upstream API. Validation is an ordered list of named stages; the
first failing stage short-circuits and no later stage (and no business logic)
runs:

    1. headers    - X-BFF-Id, X-BFF-Timestamp, X-BFF-Signature all present
    2. bff_id     - signing-party id equals the configured id
    3. timestamp  - |now - timestamp| <= 300 seconds
    4. signature  - recomputed HMAC matches (constant-time comparison)

Security Notes:
    - Rejections are logged with full context (expected/received values,
      caller IP) for forensic review; callers only receive
      GENERIC_REJECTION_MESSAGE so the response is not an oracle.
    - Timestamp freshness is the only replay defense. No nonces are tracked,
      so a captured request can be replayed while its timestamp is still
      inside the window. This is an accepted residual risk; adding nonce
      tracking would change observable behaviour (duplicate rejection).
"""

from __future__ import annotations

import hmac
import logging
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter

from libs.bff_auth.canonical import hash_raw_body
from libs.bff_auth.constants import (
    HEADER_BFF_ID,
    HEADER_BFF_SIGNATURE,
    HEADER_BFF_TIMESTAMP,
    REQUIRED_HEADERS,
    TIMESTAMP_TOLERANCE_SECONDS,
)
from libs.bff_auth.exceptions import BffAuthenticationError, BffErrorCode
from libs.bff_auth.signer import Clock, build_payload, compute_signature
from libs.common.exceptions import ConfigurationError

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

bff_auth_checks_total = Counter(
    "bff_auth_checks_total",
    "BFF HMAC validation outcomes",
    ["result"],
)

GENERIC_REJECTION_MESSAGE = "Invalid BFF authentication"

_TIMESTAMP_PATTERN = re.compile(r"-?[0-9]{1,12}")


@dataclass(frozen=True)
class InboundSignedRequest:
    """Everything the validator needs from one received request.

    Header names are normalized to lower case on construction.
    """

    headers: Mapping[str, str]
    method: str
    path: str
    body: bytes = b""
    client_ip: str | None = None

    @classmethod
    def build(
        cls,
        headers: Mapping[str, str],
        method: str,
        path: str,
        body: bytes = b"",
        client_ip: str | None = None,
    ) -> InboundSignedRequest:
        lowered = {name.lower(): value for name, value in headers.items()}
        return cls(
            headers=lowered, method=method.upper(), path=path, body=body, client_ip=client_ip
        )

    def header(self, name: str) -> str | None:
        value = self.headers.get(name.lower())
        return value if value else None


@dataclass(frozen=True)
class ValidationOutcome:
    """Tagged result of a stage or of the whole pipeline."""

    ok: bool
    reason: BffErrorCode | None = None
    stage: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def passed(cls, stage: str | None = None) -> ValidationOutcome:
        return cls(ok=True, stage=stage)

    @classmethod
    def rejected(cls, stage: str, reason: BffErrorCode, **detail: Any) -> ValidationOutcome:
        return cls(ok=False, reason=reason, stage=stage, detail=detail)


@dataclass(frozen=True)
class ValidationStage:
    """A named pipeline step."""

    name: str
    check: Callable[[InboundSignedRequest], ValidationOutcome]


class BffRequestValidator:
    """Receiving-side mirror of :class:`libs.bff_auth.signer.BffSigner`.

    Example:
        >>> validator = BffRequestValidator(secret="s" * 64, expected_bff_id="nextjs-bff-prod")
        >>> outcome = validator.validate(headers, "POST", "/api/v1/auth/login", raw_body)
        >>> if not outcome.ok:
        ...     return JSONResponse(status_code=403, content={"message": GENERIC_REJECTION_MESSAGE})
    """

    def __init__(
        self,
        secret: str,
        expected_bff_id: str,
        tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
        clock: Clock = time.time,
    ) -> None:
        if not secret:
            raise ConfigurationError("BFF_HMAC_SECRET environment variable is not set")
        self._secret = secret.encode("utf-8")
        self.expected_bff_id = expected_bff_id
        self.tolerance_seconds = tolerance_seconds
        self._clock = clock
        self.stages: tuple[ValidationStage, ...] = (
            ValidationStage("headers", self._check_headers),
            ValidationStage("bff_id", self._check_bff_id),
            ValidationStage("timestamp", self._check_timestamp),
            ValidationStage("signature", self._check_signature),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> BffRequestValidator:
        return cls(
            secret=settings.bff_hmac_secret.get_secret_value(),
            expected_bff_id=settings.bff_id,
        )

    def validate(
        self,
        headers: Mapping[str, str],
        method: str,
        path: str,
        body: bytes = b"",
        client_ip: str | None = None,
    ) -> ValidationOutcome:
        """Run every stage in order and return the first rejection, or success."""
        request = InboundSignedRequest.build(headers, method, path, body, client_ip)
        return self.run(request)

    def run(self, request: InboundSignedRequest) -> ValidationOutcome:
        for stage in self.stages:
            outcome = stage.check(request)
            if not outcome.ok:
                assert outcome.reason is not None
                bff_auth_checks_total.labels(result=outcome.reason.value).inc()
                logger.warning(
                    "bff_auth_rejected",
                    extra={
                        "stage": stage.name,
                        "reason": outcome.reason.value,
                        "method": request.method,
                        "path": request.path,
                        "client_ip": request.client_ip,
                        **outcome.detail,
                    },
                )
                return outcome

        bff_auth_checks_total.labels(result="authenticated").inc()
        return ValidationOutcome.passed()

    def validate_or_raise(
        self,
        headers: Mapping[str, str],
        method: str,
        path: str,
        body: bytes = b"",
        client_ip: str | None = None,
    ) -> None:
        """Like :meth:`validate` but raise :class:`BffAuthenticationError` on rejection.

        The exception message is generic; the specific reason is in ``code``.
        """
        outcome = self.validate(headers, method, path, body, client_ip)
        if not outcome.ok:
            assert outcome.reason is not None
            raise BffAuthenticationError(outcome.reason, GENERIC_REJECTION_MESSAGE)

    # Stages

    def _check_headers(self, request: InboundSignedRequest) -> ValidationOutcome:
        missing = [name for name in REQUIRED_HEADERS if request.header(name) is None]
        if missing:
            return ValidationOutcome.rejected(
                "headers", BffErrorCode.MISSING_HEADERS, missing_headers=missing
            )
        return ValidationOutcome.passed("headers")

    def _check_bff_id(self, request: InboundSignedRequest) -> ValidationOutcome:
        received = request.header(HEADER_BFF_ID)
        if received != self.expected_bff_id:
            return ValidationOutcome.rejected(
                "bff_id",
                BffErrorCode.INVALID_BFF_ID,
                expected=self.expected_bff_id,
                received=received,
            )
        return ValidationOutcome.passed("bff_id")

    def _check_timestamp(self, request: InboundSignedRequest) -> ValidationOutcome:
        raw = request.header(HEADER_BFF_TIMESTAMP) or ""
        now = int(self._clock())
        if not _TIMESTAMP_PATTERN.fullmatch(raw.strip()):
            return ValidationOutcome.rejected(
                "timestamp",
                BffErrorCode.TIMESTAMP_EXPIRED,
                timestamp=raw,
                now=now,
                error="invalid_timestamp_format",
            )

        timestamp = int(raw.strip())
        skew = abs(now - timestamp)
        if skew > self.tolerance_seconds:
            return ValidationOutcome.rejected(
                "timestamp",
                BffErrorCode.TIMESTAMP_EXPIRED,
                timestamp=timestamp,
                now=now,
                skew_seconds=skew,
                tolerance_seconds=self.tolerance_seconds,
            )
        return ValidationOutcome.passed("timestamp")

    def _check_signature(self, request: InboundSignedRequest) -> ValidationOutcome:
        received = (request.header(HEADER_BFF_SIGNATURE) or "").strip().lower()
        timestamp = (request.header(HEADER_BFF_TIMESTAMP) or "").strip()
        payload = build_payload(
            timestamp,
            request.method,
            request.path,
            hash_raw_body(request.body),
        )
        expected = compute_signature(self._secret, payload)

        # Constant-time comparison on ASCII bytes (header values may be non-ASCII)
        if not hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8")):
            return ValidationOutcome.rejected(
                "signature",
                BffErrorCode.INVALID_SIGNATURE,
                payload=payload,
                expected=expected,
                received=received,
            )
        return ValidationOutcome.passed("signature")


__all__ = [
    "GENERIC_REJECTION_MESSAGE",
    "BffRequestValidator",
    "InboundSignedRequest",
    "ValidationOutcome",
    "ValidationStage",
    "bff_auth_checks_total",
]
