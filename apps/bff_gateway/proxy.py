"""Signing reverse proxy from the gateway to the upstream API.

Every ``/api/v1/*`` call from the browser is turned into an HMAC-signed
upstream call. One request moves through these states:

    RECEIVED -> PATH_VALIDATED -> SIGNED -> FORWARDED -> RELAYED
             -> (CREDENTIAL_ROTATED) -> DONE

with ERRORED reachable from any non-terminal state.

Failure semantics:
    - path / SSRF violations: 500 with a generic body, no network call
    - signing misconfiguration: 500, never forwarded unsigned
    - missing bearer credential on a non-public route: 401, no network call
    - upstream deadline exceeded: 504 with code TIMEOUT
    - upstream unreachable: 500 with code NETWORK_ERROR
    - upstream non-2xx: relayed unchanged (status, headers, body)

Nothing is retried; the caller owns retry policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from apps.bff_gateway.credential_store import CredentialStore
from libs.bff_auth.canonical import canonical_json_bytes, parse_json
from libs.bff_auth.constants import (
    API_PREFIX,
    BODYLESS_METHODS,
    LOGOUT_ROUTE,
    PUBLIC_ROUTES,
)
from libs.bff_auth.exceptions import (
    BffErrorCode,
    PathRejectedError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnreachableError,
)
from libs.bff_auth.path_guard import build_upstream_path, build_upstream_url, split_route_path
from libs.bff_auth.signer import BffSigner
from libs.common.exceptions import ConfigurationError
from libs.common.logging.http_client import TracedHTTPXClient
from libs.common.network_utils import extract_client_ip

if TYPE_CHECKING:
    from config.settings import Settings

logger = logging.getLogger(__name__)

bff_proxy_requests_total = Counter(
    "bff_proxy_requests_total",
    "Requests handled by the BFF proxy",
    ["method", "result"],
)

bff_proxy_upstream_latency_seconds = Histogram(
    "bff_proxy_upstream_latency_seconds",
    "Latency of upstream calls made by the BFF proxy",
    ["method"],
)

# Response headers that describe the upstream framing, not the relayed body
_FRAMING_HEADERS = frozenset(
    {"content-encoding", "content-length", "transfer-encoding", "connection", "keep-alive"}
)


class ProxyState(str, Enum):
    RECEIVED = "received"
    PATH_VALIDATED = "path_validated"
    SIGNED = "signed"
    FORWARDED = "forwarded"
    RELAYED = "relayed"
    CREDENTIAL_ROTATED = "credential_rotated"
    DONE = "done"
    ERRORED = "errored"


_TRANSITIONS: dict[ProxyState, frozenset[ProxyState]] = {
    ProxyState.RECEIVED: frozenset({ProxyState.PATH_VALIDATED}),
    ProxyState.PATH_VALIDATED: frozenset({ProxyState.SIGNED}),
    ProxyState.SIGNED: frozenset({ProxyState.FORWARDED}),
    ProxyState.FORWARDED: frozenset({ProxyState.RELAYED}),
    ProxyState.RELAYED: frozenset({ProxyState.CREDENTIAL_ROTATED, ProxyState.DONE}),
    ProxyState.CREDENTIAL_ROTATED: frozenset({ProxyState.DONE}),
    ProxyState.DONE: frozenset(),
    ProxyState.ERRORED: frozenset(),
}


@dataclass
class ProxyContext:
    """Explicit per-request state for one proxied call.

    Built once from the inbound request; the forwarder never reads the
    request object, the cookie jar or any other ambient state directly.
    """

    method: str
    segments: list[str]
    query_items: list[tuple[str, str]] = field(default_factory=list)
    content_type: str = ""
    body: bytes = b""
    auth_token: str | None = None
    client_ip: str = "unknown"
    state: ProxyState = ProxyState.RECEIVED
    history: list[ProxyState] = field(default_factory=lambda: [ProxyState.RECEIVED])
    upstream_path: str | None = None

    @classmethod
    async def from_request(
        cls, request: Request, path: str, credentials: CredentialStore
    ) -> ProxyContext:
        method = request.method.upper()
        content_type = request.headers.get("content-type", "")
        body = b""
        if method not in BODYLESS_METHODS and "application/json" in content_type.lower():
            body = await request.body()

        return cls(
            method=method,
            segments=split_route_path(path),
            query_items=list(request.query_params.multi_items()),
            content_type=content_type,
            body=body,
            auth_token=credentials.read(request.cookies),
            client_ip=extract_client_ip(request),
        )

    def advance(self, new_state: ProxyState) -> None:
        """Move to ``new_state``; ERRORED is allowed from any non-terminal state."""
        allowed = _TRANSITIONS[self.state]
        is_terminal = not allowed
        if is_terminal or (new_state is not ProxyState.ERRORED and new_state not in allowed):
            raise RuntimeError(f"Illegal proxy transition {self.state.value} -> {new_state.value}")
        logger.debug(
            "proxy_state_transition",
            extra={"from_state": self.state.value, "to_state": new_state.value},
        )
        self.state = new_state
        self.history.append(new_state)

    def json_body(self) -> Any:
        """Parsed JSON body, or None when the body is absent or unusable.

        Unparseable JSON and values that cannot be canonically encoded are
        treated as "no body", not as errors.
        """
        if self.method in BODYLESS_METHODS or not self.body:
            return None
        if "application/json" not in self.content_type.lower():
            return None
        try:
            parsed = parse_json(self.body)
            canonical_json_bytes(parsed)
        except ValueError:
            logger.debug("Ignoring unparseable JSON request body", extra={"method": self.method})
            return None
        return parsed

    @property
    def is_public_route(self) -> bool:
        # Prefix match on whole segments: "auth/providers/google" is public, "auth/loginx" is not
        path = self.upstream_path
        return path is not None and any(
            path == route or path.startswith(route + "/") for route in PUBLIC_ROUTES
        )

    @property
    def is_logout(self) -> bool:
        return self.upstream_path == LOGOUT_ROUTE


class ProxyForwarder:
    """Owns the upstream HTTP client and the forwarding lifecycle."""

    def __init__(
        self,
        settings: Settings,
        signer: BffSigner,
        credentials: CredentialStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._signer = signer
        self.credentials = credentials
        self._transport = transport
        self._timeout = settings.bff_timeout_seconds
        self._http_client: httpx.AsyncClient | None = None

    @property
    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            raise RuntimeError("Forwarder not initialized - call startup() first")
        return self._http_client

    async def startup(self) -> None:
        """Create the shared upstream client."""
        if self._http_client is None:
            self._http_client = TracedHTTPXClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=False,
                transport=self._transport,
            )

    async def shutdown(self) -> None:
        """Close the upstream client and release pooled connections."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def forward(self, ctx: ProxyContext) -> Response:
        """Run one request through the state machine and return the client response."""
        try:
            response = await self._forward(ctx)
        except PathRejectedError as exc:
            ctx.advance(ProxyState.ERRORED)
            logger.warning(
                "Proxy path rejected",
                extra={
                    "reason": exc.reason,
                    "segment": exc.segment,
                    "method": ctx.method,
                    "client_ip": ctx.client_ip,
                },
            )
            response = self._error(
                500, "path_rejected", ctx, {"error": "Invalid request", "code": exc.code.value}
            )
        except ConfigurationError as exc:
            ctx.advance(ProxyState.ERRORED)
            logger.error("Proxy signing misconfigured", extra={"error": str(exc)})
            response = self._error(
                500,
                "config_error",
                ctx,
                {
                    "error": "BFF authentication misconfigured",
                    "code": BffErrorCode.CONFIGURATION_ERROR.value,
                },
            )
        except UpstreamTimeoutError as exc:
            ctx.advance(ProxyState.ERRORED)
            logger.warning(
                "Upstream request timed out",
                extra={
                    "upstream_path": ctx.upstream_path,
                    "timeout_seconds": self._timeout,
                    "method": ctx.method,
                },
            )
            response = self._error(
                504, "timeout", ctx, {"error": exc.message, "code": exc.code.value}
            )
        except UpstreamUnreachableError as exc:
            ctx.advance(ProxyState.ERRORED)
            logger.error(
                "Upstream unreachable",
                extra={"upstream_path": ctx.upstream_path, "error": str(exc.details)},
            )
            response = self._error(
                500,
                "unreachable",
                ctx,
                {
                    "error": "Internal server error",
                    "message": "Failed to proxy request",
                    "code": exc.code.value,
                },
            )
        except Exception:
            if ctx.state not in (ProxyState.DONE, ProxyState.ERRORED):
                ctx.advance(ProxyState.ERRORED)
            logger.exception("Unexpected proxy failure", extra={"upstream_path": ctx.upstream_path})
            response = self._error(
                500,
                "error",
                ctx,
                {"error": "Internal server error", "message": "Failed to proxy request"},
            )

        if ctx.is_logout:
            self.credentials.clear(response)
        return response

    async def _forward(self, ctx: ProxyContext) -> Response:
        # Path guard before any URL exists
        ctx.upstream_path = build_upstream_path(API_PREFIX, ctx.segments)
        url = build_upstream_url(self._settings.upstream_api_url, ctx.upstream_path)
        ctx.advance(ProxyState.PATH_VALIDATED)

        signed = self._signer.sign(ctx.method, ctx.upstream_path, ctx.json_body())
        ctx.advance(ProxyState.SIGNED)

        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **signed.headers.as_headers(),
        }

        if ctx.auth_token:
            headers["Authorization"] = f"Bearer {ctx.auth_token}"
        elif not ctx.is_public_route:
            # Fast-fail only; the upstream validator is the security boundary
            ctx.advance(ProxyState.ERRORED)
            bff_proxy_requests_total.labels(method=ctx.method, result="unauthorized").inc()
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "message": "No auth token found"},
            )

        upstream = await self._send(ctx.method, url, headers, ctx.query_items, signed.body)
        ctx.advance(ProxyState.FORWARDED)

        response = self._relay(upstream)
        ctx.advance(ProxyState.RELAYED)
        if upstream.is_error:
            failure = UpstreamError(upstream.status_code, details={"method": ctx.method})
            logger.info(
                "Relaying upstream error response",
                extra={
                    "upstream_path": ctx.upstream_path,
                    "status_code": failure.status_code,
                    "upstream_error": failure.to_dict(),
                },
            )

        token = self.credentials.extract_access_token(upstream.content)
        if token:
            self.credentials.issue(response, token)
            ctx.advance(ProxyState.CREDENTIAL_ROTATED)
            logger.info("Bearer credential rotated", extra={"upstream_path": ctx.upstream_path})

        ctx.advance(ProxyState.DONE)
        bff_proxy_requests_total.labels(method=ctx.method, result="relayed").inc()
        return response

    async def _send(
        self,
        method: str,
        url: httpx.URL,
        headers: dict[str, str],
        query_items: list[tuple[str, str]],
        body: bytes | None,
    ) -> httpx.Response:
        """Issue the upstream call under a total deadline.

        The response body is fully read before returning. On deadline expiry
        the in-flight call is cancelled, which closes its connection.
        """
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._client.request(
                    method,
                    url,
                    headers=headers,
                    params=query_items or None,
                    content=body,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamTimeoutError("Request timeout") from exc
        except httpx.RequestError as exc:
            raise UpstreamUnreachableError("Upstream unreachable", details=str(exc)) from exc
        finally:
            bff_proxy_upstream_latency_seconds.labels(method=method).observe(
                time.perf_counter() - started
            )

    @staticmethod
    def _relay(upstream: httpx.Response) -> Response:
        """Copy status, body and headers; re-append each Set-Cookie individually."""
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in upstream.headers.multi_items():
            lowered = name.lower()
            if lowered == "set-cookie" or lowered in _FRAMING_HEADERS:
                continue
            response.headers.append(name, value)

        for cookie in upstream.headers.get_list("set-cookie"):
            response.headers.append("set-cookie", cookie)
        return response

    @staticmethod
    def _error(
        status_code: int, result: str, ctx: ProxyContext, content: dict[str, Any]
    ) -> Response:
        bff_proxy_requests_total.labels(method=ctx.method, result=result).inc()
        return JSONResponse(status_code=status_code, content=content)


__all__ = [
    "ProxyContext",
    "ProxyForwarder",
    "ProxyState",
    "bff_proxy_requests_total",
    "bff_proxy_upstream_latency_seconds",
]
