"""Tests for the signing proxy forwarder.

Tests cover:
- Request lifecycle state machine
- Signed upstream requests (headers, canonical body, bearer, query)
- Local rejections (path guard, missing credential, misconfiguration)
- Timeout and unreachable upstream mapping
- Relay of status, headers, body and multiple Set-Cookie values
- Credential rotation and logout clearing
"""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import MagicMock

import httpx
import pytest
import respx
from starlette.responses import Response

from apps.bff_gateway.credential_store import CredentialStore
from apps.bff_gateway.proxy import (
    ProxyContext,
    ProxyForwarder,
    ProxyState,
    bff_proxy_requests_total,
)
from config.settings import Settings
from libs.bff_auth.constants import HEADER_BFF_ID, HEADER_BFF_SIGNATURE, HEADER_BFF_TIMESTAMP
from libs.bff_auth.signer import BffSigner
from libs.bff_auth.validator import BffRequestValidator
from libs.common.exceptions import ConfigurationError

UPSTREAM = "http://upstream.test"
DEEP_JSON = b"[" * 100_000 + b"]" * 100_000


def _ctx(
    method: str = "GET",
    path: str = "users/42",
    *,
    body: object = None,
    auth_token: str | None = "tok-1",
    query_items: list[tuple[str, str]] | None = None,
) -> ProxyContext:
    raw = b"" if body is None else json.dumps(body).encode()
    return ProxyContext(
        method=method,
        segments=path.split("/"),
        query_items=query_items or [],
        content_type="application/json" if body is not None else "",
        body=raw,
        auth_token=auth_token,
        client_ip="127.0.0.1",
    )


def _set_cookies(response: Response) -> list[str]:
    return [v.decode("latin-1") for k, v in response.raw_headers if k == b"set-cookie"]


class _SlowTransport(httpx.AsyncBaseTransport):
    """Transport that never answers in time; records cancellation."""

    def __init__(self) -> None:
        self.cancelled = False

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return httpx.Response(200)


# ============================================================================
# State Machine
# ============================================================================


class TestProxyState:
    """Tests for ProxyContext.advance()."""

    def test_happy_path_sequence(self) -> None:
        ctx = _ctx()
        for state in (
            ProxyState.PATH_VALIDATED,
            ProxyState.SIGNED,
            ProxyState.FORWARDED,
            ProxyState.RELAYED,
            ProxyState.CREDENTIAL_ROTATED,
            ProxyState.DONE,
        ):
            ctx.advance(state)

        assert ctx.state is ProxyState.DONE
        assert ctx.history[0] is ProxyState.RECEIVED
        assert len(ctx.history) == 7

    def test_skipping_a_state_is_illegal(self) -> None:
        ctx = _ctx()

        with pytest.raises(RuntimeError, match="Illegal proxy transition"):
            ctx.advance(ProxyState.FORWARDED)

    def test_errored_reachable_from_any_non_terminal_state(self) -> None:
        ctx = _ctx()
        ctx.advance(ProxyState.PATH_VALIDATED)

        ctx.advance(ProxyState.ERRORED)

        assert ctx.state is ProxyState.ERRORED

    @pytest.mark.parametrize("terminal", [ProxyState.DONE, ProxyState.ERRORED])
    def test_terminal_states_are_final(self, terminal: ProxyState) -> None:
        ctx = _ctx()
        ctx.state = terminal

        with pytest.raises(RuntimeError):
            ctx.advance(ProxyState.ERRORED)


class TestProxyContext:
    """Tests for body selection and route classification."""

    def test_json_body_parsed(self) -> None:
        assert _ctx("POST", body={"a": 1}).json_body() == {"a": 1}

    def test_get_body_ignored(self) -> None:
        ctx = _ctx("GET", body={"a": 1})

        assert ctx.json_body() is None

    def test_non_json_content_type_ignored(self) -> None:
        ctx = _ctx("POST", body={"a": 1})
        ctx.content_type = "text/plain"

        assert ctx.json_body() is None

    @pytest.mark.parametrize(
        "raw", [b"", b"{not json", b'{"v": NaN}', b"[" * 990 + b"]" * 990, DEEP_JSON]
    )
    def test_unusable_json_is_no_body(self, raw: bytes) -> None:
        ctx = _ctx("POST", body={})
        ctx.body = raw

        assert ctx.json_body() is None

    def test_empty_object_is_a_body(self) -> None:
        assert _ctx("POST", body={}).json_body() == {}

    @pytest.mark.parametrize(
        ("upstream_path", "public"),
        [
            ("api/v1/auth/login", True),
            ("api/v1/auth/register", True),
            ("api/v1/auth/providers", True),
            ("api/v1/auth/providers/google", True),
            ("api/v1/auth/loginx", False),
            ("api/v1/users", False),
            (None, False),
        ],
    )
    def test_public_routes(self, upstream_path: str | None, public: bool) -> None:
        ctx = _ctx()
        ctx.upstream_path = upstream_path

        assert ctx.is_public_route is public


# ============================================================================
# Forwarding
# ============================================================================


@pytest.mark.asyncio()
@respx.mock
async def test_get_is_signed_and_carries_bearer(
    forwarder: ProxyForwarder, validator: BffRequestValidator
) -> None:
    route = respx.get(f"{UPSTREAM}/api/v1/users/42").mock(
        return_value=httpx.Response(200, json={"id": 42})
    )
    ctx = _ctx()

    response = await forwarder.forward(ctx)

    assert response.status_code == 200
    assert json.loads(response.body) == {"id": 42}
    sent = route.calls.last.request
    assert sent.headers["Authorization"] == "Bearer tok-1"
    assert sent.headers["Content-Type"] == "application/json"
    assert sent.headers["Accept"] == "application/json"
    assert sent.headers[HEADER_BFF_ID] == "nextjs-bff-prod"
    assert len(sent.headers[HEADER_BFF_SIGNATURE]) == 64
    assert sent.content == b""
    assert validator.validate(sent.headers, sent.method, sent.url.path, sent.content).ok
    assert ctx.state is ProxyState.DONE


@pytest.mark.asyncio()
@respx.mock
async def test_post_sends_canonical_body(
    forwarder: ProxyForwarder, validator: BffRequestValidator
) -> None:
    route = respx.post(f"{UPSTREAM}/api/v1/users").mock(return_value=httpx.Response(201))

    await forwarder.forward(_ctx("POST", "users", body={"name": "a", "age": 3}))

    sent = route.calls.last.request
    assert sent.content == b'{"age":3,"name":"a"}'
    assert validator.validate(sent.headers, sent.method, sent.url.path, sent.content).ok


@pytest.mark.asyncio()
@respx.mock
async def test_unparseable_body_forwarded_without_body(
    forwarder: ProxyForwarder, fixed_clock: int
) -> None:
    route = respx.post(f"{UPSTREAM}/api/v1/users").mock(return_value=httpx.Response(200))
    ctx = _ctx("POST", "users", body={})
    ctx.body = b"{broken"

    await forwarder.forward(ctx)

    sent = route.calls.last.request
    assert sent.content == b""
    assert sent.headers[HEADER_BFF_TIMESTAMP] == str(fixed_clock)


@pytest.mark.asyncio()
@respx.mock
async def test_deeply_nested_body_forwarded_without_body(
    forwarder: ProxyForwarder, validator: BffRequestValidator
) -> None:
    route = respx.post(f"{UPSTREAM}/api/v1/users").mock(return_value=httpx.Response(200))
    ctx = _ctx("POST", "users", body={})
    ctx.body = DEEP_JSON

    response = await forwarder.forward(ctx)

    assert response.status_code == 200
    assert ctx.state is ProxyState.DONE
    sent = route.calls.last.request
    assert sent.content == b""
    assert validator.validate(sent.headers, sent.method, sent.url.path, sent.content).ok


@pytest.mark.asyncio()
@respx.mock
async def test_query_items_forwarded_but_not_signed(
    forwarder: ProxyForwarder, validator: BffRequestValidator
) -> None:
    route = respx.get(f"{UPSTREAM}/api/v1/users").mock(return_value=httpx.Response(200))

    query = [("tag", "a"), ("tag", "b"), ("page", "2")]
    await forwarder.forward(_ctx(path="users", query_items=query))

    sent = route.calls.last.request
    assert sent.url.params.get_list("tag") == ["a", "b"]
    assert sent.url.params["page"] == "2"
    assert validator.validate(sent.headers, sent.method, sent.url.path, sent.content).ok


@pytest.mark.asyncio()
@respx.mock
async def test_public_route_forwarded_without_bearer(forwarder: ProxyForwarder) -> None:
    route = respx.post(f"{UPSTREAM}/api/v1/auth/login").mock(return_value=httpx.Response(401))

    response = await forwarder.forward(
        _ctx("POST", "auth/login", body={"email": "a@b.c"}, auth_token=None)
    )

    assert response.status_code == 401
    assert "Authorization" not in route.calls.last.request.headers


# ============================================================================
# Local Rejections
# ============================================================================


@pytest.mark.asyncio()
@respx.mock
@pytest.mark.parametrize("path", ["../etc", "http:/evil.com", "a b", "users//42", ""])
async def test_path_rejected_without_network_call(forwarder: ProxyForwarder, path: str) -> None:
    ctx = _ctx(path=path)

    response = await forwarder.forward(ctx)

    assert response.status_code == 500
    assert json.loads(response.body) == {"error": "Invalid request", "code": "PATH_REJECTED"}
    assert respx.calls.call_count == 0
    assert ctx.state is ProxyState.ERRORED


@pytest.mark.asyncio()
@respx.mock
async def test_missing_credential_rejected_locally(forwarder: ProxyForwarder) -> None:
    before = bff_proxy_requests_total.labels(method="GET", result="unauthorized")._value.get()

    response = await forwarder.forward(_ctx(auth_token=None))

    assert response.status_code == 401
    assert json.loads(response.body) == {"error": "Unauthorized", "message": "No auth token found"}
    assert respx.calls.call_count == 0
    after = bff_proxy_requests_total.labels(method="GET", result="unauthorized")._value.get()
    assert after == before + 1


@pytest.mark.asyncio()
@respx.mock
async def test_signing_misconfiguration_fails_closed(
    settings: Settings, credentials: CredentialStore
) -> None:
    signer = MagicMock(spec=BffSigner)
    signer.sign.side_effect = ConfigurationError("BFF_HMAC_SECRET environment variable is not set")
    forwarder = ProxyForwarder(settings, signer, credentials)
    await forwarder.startup()
    try:
        response = await forwarder.forward(_ctx())
    finally:
        await forwarder.shutdown()

    assert response.status_code == 500
    assert json.loads(response.body)["code"] == "CONFIGURATION_ERROR"
    assert respx.calls.call_count == 0


# ============================================================================
# Upstream Failures
# ============================================================================


@pytest.mark.asyncio()
async def test_timeout_maps_to_504_and_cancels_call(
    settings: Settings, signer: BffSigner, credentials: CredentialStore
) -> None:
    transport = _SlowTransport()
    fast = settings.model_copy(update={"bff_timeout_ms": 50})
    forwarder = ProxyForwarder(fast, signer, credentials, transport=transport)
    await forwarder.startup()
    ctx = _ctx()
    try:
        response = await forwarder.forward(ctx)
    finally:
        await forwarder.shutdown()

    assert response.status_code == 504
    assert json.loads(response.body) == {"error": "Request timeout", "code": "TIMEOUT"}
    assert transport.cancelled is True
    assert ctx.state is ProxyState.ERRORED


@pytest.mark.asyncio()
@respx.mock
async def test_httpx_timeout_also_maps_to_504(forwarder: ProxyForwarder) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(side_effect=httpx.ReadTimeout("slow"))

    response = await forwarder.forward(_ctx())

    assert response.status_code == 504
    assert json.loads(response.body)["code"] == "TIMEOUT"


@pytest.mark.asyncio()
@respx.mock
async def test_unreachable_upstream(forwarder: ProxyForwarder) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(side_effect=httpx.ConnectError("refused"))

    response = await forwarder.forward(_ctx())

    assert response.status_code == 500
    assert json.loads(response.body) == {
        "error": "Internal server error",
        "message": "Failed to proxy request",
        "code": "NETWORK_ERROR",
    }


# ============================================================================
# Relay and Credentials
# ============================================================================


@pytest.mark.asyncio()
@respx.mock
async def test_non_2xx_relayed_transparently(forwarder: ProxyForwarder) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(
        return_value=httpx.Response(
            422,
            json={"message": "The email field is required."},
            headers={"X-Request-Id": "up-1"},
        )
    )

    response = await forwarder.forward(_ctx())

    assert response.status_code == 422
    assert json.loads(response.body) == {"message": "The email field is required."}
    assert response.headers["x-request-id"] == "up-1"
    assert response.headers["content-type"] == "application/json"
    assert response.headers.getlist("content-length") == [str(len(response.body))]


@pytest.mark.asyncio()
@respx.mock
async def test_non_2xx_logged_as_upstream_error(
    forwarder: ProxyForwarder, caplog: pytest.LogCaptureFixture
) -> None:
    respx.delete(f"{UPSTREAM}/api/v1/users/42").mock(return_value=httpx.Response(503))
    caplog.set_level(logging.INFO, logger="apps.bff_gateway.proxy")

    response = await forwarder.forward(_ctx("DELETE"))

    assert response.status_code == 503
    records = [r for r in caplog.records if r.getMessage() == "Relaying upstream error response"]
    assert len(records) == 1
    assert records[0].status_code == 503  # type: ignore[attr-defined]
    assert records[0].upstream_error == {  # type: ignore[attr-defined]
        "code": "UPSTREAM_ERROR",
        "message": "Upstream error",
        "details": {"method": "DELETE"},
    }


@pytest.mark.asyncio()
@respx.mock
async def test_deeply_nested_upstream_body_relayed_without_rotation(
    forwarder: ProxyForwarder,
) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(
        return_value=httpx.Response(200, content=DEEP_JSON)
    )
    ctx = _ctx()

    response = await forwarder.forward(ctx)

    assert response.status_code == 200
    assert response.body == DEEP_JSON
    assert _set_cookies(response) == []
    assert ctx.state is ProxyState.DONE


@pytest.mark.asyncio()
@respx.mock
async def test_login_issues_credential_cookie(forwarder: ProxyForwarder) -> None:
    respx.post(f"{UPSTREAM}/api/v1/auth/login").mock(
        return_value=httpx.Response(200, json={"data": {"access_token": "abc123"}})
    )
    ctx = _ctx("POST", "auth/login", body={"email": "a@b.c", "password": "x"}, auth_token=None)

    response = await forwarder.forward(ctx)

    cookies = _set_cookies(response)
    assert len(cookies) == 1
    assert cookies[0].startswith("auth_token=abc123;")
    assert "Max-Age=1296000" in cookies[0]
    assert "HttpOnly" in cookies[0]
    assert ProxyState.CREDENTIAL_ROTATED in ctx.history
    assert json.loads(response.body) == {"data": {"access_token": "abc123"}}


@pytest.mark.asyncio()
@respx.mock
async def test_upstream_set_cookies_preserved_individually(forwarder: ProxyForwarder) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(
        return_value=httpx.Response(
            200,
            json={"data": {"access_token": "rotated"}},
            headers=[
                ("Set-Cookie", "a=1; Path=/"),
                ("Set-Cookie", "b=2; Path=/; HttpOnly"),
            ],
        )
    )

    response = await forwarder.forward(_ctx())

    cookies = _set_cookies(response)
    assert cookies[:2] == ["a=1; Path=/", "b=2; Path=/; HttpOnly"]
    assert cookies[2].startswith("auth_token=rotated;")


@pytest.mark.asyncio()
@respx.mock
async def test_response_without_token_leaves_cookie_alone(forwarder: ProxyForwarder) -> None:
    respx.get(f"{UPSTREAM}/api/v1/users/42").mock(return_value=httpx.Response(200, text="plain"))
    ctx = _ctx()

    response = await forwarder.forward(ctx)

    assert _set_cookies(response) == []
    assert ProxyState.CREDENTIAL_ROTATED not in ctx.history
    assert response.body == b"plain"


@pytest.mark.asyncio()
@respx.mock
async def test_logout_clears_cookie(forwarder: ProxyForwarder) -> None:
    respx.post(f"{UPSTREAM}/api/v1/auth/logout").mock(return_value=httpx.Response(204))

    response = await forwarder.forward(_ctx("POST", "auth/logout"))

    assert response.status_code == 204
    cookies = _set_cookies(response)
    assert len(cookies) == 1
    assert cookies[0].startswith("auth_token=")
    assert "Max-Age=0" in cookies[0]


@pytest.mark.asyncio()
@respx.mock
async def test_logout_clears_cookie_even_when_upstream_fails(forwarder: ProxyForwarder) -> None:
    respx.post(f"{UPSTREAM}/api/v1/auth/logout").mock(side_effect=httpx.ConnectError("down"))

    response = await forwarder.forward(_ctx("POST", "auth/logout"))

    assert response.status_code == 500
    assert any("Max-Age=0" in cookie for cookie in _set_cookies(response))


# ============================================================================
# Lifecycle
# ============================================================================


def test_client_property_raises_when_not_initialized(
    settings: Settings, signer: BffSigner, credentials: CredentialStore
) -> None:
    forwarder = ProxyForwarder(settings, signer, credentials)

    with pytest.raises(RuntimeError, match="Forwarder not initialized"):
        _ = forwarder._client


@pytest.mark.asyncio()
async def test_startup_and_shutdown_are_idempotent(
    settings: Settings, signer: BffSigner, credentials: CredentialStore
) -> None:
    forwarder = ProxyForwarder(settings, signer, credentials)

    await forwarder.startup()
    first = forwarder._http_client
    await forwarder.startup()
    assert forwarder._http_client is first

    await forwarder.shutdown()
    await forwarder.shutdown()
    assert forwarder._http_client is None
