"""ASGI middleware for trace ID extraction and injection.

Example:
    >>> from fastapi import FastAPI
    >>> from libs.common.logging.middleware import add_trace_id_middleware
    >>>
    >>> app = FastAPI()
    >>> add_trace_id_middleware(app)
"""

from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any

from fastapi import FastAPI
from starlette.types import ASGIApp

from libs.common.logging.context import (
    TRACE_ID_HEADER,
    accept_or_generate_trace_id,
    clear_trace_id,
    set_trace_id,
)

_TRACE_HEADER_KEY = TRACE_ID_HEADER.lower().encode("latin-1")

Message = MutableMapping[str, Any]


class ASGITraceIDMiddleware:
    """Adopt or mint a trace ID per HTTP request and echo it on the response.

    Works below Starlette's exception handlers, so error responses produced
    by the app (401/403/500 JSON bodies) carry the header as well.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: MutableMapping[str, Any],
        receive: Callable[[], Awaitable[Message]],
        send: Callable[[Message], Awaitable[None]],
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        raw = None
        for key, value in scope.get("headers", []):
            if key.lower() == _TRACE_HEADER_KEY:
                raw = value.decode("latin-1")
                break
        trace_id = accept_or_generate_trace_id(raw)
        set_trace_id(trace_id)

        async def send_with_trace_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = [
                    (k, v) for k, v in message.get("headers", []) if k.lower() != _TRACE_HEADER_KEY
                ]
                headers.append((_TRACE_HEADER_KEY, trace_id.encode("latin-1")))
                message["headers"] = headers
            await send(message)

        try:
            await self.app(scope, receive, send_with_trace_id)
        finally:
            clear_trace_id()


def add_trace_id_middleware(app: FastAPI) -> None:
    """Install :class:`ASGITraceIDMiddleware` on a FastAPI application."""
    app.add_middleware(ASGITraceIDMiddleware)
