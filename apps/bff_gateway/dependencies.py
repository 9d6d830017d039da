"""FastAPI dependencies for the BFF gateway.

The forwarder is created by the application lifespan and stored on
``app.state``; handlers receive it through :func:`get_forwarder`.
"""

from __future__ import annotations

from fastapi import Request

from apps.bff_gateway.proxy import ProxyForwarder


def get_forwarder(request: Request) -> ProxyForwarder:
    forwarder: ProxyForwarder | None = getattr(request.app.state, "forwarder", None)
    if forwarder is None:
        raise RuntimeError("Forwarder not initialized - application lifespan has not run")
    return forwarder
