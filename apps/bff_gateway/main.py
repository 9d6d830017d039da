"""FastAPI BFF gateway.

Sits between the browser and the upstream API:
- /api/v1/*: signed reverse proxy (HMAC headers, bearer credential cookie)
- /health: liveness probe
- /metrics: Prometheus metrics

The shared secret is checked at startup; a gateway without one refuses to
boot instead of forwarding unsigned requests.

Run with:
    uvicorn apps.bff_gateway.main:app --port 3000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from apps.bff_gateway import routes
from apps.bff_gateway.credential_store import CredentialCookieConfig, CredentialStore
from apps.bff_gateway.proxy import ProxyForwarder
from config.settings import Settings, get_settings
from libs.bff_auth.signer import BffSigner
from libs.common.exceptions import ConfigurationError
from libs.common.logging import add_trace_id_middleware, configure_logging

SERVICE_NAME = "bff_gateway"

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Explicit settings (defaults to the cached environment settings)
        transport: Optional httpx transport for the upstream client (tests)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = settings or get_settings()
        configure_logging(service_name=SERVICE_NAME, log_level=resolved.log_level)

        logger.info(
            "BFF gateway starting",
            extra={
                "upstream_api_url": resolved.upstream_api_url,
                "bff_id": resolved.bff_id,
                "timeout_ms": resolved.bff_timeout_ms,
            },
        )

        try:
            signer = BffSigner.from_settings(resolved)
        except ConfigurationError:
            logger.critical("BFF gateway cannot start without BFF_HMAC_SECRET")
            raise

        credentials = CredentialStore(CredentialCookieConfig.from_settings(resolved))
        forwarder = ProxyForwarder(resolved, signer, credentials, transport=transport)
        await forwarder.startup()
        app.state.forwarder = forwarder

        try:
            yield
        finally:
            await forwarder.shutdown()
            app.state.forwarder = None
            logger.info("BFF gateway shut down")

    app = FastAPI(
        title="BFF Gateway",
        description="Signs browser API calls and forwards them to the upstream API",
        version="1.0.0",
        lifespan=lifespan,
    )

    add_trace_id_middleware(app)
    app.include_router(routes.router, tags=["proxy"])

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME}

    app.mount("/metrics", make_asgi_app())
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "apps.bff_gateway.main:app",
        host="0.0.0.0",
        port=3000,
        reload=True,
    )
