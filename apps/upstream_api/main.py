"""FastAPI upstream API shell protected by BFF request validation.

Only the authentication boundary lives here: the signature middleware, trace
ids, logging and the health/metrics endpoints. Business routes are mounted by
the services that embed this application.

Run with:
    uvicorn apps.upstream_api.main:app --port 8000
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from apps.upstream_api.middleware import verify_bff_signature
from config.settings import Settings, get_settings
from libs.bff_auth.validator import BffRequestValidator
from libs.common.exceptions import ConfigurationError
from libs.common.logging import add_trace_id_middleware, configure_logging

SERVICE_NAME = "upstream_api"

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the upstream application.

    The validator is constructed eagerly in the lifespan: an empty
    BFF_HMAC_SECRET stops the service from starting.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = settings or get_settings()
        configure_logging(service_name=SERVICE_NAME, log_level=resolved.log_level)

        try:
            app.state.bff_validator = BffRequestValidator.from_settings(resolved)
        except ConfigurationError:
            logger.critical("Upstream API cannot start without BFF_HMAC_SECRET")
            raise

        logger.info("Upstream API started", extra={"bff_id": resolved.bff_id})
        try:
            yield
        finally:
            app.state.bff_validator = None
            logger.info("Upstream API shut down")

    app = FastAPI(
        title="Upstream API",
        description="API protected by BFF HMAC request validation",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Registered before the trace middleware so rejections still carry X-Trace-ID
    app.middleware("http")(verify_bff_signature)
    add_trace_id_middleware(app)

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
        "apps.upstream_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
