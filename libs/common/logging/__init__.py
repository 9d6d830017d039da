"""Centralized structured logging library.

Structured JSON logs with trace ID support, shared by the gateway and the
upstream API so a single request can be followed across both services.

Usage:
    # At service startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="bff_gateway", log_level="INFO")

    # In request handlers
    logger = get_logger(__name__)
    logger.warning("Path rejected", extra={"reason": "traversal attempt"})
"""

from libs.common.logging.config import configure_logging, get_logger
from libs.common.logging.context import (
    TRACE_ID_HEADER,
    LogContext,
    accept_or_generate_trace_id,
    clear_trace_id,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)
from libs.common.logging.formatter import JSONFormatter
from libs.common.logging.http_client import TracedHTTPXClient
from libs.common.logging.middleware import ASGITraceIDMiddleware, add_trace_id_middleware

__all__ = [
    # Configuration
    "configure_logging",
    "get_logger",
    # Trace ID management
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "accept_or_generate_trace_id",
    "LogContext",
    "TRACE_ID_HEADER",
    # ASGI / HTTP integration
    "ASGITraceIDMiddleware",
    "add_trace_id_middleware",
    "TracedHTTPXClient",
    # Formatter (for advanced usage)
    "JSONFormatter",
]
