"""Trace ID generation and context propagation.

The gateway assigns (or accepts) a trace ID per inbound request, stores it in
a context variable for the log formatter, and forwards it to the upstream API
in the X-Trace-ID header. The upstream adopts it, so a rejected signature can
be matched to the gateway log line that produced it.

Example:
    >>> set_trace_id("abc-123")
    >>> get_trace_id()
    'abc-123'
"""

import contextvars
import re
import uuid
from types import TracebackType

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

# HTTP header name for trace ID propagation
TRACE_ID_HEADER = "X-Trace-ID"

# Inbound trace IDs are client-controlled; keep them short and log-safe
_SAFE_TRACE_ID = re.compile(r"[A-Za-z0-9._-]{1,128}")


def generate_trace_id() -> str:
    """Generate a new unique trace ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    """Get the current trace ID from context, or None if unset."""
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    """Clear the trace ID from the current context."""
    _trace_id_var.set(None)


def accept_or_generate_trace_id(candidate: str | None) -> str:
    """Return ``candidate`` when it is a well-formed trace ID, else a fresh one.

    Example:
        >>> accept_or_generate_trace_id("req-42")
        'req-42'
        >>> len(accept_or_generate_trace_id("bad id\\n"))
        36
    """
    if candidate and _SAFE_TRACE_ID.fullmatch(candidate):
        return candidate
    return generate_trace_id()


class LogContext:
    """Context manager for a scoped trace ID.

    Example:
        >>> with LogContext("request-123"):
        ...     print(get_trace_id())
        request-123
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or generate_trace_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _trace_id_var.set(self.trace_id)
        return self.trace_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _trace_id_var.reset(self._token)
            self._token = None
