"""httpx client that forwards the current trace ID to the upstream API.

Example:
    >>> async with TracedHTTPXClient(timeout=5.0) as client:
    ...     response = await client.get("http://upstream/health")
    ...     # Request carries X-Trace-ID when a trace ID is set
"""

from typing import Any

import httpx

from libs.common.logging.context import TRACE_ID_HEADER, get_trace_id


class TracedHTTPXClient(httpx.AsyncClient):
    """AsyncClient that injects X-Trace-ID from the logging context.

    Headers passed by the caller are preserved as an ``httpx.Headers``
    instance so multi-valued headers survive the injection.
    """

    async def request(
        self,
        method: str,
        url: httpx.URL | str,
        **kwargs: Any,
    ) -> httpx.Response:
        trace_id = get_trace_id()
        if trace_id:
            headers = httpx.Headers(kwargs.get("headers"))
            headers[TRACE_ID_HEADER] = trace_id
            kwargs["headers"] = headers

        return await super().request(method, url, **kwargs)
