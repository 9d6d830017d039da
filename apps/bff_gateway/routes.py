"""Catch-all proxy route for ``/api/v1/*``."""

import logging

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response

from apps.bff_gateway.dependencies import get_forwarder
from apps.bff_gateway.proxy import ProxyContext, ProxyForwarder
from libs.bff_auth.constants import PROXY_METHODS

logger = logging.getLogger(__name__)
router = APIRouter()


@router.api_route("/api/v1/{path:path}", methods=list(PROXY_METHODS))
async def proxy(
    request: Request,
    path: str,
    forwarder: ProxyForwarder = Depends(get_forwarder),
) -> Response:
    """Sign and forward one browser request to the upstream API.

    Args:
        request: Inbound browser request
        path: Everything after ``/api/v1/`` (split into segments and validated)

    Returns:
        The relayed upstream response, or a local JSON error response
    """
    ctx = await ProxyContext.from_request(request, path, forwarder.credentials)
    return await forwarder.forward(ctx)
