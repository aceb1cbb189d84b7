"""Bearer token authentication for the ``/api`` routes."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Request, WebSocket
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from jobhub.core.errors import UnauthorizedError
from jobhub.core.hub import JobHub

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme; missing credentials are reported as our own 401.
bearer_scheme = HTTPBearer(auto_error=False)


def get_hub(request: Request) -> JobHub:
    """Return the JobHub the application was created with."""
    return request.app.state.hub


async def require_bearer(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    """Reject the request unless it carries the configured bearer token.

    Raises
    ------
    UnauthorizedError
        If the header is missing, not a bearer token, or the token differs.
    """
    hub = get_hub(request)
    if credentials is None:
        raise UnauthorizedError("Missing bearer token")
    if not hub.config.api_token_valid(credentials.credentials):
        client = request.client.host if request.client else "unknown"
        logger.warning("Rejected invalid bearer token from %s", client)
        raise UnauthorizedError("Invalid bearer token")


def websocket_authorized(websocket: WebSocket) -> bool:
    """Return whether a WebSocket handshake carries the bearer token.

    Browsers cannot set headers on a WebSocket handshake, so the token is
    read from the ``token`` query parameter first, then from an
    ``Authorization: Bearer`` header.
    """
    hub: JobHub = websocket.app.state.hub
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header[7:]
    if not token:
        return False
    if not hub.config.api_token_valid(token):
        client = websocket.client.host if websocket.client else "unknown"
        logger.warning("Rejected invalid bearer token on WebSocket from %s", client)
        return False
    return True
