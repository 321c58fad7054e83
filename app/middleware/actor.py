"""
Actor middleware.

Binds the caller's identity into the ambient actor slot for the duration of
a request, so model mutations made while serving it are published with the
right userId.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.config import settings
from app.relay.context import bind_actor, reset_actor

logger = logging.getLogger(__name__)


class ActorContextMiddleware(BaseHTTPMiddleware):
    """
    Install the acting user for each request.

    The identity comes from ``request.state.user_id`` when an upstream auth
    layer set it, otherwise from the configured actor header.
    """

    def __init__(self, app: ASGIApp, header_name: Optional[str] = None):
        super().__init__(app)
        self.header_name = header_name or settings.ACTOR_HEADER

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Bind the actor around the downstream call."""
        user_id = getattr(request.state, "user_id", None)
        if not user_id:
            user_id = request.headers.get(self.header_name) or None

        request.state.user_id = user_id
        token = bind_actor(user_id)
        try:
            response = await call_next(request)
        finally:
            reset_actor(token)

        if user_id:
            response.headers[self.header_name] = str(user_id)
        return response


def get_request_actor(request: Request) -> Optional[str]:
    """
    Get the actor bound for this request.

    Usage in routes:
        from fastapi import Request
        user_id = get_request_actor(request)
    """
    return getattr(request.state, "user_id", None)
