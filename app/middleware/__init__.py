"""
Middleware package for the relay API.

Provides request-scoped actor propagation.
"""

from .actor import ActorContextMiddleware, get_request_actor

__all__ = [
    "ActorContextMiddleware",
    "get_request_actor",
]
