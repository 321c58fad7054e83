"""
FastAPI dependencies for dependency injection.

This module provides the relay registry and the model store to API
endpoints. Tests pass their own instances to ``create_app``.
"""

from fastapi import Request

from app.relay.registry import RelayRegistry
from app.relay.registry import get_relay_registry as get_default_registry
from infrastructure.repositories.model_store import ModelStore


def get_relay_registry(request: Request) -> RelayRegistry:
    """
    Get the relay registry serving this application.

    Returns:
        The registry stored on ``app.state`` or the process default.
    """
    registry = getattr(request.app.state, "relay_registry", None)
    if registry is None:
        registry = get_default_registry()
    return registry


def get_model_store(request: Request) -> ModelStore:
    """
    Get the model store whose mutations the server relay broadcasts.

    Returns:
        The store created at startup.
    """
    return request.app.state.model_store
