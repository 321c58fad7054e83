"""
Pytest configuration and shared fixtures.
"""

from typing import AsyncGenerator, List

import pytest
import pytest_asyncio

from app.config import Settings
from app.relay.context import current_actor
from app.relay.registry import RelayRegistry
from infrastructure.repositories.model_store import ModelStore
from infrastructure.transport.factory import TransportFactory
from infrastructure.transport.memory import InMemoryTransport


@pytest.fixture
def relay_settings() -> Settings:
    """Settings for an in-memory relay in the "test" environment."""
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        RELAY_TRANSPORT="memory",
        RELAY_REQUIRE_ACTOR=False,
    )


@pytest.fixture
def transport_factory(relay_settings: Settings) -> TransportFactory:
    """Transport factory sharing one in-memory transport per project."""
    return TransportFactory(relay_settings)


@pytest_asyncio.fixture
async def relay_registry(
    relay_settings: Settings, transport_factory: TransportFactory
) -> AsyncGenerator[RelayRegistry, None]:
    """Fresh registry; all transports are closed after the test."""
    registry = RelayRegistry(settings=relay_settings, transport_factory=transport_factory)
    yield registry
    await registry.close()


@pytest_asyncio.fixture
async def memory_transport() -> AsyncGenerator[InMemoryTransport, None]:
    """Standalone in-memory transport."""
    transport = InMemoryTransport(project_id="test-project")
    yield transport
    await transport.close()


@pytest.fixture
def model_store() -> ModelStore:
    """Model store with Customer and Order collections."""
    return ModelStore(["Customer", "Order"])


class EventRecorder:
    """Event callback that records every invocation and the actor it observed."""

    def __init__(self):
        self.calls: List[dict] = []

    def __call__(
        self,
        model_name,
        method_name,
        model_id,
        data,
        update_data,
        user_id,
        data_before_update,
    ):
        self.calls.append(
            {
                "model_name": model_name,
                "method_name": method_name,
                "model_id": model_id,
                "data": data,
                "update_data": update_data,
                "user_id": user_id,
                "data_before_update": data_before_update,
                "actor": current_actor(),
            }
        )


@pytest.fixture
def event_recorder() -> EventRecorder:
    """Recording event callback for client relays."""
    return EventRecorder()
