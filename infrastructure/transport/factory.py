"""
Transport construction from settings.

Relays of one process that name the same project share one transport, so
an in-memory server relay and client relay see each other's topics.
"""

import logging
from typing import Dict, List, Optional

from app.config import Settings, settings as default_settings
from core.exceptions import ConfigurationError
from infrastructure.transport.base import Transport
from infrastructure.transport.memory import InMemoryTransport

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("memory", "redis")


class TransportFactory:
    """
    Builds and caches one transport per project id.

    Call the factory with a project id to get its transport.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._transports: Dict[str, Transport] = {}

    def __call__(self, project_id: str) -> Transport:
        transport = self._transports.get(project_id)
        if transport is None:
            transport = self._build(project_id)
            self._transports[project_id] = transport
        return transport

    def _build(self, project_id: str) -> Transport:
        backend = self.settings.RELAY_TRANSPORT.lower()
        if backend == "memory":
            return InMemoryTransport(project_id=project_id)
        if backend == "redis":
            from infrastructure.transport.redis_streams import RedisStreamsTransport

            logger.info(f"Using Redis Streams transport at {self.settings.REDIS_URL}")
            return RedisStreamsTransport(
                project_id=project_id,
                redis_url=self.settings.REDIS_URL,
                block_ms=self.settings.RELAY_REDIS_BLOCK_MS,
                batch_size=self.settings.RELAY_REDIS_BATCH_SIZE,
                maxlen=self.settings.RELAY_REDIS_MAXLEN,
                retry_attempts=self.settings.RELAY_TRANSPORT_RETRY_ATTEMPTS,
            )
        raise ConfigurationError(
            f'Transport "{backend}" is not valid. Valid options: {", ".join(SUPPORTED_BACKENDS)}',
            {"setting": "RELAY_TRANSPORT"},
        )

    def transports(self) -> List[Transport]:
        return list(self._transports.values())

    async def close(self) -> None:
        """Close every transport built so far."""
        for transport in self._transports.values():
            await transport.close()
        self._transports.clear()
