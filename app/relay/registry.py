"""
Registry of relays keyed by service name.

At most one relay exists per service name. ``get_or_create`` is the single
entry point most code uses: the first call creates and configures the
relay; later calls with the same service name return the same instance,
re-applying options only when they carry a role. That lets a model module
fetch an already configured relay just to reach ``emit``/``subscribe``.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Union

from app.config import Settings, settings as default_settings
from app.relay.models import RelayOptions
from app.relay.relay import Relay
from core.exceptions import ConfigurationError, RelayNotFoundError
from infrastructure.transport.base import Transport
from infrastructure.transport.factory import TransportFactory

logger = logging.getLogger(__name__)


class RelayRegistry:
    """
    Injectable registry of relays.

    Args:
        settings: Settings shared by every relay of this registry
        transport_factory: Project id -> Transport; defaults to a
            TransportFactory built from ``settings``
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport_factory: Optional[Callable[[str], Transport]] = None,
    ):
        self.settings = settings or default_settings
        self.transport_factory = transport_factory or TransportFactory(self.settings)
        self._relays: Dict[str, Relay] = {}

    def __contains__(self, service_name: str) -> bool:
        return service_name in self._relays

    def __len__(self) -> int:
        return len(self._relays)

    def get(self, service_name: str) -> Optional[Relay]:
        """Get relay by service name, or None."""
        return self._relays.get(service_name)

    def lookup(self, service_name: str) -> Relay:
        """
        Get an existing relay.

        Raises:
            RelayNotFoundError: If no relay is registered under ``service_name``.
        """
        relay = self._relays.get(service_name)
        if relay is None:
            raise RelayNotFoundError(
                "Relay not found", {"service_name": service_name}
            )
        return relay

    def list(self) -> List[Relay]:
        return list(self._relays.values())

    async def create(
        self, app: Any, options: Union[RelayOptions, Mapping]
    ) -> Relay:
        """
        Create the relay for ``options.service_name`` if needed and apply options.

        The relay is registered before configuration runs, so a failed
        client setup leaves the instance in place for a later retry.
        """
        options = RelayOptions.parse(options)
        if not options.service_name:
            raise ConfigurationError("options.serviceName is required")

        relay = self._relays.get(options.service_name)
        if relay is None:
            relay = Relay(settings=self.settings, transport_factory=self.transport_factory)
            # Validate identity before the relay becomes visible
            await relay.configure(app, options.model_copy(update={"role": None}))
            self._relays[options.service_name] = relay
            logger.info(f"Registered relay {options.service_name}")

        if options.role is not None:
            await relay.configure(app, options)
        return relay

    async def get_or_create(
        self, app: Any, options: Union[RelayOptions, Mapping]
    ) -> Relay:
        """
        Return the relay for ``options.service_name``, creating it on first use.

        Later calls re-apply ``options`` only when they carry a role.
        Identity fields keep the values of the first call.
        """
        options = RelayOptions.parse(options)
        if not options.service_name:
            raise ConfigurationError("options.serviceName is required")

        relay = self._relays.get(options.service_name)
        if relay is None or options.role is not None:
            return await self.create(app, options)
        return relay

    async def close(self) -> None:
        """Close every transport created for this registry's relays."""
        close = getattr(self.transport_factory, "close", None)
        if close is not None:
            await close()
            return
        closed = set()
        for relay in self._relays.values():
            if relay.transport is not None and id(relay.transport) not in closed:
                closed.add(id(relay.transport))
                await relay.transport.close()


# Global relay registry instance (singleton)
_relay_registry: Optional[RelayRegistry] = None


def get_relay_registry() -> RelayRegistry:
    """
    Get the global relay registry.

    Creates the instance on first call (singleton pattern).
    """
    global _relay_registry
    if _relay_registry is None:
        _relay_registry = RelayRegistry()
    return _relay_registry


async def get_or_create(app: Any, options: Union[RelayOptions, Mapping]) -> Relay:
    """Module-level entry point backed by the global registry."""
    return await get_relay_registry().get_or_create(app, options)
