"""
Relay instance: one per service name.

A relay starts unconfigured and becomes either a server (publishes changes
of broadcast models) or a client (delivers changes of subscribed models to
a callback). Identity fields are set by the first configuration and never
overwritten:

- ``service_name`` and ``environment``
- ``filters`` (at most once)
- ``transport`` (from the first role-bearing configuration)
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from app.config import Settings, settings as default_settings
from app.relay.filters import FilterChain
from app.relay.models import (
    ChangeEnvelope,
    EventCallback,
    HookContext,
    MethodName,
    RelayOptions,
    RelayRole,
)
from app.relay.publisher import Publisher
from app.relay.subscriber import Subscriber
from core.exceptions import ConfigurationError
from infrastructure.transport.base import Transport
from infrastructure.transport.factory import TransportFactory

logger = logging.getLogger(__name__)


@dataclass
class RelayStatistics:
    """Counters for one relay since process start."""

    published: int = 0
    filtered: int = 0
    publish_failures: int = 0
    received: int = 0
    discarded: int = 0
    rejected: int = 0
    handler_failures: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class Relay:
    """
    Change relay for one service.

    Args:
        settings: Settings providing ENVIRONMENT and transport options
        transport_factory: Callable mapping a project id to a Transport
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport_factory: Optional[Callable[[str], Transport]] = None,
    ):
        self._settings = settings or default_settings
        self._transport_factory = transport_factory or TransportFactory(self._settings)

        self.service_name: Optional[str] = None
        self.environment: Optional[str] = None
        self.role: RelayRole = RelayRole.UNCONFIGURED
        self.filters: Optional[FilterChain] = None
        self.transport: Optional[Transport] = None
        self.project_id: Optional[str] = None
        self.require_actor: bool = self._settings.RELAY_REQUIRE_ACTOR

        self.stats = RelayStatistics()
        self.publisher = Publisher(self)
        self.subscriber = Subscriber(self)

    def __repr__(self) -> str:
        return (
            f"Relay(service_name={self.service_name!r}, role={self.role.value}, "
            f"environment={self.environment!r})"
        )

    async def configure(
        self, app: Any, options: Union[RelayOptions, Mapping]
    ) -> "Relay":
        """
        Apply options to this relay.

        Without a role only identity fields are applied. With a role the
        relay becomes (or stays) a server or client; re-applying the same
        role only adds models not yet handled.

        Raises:
            ConfigurationError: On missing serviceName, ENVIRONMENT, projectId,
                model lists or eventFn, invalid role or filters, or a request
                to switch between server and client.
            TransportError: If client subscriptions cannot be provisioned.
        """
        options = RelayOptions.parse(options)

        if not options.service_name:
            raise ConfigurationError("options.serviceName is required")
        if self.service_name is None:
            self.service_name = options.service_name
        elif options.service_name != self.service_name:
            logger.warning(
                f"Ignoring serviceName {options.service_name!r}; "
                f"relay is already named {self.service_name!r}"
            )

        if self.environment is None:
            environment = self._settings.ENVIRONMENT
            if not environment:
                raise ConfigurationError(
                    "ENVIRONMENT setting is required",
                    {"service_name": self.service_name},
                )
            self.environment = environment

        if options.filters is not None and self.filters is None:
            self.filters = FilterChain(options.filters)

        role = options.role
        if role is None:
            return self

        self._validate_role(app, role, options)

        if self.transport is None:
            self.transport = self._transport_factory(options.project_id)
            self.project_id = options.project_id
        elif options.project_id != self.project_id:
            logger.warning(
                f"Relay {self.service_name} keeps project {self.project_id}; "
                f"ignoring {options.project_id}"
            )

        if self.role is RelayRole.UNCONFIGURED:
            self.role = role
            logger.info(
                f"Relay {self.service_name} configured as {role.value} "
                f"in environment {self.environment}",
                extra={"service_name": self.service_name},
            )

        if role is RelayRole.SERVER:
            self.publisher.configure_server(app, options.models_to_broadcast)
        else:
            await self.subscriber.configure_client(
                options.models_to_subscribe, options.event_fn, options.on_ready
            )

        return self

    def _validate_role(self, app: Any, role: RelayRole, options: RelayOptions) -> None:
        if self.role is not RelayRole.UNCONFIGURED and self.role is not role:
            raise ConfigurationError(
                f"Relay is already a {self.role.value}; it cannot become a {role.value}",
                {"service_name": self.service_name},
            )
        if not options.project_id:
            raise ConfigurationError(
                f"projectId is required for relay {role.value}",
                {"service_name": self.service_name},
            )
        if role is RelayRole.SERVER:
            if app is None:
                raise ConfigurationError("app is required for relay server")
            if not options.models_to_broadcast:
                raise ConfigurationError(
                    "modelsToBroadcast is required for relay server",
                    {"service_name": self.service_name},
                )
        else:
            if not options.models_to_subscribe:
                raise ConfigurationError(
                    "modelsToSubscribe is required for relay client",
                    {"service_name": self.service_name},
                )
            if options.event_fn is None:
                raise ConfigurationError(
                    "eventFn is required for relay client",
                    {"service_name": self.service_name},
                )

    # ============================================================
    # Publish / subscribe surface
    # ============================================================

    async def should_publish(
        self,
        model_name: str,
        method_name: MethodName,
        record: Any,
        ctx: Optional[HookContext] = None,
    ) -> bool:
        """Run the filter chain; no filters means publish."""
        if not self.filters:
            return True
        return await self.filters.should_publish(model_name, method_name, record, ctx)

    async def emit(
        self, envelopes: Iterable[Union[ChangeEnvelope, Mapping]]
    ) -> List[str]:
        """
        Publish envelopes concurrently, bypassing model hooks and filters.

        Returns:
            Message ids in input order.

        Raises:
            ConfigurationError: If the relay has no transport yet or an
                envelope mapping does not validate.
            TransportError: If any publish fails.
        """
        self._require_transport()
        prepared = [self._prepare_envelope(e) for e in envelopes]
        return list(await asyncio.gather(*(self.publisher.publish(e) for e in prepared)))

    @staticmethod
    def _prepare_envelope(envelope: Union[ChangeEnvelope, Mapping]) -> ChangeEnvelope:
        if isinstance(envelope, ChangeEnvelope):
            return envelope
        try:
            return ChangeEnvelope.model_validate(dict(envelope))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid change envelope: {first.get('msg')}", {"field": location}
            ) from e

    async def subscribe(
        self,
        model_names: Iterable[str],
        event_fn: EventCallback,
        on_ready: Optional[Callable[[], Any]] = None,
    ) -> List[str]:
        """Subscribe this relay to more models; see Subscriber.configure_client."""
        self._require_transport()
        return await self.subscriber.configure_client(model_names, event_fn, on_ready)

    def _require_transport(self) -> Transport:
        if self.transport is None:
            raise ConfigurationError(
                "Relay has no transport; configure it with a role and projectId first",
                {"service_name": self.service_name},
            )
        return self.transport

    def describe(self) -> Dict[str, Any]:
        """Summary used by the status API and logs."""
        return {
            "service_name": self.service_name,
            "role": self.role.value,
            "environment": self.environment,
            "project_id": self.project_id,
            "models_to_broadcast": self.publisher.observed_models,
            "models_to_subscribe": self.subscriber.subscribed_models,
            "filter_count": len(self.filters) if self.filters else 0,
            "statistics": self.stats.as_dict(),
        }
