"""
Process startup wiring.

Starts the server and client relays named in settings against the
process model store, so a relay process needs no code beyond its
configuration to broadcast and receive changes.
"""

import logging
from typing import Any, List, Optional

from app.config import Settings
from app.relay.models import EventCallback, RelayRole
from app.relay.registry import RelayRegistry
from app.relay.relay import Relay
from infrastructure.repositories.model_store import ModelStore

logger = logging.getLogger(__name__)


def split_names(value: Optional[str]) -> List[str]:
    """Split a comma-separated settings value, dropping blanks."""
    if not value:
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


def log_change_event(
    model_name: str,
    method_name: str,
    model_id: Any,
    data: Any,
    update_data: Any,
    user_id: Any,
    data_before_update: Any,
) -> None:
    """Event callback used when the process supplies none."""
    logger.info(
        f"Received {method_name} of {model_name} {model_id}",
        extra={"model_name": model_name, "model_id": model_id, "user_id": user_id},
    )


async def start_relays(
    registry: RelayRegistry,
    store: ModelStore,
    config: Settings,
    event_fn: Optional[EventCallback] = None,
) -> List[Relay]:
    """
    Create the relays configured in ``config``.

    The server relay broadcasts ``RELAY_MODELS_TO_BROADCAST`` from ``store``;
    the client relay subscribes to ``RELAY_MODELS_TO_SUBSCRIBE`` and hands
    each change to ``event_fn``. Both use ``RELAY_PROJECT_ID``.

    Args:
        registry: Registry the relays are created in
        store: Model store whose mutations the server relay publishes
        config: Settings naming the relays and their models
        event_fn: Client callback; defaults to logging each change

    Returns:
        The relays started, server first.
    """
    for name in split_names(config.RELAY_MODELS):
        store.define(name)

    started: List[Relay] = []

    broadcast = split_names(config.RELAY_MODELS_TO_BROADCAST)
    if config.RELAY_SERVICE_NAME and broadcast:
        for name in broadcast:
            store.define(name)
        relay = await registry.get_or_create(
            store,
            {
                "serviceName": config.RELAY_SERVICE_NAME,
                "type": RelayRole.SERVER.value,
                "projectId": config.RELAY_PROJECT_ID,
                "modelsToBroadcast": broadcast,
            },
        )
        started.append(relay)
        logger.info(
            f"Started server relay {config.RELAY_SERVICE_NAME} broadcasting {', '.join(broadcast)}"
        )

    subscribe = split_names(config.RELAY_MODELS_TO_SUBSCRIBE)
    if config.RELAY_CLIENT_SERVICE_NAME and subscribe:
        relay = await registry.get_or_create(
            store,
            {
                "serviceName": config.RELAY_CLIENT_SERVICE_NAME,
                "type": RelayRole.CLIENT.value,
                "projectId": config.RELAY_PROJECT_ID,
                "modelsToSubscribe": subscribe,
                "eventFn": event_fn or log_change_event,
            },
        )
        started.append(relay)
        logger.info(
            f"Started client relay {config.RELAY_CLIENT_SERVICE_NAME} subscribed to {', '.join(subscribe)}"
        )

    return started
