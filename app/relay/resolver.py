"""
Topic/subscription resolution against a relay's transport.

Nothing is memoized here; idempotency and caching are the transport's job.
Provisioning failures propagate to the caller.
"""

import logging
from typing import TYPE_CHECKING

from app.relay.naming import subscription_name, topic_name
from core.exceptions import (
    ConfigurationError,
    SubscriptionProvisioningError,
    TopicProvisioningError,
    TransportError,
)
from infrastructure.transport.base import SubscriptionHandle, TopicHandle

if TYPE_CHECKING:
    from app.relay.relay import Relay

logger = logging.getLogger(__name__)


def _require_transport(relay: "Relay"):
    if relay.transport is None:
        raise ConfigurationError(
            "Relay has no transport; configure it with a role and projectId first",
            {"service_name": relay.service_name},
        )
    return relay.transport


async def resolve_topic(relay: "Relay", model_name: str) -> TopicHandle:
    """
    Fetch or create the environment-scoped topic for a model.

    Raises:
        TopicProvisioningError: If the transport cannot provide the topic.
    """
    transport = _require_transport(relay)
    name = topic_name(relay.environment, model_name)
    try:
        topic = await transport.get_or_create_topic(name)
    except TransportError:
        raise
    except Exception as e:
        raise TopicProvisioningError(
            f"Failed to resolve topic: {e}",
            {"topic": name, "service_name": relay.service_name},
        ) from e
    logger.debug(f"Resolved topic {name} for {relay.service_name}")
    return topic


async def resolve_subscription(
    relay: "Relay", topic: TopicHandle, model_name: str
) -> SubscriptionHandle:
    """
    Fetch or create this relay's subscription on a model topic.

    Raises:
        SubscriptionProvisioningError: If the transport cannot provide the subscription.
    """
    transport = _require_transport(relay)
    name = subscription_name(relay.environment, relay.service_name, model_name)
    try:
        subscription = await transport.get_or_create_subscription(topic, name)
    except TransportError:
        raise
    except Exception as e:
        raise SubscriptionProvisioningError(
            f"Failed to resolve subscription: {e}",
            {"subscription": name, "topic": topic.name},
        ) from e
    logger.debug(f"Resolved subscription {name} on {topic.name}")
    return subscription
