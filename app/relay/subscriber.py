"""
Client role: subscribe to model topics and dispatch envelopes to a callback.

Subscriptions are established one model at a time. Each delivered message
is decoded, acknowledged right away, checked against the subscribed model,
and handed to the event callback with the envelope's actor installed.
"""

import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from app.api import metrics
from app.relay.context import actor_scope
from app.relay.models import ChangeEnvelope, EventCallback
from app.relay.resolver import resolve_subscription, resolve_topic
from core.exceptions import ActorContextError, ConfigurationError, EnvelopeDecodeError
from infrastructure.transport.base import Message, MessageHandler, SubscriptionHandle

if TYPE_CHECKING:
    from app.relay.relay import Relay

logger = logging.getLogger(__name__)


class Subscriber:
    """
    Delivers change envelopes of subscribed models to an event callback.

    The callback is called as
    ``event_fn(model_name, method_name, model_id, data, update_data, user_id, data_before_update)``
    and may be a plain function or a coroutine function.
    """

    def __init__(self, relay: "Relay"):
        self.relay = relay
        self._subscriptions: Dict[str, SubscriptionHandle] = {}

    @property
    def subscribed_models(self) -> List[str]:
        return list(self._subscriptions)

    @property
    def subscriptions(self) -> Dict[str, SubscriptionHandle]:
        return dict(self._subscriptions)

    async def configure_client(
        self,
        model_names: Iterable[str],
        event_fn: Optional[EventCallback],
        on_ready: Optional[Callable[[], Any]] = None,
    ) -> List[str]:
        """
        Subscribe to each model in order, waiting for one before the next.

        Models that already have a subscription are skipped. A failure stops
        setup at that model and propagates; earlier models stay subscribed.

        Args:
            model_names: Models to subscribe to
            event_fn: Callback invoked once per delivered envelope
            on_ready: Called after every subscription is established

        Returns:
            Names of all subscribed models.

        Raises:
            ConfigurationError: If ``model_names`` is empty or ``event_fn`` is missing.
            TransportError: If a topic or subscription cannot be provisioned.
        """
        model_names = list(model_names or [])
        if not model_names:
            raise ConfigurationError(
                "modelsToSubscribe is required for relay client",
                {"service_name": self.relay.service_name},
            )
        if event_fn is None or not callable(event_fn):
            raise ConfigurationError(
                "eventFn is required for relay client",
                {"service_name": self.relay.service_name},
            )

        for model_name in model_names:
            if not model_name or model_name in self._subscriptions:
                continue

            topic = await resolve_topic(self.relay, model_name)
            subscription = await resolve_subscription(self.relay, topic, model_name)
            await self.relay.transport.subscribe(
                subscription, self._make_handler(model_name, event_fn)
            )
            self._subscriptions[model_name] = subscription
            logger.info(
                f"Subscribed {self.relay.service_name} to {topic.name} as {subscription.name}",
                extra={
                    "service_name": self.relay.service_name,
                    "model_name": model_name,
                    "topic": topic.name,
                    "subscription": subscription.name,
                },
            )

        if on_ready is not None:
            result = on_ready()
            if inspect.isawaitable(result):
                await result

        return self.subscribed_models

    def _make_handler(self, model_name: str, event_fn: EventCallback) -> MessageHandler:
        async def handler(message: Message) -> None:
            await self.handle_message(model_name, event_fn, message)

        return handler

    async def handle_message(
        self, model_name: str, event_fn: EventCallback, message: Message
    ) -> None:
        """
        Decode, acknowledge and dispatch one delivered message.

        Never raises: decode failures, actor integrity errors and callback
        errors are logged for this message only.
        """
        service_name = self.relay.service_name
        self.relay.stats.received += 1
        metrics.messages_received_total.labels(
            service_name=service_name, model_name=model_name
        ).inc()

        try:
            envelope = ChangeEnvelope.from_wire(message.data)
        except EnvelopeDecodeError as e:
            await self._ack(message)
            self._discard(model_name, "decode")
            logger.debug(f"Discarding undecodable message {message.message_id}: {e}")
            return

        await self._ack(message)

        if envelope.model_name != model_name:
            self._discard(model_name, "model_mismatch")
            logger.debug(
                f"Discarding {envelope.model_name} envelope delivered to {model_name} subscription"
            )
            return

        try:
            with actor_scope(envelope.user_id, required=self.relay.require_actor):
                try:
                    await self._invoke(event_fn, envelope)
                except Exception as e:
                    self.relay.stats.handler_failures += 1
                    metrics.handler_failures_total.labels(
                        service_name=service_name, model_name=model_name
                    ).inc()
                    logger.error(
                        f"Event callback failed for {envelope.method_name.value} of "
                        f"{model_name} {envelope.model_id}: {e}",
                        exc_info=True,
                        extra={
                            "service_name": service_name,
                            "model_name": model_name,
                            "model_id": envelope.model_id,
                            "message_id": message.message_id,
                        },
                    )
        except ActorContextError as e:
            self.relay.stats.rejected += 1
            self._discard(model_name, "actor")
            logger.error(
                f"Rejected message {message.message_id} for {model_name}: {e}",
                extra={
                    "service_name": service_name,
                    "model_name": model_name,
                    "model_id": envelope.model_id,
                    "message_id": message.message_id,
                },
            )

    async def _invoke(self, event_fn: EventCallback, envelope: ChangeEnvelope) -> None:
        result = event_fn(
            envelope.model_name,
            envelope.method_name.value,
            envelope.model_id,
            envelope.data,
            envelope.update_data,
            envelope.user_id,
            envelope.data_before_update,
        )
        if inspect.isawaitable(result):
            await result

    async def _ack(self, message: Message) -> None:
        try:
            await message.ack()
        except Exception as e:
            logger.warning(f"Failed to acknowledge message {message.message_id}: {e}")

    def _discard(self, model_name: str, reason: str) -> None:
        self.relay.stats.discarded += 1
        metrics.messages_discarded_total.labels(
            service_name=self.relay.service_name, model_name=model_name, reason=reason
        ).inc()
