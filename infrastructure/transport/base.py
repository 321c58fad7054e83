"""
Base interface for message bus transports.

The relay only needs a small slice of a managed pub/sub service: named
topics, named durable subscriptions bound to a topic, publish, and push
delivery of messages that the receiver acknowledges. Every transport
implementation must follow this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional


@dataclass(frozen=True)
class TopicHandle:
    """
    Reference to a topic on the bus.

    Attributes:
        name: Logical topic name ("{environment}__{model}")
        key: Transport-native identifier (stream key, resource path, ...)
    """

    name: str
    key: str


@dataclass(frozen=True)
class SubscriptionHandle:
    """
    Reference to a subscription bound to a topic.

    Each subscription receives its own copy of every message published to
    the topic after the subscription was created.
    """

    name: str
    topic: TopicHandle


@dataclass
class Message:
    """
    A message delivered to a subscription handler.

    Attributes:
        message_id: Transport-assigned identifier
        data: Raw payload bytes
        attributes: String attributes published alongside the payload
        delivery_attempt: 1 for the first delivery, incremented on redelivery
    """

    message_id: str
    data: bytes
    attributes: Dict[str, str] = field(default_factory=dict)
    delivery_attempt: int = 1
    _ack_callback: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)
    _nack_callback: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)
    acked: bool = False

    async def ack(self) -> None:
        """Tell the transport the message was received. Safe to call twice."""
        if self.acked:
            return
        self.acked = True
        if self._ack_callback is not None:
            await self._ack_callback()

    async def nack(self) -> None:
        """Ask the transport to redeliver the message."""
        if self.acked:
            return
        if self._nack_callback is not None:
            await self._nack_callback()


MessageHandler = Callable[[Message], Awaitable[None]]


class Transport(ABC):
    """
    Abstract base class for all bus transports.

    Implementations must make topic and subscription provisioning
    idempotent: asking twice for the same name returns a handle to the same
    resource and never fails because it already exists.
    """

    @abstractmethod
    async def get_or_create_topic(self, name: str) -> TopicHandle:
        """
        Fetch a topic by name, creating it when it does not exist.

        Raises:
            TopicProvisioningError: If the topic can neither be found nor created.
        """
        pass

    @abstractmethod
    async def get_or_create_subscription(
        self, topic: TopicHandle, name: str
    ) -> SubscriptionHandle:
        """
        Fetch a subscription on a topic, creating it when it does not exist.

        Raises:
            SubscriptionProvisioningError: If the subscription can neither be
                found nor created.
        """
        pass

    @abstractmethod
    async def publish(
        self,
        topic: TopicHandle,
        data: bytes,
        attributes: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Publish one message to a topic.

        Returns:
            Transport-assigned message id.

        Raises:
            PublishError: If the transport did not accept the message.
        """
        pass

    @abstractmethod
    async def subscribe(
        self, subscription: SubscriptionHandle, handler: MessageHandler
    ) -> None:
        """
        Start delivering messages of a subscription to ``handler``.

        Each message is dispatched in its own task. The handler is
        responsible for acknowledging it.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery loops and release connections."""
        pass
