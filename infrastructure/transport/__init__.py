"""
Message bus transports used by the change relay.
"""

from infrastructure.transport.base import (
    Message,
    MessageHandler,
    SubscriptionHandle,
    TopicHandle,
    Transport,
)
from infrastructure.transport.factory import TransportFactory
from infrastructure.transport.memory import InMemoryTransport

__all__ = [
    "InMemoryTransport",
    "Message",
    "MessageHandler",
    "SubscriptionHandle",
    "TopicHandle",
    "Transport",
    "TransportFactory",
]
