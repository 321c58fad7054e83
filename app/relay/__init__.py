"""
Change-data-capture relay.

This package provides:
- Relay registry keyed by service name
- Server role publishing model changes as envelopes
- Client role delivering envelopes to an event callback
- Actor propagation across the bus
"""

from app.relay.context import actor_scope, capture_actor, current_actor
from app.relay.filters import FilterChain, PublishFilter
from app.relay.models import (
    ChangeEnvelope,
    HookContext,
    MethodName,
    RelayOptions,
    RelayRole,
)
from app.relay.naming import subscription_name, topic_name
from app.relay.registry import RelayRegistry, get_or_create, get_relay_registry
from app.relay.relay import Relay

__all__ = [
    "ChangeEnvelope",
    "FilterChain",
    "HookContext",
    "MethodName",
    "PublishFilter",
    "Relay",
    "RelayOptions",
    "RelayRegistry",
    "RelayRole",
    "actor_scope",
    "capture_actor",
    "current_actor",
    "get_or_create",
    "get_relay_registry",
    "subscription_name",
    "topic_name",
]
