"""
Domain-specific exception hierarchy for the change relay.

Exception hierarchy:
- Separate transient failures (transport hiccups, retry later) from
  permanent ones (bad configuration, corrupt envelopes, never retry)
- Capture operational context (service, model, topic) in ``details``
"""


# ============================================================================
# Base Exception Hierarchy
# ============================================================================


class RelayError(Exception):
    """
    Base exception for all relay errors.

    Catching RelayError handles every domain failure while letting system
    errors (MemoryError, KeyboardInterrupt, CancelledError) propagate.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error description
            details: Additional context for debugging (service_name, model_name, topic, etc.)
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ============================================================================
# Operational Error Categories (transient vs permanent)
# ============================================================================


class TransientError(RelayError):
    """
    Transient error that may succeed on retry.

    Examples: broker connection reset, publish timeout.
    """
    pass


class PermanentError(RelayError):
    """
    Permanent error that will never succeed even with retries.

    Examples: missing serviceName, invalid role, envelope without modelId.
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(PermanentError):
    """
    Relay options or ambient settings are invalid.

    Raised at configuration time. The relay is left unusable for the
    requested role.
    """
    pass


# ============================================================================
# Resource Not Found Errors
# ============================================================================


class ResourceNotFoundError(PermanentError):
    """Base for all "resource not found" errors."""
    pass


class RelayNotFoundError(ResourceNotFoundError):
    """No relay is registered under the requested service name."""
    pass


# ============================================================================
# Envelope / Actor Errors
# ============================================================================


class EnvelopeDecodeError(PermanentError):
    """
    Inbound message could not be decoded into a ChangeEnvelope.

    The message is acknowledged and discarded; redelivery would fail the same way.
    """
    pass


class ActorContextError(PermanentError):
    """
    Actor slot integrity violated while handling a message.

    Raised when the slot already holds an actor (context leaked from another
    flow) or when an actor is required but the envelope carries none.
    """
    pass


# ============================================================================
# Transport Errors
# ============================================================================


class TransportError(TransientError):
    """Base for failures reported by the bus transport."""
    pass


class TopicProvisioningError(TransportError):
    """Topic could not be fetched or created (and did not already exist)."""
    pass


class SubscriptionProvisioningError(TransportError):
    """Subscription could not be fetched or created (and did not already exist)."""
    pass


class PublishError(TransportError):
    """Transport rejected or failed to accept a published message."""
    pass
