"""
Actor propagation.

On the server the acting user's id is captured into every envelope, taken
from the hook context when the caller passed it explicitly and from the
ambient actor slot otherwise. On the client the envelope's user id is
installed into the slot for the duration of the event callback so code
below the callback observes the right actor.

The slot is a ContextVar. Each delivered message runs in its own task with
a fresh context, so concurrent deliveries never share a value; the
"already set" check in ``actor_scope`` reports leaks instead of hiding them.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator, Optional

from app.relay.models import HookContext
from core.exceptions import ActorContextError


_current_actor: ContextVar[Optional[Any]] = ContextVar("relay_current_actor", default=None)


def current_actor() -> Optional[Any]:
    """Return the actor installed for the current flow, or None."""
    return _current_actor.get()


def bind_actor(user_id: Optional[Any]) -> Token:
    """
    Install an actor for the current flow without integrity checks.

    Returns:
        Token to pass to ``reset_actor``.
    """
    return _current_actor.set(user_id)


def reset_actor(token: Token) -> None:
    """Restore the slot to its value before the matching ``bind_actor``."""
    _current_actor.reset(token)


@contextmanager
def actor_scope(user_id: Optional[Any], required: bool = False) -> Iterator[Optional[Any]]:
    """
    Install ``user_id`` as the current actor and clear it on exit.

    Args:
        user_id: Actor identity carried by the envelope
        required: Reject a missing ``user_id`` instead of running without an actor

    Raises:
        ActorContextError: If an actor is already installed in this flow, or
            ``required`` is set and ``user_id`` is empty.
    """
    existing = _current_actor.get()
    if existing is not None:
        raise ActorContextError(
            "Actor already set for this flow", {"existing": existing, "incoming": user_id}
        )
    if required and (user_id is None or user_id == ""):
        raise ActorContextError("Envelope carries no userId")

    token = _current_actor.set(user_id)
    try:
        yield user_id
    finally:
        _current_actor.reset(token)


def capture_actor(ctx: Optional[HookContext]) -> Optional[Any]:
    """
    Identity of the user who triggered a mutation.

    The explicit ``ctx.actor`` wins; the ambient slot is the fallback.
    """
    if ctx is not None and ctx.actor is not None:
        return ctx.actor
    return _current_actor.get()
