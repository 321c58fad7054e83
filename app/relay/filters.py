"""
Publish filter chain.

A filter is any callable ``(model_name, method_name, record, ctx) -> bool``
(or an awaitable of bool). Returning False vetoes publication of that one
record; other records of the same operation are judged independently.
"""

import inspect
import logging
from typing import Any, Awaitable, Iterable, List, Optional, Protocol, Union

from app.relay.models import HookContext, MethodName

logger = logging.getLogger(__name__)


class PublishFilter(Protocol):
    """Predicate deciding whether a record's envelope may be published."""

    def __call__(
        self,
        model_name: str,
        method_name: MethodName,
        record: Any,
        ctx: Optional[HookContext],
    ) -> Union[bool, Awaitable[bool]]:
        ...


class FilterChain:
    """
    Ordered sequence of publish filters.

    Entries that are not callable are discarded when the chain is built,
    so they never veto anything. A filter that raises counts as a pass.
    """

    def __init__(self, filters: Optional[Iterable[Any]] = None):
        self._filters: List[PublishFilter] = []
        for position, candidate in enumerate(filters or []):
            if not callable(candidate):
                logger.warning(
                    f"Ignoring filter at position {position}: "
                    f"{type(candidate).__name__} is not callable"
                )
                continue
            self._filters.append(candidate)

    def __len__(self) -> int:
        return len(self._filters)

    def __iter__(self):
        return iter(self._filters)

    async def should_publish(
        self,
        model_name: str,
        method_name: MethodName,
        record: Any,
        ctx: Optional[HookContext] = None,
    ) -> bool:
        """
        Evaluate every filter in order.

        Returns:
            False as soon as one filter returns a falsy value, True otherwise.
        """
        for fn in self._filters:
            try:
                result = fn(model_name, method_name, record, ctx)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(
                    f"Filter {getattr(fn, '__name__', fn)!r} raised for {model_name} "
                    f"{method_name.value}; treating as pass: {e}",
                    exc_info=True,
                )
                continue
            if not result:
                return False
        return True
