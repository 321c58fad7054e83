"""
In-process transport built on asyncio queues.

Mirrors the semantics of a managed pub/sub service inside one event loop:
topics fan out to every subscription that exists at publish time, each
subscription has its own queue and consumer task, and messages that are
nacked go back to the queue. Used for local development, the HTTP demo and
tests; swap for RedisStreamsTransport when relays live in different
processes.
"""

import asyncio
import contextvars
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from infrastructure.transport.base import (
    Message,
    MessageHandler,
    SubscriptionHandle,
    TopicHandle,
    Transport,
)

logger = logging.getLogger(__name__)


@dataclass
class _SubscriptionState:
    handle: SubscriptionHandle
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    handler: Optional[MessageHandler] = None
    worker: Optional[asyncio.Task] = None
    delivered: int = 0
    acked: int = 0


class InMemoryTransport(Transport):
    """
    Single-process pub/sub transport.

    Thread-Safety: Uses asyncio, safe for async operations in same event loop.
    """

    def __init__(self, project_id: str = "local"):
        self.project_id = project_id
        self._topics: Dict[str, TopicHandle] = {}
        self._subscriptions: Dict[str, Dict[str, _SubscriptionState]] = {}
        self._dispatch_tasks: set = set()
        self._ids = itertools.count(1)
        self._closed = False

        # Statistics
        self._total_published = 0

        logger.info(f"InMemoryTransport initialized for project {project_id}")

    async def get_or_create_topic(self, name: str) -> TopicHandle:
        topic = self._topics.get(name)
        if topic is None:
            topic = TopicHandle(name=name, key=f"{self.project_id}/topics/{name}")
            self._topics[name] = topic
            self._subscriptions[name] = {}
            logger.info(f"Created topic {name}")
        return topic

    async def get_or_create_subscription(
        self, topic: TopicHandle, name: str
    ) -> SubscriptionHandle:
        subscriptions = self._subscriptions.setdefault(topic.name, {})
        state = subscriptions.get(name)
        if state is None:
            state = _SubscriptionState(handle=SubscriptionHandle(name=name, topic=topic))
            subscriptions[name] = state
            logger.info(f"Created subscription {name} on topic {topic.name}")
        return state.handle

    async def publish(
        self,
        topic: TopicHandle,
        data: bytes,
        attributes: Optional[Dict[str, str]] = None,
    ) -> str:
        message_id = str(next(self._ids))
        for state in self._subscriptions.get(topic.name, {}).values():
            await state.queue.put(
                Message(
                    message_id=message_id,
                    data=data,
                    attributes=dict(attributes or {}),
                )
            )
        self._total_published += 1
        return message_id

    async def subscribe(
        self, subscription: SubscriptionHandle, handler: MessageHandler
    ) -> None:
        state = self._subscriptions[subscription.topic.name][subscription.name]
        state.handler = handler
        if state.worker is None:
            state.worker = asyncio.create_task(self._worker(state))

    async def _worker(self, state: _SubscriptionState) -> None:
        """Pull messages for one subscription and dispatch each in its own task."""
        while True:
            message = await state.queue.get()
            self._bind_ack(state, message)
            state.delivered += 1
            # Fresh context per message: no context variable leaks between deliveries
            task = asyncio.create_task(
                self._dispatch(state, message), context=contextvars.Context()
            )
            self._dispatch_tasks.add(task)
            task.add_done_callback(self._dispatch_tasks.discard)

    def _bind_ack(self, state: _SubscriptionState, message: Message) -> None:
        async def ack() -> None:
            state.acked += 1

        async def nack() -> None:
            await state.queue.put(
                Message(
                    message_id=message.message_id,
                    data=message.data,
                    attributes=message.attributes,
                    delivery_attempt=message.delivery_attempt + 1,
                )
            )

        message._ack_callback = ack
        message._nack_callback = nack

    async def _dispatch(self, state: _SubscriptionState, message: Message) -> None:
        try:
            await state.handler(message)
        except Exception as e:
            logger.error(
                f"Handler for subscription {state.handle.name} failed on message "
                f"{message.message_id}: {e}",
                exc_info=True,
            )

    async def drain(self, timeout: float = 5.0) -> None:
        """
        Wait until every queued message has been dispatched and handled.

        Intended for tests and graceful shutdown.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            queued = any(
                not state.queue.empty()
                for subscriptions in self._subscriptions.values()
                for state in subscriptions.values()
                if state.worker is not None
            )
            if not queued and not self._dispatch_tasks:
                return
            await asyncio.sleep(0.01)
        raise asyncio.TimeoutError("InMemoryTransport did not drain in time")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        workers: List[asyncio.Task] = [
            state.worker
            for subscriptions in self._subscriptions.values()
            for state in subscriptions.values()
            if state.worker is not None
        ]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, *self._dispatch_tasks, return_exceptions=True)
        logger.info(f"InMemoryTransport for project {self.project_id} closed")

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get transport statistics.

        Returns:
            Dictionary with topic count, subscription count, total published,
            and per-subscription delivered/acked/pending counters.
        """
        subscriptions = {}
        for topic_subscriptions in self._subscriptions.values():
            for name, state in topic_subscriptions.items():
                subscriptions[name] = {
                    "topic": state.handle.topic.name,
                    "delivered": state.delivered,
                    "acked": state.acked,
                    "pending": state.queue.qsize(),
                }
        return {
            "project_id": self.project_id,
            "topic_count": len(self._topics),
            "subscription_count": len(subscriptions),
            "total_published": self._total_published,
            "subscriptions": subscriptions,
        }
