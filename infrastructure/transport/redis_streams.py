"""
Redis Streams transport.

Maps the pub/sub vocabulary onto Redis Streams:
- topic        -> stream "{project_id}:{topic}" (registered in "{project_id}:topics")
- subscription -> consumer group on that stream; every group receives its
                  own copy of each entry, so fan-out is per subscription
- publish      -> XADD with an approximate MAXLEN cap
- delivery     -> XREADGROUP loop per subscription, XACK on ack
"""

import asyncio
import contextvars
import logging
import os
import socket
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import (
    PublishError,
    SubscriptionProvisioningError,
    TopicProvisioningError,
)
from infrastructure.transport.base import (
    Message,
    MessageHandler,
    SubscriptionHandle,
    TopicHandle,
    Transport,
)

logger = logging.getLogger(__name__)

_RETRYABLE = (RedisConnectionError, RedisTimeoutError)


def _retrying(attempts: int):
    """Retry policy for connection-level failures; everything else surfaces at once."""
    return retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=0.1, max=2),
        reraise=True,
    )


class RedisStreamsTransport(Transport):
    """
    Pub/sub transport on top of Redis Streams consumer groups.

    Args:
        project_id: Namespace prefix for every key this transport touches
        redis_url: Redis connection URL (ignored when ``client`` is given)
        client: Pre-built ``redis.asyncio.Redis`` client
        block_ms: XREADGROUP block timeout
        batch_size: Entries fetched per XREADGROUP call
        maxlen: Approximate stream length cap, None for unbounded
        retry_attempts: Attempts on connection errors before giving up
    """

    def __init__(
        self,
        project_id: str,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[redis.Redis] = None,
        block_ms: int = 5000,
        batch_size: int = 10,
        maxlen: Optional[int] = 10000,
        retry_attempts: int = 3,
    ):
        self.project_id = project_id
        self.redis_url = redis_url
        self.client = client or redis.from_url(redis_url, decode_responses=False)
        self.block_ms = block_ms
        self.batch_size = batch_size
        self.maxlen = maxlen
        self.retry_attempts = retry_attempts
        self.consumer_name = f"{socket.gethostname()}-{os.getpid()}"
        self._consumers: Dict[str, asyncio.Task] = {}
        self._dispatch_tasks: set = set()
        self._running = True

    async def _call(self, command, *args, **kwargs) -> Any:
        """Await a Redis command under the retry policy."""

        @_retrying(self.retry_attempts)
        async def attempt() -> Any:
            return await command(*args, **kwargs)

        return await attempt()

    def _topic_key(self, name: str) -> str:
        return f"{self.project_id}:{name}"

    @property
    def _topics_key(self) -> str:
        return f"{self.project_id}:topics"

    async def get_or_create_topic(self, name: str) -> TopicHandle:
        key = self._topic_key(name)
        try:
            await self._call(self.client.sadd, self._topics_key, name)
        except Exception as e:
            raise TopicProvisioningError(
                f"Failed to provision topic: {e}", {"topic": name, "key": key}
            ) from e
        return TopicHandle(name=name, key=key)

    async def get_or_create_subscription(
        self, topic: TopicHandle, name: str
    ) -> SubscriptionHandle:
        try:
            await self._call(
                self.client.xgroup_create, topic.key, name, id="$", mkstream=True
            )
            logger.info(f"Created consumer group {name} on {topic.key}")
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise SubscriptionProvisioningError(
                    f"Failed to provision subscription: {e}",
                    {"subscription": name, "topic": topic.name},
                ) from e
            logger.debug(f"Consumer group {name} already exists on {topic.key}")
        except Exception as e:
            raise SubscriptionProvisioningError(
                f"Failed to provision subscription: {e}",
                {"subscription": name, "topic": topic.name},
            ) from e
        return SubscriptionHandle(name=name, topic=topic)

    async def publish(
        self,
        topic: TopicHandle,
        data: bytes,
        attributes: Optional[Dict[str, str]] = None,
    ) -> str:
        fields: Dict[str, Any] = {"data": data}
        for key, value in (attributes or {}).items():
            fields[f"attr:{key}"] = value

        try:
            if self.maxlen:
                message_id = await self._call(
                    self.client.xadd, topic.key, fields, maxlen=self.maxlen, approximate=True
                )
            else:
                message_id = await self._call(self.client.xadd, topic.key, fields)
        except Exception as e:
            raise PublishError(f"Failed to publish: {e}", {"topic": topic.name}) from e

        return message_id.decode() if isinstance(message_id, bytes) else str(message_id)

    async def subscribe(
        self, subscription: SubscriptionHandle, handler: MessageHandler
    ) -> None:
        if subscription.name in self._consumers:
            return
        self._consumers[subscription.name] = asyncio.create_task(
            self._consume_forever(subscription, handler)
        )
        logger.info(
            f"Consumer {self.consumer_name} started for {subscription.name} "
            f"on {subscription.topic.key}"
        )

    async def _consume_forever(
        self, subscription: SubscriptionHandle, handler: MessageHandler
    ) -> None:
        stream_key = subscription.topic.key
        while self._running:
            try:
                response = await self.client.xreadgroup(
                    subscription.name,
                    self.consumer_name,
                    {stream_key: ">"},
                    count=self.batch_size,
                    block=self.block_ms,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error reading from {stream_key} for {subscription.name}: {e}")
                await asyncio.sleep(1.0)
                continue

            for _stream, entries in response or []:
                for entry_id, fields in entries:
                    message = self._to_message(subscription, entry_id, fields)
                    task = asyncio.create_task(
                        self._dispatch(subscription, handler, message),
                        context=contextvars.Context(),
                    )
                    self._dispatch_tasks.add(task)
                    task.add_done_callback(self._dispatch_tasks.discard)

    def _to_message(
        self, subscription: SubscriptionHandle, entry_id: Any, fields: Dict[Any, Any]
    ) -> Message:
        message_id = entry_id.decode() if isinstance(entry_id, bytes) else str(entry_id)
        data = b""
        attributes: Dict[str, str] = {}
        for raw_key, raw_value in fields.items():
            key = raw_key.decode() if isinstance(raw_key, bytes) else str(raw_key)
            if key == "data":
                data = raw_value if isinstance(raw_value, bytes) else str(raw_value).encode()
            elif key.startswith("attr:"):
                value = raw_value.decode() if isinstance(raw_value, bytes) else str(raw_value)
                attributes[key[len("attr:"):]] = value

        async def ack() -> None:
            await self.client.xack(subscription.topic.key, subscription.name, message_id)

        # Unacked entries stay in the group's pending list; nack leaves them there
        async def nack() -> None:
            return None

        return Message(
            message_id=message_id,
            data=data,
            attributes=attributes,
            _ack_callback=ack,
            _nack_callback=nack,
        )

    async def _dispatch(
        self, subscription: SubscriptionHandle, handler: MessageHandler, message: Message
    ) -> None:
        try:
            await handler(message)
        except Exception as e:
            logger.error(
                f"Handler for subscription {subscription.name} failed on message "
                f"{message.message_id}: {e}",
                exc_info=True,
            )

    async def get_group_info(self, topic: TopicHandle) -> List[Dict[str, Any]]:
        """Return XINFO GROUPS for a topic stream (lag, pending, consumers)."""
        return await self.client.xinfo_groups(topic.key)

    async def close(self) -> None:
        self._running = False
        tasks: List[asyncio.Task] = list(self._consumers.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, *self._dispatch_tasks, return_exceptions=True)
        self._consumers.clear()
        await self.client.aclose()
        logger.info(f"RedisStreamsTransport for project {self.project_id} closed")
