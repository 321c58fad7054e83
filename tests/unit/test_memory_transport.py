"""
Test suite for infrastructure/transport/memory.py

Coverage targets:
- Idempotent topic/subscription provisioning
- Fan-out to every subscription present at publish time
- Acknowledgement and redelivery via nack
- Per-message context isolation
- Handler failures do not stop the consumer
"""

import asyncio
import contextvars

import pytest

from infrastructure.transport.base import Message

marker: contextvars.ContextVar = contextvars.ContextVar("marker", default=None)


class TestProvisioning:
    @pytest.mark.asyncio
    async def test_topic_is_idempotent(self, memory_transport):
        first = await memory_transport.get_or_create_topic("test__Customer")
        second = await memory_transport.get_or_create_topic("test__Customer")

        assert first == second
        assert first.key == "test-project/topics/test__Customer"

    @pytest.mark.asyncio
    async def test_subscription_is_idempotent(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Customer")

        first = await memory_transport.get_or_create_subscription(topic, "sub")
        second = await memory_transport.get_or_create_subscription(topic, "sub")

        assert first == second
        assert memory_transport.get_statistics()["subscription_count"] == 1


class TestDelivery:
    @pytest.mark.asyncio
    async def test_fan_out_to_each_subscription(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        received = {"billing": [], "shipping": []}

        for name in received:
            subscription = await memory_transport.get_or_create_subscription(topic, name)

            async def handler(message: Message, name=name):
                received[name].append(message.data)
                await message.ack()

            await memory_transport.subscribe(subscription, handler)

        await memory_transport.publish(topic, b"one")
        await memory_transport.drain()

        assert received == {"billing": [b"one"], "shipping": [b"one"]}

    @pytest.mark.asyncio
    async def test_messages_before_subscription_are_not_delivered(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        await memory_transport.publish(topic, b"early")

        subscription = await memory_transport.get_or_create_subscription(topic, "late")
        received = []

        async def handler(message: Message):
            received.append(message.data)

        await memory_transport.subscribe(subscription, handler)
        await memory_transport.publish(topic, b"late")
        await memory_transport.drain()

        assert received == [b"late"]

    @pytest.mark.asyncio
    async def test_attributes_and_ids(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")
        received = []

        async def handler(message: Message):
            received.append(message)

        await memory_transport.subscribe(subscription, handler)
        message_id = await memory_transport.publish(topic, b"x", {"modelName": "Order"})
        await memory_transport.drain()

        assert received[0].message_id == message_id
        assert received[0].attributes == {"modelName": "Order"}
        assert received[0].delivery_attempt == 1

    @pytest.mark.asyncio
    async def test_ack_is_counted_once(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")

        async def handler(message: Message):
            await message.ack()
            await message.ack()

        await memory_transport.subscribe(subscription, handler)
        await memory_transport.publish(topic, b"x")
        await memory_transport.drain()

        stats = memory_transport.get_statistics()["subscriptions"]["sub"]
        assert stats == {"topic": "test__Order", "delivered": 1, "acked": 1, "pending": 0}

    @pytest.mark.asyncio
    async def test_nack_redelivers(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")
        attempts = []

        async def handler(message: Message):
            attempts.append(message.delivery_attempt)
            if message.delivery_attempt < 3:
                await message.nack()
            else:
                await message.ack()

        await memory_transport.subscribe(subscription, handler)
        await memory_transport.publish(topic, b"x")
        await memory_transport.drain()

        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_each_message_runs_in_fresh_context(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")
        observed = []

        async def handler(message: Message):
            observed.append(marker.get())
            marker.set(message.data)

        marker.set("publisher")
        await memory_transport.subscribe(subscription, handler)
        await memory_transport.publish(topic, b"1")
        await memory_transport.publish(topic, b"2")
        await memory_transport.drain()

        assert observed == [None, None]

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_consumer(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")
        received = []

        async def handler(message: Message):
            if message.data == b"bad":
                raise RuntimeError("handler failed")
            received.append(message.data)

        await memory_transport.subscribe(subscription, handler)
        await memory_transport.publish(topic, b"bad")
        await memory_transport.publish(topic, b"good")
        await memory_transport.drain()

        assert received == [b"good"]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_close_stops_workers(self, memory_transport):
        topic = await memory_transport.get_or_create_topic("test__Order")
        subscription = await memory_transport.get_or_create_subscription(topic, "sub")

        async def handler(message: Message):
            await asyncio.sleep(0)

        await memory_transport.subscribe(subscription, handler)
        await memory_transport.close()
        await memory_transport.close()

        stats = memory_transport.get_statistics()
        assert stats["topic_count"] == 1
