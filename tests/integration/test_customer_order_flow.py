"""
End-to-end relay flows over the in-memory transport.

A CRM service broadcasts Customer changes; an order service subscribes and
reacts by writing its own records, which it broadcasts in turn.
"""

import asyncio

import pytest

from app.relay.context import current_actor
from infrastructure.repositories.model_store import ModelStore

pytestmark = pytest.mark.integration


@pytest.fixture
def crm_store():
    return ModelStore(["Customer"])


@pytest.fixture
def shop_store():
    return ModelStore(["Order"])


async def start_crm(registry, store, filters=None):
    return await registry.get_or_create(
        store,
        {
            "serviceName": "crm",
            "type": "server",
            "projectId": "proj",
            "modelsToBroadcast": ["Customer"],
            "filters": filters,
        },
    )


async def start_client(registry, service_name, models, event_fn):
    return await registry.get_or_create(
        None,
        {
            "serviceName": service_name,
            "type": "client",
            "projectId": "proj",
            "modelsToSubscribe": models,
            "eventFn": event_fn,
        },
    )


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_customer_round_trip(self, relay_registry, crm_store, event_recorder):
        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "billing", ["Customer"], event_recorder)

        await crm_store.models["Customer"].create({"id": "42", "name": "James Bond"}, actor="m")
        await relay_registry.transport_factory("proj").drain()

        assert len(event_recorder.calls) == 1
        call = event_recorder.calls[0]
        assert call["model_name"] == "Customer"
        assert call["method_name"] == "create"
        assert call["model_id"] == "42"
        assert call["data"]["name"] == "James Bond"
        assert call["user_id"] == "m"
        assert call["actor"] == "m"

    @pytest.mark.asyncio
    async def test_update_and_delete_reach_subscriber(self, relay_registry, crm_store, event_recorder):
        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "billing", ["Customer"], event_recorder)
        customers = crm_store.models["Customer"]
        transport = relay_registry.transport_factory("proj")

        await customers.create({"id": "42", "name": "Bond"})
        await transport.drain()
        await customers.update("42", {"name": "James Bond"})
        await transport.drain()
        await customers.delete("42")
        await transport.drain()

        methods = [call["method_name"] for call in event_recorder.calls]
        assert methods == ["create", "update", "delete"]
        update = event_recorder.calls[1]
        assert update["update_data"] == {"name": "James Bond"}
        assert update["data_before_update"] == {"id": "42", "name": "Bond"}

    @pytest.mark.asyncio
    async def test_each_service_gets_its_own_copy(self, relay_registry, crm_store):
        billing, shipping = [], []
        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "billing", ["Customer"], lambda *a: billing.append(a[2]))
        await start_client(relay_registry, "shipping", ["Customer"], lambda *a: shipping.append(a[2]))

        await crm_store.models["Customer"].create({"id": "7"})
        await relay_registry.transport_factory("proj").drain()

        assert billing == ["7"]
        assert shipping == ["7"]

    @pytest.mark.asyncio
    async def test_filtered_bulk_update(self, relay_registry, crm_store, event_recorder):
        def skip_internal(model_name, method_name, record, ctx):
            return not record.get("internal")

        await start_crm(relay_registry, crm_store, filters=[skip_internal])
        await start_client(relay_registry, "billing", ["Customer"], event_recorder)
        customers = crm_store.models["Customer"]
        transport = relay_registry.transport_factory("proj")
        await customers.create({"id": "1", "tier": "gold"})
        await customers.create({"id": "2", "tier": "gold", "internal": True})
        await customers.create({"id": "3", "tier": "gold"})
        await transport.drain()
        event_recorder.calls.clear()

        await customers.update_all({"tier": "gold"}, {"discount": 10})
        await transport.drain()

        assert sorted(call["model_id"] for call in event_recorder.calls) == ["1", "3"]


class TestCustomerOrderScenario:
    @pytest.mark.asyncio
    async def test_new_customer_creates_one_order(self, relay_registry, crm_store, shop_store):
        orders = shop_store.models["Order"]

        async def on_customer(model_name, method_name, model_id, data, *rest):
            if method_name == "create":
                await orders.create({"customerId": model_id, "status": "welcome"})

        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "shop", ["Customer"], on_customer)

        customer = await crm_store.models["Customer"].create({"name": "James Bond"})
        await relay_registry.transport_factory("proj").drain()

        created = await orders.find()
        assert len(created) == 1
        assert created[0]["customerId"] == customer["id"]

    @pytest.mark.asyncio
    async def test_actor_follows_the_chain(self, relay_registry, crm_store, shop_store, event_recorder):
        """Orders written inside the callback are published under the customer's creator."""
        orders = shop_store.models["Order"]

        async def on_customer(model_name, method_name, model_id, *rest):
            await orders.create({"customerId": model_id})

        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "shop", ["Customer"], on_customer)
        await relay_registry.get_or_create(
            shop_store,
            {
                "serviceName": "shop-events",
                "type": "server",
                "projectId": "proj",
                "modelsToBroadcast": ["Order"],
            },
        )
        await start_client(relay_registry, "audit", ["Order"], event_recorder)
        transport = relay_registry.transport_factory("proj")

        await crm_store.models["Customer"].create({"name": "Q"}, actor="m")
        await transport.drain()
        await transport.drain()

        assert len(event_recorder.calls) == 1
        assert event_recorder.calls[0]["model_name"] == "Order"
        assert event_recorder.calls[0]["user_id"] == "m"


class TestActorLifecycle:
    @pytest.mark.asyncio
    async def test_actor_cleared_after_success_and_failure(self, relay_registry, crm_store):
        observed = []

        def on_customer(model_name, method_name, model_id, data, update_data, user_id, before):
            observed.append(current_actor())
            if data.get("explode"):
                raise RuntimeError("callback failed")

        relay = await start_crm(relay_registry, crm_store)
        client = await start_client(relay_registry, "billing", ["Customer"], on_customer)

        await crm_store.models["Customer"].create({"id": "1"}, actor="alice")
        await crm_store.models["Customer"].create({"id": "2", "explode": True}, actor="bob")
        await relay_registry.transport_factory("proj").drain()

        assert sorted(observed) == ["alice", "bob"]
        assert current_actor() is None
        assert client.stats.received == 2
        assert client.stats.handler_failures == 1
        assert relay.stats.published == 2

    @pytest.mark.asyncio
    async def test_concurrent_deliveries_keep_their_actor(self, relay_registry, crm_store):
        pairs = []

        async def on_customer(model_name, method_name, model_id, data, update_data, user_id, before):
            await asyncio.sleep(0.01)
            pairs.append((user_id, current_actor()))

        await start_crm(relay_registry, crm_store)
        await start_client(relay_registry, "billing", ["Customer"], on_customer)

        await asyncio.gather(
            *(
                crm_store.models["Customer"].create({"id": str(i)}, actor=f"user-{i}")
                for i in range(5)
            )
        )
        await relay_registry.transport_factory("proj").drain()

        assert len(pairs) == 5
        assert all(user_id == actor for user_id, actor in pairs)
