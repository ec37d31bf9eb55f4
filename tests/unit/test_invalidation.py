"""
Unit Tests - Cache Invalidation and Broadcast
"""
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from profitcore.database.models import OrderStatus
from profitcore.errors import ProfitError
from profitcore.profit.models import DefaultCosts, OrderCostUpdate
from profitcore.serving.cache import ProfitCache
from profitcore.serving.cache_bus import RedisInvalidationBus
from profitcore.serving.invalidation import (
    InvalidationEvent,
    InvalidationEventType,
    ProfitCacheInvalidationService,
)
from profitcore.services import ProfitServices

from tests.conftest import TENANT_A, make_breakdown


def populated_cache() -> ProfitCache:
    cache = ProfitCache()
    cache.set_order_profit("t1", "o-1", make_breakdown("o-1"))
    cache.set_order_profit("t1", "o-2", make_breakdown("o-2"))
    cache.set_order_profit("t2", "o-1", make_breakdown("o-1"))
    cache.set_report(ProfitCache.report_key("t1", "a", "b", "daily"), object())
    cache.set_report(ProfitCache.report_key("t2", "a", "b", "daily"), object())
    cache.set_default_costs("t1", DefaultCosts(5, 3, 20))
    return cache


class FakeBus:
    def __init__(self):
        self.published = []

    def publish_nowait(self, event):
        self.published.append(event)


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    async def publish(self, channel, payload):
        if self.fail:
            raise RedisConnectionError("down")
        self.messages.append((channel, payload))
        return 2


class TestInvalidationService:
    """Tests for the event -> invalidation mapping"""

    def test_order_created_drops_reports_only(self):
        cache = populated_cache()
        ProfitCacheInvalidationService(cache).on_order_created("o-9", "t1")

        assert len(cache.reports) == 1
        assert cache.get_order_profit("t1", "o-1") is not None

    def test_order_updated_minor_change(self):
        cache = populated_cache()
        ProfitCacheInvalidationService(cache).on_order_updated("o-1", "t1")

        assert cache.get_order_profit("t1", "o-1") is None
        assert len(cache.reports) == 2

    def test_order_updated_significant_change(self):
        cache = populated_cache()
        ProfitCacheInvalidationService(cache).on_order_updated("o-1", "t1", total_changed=True)

        assert cache.get_order_profit("t1", "o-1") is None
        assert len(cache.reports) == 1

    @pytest.mark.parametrize("method", ["on_order_status_changed", "on_order_costs_updated", "on_order_deleted"])
    def test_order_level_events(self, method):
        cache = populated_cache()
        getattr(ProfitCacheInvalidationService(cache), method)("o-1", "t1")

        assert cache.get_order_profit("t1", "o-1") is None
        assert cache.get_order_profit("t1", "o-2") is not None
        assert cache.get_order_profit("t2", "o-1") is not None
        assert len(cache.reports) == 1

    def test_tenant_cost_config_updated(self):
        cache = populated_cache()
        ProfitCacheInvalidationService(cache).on_tenant_cost_config_updated("t1")

        assert cache.get_default_costs("t1") is None
        assert cache.get_order_profit("t1", "o-1") is None
        assert cache.get_order_profit("t1", "o-2") is None
        assert cache.get_order_profit("t2", "o-1") is not None
        assert len(cache.reports) == 1

    def test_lead_batch_and_product_events_drop_reports(self):
        cache = populated_cache()
        service = ProfitCacheInvalidationService(cache)

        service.on_lead_batch_updated("b-1", "t1")
        service.on_product_cost_price_updated("p-1", "t2")

        assert len(cache.reports) == 0
        assert len(cache.order_profits) == 3

    def test_bulk_data_change(self):
        cache = populated_cache()
        ProfitCacheInvalidationService(cache).on_bulk_data_change("t1")

        assert len(cache.order_profits) == 1
        assert len(cache.reports) == 1

    def test_events_published_to_bus(self):
        bus = FakeBus()
        service = ProfitCacheInvalidationService(ProfitCache(), bus=bus)

        service.on_leads_imported("t1", ["l-1", "l-2"])

        assert bus.published[0].type == InvalidationEventType.LEADS_IMPORTED
        assert bus.published[0].data == {"lead_count": 2}

    def test_apply_does_not_republish(self):
        bus = FakeBus()
        cache = populated_cache()
        service = ProfitCacheInvalidationService(cache, bus=bus)

        service.apply(InvalidationEvent(InvalidationEventType.ORDER_DELETED, "t1", "o-1"))

        assert bus.published == []
        assert cache.get_order_profit("t1", "o-1") is None

    def test_event_json_round_trip(self):
        event = InvalidationEvent(InvalidationEventType.ORDER_UPDATED, "t1", "o-1", {"total_changed": True})

        assert InvalidationEvent.from_dict(json.loads(event.to_json())) == event


class TestRedisInvalidationBus:
    """Tests for the pub/sub bus"""

    async def test_publish_tags_origin(self):
        client = FakeRedis()
        bus = RedisInvalidationBus(client, "chan", instance_id="me")

        receivers = await bus.publish(InvalidationEvent(InvalidationEventType.BULK_DATA_CHANGE, "t1"))

        assert receivers == 2
        channel, payload = client.messages[0]
        assert channel == "chan"
        assert json.loads(payload)["origin"] == "me"

    async def test_publish_failure_is_logged_not_raised(self):
        bus = RedisInvalidationBus(FakeRedis(fail=True), "chan")

        assert await bus.publish(InvalidationEvent(InvalidationEventType.BULK_DATA_CHANGE, "t1")) == 0

    def test_remote_message_applied(self):
        cache = populated_cache()
        service = ProfitCacheInvalidationService(cache)
        bus = RedisInvalidationBus(FakeRedis(), "chan", instance_id="me")
        payload = json.dumps({"type": "order_costs_updated", "tenant_id": "t1", "order_id": "o-1", "origin": "peer"})

        assert bus.handle_message(payload, service) is True
        assert cache.get_order_profit("t1", "o-1") is None

    def test_own_message_ignored(self):
        cache = populated_cache()
        bus = RedisInvalidationBus(FakeRedis(), "chan", instance_id="me")
        payload = json.dumps({"type": "bulk_data_change", "tenant_id": "t1", "origin": "me"})

        assert bus.handle_message(payload, ProfitCacheInvalidationService(cache)) is False
        assert len(cache.order_profits) == 3

    @pytest.mark.parametrize("raw", ["not json", json.dumps({"type": "unknown", "tenant_id": "t1"})])
    def test_malformed_message_ignored(self, raw):
        bus = RedisInvalidationBus(FakeRedis(), "chan", instance_id="me")

        assert bus.handle_message(raw, ProfitCacheInvalidationService(ProfitCache())) is False


class RelayBus:
    """Bus delivering every published event to peer instances"""

    def __init__(self, *peers: ProfitCacheInvalidationService):
        self.peers = peers
        self.published = []

    def publish_nowait(self, event):
        self.published.append(event)
        for peer in self.peers:
            peer.apply(event)


class TestEngineMutationsBroadcast:
    """Engine writes announce themselves through the dispatcher"""

    async def test_status_change_published(self, engine, invalidation, seed):
        bus = FakeBus()
        invalidation.bus = bus
        order_id = await seed.full_order(status=OrderStatus.DELIVERED)

        await engine.recalculate_on_status_change(order_id, OrderStatus.RETURNED, TENANT_A, return_cost=20.0)

        assert [e.type for e in bus.published] == [InvalidationEventType.ORDER_STATUS_CHANGED]
        event = bus.published[0]
        assert (event.tenant_id, event.order_id) == (TENANT_A, order_id)
        assert event.data == {"old_status": "DELIVERED", "new_status": "RETURNED"}

    async def test_manual_cost_update_published(self, engine, invalidation, seed):
        bus = FakeBus()
        invalidation.bus = bus
        order_id = await seed.full_order()

        await engine.update_order_costs_manually(order_id, TENANT_A, OrderCostUpdate(packaging=7.0))

        assert [e.type for e in bus.published] == [InvalidationEventType.ORDER_COSTS_UPDATED]
        assert (bus.published[0].tenant_id, bus.published[0].order_id) == (TENANT_A, order_id)

    async def test_rejected_mutation_not_published(self, engine, invalidation, seed):
        bus = FakeBus()
        invalidation.bus = bus
        order_id = await seed.full_order()

        with pytest.raises(ProfitError):
            await engine.update_order_costs_manually(order_id, TENANT_A, OrderCostUpdate(packaging=-1.0))

        assert bus.published == []

    async def test_peer_instance_drops_stale_profit(self, services, test_settings, database, seed):
        peer = ProfitServices.build(test_settings, database=database)
        services.invalidation.bus = RelayBus(peer.invalidation)
        order_id = await seed.full_order(total=89.99, status=OrderStatus.DELIVERED)
        await seed.order_costs(order_id, packaging_cost=5.0, printing_cost=3.0)
        before = await peer.engine.calculate_order_profit(order_id, TENANT_A)

        await services.engine.recalculate_on_status_change(
            order_id, OrderStatus.RETURNED, TENANT_A, return_cost=20.0,
        )

        assert before.net_profit == pytest.approx(36.99)
        assert peer.cache.get_order_profit(TENANT_A, order_id) is None
        after = await peer.engine.calculate_order_profit(order_id, TENANT_A)
        assert after.is_return
        assert after.net_profit == pytest.approx(16.99)
