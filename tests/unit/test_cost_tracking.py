"""
Unit Tests - Cost Tracking Service
"""
import pytest

from profitcore.database.models import OrderStatus
from profitcore.errors import ErrorCode, ErrorKind, ProfitError
from profitcore.profit.models import DefaultCosts, OrderCostUpdate, TenantCostConfigUpdate

from tests.conftest import TENANT_A, TENANT_B, make_breakdown


class TestLeadBatches:
    """Tests for lead batch cost management"""

    async def test_cost_per_lead(self, cost_tracking):
        batch = await cost_tracking.create_lead_batch(TENANT_A, "user-1", 100.0, 10)

        assert batch.cost_per_lead == pytest.approx(10.0)
        assert batch.lead_count == 10

    async def test_free_batch(self, cost_tracking):
        batch = await cost_tracking.create_lead_batch(TENANT_A, "user-1", 0.0, 5)

        assert batch.cost_per_lead == 0.0

    async def test_zero_leads_rejected(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.create_lead_batch(TENANT_A, "user-1", 100.0, 0)

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert "lead count must be greater than zero" in exc_info.value.message.lower()

    async def test_negative_total_rejected(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.create_lead_batch(TENANT_A, "user-1", -5.0, 10)

        assert exc_info.value.code == ErrorCode.NEGATIVE_COST

    async def test_create_invalidates_tenant_reports(self, cost_tracking, cache):
        cache.set_report(cache.report_key(TENANT_A, "a", "b", "daily"), object())
        cache.set_report(cache.report_key(TENANT_B, "a", "b", "daily"), object())

        await cost_tracking.create_lead_batch(TENANT_A, "user-1", 50.0, 5)

        assert len(cache.reports) == 1

    async def test_update_rederives_cost_per_lead(self, cost_tracking):
        batch = await cost_tracking.create_lead_batch(TENANT_A, "user-1", 100.0, 10)

        updated = await cost_tracking.update_lead_batch_cost(batch.batch_id, TENANT_A, 250.0)

        assert updated.total_cost == 250.0
        assert updated.cost_per_lead == pytest.approx(25.0)
        assert (await cost_tracking.get_lead_batch(batch.batch_id, TENANT_A)).cost_per_lead == pytest.approx(25.0)

    async def test_update_unknown_batch(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_lead_batch_cost("missing", TENANT_A, 10.0)

        assert exc_info.value.code == ErrorCode.LEAD_BATCH_NOT_FOUND

    async def test_batches_are_tenant_scoped(self, cost_tracking):
        batch = await cost_tracking.create_lead_batch(TENANT_A, "user-1", 100.0, 10)
        await cost_tracking.create_lead_batch(TENANT_B, "user-2", 10.0, 1)

        assert await cost_tracking.get_lead_batch(batch.batch_id, TENANT_B) is None
        assert [b.batch_id for b in await cost_tracking.get_lead_batches(TENANT_A)] == [batch.batch_id]

    async def test_list_pagination(self, cost_tracking):
        for _ in range(3):
            await cost_tracking.create_lead_batch(TENANT_A, "user-1", 10.0, 1)

        assert len(await cost_tracking.get_lead_batches(TENANT_A, limit=2)) == 2
        assert len(await cost_tracking.get_lead_batches(TENANT_A, limit=2, offset=2)) == 1

    async def test_delete_unused_batch(self, cost_tracking):
        batch = await cost_tracking.create_lead_batch(TENANT_A, "user-1", 100.0, 10)

        await cost_tracking.delete_lead_batch(batch.batch_id, TENANT_A)

        assert await cost_tracking.get_lead_batch(batch.batch_id, TENANT_A) is None

    async def test_delete_batch_in_use(self, cost_tracking, seed):
        batch_id = await seed.lead_batch()
        await seed.lead(batch_id)

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.delete_lead_batch(batch_id, TENANT_A)

        assert exc_info.value.code == ErrorCode.LEAD_BATCH_IN_USE

    async def test_delete_unknown_batch(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.delete_lead_batch("missing", TENANT_A)

        assert exc_info.value.code == ErrorCode.LEAD_BATCH_NOT_FOUND


class TestProductCostPrice:
    """Tests for product cost price updates"""

    async def test_update(self, cost_tracking, store, seed):
        product_id = await seed.product(cost_price=35.0, price=60.0)

        product = await cost_tracking.update_product_cost_price(product_id, TENANT_A, 42.5)

        assert product.cost_price == 42.5
        assert (await store.get_product(TENANT_A, product_id)).cost_price == 42.5

    async def test_update_invalidates_tenant_reports(self, cost_tracking, cache, seed):
        product_id = await seed.product()
        cache.set_report(cache.report_key(TENANT_A, "a", "b", "daily"), object())
        cache.set_report(cache.report_key(TENANT_B, "a", "b", "daily"), object())

        await cost_tracking.update_product_cost_price(product_id, TENANT_A, 40.0)

        assert cache.get_report(cache.report_key(TENANT_A, "a", "b", "daily")) is None
        assert len(cache.reports) == 1

    async def test_next_calculation_uses_new_price(self, cost_tracking, engine, seed):
        product_id = await seed.product(cost_price=35.0)
        batch_id = await seed.lead_batch(total_cost=100.0, lead_count=10)
        order_id = await seed.order(product_id=product_id, lead_id=await seed.lead(batch_id))
        await seed.order_costs(order_id, packaging_cost=5.0, printing_cost=3.0)

        await cost_tracking.update_product_cost_price(product_id, TENANT_A, 45.0)
        result = await engine.calculate_order_profit(order_id, TENANT_A)

        assert result.costs.product == pytest.approx(45.0)
        assert result.net_profit == pytest.approx(26.99)

    async def test_negative_rejected(self, cost_tracking, store, seed):
        product_id = await seed.product(cost_price=35.0)

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_product_cost_price(product_id, TENANT_A, -1.0)

        assert exc_info.value.code == ErrorCode.NEGATIVE_COST
        assert (await store.get_product(TENANT_A, product_id)).cost_price == 35.0

    async def test_out_of_range_rejected(self, cost_tracking, seed):
        product_id = await seed.product()

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_product_cost_price(product_id, TENANT_A, 50001.0)

        assert exc_info.value.kind == ErrorKind.VALIDATION

    async def test_unknown_product(self, cost_tracking, cache):
        cache.set_report(cache.report_key(TENANT_A, "a", "b", "daily"), object())

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_product_cost_price("missing", TENANT_A, 10.0)

        assert exc_info.value.code == ErrorCode.PRODUCT_NOT_FOUND
        assert len(cache.reports) == 1

    async def test_product_of_other_tenant(self, cost_tracking, seed):
        product_id = await seed.product(tenant_id=TENANT_B)

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_product_cost_price(product_id, TENANT_A, 10.0)

        assert exc_info.value.code == ErrorCode.PRODUCT_NOT_FOUND


class TestTenantDefaults:
    """Tests for tenant cost configuration"""

    async def test_unconfigured_is_zero(self, cost_tracking):
        assert await cost_tracking.get_default_costs(TENANT_A) == DefaultCosts()

    async def test_partial_update(self, cost_tracking, seed):
        await seed.cost_config(packaging=5.0, printing=3.0, return_cost=20.0)

        config = await cost_tracking.update_tenant_cost_config(
            TENANT_A, TenantCostConfigUpdate(default_printing_cost=4.0),
        )

        assert config.default_packaging_cost == 5.0
        assert config.default_printing_cost == 4.0
        assert config.default_return_cost == 20.0

    async def test_update_creates_config(self, cost_tracking):
        await cost_tracking.update_tenant_cost_config(TENANT_A, TenantCostConfigUpdate(default_return_cost=12.0))

        assert await cost_tracking.get_default_costs(TENANT_A) == DefaultCosts(0.0, 0.0, 12.0)

    async def test_update_invalidates_tenant_profits(self, cost_tracking, cache):
        cache.set_default_costs(TENANT_A, DefaultCosts(1, 1, 1))
        cache.set_order_profit(TENANT_A, "o-1", make_breakdown("o-1"))
        cache.set_order_profit(TENANT_B, "o-1", make_breakdown("o-1"))

        await cost_tracking.update_tenant_cost_config(TENANT_A, TenantCostConfigUpdate(default_packaging_cost=2.0))

        assert cache.get_default_costs(TENANT_A) is None
        assert cache.get_order_profit(TENANT_A, "o-1") is None
        assert cache.get_order_profit(TENANT_B, "o-1") is not None

    async def test_out_of_range_rejected(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_tenant_cost_config(
                TENANT_A, TenantCostConfigUpdate(default_packaging_cost=5000.0),
            )

        assert exc_info.value.code == ErrorCode.INVALID_COST_RANGE

    async def test_empty_update_rejected(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_tenant_cost_config(TENANT_A, TenantCostConfigUpdate())

        assert exc_info.value.code == ErrorCode.MISSING_REQUIRED_FIELD


class TestOrderCosts:
    """Tests for per-order operational costs"""

    async def test_apply_defaults(self, cost_tracking, seed):
        await seed.cost_config(packaging=5.0, printing=3.0, return_cost=20.0)
        order_id = await seed.order()

        assert await cost_tracking.apply_default_costs_to_order(order_id, TENANT_A) is True
        costs = await cost_tracking.get_order_costs(order_id, TENANT_A)

        assert costs.packaging_cost == 5.0
        assert costs.printing_cost == 3.0
        assert costs.return_cost == 0.0

    async def test_apply_defaults_keeps_existing_row(self, cost_tracking, seed):
        await seed.cost_config()
        order_id = await seed.order()
        await seed.order_costs(order_id, packaging_cost=1.0)

        assert await cost_tracking.apply_default_costs_to_order(order_id, TENANT_A) is False
        assert (await cost_tracking.get_order_costs(order_id, TENANT_A)).packaging_cost == 1.0

    async def test_update_order_costs(self, cost_tracking, cache, seed):
        order_id = await seed.order()
        cache.set_order_profit(TENANT_A, order_id, make_breakdown(order_id))

        costs = await cost_tracking.update_order_costs(order_id, TENANT_A, OrderCostUpdate(packaging=2.5))

        assert costs.packaging_cost == 2.5
        assert cache.get_order_profit(TENANT_A, order_id) is None

    async def test_update_return_cost_on_active_order(self, cost_tracking, seed):
        order_id = await seed.order(status=OrderStatus.SHIPPED)

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_order_costs(order_id, TENANT_A, OrderCostUpdate(return_cost=5.0))

        assert exc_info.value.code == ErrorCode.RETURN_COST_ON_ACTIVE_ORDER

    async def test_update_unknown_order(self, cost_tracking):
        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.update_order_costs("missing", TENANT_A, OrderCostUpdate(packaging=1.0))

        assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND

    async def test_process_return_default(self, cost_tracking, seed):
        await seed.cost_config(return_cost=20.0)
        order_id = await seed.order(status=OrderStatus.RETURNED)

        costs = await cost_tracking.process_return_costs(order_id, TENANT_A)

        assert costs.return_cost == 20.0

    async def test_process_return_explicit(self, cost_tracking, seed):
        order_id = await seed.order(status=OrderStatus.PARTIALLY_RETURNED)

        costs = await cost_tracking.process_return_costs(order_id, TENANT_A, return_cost=8.0)

        assert costs.return_cost == 8.0

    async def test_process_return_on_active_order(self, cost_tracking, seed):
        order_id = await seed.order(status=OrderStatus.DELIVERED)

        with pytest.raises(ProfitError) as exc_info:
            await cost_tracking.process_return_costs(order_id, TENANT_A)

        assert exc_info.value.kind == ErrorKind.BUSINESS_RULE

    async def test_batch_costs(self, cost_tracking, seed):
        first = await seed.order()
        second = await seed.order()
        other_tenant = await seed.order(tenant_id=TENANT_B)
        await seed.order_costs(first, packaging_cost=5.0, printing_cost=3.0, total_costs=8.0)
        await seed.order_costs(second, packaging_cost=2.0, product_cost=30.0, total_costs=32.0)
        await seed.order_costs(other_tenant, packaging_cost=9.0, tenant_id=TENANT_B, total_costs=9.0)

        summary = await cost_tracking.calculate_batch_costs([first, second, other_tenant], TENANT_A)

        assert summary.order_count == 2
        assert summary.total_packaging_costs == 7.0
        assert summary.total_product_costs == 30.0
        assert summary.total_costs == 40.0
        assert summary.missing_order_ids == (other_tenant,)
