"""
Unit Tests - Period Aggregation
"""
import asyncio
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from profitcore.database.models import OrderStatus
from profitcore.database.repository import OrderCostsRecord, OrderRecord
from profitcore.errors import ErrorCode, ErrorKind, ProfitError, system_error
from profitcore.profit.aggregation import (
    Period,
    PeriodAggregator,
    PeriodProfitParams,
    breakdown_from_stored,
    bucket_key,
    build_trends,
    repaired_from_stored,
    summarize,
)
from profitcore.profit.engine import ProfitCalculationService
from profitcore.profit.models import CostVector, ProfitBreakdown
from profitcore.quality.fallbacks import DEFAULT_RATIOS
from profitcore.serving.cache import ProfitCache

from tests.conftest import TENANT_A, CountingStore, GatedStore

JANUARY = PeriodProfitParams(
    start_date=datetime(2024, 1, 1),
    end_date=datetime(2024, 1, 31, 23, 59, 59),
    period=Period.DAILY,
)


def breakdown(order_id: str, revenue: float, costs: float, is_return: bool = False) -> ProfitBreakdown:
    vector = CostVector.from_parts(costs, 0, 0, 0, 0)
    return ProfitBreakdown(
        order_id=order_id,
        revenue=revenue,
        costs=vector,
        gross_profit=revenue - costs,
        net_profit=revenue - costs,
        profit_margin=(revenue - costs) / revenue * 100,
        is_return=is_return,
    )


def stored_order(net_profit=42.0, total_costs=53.0) -> OrderRecord:
    return OrderRecord(
        id="o-1",
        tenant_id=TENANT_A,
        total=95.0,
        quantity=1,
        status=OrderStatus.DELIVERED,
        product_id=None,
        lead_id=None,
        created_at=datetime(2024, 1, 15),
        costs=OrderCostsRecord(
            order_id="o-1",
            product_cost=35.0,
            lead_cost=10.0,
            packaging_cost=5.0,
            printing_cost=3.0,
            return_cost=0.0,
            total_costs=total_costs,
            gross_profit=60.0,
            net_profit=net_profit,
            profit_margin=44.2,
        ),
    )


class TestBucketKey:
    """Tests for trend bucketing"""

    def test_daily(self):
        assert bucket_key(datetime(2024, 1, 17, 23, 59), Period.DAILY) == "2024-01-17"

    @pytest.mark.parametrize("day", [date(2024, 1, 15), date(2024, 1, 17), date(2024, 1, 21)])
    def test_weekly_is_monday(self, day):
        assert bucket_key(day, Period.WEEKLY) == "2024-01-15"

    def test_weekly_across_year_boundary(self):
        assert bucket_key(date(2025, 1, 1), Period.WEEKLY) == "2024-12-30"

    def test_monthly(self):
        assert bucket_key(datetime(2024, 2, 29), Period.MONTHLY) == "2024-02"


class TestSummaries:
    """Tests for summary and trend building"""

    def test_summarize(self):
        summary, totals = summarize([
            breakdown("a", 100, 60),
            breakdown("b", 50, 70, is_return=True),
        ])

        assert summary.total_revenue == 150
        assert summary.net_profit == pytest.approx(20)
        assert summary.profit_margin == pytest.approx(20 / 150 * 100)
        assert summary.order_count == 2
        assert summary.return_count == 1
        assert totals.product_costs == 130

    def test_summarize_empty(self):
        summary, _ = summarize([])

        assert summary.order_count == 0
        assert summary.profit_margin == 0.0

    def test_trends_sorted_by_bucket(self):
        rows = [
            (datetime(2024, 1, 16), breakdown("a", 100, 60)),
            (datetime(2024, 1, 15), breakdown("b", 100, 50)),
            (datetime(2024, 1, 16, 18), breakdown("c", 50, 10)),
        ]

        trends = build_trends(rows, Period.DAILY)

        assert [point.date for point in trends] == ["2024-01-15", "2024-01-16"]
        assert trends[1].order_count == 2
        assert trends[1].revenue == pytest.approx(150)
        assert trends[1].profit == pytest.approx(80)

    def test_trends_empty(self):
        assert build_trends([], Period.MONTHLY) == ()


class TestBreakdownFromStored:
    """Tests for reuse of stored cost rows"""

    def test_complete_row(self):
        result = breakdown_from_stored(stored_order())

        assert result.net_profit == 42.0
        assert result.costs.total == 53.0
        assert result.revenue == 95.0

    def test_row_without_derived_figures(self):
        assert breakdown_from_stored(stored_order(net_profit=None)) is None

    def test_row_with_inconsistent_total(self):
        assert breakdown_from_stored(stored_order(total_costs=40.0)) is None


class TestRepairedFromStored:
    """Tests for repaired stand-ins of inconsistent stored rows"""

    def test_total_recomputed_from_parts(self):
        result = repaired_from_stored(stored_order(total_costs=40.0), DEFAULT_RATIOS)

        assert result.costs.total == pytest.approx(53.0)
        assert result.net_profit == pytest.approx(42.0)
        assert result.used_fallback
        assert result.warnings[0].startswith("Total cost mismatch detected")

    def test_uncalculated_row_not_repaired(self):
        assert repaired_from_stored(stored_order(net_profit=None), DEFAULT_RATIOS) is None

    def test_order_without_row(self):
        assert repaired_from_stored(replace(stored_order(), costs=None), DEFAULT_RATIOS) is None


class TestPeriodAggregator:
    """Tests for period reports over the database"""

    async def _ten_orders(self, seed):
        await seed.cost_config(packaging=5.0, printing=3.0)
        for i in range(10):
            await seed.full_order(total=95.0, created_at=datetime(2024, 1, 10 + i % 2, 12))

    async def test_period_report(self, engine, seed):
        await self._ten_orders(seed)

        report = await engine.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.order_count == 10
        assert report.summary.net_profit == pytest.approx(420.0)
        assert report.summary.total_revenue == pytest.approx(950.0)
        assert report.breakdown.lead_costs == pytest.approx(100.0)
        assert [p.date for p in report.trends] == ["2024-01-10", "2024-01-11"]
        assert sum(p.order_count for p in report.trends) == 10

    async def test_report_cached(self, store, cache, monitor, test_settings, seed):
        await self._ten_orders(seed)
        counting = CountingStore(store)
        service = ProfitCalculationService(counting, cache, monitor, test_settings.profit)

        first = await service.calculate_period_profit(JANUARY, TENANT_A)
        second = await service.calculate_period_profit(JANUARY, TENANT_A)

        assert second is first
        assert counting.calls["query_orders"] == 1

    async def test_stored_rows_reused(self, store, cache, monitor, test_settings, seed):
        await self._ten_orders(seed)
        counting = CountingStore(store)
        service = ProfitCalculationService(counting, cache, monitor, test_settings.profit)
        await service.calculate_period_profit(JANUARY, TENANT_A)
        calculated = counting.calls["get_order"]

        cache.clear_all()
        report = await service.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.net_profit == pytest.approx(420.0)
        assert counting.calls["get_order"] == calculated

    async def test_failed_order_excluded(self, engine, seed):
        await seed.full_order(total=95.0)
        await seed.full_order(total=0.0)

        report = await engine.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.order_count == 1

    async def test_filters(self, engine, seed):
        await seed.full_order(total=95.0, user_id="alice")
        await seed.full_order(total=95.0, user_id="bob", status=OrderStatus.RETURNED)

        by_user = await engine.calculate_period_profit(
            PeriodProfitParams(JANUARY.start_date, JANUARY.end_date, Period.MONTHLY, user_id="alice"), TENANT_A,
        )
        by_status = await engine.calculate_period_profit(
            PeriodProfitParams(JANUARY.start_date, JANUARY.end_date, Period.MONTHLY, status=OrderStatus.RETURNED),
            TENANT_A,
        )

        assert by_user.summary.order_count == 1
        assert by_status.summary.return_count == 1
        assert by_status.trends[0].date == "2024-01"

    async def test_outside_range_ignored(self, engine, seed):
        await seed.full_order(total=95.0, created_at=JANUARY.end_date + timedelta(seconds=1))

        report = await engine.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.order_count == 0
        assert report.trends == ()

    async def test_inverted_range_rejected(self, engine):
        params = PeriodProfitParams(JANUARY.end_date, JANUARY.start_date)

        with pytest.raises(ProfitError) as exc_info:
            await engine.calculate_period_profit(params, TENANT_A)

        assert exc_info.value.kind == ErrorKind.VALIDATION

    async def _inconsistent_order(self, seed) -> str:
        order_id = await seed.full_order(total=95.0)
        await seed.order_costs(
            order_id,
            packaging_cost=5.0,
            printing_cost=3.0,
            product_cost=35.0,
            lead_cost=10.0,
            total_costs=40.0,
            gross_profit=55.0,
            net_profit=55.0,
            profit_margin=57.9,
        )
        return order_id

    async def test_inconsistent_row_recalculated(self, engine, store, seed):
        order_id = await self._inconsistent_order(seed)

        report = await engine.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.total_costs == pytest.approx(53.0)
        row = await store.get_order_costs(TENANT_A, order_id)
        assert row.total_costs == pytest.approx(53.0)
        assert row.net_profit == pytest.approx(42.0)

    async def test_inconsistent_row_repaired_when_calculation_fails(self, store, cache, monitor, test_settings, seed):
        await self._inconsistent_order(seed)
        await seed.full_order(total=95.0)

        async def unavailable(order_id, tenant_id):
            raise system_error("Calculation unavailable", ErrorCode.DATABASE_ERROR, order_id, tenant_id)

        aggregator = PeriodAggregator(store, cache, monitor, unavailable, test_settings.profit)
        report = await aggregator.calculate_period_profit(JANUARY, TENANT_A)

        assert report.summary.order_count == 1
        assert report.summary.total_costs == pytest.approx(53.0)
        assert report.summary.net_profit == pytest.approx(42.0)

    async def test_invalidation_during_report_not_cached(self, engine, store, cache, monitor, test_settings, seed):
        order_id = await seed.full_order(total=95.0, status=OrderStatus.DELIVERED)
        await seed.order_costs(order_id, packaging_cost=5.0, printing_cost=3.0)
        gated = GatedStore(store, "query_orders")
        reader = ProfitCalculationService(gated, cache, monitor, test_settings.profit)
        key = ProfitCache.report_key(
            TENANT_A, JANUARY.start_date, JANUARY.end_date, JANUARY.period.value, JANUARY.filters(),
        )

        pending = asyncio.create_task(reader.calculate_period_profit(JANUARY, TENANT_A))
        await gated.entered.wait()
        await engine.recalculate_on_status_change(order_id, OrderStatus.RETURNED, TENANT_A, return_cost=20.0)
        gated.release.set()
        stale = await pending

        assert stale.summary.order_count == 1
        assert cache.get_report(key) is None
        fresh = await engine.calculate_period_profit(JANUARY, TENANT_A)
        assert fresh.summary.return_count == 1
        assert fresh.summary.net_profit == pytest.approx(22.0)
        assert cache.get_report(key) is fresh
