"""
Period Profit Aggregation

Builds a PeriodProfitReport for a date range: summary totals, per-category
cost totals and a time-bucketed trend.

Orders with a complete stored cost row are aggregated from that row; the
rest are calculated through the engine concurrently. When that calculation fails,
an order with a calculated but inconsistent row is reported from a repaired
copy of the row; any other order is left out of the report rather than
failing it.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import polars as pl
import structlog

from profitcore.config.settings import ProfitSettings
from profitcore.database.models import OrderStatus
from profitcore.database.repository import OrderRecord, ProfitStore
from profitcore.errors import ErrorCode, system_error, validation_error
from profitcore.profit.models import (
    CostBreakdownTotals,
    CostVector,
    PeriodProfitReport,
    ProfitBreakdown,
    ProfitSummary,
    ProfitTrendPoint,
)
from profitcore.quality.fallbacks import FallbackRatios, repair_inconsistent_cost_data, safe_profit_calculation
from profitcore.serving.cache import ProfitCache
from profitcore.serving.monitor import PerformanceMonitor

logger = structlog.get_logger(__name__)

OrderCalculator = Callable[[str, str], Awaitable[ProfitBreakdown]]


class Period(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class PeriodProfitParams:
    start_date: datetime
    end_date: datetime
    period: Period = Period.MONTHLY
    product_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[OrderStatus] = None

    def filters(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "user_id": self.user_id,
            "status": self.status.value if self.status else None,
        }


def bucket_key(moment: Union[datetime, date], period: Period) -> str:
    """
    Trend bucket of a timestamp.

    daily -> YYYY-MM-DD, weekly -> Monday of the ISO week as YYYY-MM-DD,
    monthly -> YYYY-MM.
    """
    day = moment.date() if isinstance(moment, datetime) else moment
    if period == Period.DAILY:
        return day.isoformat()
    if period == Period.WEEKLY:
        return (day - timedelta(days=day.weekday())).isoformat()
    return f"{day.year:04d}-{day.month:02d}"


def breakdown_from_stored(order: OrderRecord, tolerance: float = 0.01) -> Optional[ProfitBreakdown]:
    """
    Breakdown rebuilt from a stored cost row, or None if the row is incomplete.

    A row is complete when its derived figures are present and its total
    matches the sum of its parts.
    """
    row = order.costs
    if row is None or row.net_profit is None or row.gross_profit is None or row.profit_margin is None:
        return None
    costs = CostVector(
        product=row.product_cost,
        lead=row.lead_cost,
        packaging=row.packaging_cost,
        printing=row.printing_cost,
        return_cost=row.return_cost,
        total=row.total_costs,
    )
    if abs(costs.parts_sum - costs.total) > tolerance:
        return None
    return ProfitBreakdown(
        order_id=order.id,
        revenue=order.total,
        costs=costs,
        gross_profit=row.gross_profit,
        net_profit=row.net_profit,
        profit_margin=row.profit_margin,
        is_return=order.status == OrderStatus.RETURNED,
    )


def repaired_from_stored(order: OrderRecord, ratios: FallbackRatios) -> Optional[ProfitBreakdown]:
    """
    Breakdown from a repaired copy of a calculated but inconsistent cost row.

    Rows no calculation has filled in yet are not repaired; None is returned.
    The result is flagged as a fallback and carries the repair warnings.
    """
    row = order.costs
    if row is None or row.net_profit is None:
        return None
    repair = repair_inconsistent_cost_data(
        row.product_cost,
        row.lead_cost,
        row.packaging_cost,
        row.printing_cost,
        row.return_cost,
        row.total_costs,
        order.total,
        ratios,
    )
    profit = safe_profit_calculation(order.total, repair.value)
    return ProfitBreakdown(
        order_id=order.id,
        revenue=order.total,
        costs=repair.value,
        gross_profit=profit.value.gross_profit,
        net_profit=profit.value.net_profit,
        profit_margin=profit.value.profit_margin,
        is_return=order.status == OrderStatus.RETURNED,
        warnings=tuple(repair.warnings) + tuple(profit.warnings),
        used_fallback=True,
    )


def build_trends(rows: List[Tuple[datetime, ProfitBreakdown]], period: Period) -> Tuple[ProfitTrendPoint, ...]:
    if not rows:
        return ()

    df = pl.DataFrame({
        "bucket": [bucket_key(created_at, period) for created_at, _ in rows],
        "revenue": [b.revenue for _, b in rows],
        "costs": [b.costs.total for _, b in rows],
        "profit": [b.net_profit for _, b in rows],
    })
    grouped = (
        df.group_by("bucket")
        .agg([
            pl.col("revenue").sum(),
            pl.col("costs").sum(),
            pl.col("profit").sum(),
            pl.len().alias("order_count"),
        ])
        .sort("bucket")
    )
    return tuple(
        ProfitTrendPoint(
            date=row["bucket"],
            revenue=row["revenue"],
            costs=row["costs"],
            profit=row["profit"],
            order_count=row["order_count"],
        )
        for row in grouped.iter_rows(named=True)
    )


def summarize(breakdowns: List[ProfitBreakdown]) -> Tuple[ProfitSummary, CostBreakdownTotals]:
    total_revenue = sum(b.revenue for b in breakdowns)
    net_profit = sum(b.net_profit for b in breakdowns)
    summary = ProfitSummary(
        total_revenue=total_revenue,
        total_costs=sum(b.costs.total for b in breakdowns),
        net_profit=net_profit,
        profit_margin=net_profit / total_revenue * 100 if total_revenue > 0 else 0.0,
        order_count=len(breakdowns),
        return_count=sum(1 for b in breakdowns if b.is_return),
    )
    totals = CostBreakdownTotals(
        product_costs=sum(b.costs.product for b in breakdowns),
        lead_costs=sum(b.costs.lead for b in breakdowns),
        packaging_costs=sum(b.costs.packaging for b in breakdowns),
        printing_costs=sum(b.costs.printing for b in breakdowns),
        return_costs=sum(b.costs.return_cost for b in breakdowns),
    )
    return summary, totals


class PeriodAggregator:
    """
    Period report builder.

    Args:
        store: Tenant-scoped storage
        cache: Shared profit cache; whole reports are cached by query signature
        monitor: Performance monitor
        calculate: Per-order calculation used for orders without a complete cost row
        settings: Profit settings (storage timeout, concurrency, tolerance)
    """

    def __init__(
        self,
        store: ProfitStore,
        cache: ProfitCache,
        monitor: PerformanceMonitor,
        calculate: OrderCalculator,
        settings: Optional[ProfitSettings] = None,
    ):
        self.store = store
        self.cache = cache
        self.monitor = monitor
        self.calculate = calculate
        self.settings = settings or ProfitSettings()
        self.ratios = FallbackRatios.from_settings(self.settings)

    async def calculate_period_profit(self, params: PeriodProfitParams, tenant_id: str) -> PeriodProfitReport:
        if not tenant_id:
            raise validation_error(
                "tenant id is required", "tenant_id", tenant_id, code=ErrorCode.INVALID_DATA_TYPE,
            )
        if params.end_date < params.start_date:
            raise validation_error(
                "end date must not be before start date", "end_date", params.end_date.isoformat(),
                {"start_date": params.start_date.isoformat()},
            )
        period = Period(params.period)

        key = ProfitCache.report_key(tenant_id, params.start_date, params.end_date, period.value, params.filters())

        with self.monitor.timer("calculate_period_profit", tenant_id=tenant_id) as timing:
            cached = self.cache.get_report(key)
            if cached is not None:
                timing.cache_hit = True
                timing.record_count = cached.summary.order_count
                return cached
            timing.cache_hit = False

            generation = self.cache.report_generation(key)
            try:
                orders = await asyncio.wait_for(
                    self.store.query_orders(
                        tenant_id,
                        params.start_date,
                        params.end_date,
                        product_id=params.product_id,
                        user_id=params.user_id,
                        status=params.status,
                    ),
                    timeout=self.settings.storage_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise system_error(
                    "Timed out querying orders for period report",
                    ErrorCode.TIMEOUT_ERROR,
                    tenant_id=tenant_id,
                ) from e

            rows = await self._resolve_breakdowns(orders, tenant_id)
            breakdowns = [breakdown for _, breakdown in rows]
            summary, totals = summarize(breakdowns)

            report = PeriodProfitReport(
                start=params.start_date,
                end=params.end_date,
                period=period.value,
                summary=summary,
                breakdown=totals,
                trends=build_trends(rows, period),
            )
            timing.record_count = summary.order_count

        cached = self.cache.set_report(key, report, generation=generation)
        logger.info(
            "Period profit calculated",
            tenant_id=tenant_id,
            period=period.value,
            orders=len(orders),
            included=summary.order_count,
            superseded=not cached or None,
        )
        return report

    async def _resolve_breakdowns(
        self, orders: List[OrderRecord], tenant_id: str
    ) -> List[Tuple[datetime, ProfitBreakdown]]:
        resolved: Dict[str, ProfitBreakdown] = {}
        repaired: Dict[str, ProfitBreakdown] = {}
        pending: List[OrderRecord] = []

        for order in orders:
            stored = breakdown_from_stored(order, self.settings.consistency_tolerance)
            if stored is not None:
                resolved[order.id] = stored
                continue
            pending.append(order)
            stand_in = repaired_from_stored(order, self.ratios)
            if stand_in is not None:
                repaired[order.id] = stand_in
                logger.warning(
                    "Inconsistent stored cost row, recalculating",
                    tenant_id=tenant_id,
                    order_id=order.id,
                    warnings=list(stand_in.warnings),
                )

        if pending:
            semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

            async def _calculate(order: OrderRecord) -> Optional[ProfitBreakdown]:
                async with semaphore:
                    try:
                        return await self.calculate(order.id, tenant_id)
                    except Exception as e:
                        if order.id in repaired:
                            logger.warning(
                                "Repaired stored costs used in period report",
                                tenant_id=tenant_id,
                                order_id=order.id,
                                error=str(e),
                            )
                            return repaired[order.id]
                        logger.error(
                            "Order excluded from period report",
                            tenant_id=tenant_id,
                            order_id=order.id,
                            error=str(e),
                        )
                        return None

            results = await asyncio.gather(*(_calculate(order) for order in pending))
            for order, breakdown in zip(pending, results):
                if breakdown is not None:
                    resolved[order.id] = breakdown

        return [
            (order.created_at or datetime.min, resolved[order.id])
            for order in orders
            if order.id in resolved
        ]
