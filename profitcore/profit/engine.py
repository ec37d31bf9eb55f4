"""
Profit Calculation Engine

Derives a ProfitBreakdown for one order from its revenue, product cost,
lead acquisition cost and operational costs, keeping the denormalized cost
row and the cache consistent as inputs change.

Calculation flow on a cache miss:
1. Load the order with product, lead batch and stored costs (tenant-scoped)
2. Product cost = unit cost x quantity, estimated from revenue if missing
3. Lead cost from the linked batch, 0 when there is none
4. Operational costs from the stored row, else tenant defaults
5. Validate the totals, derive profit figures, persist, cache

Errors with a fallback produce an estimated breakdown that is returned but
never cached or persisted; the rest propagate as ProfitError.
"""

import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple, TypeVar

import structlog

from profitcore.config.settings import ProfitSettings
from profitcore.database.models import OrderStatus, RETURN_COST_STATUSES
from profitcore.database.repository import OrderRecord, ProfitStore
from profitcore.errors import (
    ErrorCode,
    ErrorKind,
    ProfitError,
    business_rule_error,
    calculation_error,
    data_integrity_error,
    system_error,
    user_friendly_message,
    validation_error,
)
from profitcore.profit.aggregation import PeriodAggregator, PeriodProfitParams
from profitcore.profit.models import (
    CostVector,
    DefaultCosts,
    OrderCostUpdate,
    PeriodProfitReport,
    ProfitBreakdown,
)
from profitcore.quality.fallbacks import (
    FallbackRatios,
    fallback_default_costs,
    fallback_lead_cost,
    fallback_product_cost,
    fallback_profit_breakdown,
    recover_from_database_failure,
    recovery_strategy,
    safe_profit_calculation,
)
from profitcore.quality.validators import (
    sanitize_numeric_input,
    validate_order_costs,
    validate_order_status_transition,
    validate_profit_calculation_inputs,
)
from profitcore.serving.cache import ProfitCache
from profitcore.serving.invalidation import ProfitCacheInvalidationService
from profitcore.serving.monitor import PerformanceMonitor

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _require_id(value: Any, field_name: str, order_id: Any = None, tenant_id: Any = None) -> str:
    if not isinstance(value, str) or not value.strip():
        error = validation_error(
            f"Invalid {field_name.replace('_', ' ')} provided",
            field_name,
            value,
            {"expected_type": "non-empty string"},
            code=ErrorCode.INVALID_DATA_TYPE,
        )
        error.order_id = order_id if isinstance(order_id, str) else None
        error.tenant_id = tenant_id if isinstance(tenant_id, str) else None
        raise error
    return value


class ProfitCalculationService:
    """
    Per-order profit engine.

    Status changes and manual cost edits are announced through the
    invalidation dispatcher, so attached peers drop their copies too.

    Example:
        service = ProfitCalculationService(store, cache, monitor, settings.profit, invalidation)
        breakdown = await service.calculate_order_profit("order-1", "tenant-1")
    """

    def __init__(
        self,
        store: ProfitStore,
        cache: ProfitCache,
        monitor: PerformanceMonitor,
        settings: Optional[ProfitSettings] = None,
        invalidation: Optional[ProfitCacheInvalidationService] = None,
    ):
        self.store = store
        self.cache = cache
        self.monitor = monitor
        self.settings = settings or ProfitSettings()
        self.invalidation = invalidation or ProfitCacheInvalidationService(cache)
        self.ratios = FallbackRatios.from_settings(self.settings)
        self.aggregator = PeriodAggregator(store, cache, monitor, self.calculate_order_profit, self.settings)

    async def _storage(self, operation: str, call: Awaitable[T], order_id: Optional[str], tenant_id: str) -> T:
        """Await a storage call under the configured deadline"""
        try:
            return await asyncio.wait_for(call, timeout=self.settings.storage_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise system_error(
                f"Storage operation {operation} timed out",
                ErrorCode.TIMEOUT_ERROR,
                order_id=order_id,
                tenant_id=tenant_id,
                context={"operation": operation, "timeout_seconds": self.settings.storage_timeout_seconds},
            ) from e

    # =========================================================================
    # SINGLE ORDER
    # =========================================================================

    async def calculate_order_profit(self, order_id: str, tenant_id: str) -> ProfitBreakdown:
        """
        Profit breakdown of one order, served from cache when fresh.

        Raises:
            ProfitError: for unknown orders, invalid identifiers or revenue,
                and storage failures that happen before the order is known
        """
        _require_id(order_id, "order_id", order_id, tenant_id)
        _require_id(tenant_id, "tenant_id", order_id, tenant_id)

        with self.monitor.timer("calculate_order_profit", tenant_id=tenant_id, order_id=order_id) as timing:
            cached = self.cache.get_order_profit(tenant_id, order_id)
            if cached is not None:
                timing.cache_hit = True
                return cached
            timing.cache_hit = False

            # Taken before any read; an invalidation during the calculation voids it
            generation = self.cache.order_profit_generation(tenant_id, order_id)
            order: Optional[OrderRecord] = None
            try:
                order = await self._load_order(order_id, tenant_id)
                breakdown = await self._calculate(order, tenant_id)
            except Exception as e:
                return self._recover(e, order_id, tenant_id, order)

        if not self.cache.set_order_profit(tenant_id, order_id, breakdown, generation=generation):
            logger.info("Profit result superseded during calculation, not cached", order_id=order_id, tenant_id=tenant_id)
        return breakdown

    async def _load_order(self, order_id: str, tenant_id: str) -> OrderRecord:
        try:
            order = await self._storage("get_order", self.store.get_order(tenant_id, order_id), order_id, tenant_id)
        except ProfitError:
            raise
        except Exception as e:
            raise system_error(
                f"Failed to load order {order_id}",
                ErrorCode.DATABASE_ERROR,
                order_id=order_id,
                tenant_id=tenant_id,
                context={"error": str(e)},
            ) from e

        if order is None:
            raise data_integrity_error(
                f"Order {order_id} not found",
                ErrorCode.ORDER_NOT_FOUND,
                order_id=order_id,
                tenant_id=tenant_id,
            )
        return order

    async def _calculate(self, order: OrderRecord, tenant_id: str) -> ProfitBreakdown:
        order_id = order.id
        warnings: List[str] = []

        revenue = sanitize_numeric_input(order.total)
        if revenue <= 0:
            error = validation_error(
                "Order total must be greater than zero",
                "total",
                order.total,
                {"min": 0, "exclusive": True},
                code=ErrorCode.INVALID_COST_RANGE,
            )
            error.order_id = order_id
            error.tenant_id = tenant_id
            raise error

        quantity = int(sanitize_numeric_input(order.quantity)) or 1

        # Product cost
        if order.product is None or order.product.cost_price is None:
            fallback = fallback_product_cost(
                revenue,
                quantity,
                data_integrity_error(
                    "Product information missing",
                    ErrorCode.PRODUCT_NOT_FOUND,
                    order_id=order_id,
                    tenant_id=tenant_id,
                    context={"product_id": order.product_id},
                ),
                self.ratios,
            )
            product_cost = fallback.value * quantity
            warnings.extend(fallback.warnings)
            logger.warning("Product cost estimated", order_id=order_id, tenant_id=tenant_id, reason=fallback.reason)
        else:
            product_cost = sanitize_numeric_input(order.product.cost_price) * quantity
            if order.product.cost_price == 0:
                warnings.append("Product cost price is not set. Profit calculations may be inaccurate.")

        # Lead cost
        lead_cost = 0.0
        try:
            if order.lead_batch is not None and order.lead_batch.cost_per_lead > 0:
                lead_cost = sanitize_numeric_input(order.lead_batch.cost_per_lead)
        except Exception as e:
            fallback = fallback_lead_cost(e, self.ratios)
            lead_cost = fallback.value
            warnings.extend(fallback.warnings)

        # Operational costs
        if order.costs is not None:
            validation = validate_order_costs(
                packaging=order.costs.packaging_cost,
                printing=order.costs.printing_cost,
                return_cost=order.costs.return_cost,
                order_status=order.status,
                order_total=revenue,
            )
            if not validation.is_valid:
                warnings.append("Some cost values were invalid and have been corrected.")
                warnings.extend(user_friendly_message(e) for e in validation.errors)
            warnings.extend(validation.warnings)

            packaging = validation.values.get("packaging_cost", 0.0)
            printing = validation.values.get("printing_cost", 0.0)
            return_cost = validation.values.get("return_cost", 0.0)
            if any(e.kind == ErrorKind.BUSINESS_RULE for e in validation.errors):
                return_cost = 0.0
        else:
            defaults, default_warnings = await self._resolve_default_costs(tenant_id)
            warnings.extend(default_warnings)
            packaging = defaults.packaging
            printing = defaults.printing
            return_cost = defaults.return_cost if order.status == OrderStatus.RETURNED else 0.0

        costs = CostVector.from_parts(product_cost, lead_cost, packaging, printing, return_cost)

        inputs = validate_profit_calculation_inputs(revenue, costs.total)
        if not inputs.is_valid:
            raise calculation_error(
                "Invalid profit calculation inputs",
                ErrorCode.INCONSISTENT_CALCULATION,
                order_id=order_id,
                tenant_id=tenant_id,
                context={
                    "revenue": revenue,
                    "total_costs": costs.total,
                    "errors": [e.message for e in inputs.errors],
                },
            )
        warnings.extend(inputs.warnings)

        safe = safe_profit_calculation(revenue, costs)
        warnings.extend(w for w in safe.warnings if w not in warnings)

        breakdown = ProfitBreakdown(
            order_id=order_id,
            revenue=revenue,
            costs=costs,
            gross_profit=safe.value.gross_profit,
            net_profit=safe.value.net_profit,
            profit_margin=safe.value.profit_margin,
            is_return=order.status == OrderStatus.RETURNED,
        )

        try:
            # Compare-and-set against the row this calculation read
            recorded = await self._storage(
                "record_calculated_costs",
                self.store.record_calculated_costs(tenant_id, order_id, {
                    "product_cost": costs.product,
                    "lead_cost": costs.lead,
                    "packaging_cost": costs.packaging,
                    "printing_cost": costs.printing,
                    "return_cost": costs.return_cost,
                    "total_costs": costs.total,
                    "gross_profit": breakdown.gross_profit,
                    "net_profit": breakdown.net_profit,
                    "profit_margin": breakdown.profit_margin,
                }, basis=order.costs),
                order_id,
                tenant_id,
            )
            if not recorded:
                logger.info("Cost row changed during calculation, not persisted", order_id=order_id, tenant_id=tenant_id)
        except Exception as e:
            logger.warning("Failed to persist order costs", order_id=order_id, tenant_id=tenant_id, error=str(e))
            warnings.append("Cost record update failed. Calculation is still valid.")

        if warnings:
            logger.info("Profit calculation warnings", order_id=order_id, tenant_id=tenant_id, warnings=warnings)

        return ProfitBreakdown(
            order_id=breakdown.order_id,
            revenue=breakdown.revenue,
            costs=breakdown.costs,
            gross_profit=breakdown.gross_profit,
            net_profit=breakdown.net_profit,
            profit_margin=breakdown.profit_margin,
            is_return=breakdown.is_return,
            warnings=tuple(warnings),
        )

    def _recover(
        self,
        error: Exception,
        order_id: str,
        tenant_id: str,
        order: Optional[OrderRecord],
    ) -> ProfitBreakdown:
        strategy = recovery_strategy(error)

        if strategy.fallback_available and order is not None:
            fallback = fallback_profit_breakdown(
                order_id, order.total, order.status, error, self.ratios,
            )
            logger.warning(
                "Fallback profit breakdown used",
                order_id=order_id,
                tenant_id=tenant_id,
                reason=fallback.reason,
                action=strategy.action,
            )
            return fallback.value

        if strategy.fallback_available:
            # Order never loaded; only a cached copy could stand in for it
            recovered = recover_from_database_failure(
                "calculate_order_profit", self.cache.get_order_profit(tenant_id, order_id), error,
            )
            if recovered.value is not None:
                return recovered.value

        if isinstance(error, ProfitError):
            logger.error("Profit calculation failed", **error.to_dict())
            raise error

        logger.exception("Profit calculation failed", order_id=order_id, tenant_id=tenant_id)
        raise calculation_error(
            f"Failed to calculate profit for order {order_id}: {error}",
            ErrorCode.CALCULATION_OVERFLOW,
            order_id=order_id,
            tenant_id=tenant_id,
            context={"error_type": type(error).__name__},
        ) from error

    # =========================================================================
    # DEFAULT COSTS
    # =========================================================================

    async def _resolve_default_costs(self, tenant_id: str) -> Tuple[DefaultCosts, List[str]]:
        cached = self.cache.get_default_costs(tenant_id)
        if cached is not None:
            return cached, []

        generation = self.cache.default_costs_generation(tenant_id)
        try:
            config = await self._storage(
                "get_tenant_cost_config", self.store.get_tenant_cost_config(tenant_id), None, tenant_id,
            )
        except Exception as e:
            fallback = fallback_default_costs(e, self.ratios)
            logger.warning("Using fallback default costs", tenant_id=tenant_id, reason=fallback.reason)
            return fallback.value, fallback.warnings

        if config is None:
            fallback = fallback_default_costs(ratios=self.ratios)
            logger.info("No cost configuration for tenant, using system defaults", tenant_id=tenant_id)
            return fallback.value, fallback.warnings

        defaults = DefaultCosts(
            packaging=sanitize_numeric_input(config.default_packaging_cost),
            printing=sanitize_numeric_input(config.default_printing_cost),
            return_cost=sanitize_numeric_input(config.default_return_cost),
        )
        self.cache.set_default_costs(tenant_id, defaults, generation=generation)
        return defaults, []

    async def get_default_costs(self, tenant_id: str) -> DefaultCosts:
        """Tenant defaults through the default-costs cache; system defaults when unconfigured"""
        _require_id(tenant_id, "tenant_id", tenant_id=tenant_id)
        defaults, _ = await self._resolve_default_costs(tenant_id)
        return defaults

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def recalculate_on_status_change(
        self,
        order_id: str,
        new_status: OrderStatus,
        tenant_id: str,
        return_cost: Optional[float] = None,
    ) -> ProfitBreakdown:
        """
        Apply a status change and return the recalculated breakdown.

        Entering RETURNED sets the return cost (explicit, else tenant default,
        else system default); leaving a return status clears it.

        Raises:
            ProfitError: (business rule) for a return cost on a non-return status
        """
        _require_id(order_id, "order_id", order_id, tenant_id)
        _require_id(tenant_id, "tenant_id", order_id, tenant_id)
        try:
            new_status = OrderStatus(new_status)
        except ValueError as e:
            raise validation_error(
                f"Unknown order status {new_status!r}", "status", new_status,
                {"allowed": [s.value for s in OrderStatus]}, code=ErrorCode.INVALID_DATA_TYPE,
            ) from e

        current = await self._storage(
            "get_order_summary", self.store.get_order_summary(tenant_id, order_id), order_id, tenant_id,
        )
        if current is None:
            raise data_integrity_error(
                f"Order {order_id} not found", ErrorCode.ORDER_NOT_FOUND, order_id=order_id, tenant_id=tenant_id,
            )

        transition = validate_order_status_transition(
            current.status, new_status, has_return_cost=return_cost is not None and return_cost > 0,
        )
        if not transition.is_valid:
            first = transition.errors[0]
            raise business_rule_error(
                first.message,
                ErrorCode.RETURN_COST_ON_ACTIVE_ORDER,
                field="return_cost",
                value=return_cost,
                order_id=order_id,
                tenant_id=tenant_id,
                context={"current_status": current.status.value, "new_status": new_status.value},
            )
        for warning in transition.warnings:
            logger.info("Status transition warning", order_id=order_id, tenant_id=tenant_id, warning=warning)

        if return_cost is not None:
            costs_check = validate_order_costs(return_cost=return_cost, order_status=new_status)
            if not costs_check.is_valid:
                error = costs_check.errors[0]
                error.order_id = order_id
                error.tenant_id = tenant_id
                raise error

        if new_status != current.status:
            await self._storage(
                "update_order_status",
                self.store.update_order_status(tenant_id, order_id, new_status),
                order_id,
                tenant_id,
            )

        existing = await self._storage(
            "get_order_costs", self.store.get_order_costs(tenant_id, order_id), order_id, tenant_id,
        )

        if new_status == OrderStatus.RETURNED:
            defaults = await self.get_default_costs(tenant_id)
            values = {
                "return_cost": sanitize_numeric_input(return_cost) if return_cost is not None else defaults.return_cost,
            }
            if existing is None:
                # New row stands in for the defaults the calculation would have applied
                values["packaging_cost"] = defaults.packaging
                values["printing_cost"] = defaults.printing
            await self._upsert_costs_quietly(order_id, tenant_id, values)
        elif new_status == OrderStatus.PARTIALLY_RETURNED and return_cost is not None:
            values = {"return_cost": sanitize_numeric_input(return_cost)}
            if existing is None:
                defaults = await self.get_default_costs(tenant_id)
                values["packaging_cost"] = defaults.packaging
                values["printing_cost"] = defaults.printing
            await self._upsert_costs_quietly(order_id, tenant_id, values)
        elif (
            existing is not None
            and current.status in RETURN_COST_STATUSES
            and new_status not in RETURN_COST_STATUSES
        ):
            await self._upsert_costs_quietly(order_id, tenant_id, {"return_cost": 0.0})

        # After every write, so no calculation that read the old state stays cached
        self.invalidation.on_order_status_changed(
            order_id, tenant_id, old_status=current.status.value, new_status=new_status.value,
        )
        logger.info(
            "Order status changed",
            order_id=order_id,
            tenant_id=tenant_id,
            old_status=current.status.value,
            new_status=new_status.value,
        )
        return await self.calculate_order_profit(order_id, tenant_id)

    async def _upsert_costs_quietly(self, order_id: str, tenant_id: str, values: Dict[str, float]) -> None:
        """Cost row write whose failure only degrades the following recalculation"""
        try:
            await self._storage(
                "upsert_order_costs", self.store.upsert_order_costs(tenant_id, order_id, values), order_id, tenant_id,
            )
        except Exception as e:
            logger.warning("Failed to update order cost row", order_id=order_id, tenant_id=tenant_id, error=str(e))

    async def update_order_costs_manually(
        self, order_id: str, tenant_id: str, update: OrderCostUpdate
    ) -> ProfitBreakdown:
        """
        Validate and store a partial manual edit, then recalculate.

        Only supplied fields are written.

        Raises:
            ProfitError: for invalid values, a return cost on a non-return
                order, or a failed write
        """
        _require_id(order_id, "order_id", order_id, tenant_id)
        _require_id(tenant_id, "tenant_id", order_id, tenant_id)
        if update is None or update.is_empty():
            raise validation_error(
                "At least one cost field must be supplied", "costs", None,
                code=ErrorCode.MISSING_REQUIRED_FIELD,
            )

        order = await self._storage(
            "get_order_summary", self.store.get_order_summary(tenant_id, order_id), order_id, tenant_id,
        )
        if order is None:
            raise data_integrity_error(
                f"Order {order_id} not found", ErrorCode.ORDER_NOT_FOUND, order_id=order_id, tenant_id=tenant_id,
            )

        validation = validate_order_costs(
            packaging=update.packaging,
            printing=update.printing,
            return_cost=update.return_cost,
            order_status=order.status,
            order_total=order.total,
        )
        if not validation.is_valid:
            error = validation.errors[0]
            error.order_id = order_id
            error.tenant_id = tenant_id
            error.context.setdefault("all_errors", [e.message for e in validation.errors])
            raise error
        if validation.warnings:
            logger.info("Cost update warnings", order_id=order_id, tenant_id=tenant_id, warnings=validation.warnings)

        try:
            await self._storage(
                "upsert_order_costs",
                self.store.upsert_order_costs(tenant_id, order_id, validation.values),
                order_id,
                tenant_id,
            )
        except ProfitError:
            raise
        except Exception as e:
            raise system_error(
                "Failed to update cost records in database",
                ErrorCode.DATABASE_ERROR,
                order_id=order_id,
                tenant_id=tenant_id,
                context={"values": validation.values, "error": str(e)},
            ) from e

        self.invalidation.on_order_costs_updated(order_id, tenant_id)
        return await self.calculate_order_profit(order_id, tenant_id)

    # =========================================================================
    # BATCH AND PERIOD
    # =========================================================================

    async def calculate_multiple_order_profits(
        self, order_ids: Sequence[str], tenant_id: str
    ) -> List[ProfitBreakdown]:
        """Breakdowns for many orders in input order; failures are logged and omitted"""
        _require_id(tenant_id, "tenant_id", tenant_id=tenant_id)
        semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

        async def _one(order_id: str) -> Optional[ProfitBreakdown]:
            async with semaphore:
                try:
                    return await self.calculate_order_profit(order_id, tenant_id)
                except Exception as e:
                    logger.error(
                        "Order skipped in batch calculation",
                        order_id=order_id,
                        tenant_id=tenant_id,
                        error=str(e),
                    )
                    return None

        results = await asyncio.gather(*(_one(order_id) for order_id in order_ids))
        return [result for result in results if result is not None]

    async def calculate_period_profit(self, params: PeriodProfitParams, tenant_id: str) -> PeriodProfitReport:
        return await self.aggregator.calculate_period_profit(params, tenant_id)
