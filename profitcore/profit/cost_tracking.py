"""
Cost Tracking Service

Write side of the cost model: lead batches, per-order operational costs and
tenant cost defaults. Every mutation is validated before it is stored and
announces itself to the invalidation dispatcher so no cached profit figure
outlives the data it was derived from.
"""

from typing import List, Optional, Sequence

import structlog

from profitcore.config.settings import ProfitSettings
from profitcore.database.models import OrderStatus, RETURN_COST_STATUSES
from profitcore.database.repository import (
    LeadBatchRecord,
    OrderCostsRecord,
    ProductRecord,
    ProfitStore,
    TenantCostConfigRecord,
)
from profitcore.errors import (
    ErrorCode,
    business_rule_error,
    data_integrity_error,
    validation_error,
)
from profitcore.profit.models import (
    BatchCostSummary,
    DefaultCosts,
    LeadBatchCost,
    OrderCostUpdate,
    TenantCostConfigUpdate,
)
from profitcore.quality.validators import (
    validate_lead_batch_costs,
    validate_order_costs,
    validate_product_costs,
    validate_tenant_cost_config,
)
from profitcore.serving.invalidation import ProfitCacheInvalidationService

logger = structlog.get_logger(__name__)


def _batch_cost(batch: LeadBatchRecord) -> LeadBatchCost:
    return LeadBatchCost(
        batch_id=batch.id,
        total_cost=batch.total_cost,
        lead_count=batch.lead_count,
        cost_per_lead=batch.cost_per_lead,
        imported_at=batch.imported_at,
    )


class CostTrackingService:
    """
    Lead batch, order cost and tenant default management.

    Args:
        store: Tenant-scoped storage
        invalidation: Dispatcher notified after every successful write
        settings: Profit settings
    """

    def __init__(
        self,
        store: ProfitStore,
        invalidation: ProfitCacheInvalidationService,
        settings: Optional[ProfitSettings] = None,
    ):
        self.store = store
        self.invalidation = invalidation
        self.settings = settings or ProfitSettings()

    # =========================================================================
    # LEAD BATCHES
    # =========================================================================

    async def create_lead_batch(
        self, tenant_id: str, user_id: str, total_cost: float, lead_count: int
    ) -> LeadBatchCost:
        """
        Record a purchased lead batch; cost per lead is total / count.

        Raises:
            ProfitError: (validation) for an out-of-range total or count
        """
        validation = validate_lead_batch_costs(total_cost, lead_count)
        validation.raise_for_errors()
        values = validation.values

        batch = await self.store.create_lead_batch(
            tenant_id,
            user_id,
            values["total_cost"],
            values["lead_count"],
            values["cost_per_lead"],
        )
        logger.info(
            "Lead batch created",
            tenant_id=tenant_id,
            batch_id=batch.id,
            lead_count=batch.lead_count,
            cost_per_lead=round(batch.cost_per_lead, 4),
            warnings=validation.warnings or None,
        )
        self.invalidation.on_lead_batch_updated(batch.id, tenant_id)
        return _batch_cost(batch)

    async def update_lead_batch_cost(self, batch_id: str, tenant_id: str, total_cost: float) -> LeadBatchCost:
        """Change a batch's total cost, re-deriving cost per lead from its lead count"""
        batch = await self.store.get_lead_batch(tenant_id, batch_id)
        if batch is None:
            raise data_integrity_error(
                f"Lead batch {batch_id} not found",
                ErrorCode.LEAD_BATCH_NOT_FOUND,
                tenant_id=tenant_id,
                context={"batch_id": batch_id},
            )

        validation = validate_lead_batch_costs(total_cost, batch.lead_count)
        validation.raise_for_errors()

        updated = await self.store.update_lead_batch_cost(
            tenant_id, batch_id, validation.values["total_cost"], validation.values["cost_per_lead"],
        )
        if updated is None:
            raise data_integrity_error(
                f"Lead batch {batch_id} not found",
                ErrorCode.LEAD_BATCH_NOT_FOUND,
                tenant_id=tenant_id,
                context={"batch_id": batch_id},
            )

        logger.info(
            "Lead batch cost updated",
            tenant_id=tenant_id,
            batch_id=batch_id,
            old_total=batch.total_cost,
            new_total=updated.total_cost,
        )
        self.invalidation.on_lead_batch_updated(batch_id, tenant_id)
        return _batch_cost(updated)

    async def get_lead_batch(self, batch_id: str, tenant_id: str) -> Optional[LeadBatchCost]:
        batch = await self.store.get_lead_batch(tenant_id, batch_id)
        return _batch_cost(batch) if batch is not None else None

    async def get_lead_batches(
        self, tenant_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[LeadBatchCost]:
        """Batches of a tenant, most recently imported first"""
        return [_batch_cost(batch) for batch in await self.store.list_lead_batches(tenant_id, limit, offset)]

    async def delete_lead_batch(self, batch_id: str, tenant_id: str) -> None:
        """
        Raises:
            ProfitError: LEAD_BATCH_NOT_FOUND for an unknown batch,
                LEAD_BATCH_IN_USE while leads still reference it
        """
        deleted = await self.store.delete_lead_batch(tenant_id, batch_id)
        if not deleted:
            raise data_integrity_error(
                f"Lead batch {batch_id} not found",
                ErrorCode.LEAD_BATCH_NOT_FOUND,
                tenant_id=tenant_id,
                context={"batch_id": batch_id},
            )
        self.invalidation.on_lead_batch_updated(batch_id, tenant_id)

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    async def update_product_cost_price(self, product_id: str, tenant_id: str, cost_price: float) -> ProductRecord:
        """
        Set a product's cost price.

        The tenant's cached period reports are dropped; cached per-order
        figures are not tracked by product and age out with their TTL.

        Raises:
            ProfitError: PRODUCT_NOT_FOUND for an unknown product,
                (validation) for a negative or out-of-range cost price
        """
        product = await self.store.get_product(tenant_id, product_id)
        if product is None:
            raise data_integrity_error(
                f"Product {product_id} not found",
                ErrorCode.PRODUCT_NOT_FOUND,
                tenant_id=tenant_id,
                context={"product_id": product_id},
            )

        validation = validate_product_costs(cost_price, selling_price=product.price)
        validation.raise_for_errors()

        updated = await self.store.update_product_cost_price(tenant_id, product_id, validation.values["cost_price"])
        if updated is None:
            raise data_integrity_error(
                f"Product {product_id} not found",
                ErrorCode.PRODUCT_NOT_FOUND,
                tenant_id=tenant_id,
                context={"product_id": product_id},
            )

        markup = validation.values.get("markup")
        logger.info(
            "Product cost price updated",
            tenant_id=tenant_id,
            product_id=product_id,
            old_cost_price=product.cost_price,
            new_cost_price=updated.cost_price,
            markup=round(markup, 2) if markup is not None else None,
            warnings=validation.warnings or None,
        )
        self.invalidation.on_product_cost_price_updated(product_id, tenant_id)
        return updated

    # =========================================================================
    # TENANT DEFAULTS
    # =========================================================================

    async def get_default_costs(self, tenant_id: str) -> DefaultCosts:
        """Configured defaults of a tenant; all zero when none are configured"""
        config = await self.store.get_tenant_cost_config(tenant_id)
        if config is None:
            return DefaultCosts()
        return DefaultCosts(
            packaging=config.default_packaging_cost,
            printing=config.default_printing_cost,
            return_cost=config.default_return_cost,
        )

    async def update_tenant_cost_config(
        self, tenant_id: str, update: TenantCostConfigUpdate
    ) -> TenantCostConfigRecord:
        """Validated partial update; fields left as None keep their stored value"""
        supplied = update.supplied()
        if not supplied:
            raise validation_error(
                "At least one default cost must be supplied", "cost_config", None,
                code=ErrorCode.MISSING_REQUIRED_FIELD,
            )

        validation = validate_tenant_cost_config(**supplied)
        validation.raise_for_errors()

        config = await self.store.upsert_tenant_cost_config(tenant_id, validation.values)
        logger.info("Tenant cost config updated", tenant_id=tenant_id, fields=sorted(validation.values))
        self.invalidation.on_tenant_cost_config_updated(tenant_id)
        return config

    # =========================================================================
    # ORDER COSTS
    # =========================================================================

    async def get_order_costs(self, order_id: str, tenant_id: str) -> Optional[OrderCostsRecord]:
        return await self.store.get_order_costs(tenant_id, order_id)

    async def _require_order(self, order_id: str, tenant_id: str):
        order = await self.store.get_order_summary(tenant_id, order_id)
        if order is None:
            raise data_integrity_error(
                f"Order {order_id} not found", ErrorCode.ORDER_NOT_FOUND, order_id=order_id, tenant_id=tenant_id,
            )
        return order

    async def apply_default_costs_to_order(self, order_id: str, tenant_id: str) -> bool:
        """
        Seed a cost row with the tenant's packaging and printing defaults.

        Does nothing when the order already has a cost row. Return cost is
        never applied here.

        Returns:
            True if a row was created
        """
        await self._require_order(order_id, tenant_id)
        if await self.store.get_order_costs(tenant_id, order_id) is not None:
            return False

        defaults = await self.get_default_costs(tenant_id)
        await self.store.upsert_order_costs(tenant_id, order_id, {
            "packaging_cost": defaults.packaging,
            "printing_cost": defaults.printing,
            "return_cost": 0.0,
        })
        self.invalidation.on_order_costs_updated(order_id, tenant_id)
        return True

    async def update_order_costs(
        self, order_id: str, tenant_id: str, update: OrderCostUpdate
    ) -> OrderCostsRecord:
        """
        Validated partial update of an order's operational costs.

        Raises:
            ProfitError: (business rule) for a return cost on an order whose
                status is not a return status
        """
        if update.is_empty():
            raise validation_error(
                "At least one cost field must be supplied", "costs", None,
                code=ErrorCode.MISSING_REQUIRED_FIELD,
            )
        order = await self._require_order(order_id, tenant_id)

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
            raise error

        costs = await self.store.upsert_order_costs(tenant_id, order_id, validation.values)
        logger.info(
            "Order costs updated",
            order_id=order_id,
            tenant_id=tenant_id,
            fields=sorted(validation.values),
            warnings=validation.warnings or None,
        )
        self.invalidation.on_order_costs_updated(order_id, tenant_id)
        return costs

    async def process_return_costs(
        self, order_id: str, tenant_id: str, return_cost: Optional[float] = None
    ) -> OrderCostsRecord:
        """
        Set the return cost of a returned order.

        Uses the explicit amount when given, else the tenant's default return
        cost.
        """
        order = await self._require_order(order_id, tenant_id)
        if order.status not in RETURN_COST_STATUSES:
            raise business_rule_error(
                "Return costs can only be processed for returned orders",
                ErrorCode.RETURN_COST_ON_ACTIVE_ORDER,
                field="status",
                value=OrderStatus(order.status).value,
                order_id=order_id,
                tenant_id=tenant_id,
            )

        if return_cost is None:
            return_cost = (await self.get_default_costs(tenant_id)).return_cost

        validation = validate_order_costs(return_cost=return_cost, order_status=order.status)
        if not validation.is_valid:
            error = validation.errors[0]
            error.order_id = order_id
            error.tenant_id = tenant_id
            raise error

        costs = await self.store.upsert_order_costs(tenant_id, order_id, validation.values)
        logger.info(
            "Return costs processed",
            order_id=order_id,
            tenant_id=tenant_id,
            return_cost=validation.values["return_cost"],
        )
        self.invalidation.on_order_costs_updated(order_id, tenant_id)
        return costs

    async def calculate_batch_costs(self, order_ids: Sequence[str], tenant_id: str) -> BatchCostSummary:
        """Sum the stored cost rows of several orders; orders without a row are listed as missing"""
        rows = await self.store.get_order_costs_many(tenant_id, order_ids)
        found = {row.order_id for row in rows}
        return BatchCostSummary(
            total_product_costs=sum(row.product_cost for row in rows),
            total_lead_costs=sum(row.lead_cost for row in rows),
            total_packaging_costs=sum(row.packaging_cost for row in rows),
            total_printing_costs=sum(row.printing_cost for row in rows),
            total_return_costs=sum(row.return_cost for row in rows),
            total_costs=sum(row.total_costs for row in rows),
            order_count=len(rows),
            missing_order_ids=tuple(order_id for order_id in order_ids if order_id not in found),
        )
