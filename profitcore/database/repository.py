"""
Profit Store

Tenant-scoped storage interface consumed by the profit engine, plus its
SQLAlchemy implementation. Every method takes tenant_id as its first
argument and every query filters on it; there is no unscoped access path.

Records returned are plain dataclasses detached from the session, so callers
never trigger lazy loads after the session is closed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

import structlog
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from profitcore.database.connection import Database
from profitcore.database.models import (
    Lead,
    LeadBatch,
    Order,
    OrderCosts,
    OrderStatus,
    Product,
    TenantCostConfig,
)
from profitcore.errors import ErrorCode, business_rule_error

logger = structlog.get_logger(__name__)

ORDER_COST_FIELDS = (
    "product_cost",
    "lead_cost",
    "packaging_cost",
    "printing_cost",
    "return_cost",
    "total_costs",
    "gross_profit",
    "net_profit",
    "profit_margin",
)

# Inputs a calculation reads from the cost row; a concurrent change to any of
# them makes its result stale
OPERATIONAL_COST_FIELDS = ("packaging_cost", "printing_cost", "return_cost")

TENANT_CONFIG_FIELDS = (
    "default_packaging_cost",
    "default_printing_cost",
    "default_return_cost",
)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class ProductRecord:
    id: str
    cost_price: Optional[float]
    price: float


@dataclass(frozen=True)
class LeadBatchRecord:
    id: str
    tenant_id: str
    user_id: str
    total_cost: float
    lead_count: int
    cost_per_lead: float
    imported_at: Optional[datetime]


@dataclass(frozen=True)
class OrderCostsRecord:
    order_id: str
    product_cost: float
    lead_cost: float
    packaging_cost: float
    printing_cost: float
    return_cost: float
    total_costs: float
    gross_profit: Optional[float]
    net_profit: Optional[float]
    profit_margin: Optional[float]


@dataclass(frozen=True)
class TenantCostConfigRecord:
    tenant_id: str
    default_packaging_cost: float
    default_printing_cost: float
    default_return_cost: float


@dataclass(frozen=True)
class OrderRecord:
    id: str
    tenant_id: str
    total: float
    quantity: int
    status: OrderStatus
    product_id: Optional[str]
    lead_id: Optional[str]
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    product: Optional[ProductRecord] = None
    lead_batch: Optional[LeadBatchRecord] = None
    costs: Optional[OrderCostsRecord] = None


# =============================================================================
# INTERFACE
# =============================================================================

class ProfitStore(Protocol):
    """Storage collaborator of the profit engine"""

    async def get_order(self, tenant_id: str, order_id: str) -> Optional[OrderRecord]: ...

    async def get_order_summary(self, tenant_id: str, order_id: str) -> Optional[OrderRecord]: ...

    async def update_order_status(self, tenant_id: str, order_id: str, status: OrderStatus) -> bool: ...

    async def get_order_costs(self, tenant_id: str, order_id: str) -> Optional[OrderCostsRecord]: ...

    async def get_order_costs_many(self, tenant_id: str, order_ids: Sequence[str]) -> List[OrderCostsRecord]: ...

    async def upsert_order_costs(
        self, tenant_id: str, order_id: str, values: Dict[str, float]
    ) -> OrderCostsRecord: ...

    async def record_calculated_costs(
        self,
        tenant_id: str,
        order_id: str,
        values: Dict[str, float],
        basis: Optional[OrderCostsRecord],
    ) -> bool: ...

    async def get_product(self, tenant_id: str, product_id: str) -> Optional[ProductRecord]: ...

    async def update_product_cost_price(
        self, tenant_id: str, product_id: str, cost_price: float
    ) -> Optional[ProductRecord]: ...

    async def get_tenant_cost_config(self, tenant_id: str) -> Optional[TenantCostConfigRecord]: ...

    async def upsert_tenant_cost_config(
        self, tenant_id: str, values: Dict[str, float]
    ) -> TenantCostConfigRecord: ...

    async def create_lead_batch(
        self, tenant_id: str, user_id: str, total_cost: float, lead_count: int, cost_per_lead: float
    ) -> LeadBatchRecord: ...

    async def get_lead_batch(self, tenant_id: str, batch_id: str) -> Optional[LeadBatchRecord]: ...

    async def list_lead_batches(
        self, tenant_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[LeadBatchRecord]: ...

    async def update_lead_batch_cost(
        self, tenant_id: str, batch_id: str, total_cost: float, cost_per_lead: float
    ) -> Optional[LeadBatchRecord]: ...

    async def delete_lead_batch(self, tenant_id: str, batch_id: str) -> bool: ...

    async def query_orders(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        product_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
    ) -> List[OrderRecord]: ...


# =============================================================================
# SQLALCHEMY IMPLEMENTATION
# =============================================================================

def _product_record(product: Optional[Product]) -> Optional[ProductRecord]:
    if product is None:
        return None
    return ProductRecord(id=product.id, cost_price=product.cost_price, price=product.price)


def _batch_record(batch: Optional[LeadBatch]) -> Optional[LeadBatchRecord]:
    if batch is None:
        return None
    return LeadBatchRecord(
        id=batch.id,
        tenant_id=batch.tenant_id,
        user_id=batch.user_id,
        total_cost=batch.total_cost,
        lead_count=batch.lead_count,
        cost_per_lead=batch.cost_per_lead,
        imported_at=batch.imported_at,
    )


def _costs_record(costs: Optional[OrderCosts]) -> Optional[OrderCostsRecord]:
    if costs is None:
        return None
    return OrderCostsRecord(order_id=costs.order_id, **{f: getattr(costs, f) for f in ORDER_COST_FIELDS})


def _config_record(config: TenantCostConfig) -> TenantCostConfigRecord:
    return TenantCostConfigRecord(
        tenant_id=config.tenant_id,
        default_packaging_cost=config.default_packaging_cost,
        default_printing_cost=config.default_printing_cost,
        default_return_cost=config.default_return_cost,
    )


def _order_record(order: Order) -> OrderRecord:
    batch = None
    if order.lead is not None and order.lead.batch is not None:
        # A batch from another tenant is treated as absent
        if order.lead.batch.tenant_id == order.tenant_id:
            batch = _batch_record(order.lead.batch)
    product = order.product if order.product is not None and order.product.tenant_id == order.tenant_id else None
    return OrderRecord(
        id=order.id,
        tenant_id=order.tenant_id,
        total=order.total,
        quantity=order.quantity,
        status=OrderStatus(order.status),
        product_id=order.product_id,
        lead_id=order.lead_id,
        user_id=order.user_id,
        created_at=order.created_at,
        product=_product_record(product),
        lead_batch=batch,
        costs=_costs_record(order.costs),
    )


def _order_query():
    return select(Order).options(
        selectinload(Order.product),
        selectinload(Order.lead).selectinload(Lead.batch),
        selectinload(Order.costs),
    )


class SqlAlchemyProfitStore:
    """ProfitStore backed by the async SQLAlchemy session factory of a Database"""

    def __init__(self, database: Database):
        self.database = database

    # ----------------------------------------------------------------- orders

    async def get_order(self, tenant_id: str, order_id: str) -> Optional[OrderRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                _order_query().where(and_(Order.id == order_id, Order.tenant_id == tenant_id))
            )
            order = result.scalar_one_or_none()
            return _order_record(order) if order is not None else None

    async def get_order_summary(self, tenant_id: str, order_id: str) -> Optional[OrderRecord]:
        """Order row only, without product, lead or cost reads"""
        async with self.database.session() as session:
            result = await session.execute(
                select(Order).where(and_(Order.id == order_id, Order.tenant_id == tenant_id))
            )
            order = result.scalar_one_or_none()
            if order is None:
                return None
            return OrderRecord(
                id=order.id,
                tenant_id=order.tenant_id,
                total=order.total,
                quantity=order.quantity,
                status=OrderStatus(order.status),
                product_id=order.product_id,
                lead_id=order.lead_id,
                user_id=order.user_id,
                created_at=order.created_at,
            )

    async def update_order_status(self, tenant_id: str, order_id: str, status: OrderStatus) -> bool:
        async with self.database.session() as session:
            result = await session.execute(
                select(Order).where(and_(Order.id == order_id, Order.tenant_id == tenant_id))
            )
            order = result.scalar_one_or_none()
            if order is None:
                return False
            order.status = status
            return True

    async def query_orders(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        product_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
    ) -> List[OrderRecord]:
        conditions = [
            Order.tenant_id == tenant_id,
            Order.created_at >= start,
            Order.created_at <= end,
        ]
        if product_id:
            conditions.append(Order.product_id == product_id)
        if user_id:
            conditions.append(Order.user_id == user_id)
        if status:
            conditions.append(Order.status == status)

        async with self.database.session() as session:
            result = await session.execute(
                _order_query().where(and_(*conditions)).order_by(Order.created_at.asc())
            )
            return [_order_record(order) for order in result.scalars().all()]

    # ------------------------------------------------------------ order costs

    async def get_order_costs(self, tenant_id: str, order_id: str) -> Optional[OrderCostsRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(OrderCosts).where(
                    and_(OrderCosts.order_id == order_id, OrderCosts.tenant_id == tenant_id)
                )
            )
            return _costs_record(result.scalar_one_or_none())

    async def get_order_costs_many(self, tenant_id: str, order_ids: Sequence[str]) -> List[OrderCostsRecord]:
        if not order_ids:
            return []
        async with self.database.session() as session:
            result = await session.execute(
                select(OrderCosts).where(
                    and_(OrderCosts.order_id.in_(list(order_ids)), OrderCosts.tenant_id == tenant_id)
                )
            )
            return [_costs_record(row) for row in result.scalars().all()]

    async def upsert_order_costs(
        self, tenant_id: str, order_id: str, values: Dict[str, float]
    ) -> OrderCostsRecord:
        """
        Insert or partially update the cost row of an order.

        Only keys present in values are written on update. A newly created
        row leaves the derived figures empty until a calculation fills them.
        """
        unknown = set(values) - set(ORDER_COST_FIELDS)
        if unknown:
            raise ValueError(f"Unknown order cost fields: {sorted(unknown)}")

        async with self.database.session() as session:
            order = (await session.execute(
                select(Order.id).where(and_(Order.id == order_id, Order.tenant_id == tenant_id))
            )).scalar_one_or_none()
            if order is None:
                raise LookupError(f"Order {order_id} not found for tenant {tenant_id}")

            costs = (await session.execute(
                select(OrderCosts).where(OrderCosts.order_id == order_id)
            )).scalar_one_or_none()

            if costs is None:
                costs = OrderCosts(
                    order_id=order_id,
                    tenant_id=tenant_id,
                    product_cost=0.0,
                    lead_cost=0.0,
                    packaging_cost=0.0,
                    printing_cost=0.0,
                    return_cost=0.0,
                    total_costs=0.0,
                )
                session.add(costs)

            for key, value in values.items():
                setattr(costs, key, value)

            await session.flush()
            return _costs_record(costs)

    async def record_calculated_costs(
        self,
        tenant_id: str,
        order_id: str,
        values: Dict[str, float],
        basis: Optional[OrderCostsRecord],
    ) -> bool:
        """
        Store a calculated cost row unless the row changed since it was read.

        basis is the row the calculation started from, None when there was
        none. With a basis the row is updated only while its operational
        costs still equal the basis; without one a row is inserted only if
        none exists yet. Returns False, writing nothing, when a concurrent
        write got there first.
        """
        missing = set(ORDER_COST_FIELDS) - set(values)
        if missing:
            raise ValueError(f"Missing order cost fields: {sorted(missing)}")

        if basis is None:
            try:
                async with self.database.session() as session:
                    session.add(OrderCosts(order_id=order_id, tenant_id=tenant_id, **values))
                    await session.flush()
            except IntegrityError:
                return False
            return True

        unchanged = [getattr(OrderCosts, name) == getattr(basis, name) for name in OPERATIONAL_COST_FIELDS]
        async with self.database.session() as session:
            result = await session.execute(
                update(OrderCosts)
                .where(and_(OrderCosts.order_id == order_id, OrderCosts.tenant_id == tenant_id, *unchanged))
                .values(**{name: values[name] for name in ORDER_COST_FIELDS})
            )
            return result.rowcount == 1

    # --------------------------------------------------------------- products

    async def get_product(self, tenant_id: str, product_id: str) -> Optional[ProductRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Product).where(and_(Product.id == product_id, Product.tenant_id == tenant_id))
            )
            return _product_record(result.scalar_one_or_none())

    async def update_product_cost_price(
        self, tenant_id: str, product_id: str, cost_price: float
    ) -> Optional[ProductRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(Product).where(and_(Product.id == product_id, Product.tenant_id == tenant_id))
            )
            product = result.scalar_one_or_none()
            if product is None:
                return None
            product.cost_price = cost_price
            await session.flush()
            return _product_record(product)

    # ---------------------------------------------------- tenant cost config

    async def get_tenant_cost_config(self, tenant_id: str) -> Optional[TenantCostConfigRecord]:
        async with self.database.session() as session:
            config = await session.get(TenantCostConfig, tenant_id)
            return _config_record(config) if config is not None else None

    async def upsert_tenant_cost_config(
        self, tenant_id: str, values: Dict[str, float]
    ) -> TenantCostConfigRecord:
        unknown = set(values) - set(TENANT_CONFIG_FIELDS)
        if unknown:
            raise ValueError(f"Unknown tenant config fields: {sorted(unknown)}")

        async with self.database.session() as session:
            config = await session.get(TenantCostConfig, tenant_id)
            if config is None:
                config = TenantCostConfig(
                    tenant_id=tenant_id,
                    default_packaging_cost=0.0,
                    default_printing_cost=0.0,
                    default_return_cost=0.0,
                )
                session.add(config)
            for key, value in values.items():
                setattr(config, key, value)
            await session.flush()
            return _config_record(config)

    # ------------------------------------------------------------ lead batches

    async def create_lead_batch(
        self, tenant_id: str, user_id: str, total_cost: float, lead_count: int, cost_per_lead: float
    ) -> LeadBatchRecord:
        async with self.database.session() as session:
            batch = LeadBatch(
                tenant_id=tenant_id,
                user_id=user_id,
                total_cost=total_cost,
                lead_count=lead_count,
                cost_per_lead=cost_per_lead,
            )
            session.add(batch)
            await session.flush()
            await session.refresh(batch)
            return _batch_record(batch)

    async def get_lead_batch(self, tenant_id: str, batch_id: str) -> Optional[LeadBatchRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(LeadBatch).where(and_(LeadBatch.id == batch_id, LeadBatch.tenant_id == tenant_id))
            )
            return _batch_record(result.scalar_one_or_none())

    async def list_lead_batches(
        self, tenant_id: str, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[LeadBatchRecord]:
        query = (
            select(LeadBatch)
            .where(LeadBatch.tenant_id == tenant_id)
            .order_by(LeadBatch.imported_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        async with self.database.session() as session:
            result = await session.execute(query)
            return [_batch_record(batch) for batch in result.scalars().all()]

    async def update_lead_batch_cost(
        self, tenant_id: str, batch_id: str, total_cost: float, cost_per_lead: float
    ) -> Optional[LeadBatchRecord]:
        async with self.database.session() as session:
            result = await session.execute(
                select(LeadBatch).where(and_(LeadBatch.id == batch_id, LeadBatch.tenant_id == tenant_id))
            )
            batch = result.scalar_one_or_none()
            if batch is None:
                return None
            batch.total_cost = total_cost
            batch.cost_per_lead = cost_per_lead
            await session.flush()
            return _batch_record(batch)

    async def delete_lead_batch(self, tenant_id: str, batch_id: str) -> bool:
        """
        Delete a batch that no lead references.

        Raises:
            ProfitError: (business rule) if leads still reference the batch
        """
        async with self.database.session() as session:
            result = await session.execute(
                select(LeadBatch).where(and_(LeadBatch.id == batch_id, LeadBatch.tenant_id == tenant_id))
            )
            batch = result.scalar_one_or_none()
            if batch is None:
                return False

            lead_count = (await session.execute(
                select(func.count(Lead.id)).where(Lead.batch_id == batch_id)
            )).scalar_one()
            if lead_count > 0:
                raise business_rule_error(
                    f"Cannot delete lead batch {batch_id} as it has associated leads",
                    ErrorCode.LEAD_BATCH_IN_USE,
                    tenant_id=tenant_id,
                    context={"batch_id": batch_id, "lead_count": lead_count},
                )

            await session.delete(batch)
            logger.info("Lead batch deleted", tenant_id=tenant_id, batch_id=batch_id)
            return True
