"""
Test Suite Configuration
"""
import asyncio
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

import pytest

from profitcore.config.settings import CacheSettings, DatabaseSettings, ProfitSettings, Settings
from profitcore.database.connection import Database
from profitcore.database.models import (
    Lead,
    LeadBatch,
    Order,
    OrderCosts,
    OrderStatus,
    Product,
    TenantCostConfig,
    new_id,
)
from profitcore.database.repository import SqlAlchemyProfitStore
from profitcore.profit.cost_tracking import CostTrackingService
from profitcore.profit.engine import ProfitCalculationService
from profitcore.profit.models import CostVector, ProfitBreakdown
from profitcore.serving.cache import ProfitCache
from profitcore.serving.invalidation import ProfitCacheInvalidationService
from profitcore.serving.monitor import PerformanceMonitor
from profitcore.services import ProfitServices

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_breakdown(order_id: str = "o-1", net: float = 10.0) -> ProfitBreakdown:
    """Breakdown with revenue 100 and all cost in product"""
    return ProfitBreakdown(
        order_id=order_id,
        revenue=100.0,
        costs=CostVector.from_parts(100.0 - net, 0, 0, 0, 0),
        gross_profit=net,
        net_profit=net,
        profit_margin=net,
        is_return=False,
    )


class CountingStore:
    """Store wrapper counting calls per method"""

    def __init__(self, store):
        self._store = store
        self.calls: Dict[str, int] = {}

    def __getattr__(self, name: str):
        attr = getattr(self._store, name)
        if not callable(attr):
            return attr

        def counted(*args, **kwargs):
            self.calls[name] = self.calls.get(name, 0) + 1
            return attr(*args, **kwargs)

        return counted


class GatedStore:
    """Store wrapper that holds one method after its read until released"""

    def __init__(self, store, method: str):
        self._store = store
        self._method = method
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    def __getattr__(self, name: str):
        attr = getattr(self._store, name)
        if name != self._method:
            return attr

        async def gated(*args, **kwargs):
            result = await attr(*args, **kwargs)
            self.entered.set()
            await self.release.wait()
            return result

        return gated


class Seeder:
    """Inserts reference rows directly through the ORM"""

    def __init__(self, database: Database, tenant_id: str = TENANT_A):
        self.database = database
        self.tenant_id = tenant_id

    async def _add(self, row: Any) -> None:
        async with self.database.session() as session:
            session.add(row)

    async def product(self, cost_price: float = 35.0, price: float = 60.0, tenant_id: Optional[str] = None) -> str:
        product_id = new_id()
        await self._add(Product(
            id=product_id,
            tenant_id=tenant_id or self.tenant_id,
            name="Test product",
            cost_price=cost_price,
            price=price,
        ))
        return product_id

    async def lead_batch(
        self, total_cost: float = 100.0, lead_count: int = 10, tenant_id: Optional[str] = None
    ) -> str:
        batch_id = new_id()
        await self._add(LeadBatch(
            id=batch_id,
            tenant_id=tenant_id or self.tenant_id,
            user_id="user-1",
            total_cost=total_cost,
            lead_count=lead_count,
            cost_per_lead=total_cost / lead_count if lead_count else 0.0,
        ))
        return batch_id

    async def lead(self, batch_id: Optional[str], tenant_id: Optional[str] = None) -> str:
        lead_id = new_id()
        await self._add(Lead(id=lead_id, tenant_id=tenant_id or self.tenant_id, batch_id=batch_id, name="Lead"))
        return lead_id

    async def order(
        self,
        total: float = 89.99,
        quantity: int = 1,
        status: OrderStatus = OrderStatus.PENDING,
        product_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        user_id: str = "user-1",
        created_at: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        order_id = new_id()
        await self._add(Order(
            id=order_id,
            tenant_id=tenant_id or self.tenant_id,
            product_id=product_id,
            lead_id=lead_id,
            user_id=user_id,
            total=total,
            quantity=quantity,
            status=status,
            created_at=created_at or datetime(2024, 1, 15, 12, 0, 0),
        ))
        return order_id

    async def order_costs(
        self,
        order_id: str,
        packaging_cost: float = 0.0,
        printing_cost: float = 0.0,
        return_cost: float = 0.0,
        tenant_id: Optional[str] = None,
        **derived: float,
    ) -> None:
        await self._add(OrderCosts(
            order_id=order_id,
            tenant_id=tenant_id or self.tenant_id,
            packaging_cost=packaging_cost,
            printing_cost=printing_cost,
            return_cost=return_cost,
            product_cost=derived.pop("product_cost", 0.0),
            lead_cost=derived.pop("lead_cost", 0.0),
            total_costs=derived.pop("total_costs", 0.0),
            **derived,
        ))

    async def cost_config(
        self,
        packaging: float = 5.0,
        printing: float = 3.0,
        return_cost: float = 20.0,
        tenant_id: Optional[str] = None,
    ) -> None:
        await self._add(TenantCostConfig(
            tenant_id=tenant_id or self.tenant_id,
            default_packaging_cost=packaging,
            default_printing_cost=printing,
            default_return_cost=return_cost,
        ))

    async def full_order(self, **order_kwargs: Any) -> str:
        """Order with a 35.00 product and a 10.00-per-lead batch"""
        product_id = await self.product(cost_price=35.0)
        batch_id = await self.lead_batch(total_cost=100.0, lead_count=10)
        lead_id = await self.lead(batch_id)
        return await self.order(product_id=product_id, lead_id=lead_id, **order_kwargs)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"),
        cache=CacheSettings(),
        profit=ProfitSettings(storage_timeout_seconds=5.0),
    )


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database, None]:
    """Fresh in-memory database per test"""
    db = Database(test_settings.database.async_url)
    await db.init(create_schema=True)
    yield db
    await db.close()


@pytest.fixture
def store(database: Database) -> SqlAlchemyProfitStore:
    return SqlAlchemyProfitStore(database)


@pytest.fixture
def seed(database: Database) -> Seeder:
    return Seeder(database)


@pytest.fixture
def cache() -> ProfitCache:
    return ProfitCache(CacheSettings())


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor()


@pytest.fixture
def invalidation(cache: ProfitCache) -> ProfitCacheInvalidationService:
    return ProfitCacheInvalidationService(cache)


@pytest.fixture
def engine(store, cache, monitor, test_settings, invalidation) -> ProfitCalculationService:
    return ProfitCalculationService(store, cache, monitor, test_settings.profit, invalidation)


@pytest.fixture
def cost_tracking(store, invalidation, test_settings) -> CostTrackingService:
    return CostTrackingService(store, invalidation, test_settings.profit)


@pytest.fixture
def services(test_settings: Settings, database: Database) -> ProfitServices:
    return ProfitServices.build(test_settings, database=database)
