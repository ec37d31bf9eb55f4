"""
Service Container

Builds the engine, cost tracking, cache, monitor and invalidation services
from Settings, and owns their start/stop order. Nothing here is a module
level singleton; each container is independent.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from profitcore.config.settings import Settings
from profitcore.database.connection import Database
from profitcore.database.repository import ProfitStore, SqlAlchemyProfitStore
from profitcore.profit.cost_tracking import CostTrackingService
from profitcore.profit.engine import ProfitCalculationService
from profitcore.serving.cache import ProfitCache
from profitcore.serving.cache_bus import RedisInvalidationBus
from profitcore.serving.invalidation import ProfitCacheInvalidationService
from profitcore.serving.monitor import PerformanceMonitor

logger = structlog.get_logger(__name__)


@dataclass
class ProfitServices:
    settings: Settings
    database: Optional[Database]
    store: ProfitStore
    cache: ProfitCache
    monitor: PerformanceMonitor
    invalidation: ProfitCacheInvalidationService
    engine: ProfitCalculationService
    cost_tracking: CostTrackingService
    bus: Optional[RedisInvalidationBus] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Optional[Database] = None,
        store: Optional[ProfitStore] = None,
        bus: Optional[RedisInvalidationBus] = None,
    ) -> "ProfitServices":
        """
        Wire every service from settings.

        Args:
            settings: Application settings
            database: Database to use; created from settings when neither it nor a store is given
            store: Storage collaborator overriding the SQLAlchemy store
            bus: Invalidation bus; created from settings when Redis is enabled
        """
        if store is None:
            if database is None:
                database = Database.from_settings(settings.database)
            store = SqlAlchemyProfitStore(database)

        if bus is None and settings.redis.enabled:
            bus = RedisInvalidationBus.from_settings(settings.redis)

        cache = ProfitCache(settings.cache)
        monitor = PerformanceMonitor(
            max_metrics=settings.profit.max_metrics,
            slow_threshold_ms=settings.profit.slow_operation_ms,
        )
        invalidation = ProfitCacheInvalidationService(cache, bus=bus)

        return cls(
            settings=settings,
            database=database,
            store=store,
            cache=cache,
            monitor=monitor,
            invalidation=invalidation,
            engine=ProfitCalculationService(store, cache, monitor, settings.profit, invalidation),
            cost_tracking=CostTrackingService(store, invalidation, settings.profit),
            bus=bus,
        )

    async def start(self, create_schema: bool = False) -> None:
        if self.database is not None:
            await self.database.init(create_schema=create_schema)
        self.cache.start_cleanup_task()
        if self.bus is not None:
            try:
                await self.bus.start(self.invalidation)
                logger.info("Invalidation bus started", channel=self.bus.channel)
            except Exception as e:
                # Local invalidation still works; peers fall back to TTL expiry
                logger.warning("Invalidation bus unavailable", error=str(e))
                self.invalidation.bus = None

    async def stop(self) -> None:
        await self.cache.stop_cleanup_task()
        if self.bus is not None:
            await self.bus.stop()
        if self.database is not None:
            await self.database.close()
