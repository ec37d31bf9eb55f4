"""
Serving Module
"""
from .cache import OrderKey, ProfitCache, ReportKey, TTLStore
from .cache_bus import RedisInvalidationBus
from .invalidation import InvalidationEvent, InvalidationEventType, ProfitCacheInvalidationService
from .monitor import PerformanceMetric, PerformanceMonitor

__all__ = [
    "OrderKey",
    "ProfitCache",
    "ReportKey",
    "TTLStore",
    "RedisInvalidationBus",
    "InvalidationEvent",
    "InvalidationEventType",
    "ProfitCacheInvalidationService",
    "PerformanceMetric",
    "PerformanceMonitor",
]
