"""
Profit Cache Module

In-process caching layer for profit results with:
- Per-entry TTL with lazy expiry on read
- Bounded size, evicting the oldest share of entries by insertion time
- Composite tuple keys, never concatenated strings
- Per-tenant secondary index so tenant-wide invalidation is not a scan
- Optional periodic sweep of expired entries on the event loop
- Invalidation generations, so a result computed before an invalidation
  is never stored after it

Every store guards its state with a re-entrant lock, so one ProfitCache can
be shared by concurrent request handlers and worker threads.

Writers that compute a value across awaits take a generation before reading
their inputs and pass it back to set():

    generation = cache.order_profit_generation(tenant_id, order_id)
    breakdown = await calculate(...)
    cache.set_order_profit(tenant_id, order_id, breakdown, generation=generation)

The set is dropped if the key, its tenant group or the whole store was
invalidated in between.
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Mapping,
    NamedTuple,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

import structlog

from profitcore.config.settings import CacheSettings
from profitcore.profit.models import DefaultCosts, PeriodProfitReport, ProfitBreakdown

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class OrderKey(NamedTuple):
    tenant_id: str
    order_id: str


class ReportKey(NamedTuple):
    tenant_id: str
    start: str
    end: str
    period: str
    filters: Tuple[Tuple[str, str], ...] = ()


# (store epoch, group generation, key generation)
Generation = Tuple[int, int, int]


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now > self.stored_at + self.ttl


class TTLStore(Generic[K, V]):
    """
    Bounded map with per-entry TTL.

    Entries are kept in insertion order; re-setting a key moves it to the
    end, so the oldest entries are always at the front.

    Args:
        name: Store name used in logs and stats
        ttl_seconds: Default time-to-live
        max_entries: Capacity before eviction
        eviction_fraction: Share of max_entries evicted when full
        group_of: Optional key -> group function maintaining a secondary index
        clock: Monotonic time source
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        max_entries: int = 1000,
        eviction_fraction: float = 0.1,
        group_of: Optional[Callable[[K], Hashable]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.eviction_fraction = eviction_fraction
        self._group_of = group_of
        self._clock = clock
        self._entries: Dict[K, _Entry[V]] = {}
        self._groups: Dict[Hashable, Set[K]] = {}
        self._lock = threading.RLock()

        # Bumped by invalidation only; expiry and eviction leave them alone
        self._epoch = 0
        self._group_generations: Dict[Hashable, int] = {}
        self._key_generations: Dict[K, int] = {}

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.expirations = 0
        self.stale_writes = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def _unlink(self, key: K) -> None:
        """Remove key from the entries and the group index; lock must be held"""
        self._entries.pop(key, None)
        if self._group_of is not None:
            group = self._group_of(key)
            members = self._groups.get(group)
            if members is not None:
                members.discard(key)
                if not members:
                    del self._groups[group]

    def generation(self, key: K) -> Generation:
        """Token for a later set(key, ..., generation=token)"""
        with self._lock:
            group_generation = 0
            if self._group_of is not None:
                group_generation = self._group_generations.get(self._group_of(key), 0)
            return (self._epoch, group_generation, self._key_generations.get(key, 0))

    def _bump_key(self, key: K) -> None:
        self._key_generations[key] = self._key_generations.get(key, 0) + 1
        if len(self._key_generations) > self.max_entries * 4:
            # Forgetting key counters is only safe together with an epoch bump
            self._key_generations.clear()
            self._epoch += 1

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.expired(self._clock()):
                self._unlink(key)
                self.expirations += 1
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def set(
        self, key: K, value: V, ttl: Optional[float] = None, generation: Optional[Generation] = None
    ) -> bool:
        """
        Store value under key.

        Returns False, storing nothing, when generation is given and the key
        was invalidated since that generation was taken.
        """
        with self._lock:
            if generation is not None and generation != self.generation(key):
                self.stale_writes += 1
                logger.debug("Stale cache write dropped", store=self.name)
                return False

            if key in self._entries:
                self._unlink(key)
            elif len(self._entries) >= self.max_entries:
                self._evict_oldest()

            self._entries[key] = _Entry(value=value, stored_at=self._clock(), ttl=ttl or self.ttl_seconds)
            if self._group_of is not None:
                self._groups.setdefault(self._group_of(key), set()).add(key)
            return True

    def _evict_oldest(self) -> None:
        count = max(1, math.floor(self.max_entries * self.eviction_fraction))
        oldest = list(self._entries)[:count]
        for key in oldest:
            self._unlink(key)
        self.evictions += len(oldest)
        logger.debug("Cache eviction", store=self.name, evicted=len(oldest))

    def delete(self, key: K) -> bool:
        """Invalidate key; in-flight writers holding an older generation are dropped even if nothing was stored"""
        with self._lock:
            self._bump_key(key)
            if key not in self._entries:
                return False
            self._unlink(key)
            return True

    def delete_group(self, group: Hashable) -> int:
        """Remove every entry indexed under group"""
        if self._group_of is None:
            raise RuntimeError(f"Store {self.name} has no group index")
        with self._lock:
            self._group_generations[group] = self._group_generations.get(group, 0) + 1
            members = list(self._groups.get(group, ()))
            for key in members:
                self._unlink(key)
            return len(members)

    def clean_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                self._unlink(key)
            self.expirations += len(expired)
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._groups.clear()
            self._key_generations.clear()
            self._group_generations.clear()
            self._epoch += 1

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "size": len(self._entries),
                "max_size": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": (self.hits / lookups * 100) if lookups else 0.0,
                "evictions": self.evictions,
                "expirations": self.expirations,
                "stale_writes": self.stale_writes,
            }


def _iso(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class ProfitCache:
    """
    Order-profit, report and default-costs stores for all tenants.

    Example:
        cache = ProfitCache(get_settings().cache)
        cache.set_order_profit("tenant-1", "order-1", breakdown)
        cache.invalidate_default_costs("tenant-1")  # also drops tenant-1 order profits
    """

    def __init__(self, settings: Optional[CacheSettings] = None, clock: Callable[[], float] = time.monotonic):
        settings = settings or CacheSettings()
        self.settings = settings
        self.order_profits: TTLStore[OrderKey, ProfitBreakdown] = TTLStore(
            "order_profit",
            settings.order_profit_ttl_seconds,
            settings.max_entries,
            settings.eviction_fraction,
            group_of=lambda key: key.tenant_id,
            clock=clock,
        )
        self.reports: TTLStore[ReportKey, PeriodProfitReport] = TTLStore(
            "report",
            settings.report_ttl_seconds,
            settings.max_entries,
            settings.eviction_fraction,
            group_of=lambda key: key.tenant_id,
            clock=clock,
        )
        self.default_costs: TTLStore[str, DefaultCosts] = TTLStore(
            "default_costs",
            settings.default_costs_ttl_seconds,
            settings.max_entries,
            settings.eviction_fraction,
            clock=clock,
        )
        self._cleanup_task: Optional[asyncio.Task] = None

    @staticmethod
    def report_key(
        tenant_id: str,
        start: Any,
        end: Any,
        period: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> ReportKey:
        """Key for a period report; unset filters are dropped and the rest sorted"""
        normalized = tuple(sorted(
            (name, _iso(value)) for name, value in (filters or {}).items() if value is not None
        ))
        return ReportKey(tenant_id, _iso(start), _iso(end), str(period), normalized)

    # ----------------------------------------------------------- order profit

    def get_order_profit(self, tenant_id: str, order_id: str) -> Optional[ProfitBreakdown]:
        return self.order_profits.get(OrderKey(tenant_id, order_id))

    def order_profit_generation(self, tenant_id: str, order_id: str) -> Generation:
        return self.order_profits.generation(OrderKey(tenant_id, order_id))

    def set_order_profit(
        self,
        tenant_id: str,
        order_id: str,
        breakdown: ProfitBreakdown,
        generation: Optional[Generation] = None,
    ) -> bool:
        return self.order_profits.set(OrderKey(tenant_id, order_id), breakdown, generation=generation)

    def invalidate_order_profit(self, tenant_id: str, order_id: str) -> bool:
        removed = self.order_profits.delete(OrderKey(tenant_id, order_id))
        logger.debug("Order profit invalidated", tenant_id=tenant_id, order_id=order_id, removed=removed)
        return removed

    def invalidate_order_profits_for_tenant(self, tenant_id: str) -> int:
        return self.order_profits.delete_group(tenant_id)

    # ---------------------------------------------------------------- reports

    def get_report(self, key: ReportKey) -> Optional[PeriodProfitReport]:
        return self.reports.get(key)

    def report_generation(self, key: ReportKey) -> Generation:
        return self.reports.generation(key)

    def set_report(
        self, key: ReportKey, report: PeriodProfitReport, generation: Optional[Generation] = None
    ) -> bool:
        return self.reports.set(key, report, generation=generation)

    def invalidate_reports_for_tenant(self, tenant_id: str) -> int:
        removed = self.reports.delete_group(tenant_id)
        logger.debug("Tenant reports invalidated", tenant_id=tenant_id, removed=removed)
        return removed

    # ---------------------------------------------------------- default costs

    def get_default_costs(self, tenant_id: str) -> Optional[DefaultCosts]:
        return self.default_costs.get(tenant_id)

    def default_costs_generation(self, tenant_id: str) -> Generation:
        return self.default_costs.generation(tenant_id)

    def set_default_costs(
        self, tenant_id: str, costs: DefaultCosts, generation: Optional[Generation] = None
    ) -> bool:
        return self.default_costs.set(tenant_id, costs, generation=generation)

    def invalidate_default_costs(self, tenant_id: str) -> int:
        """Drop a tenant's defaults and every order profit that embedded them"""
        self.default_costs.delete(tenant_id)
        return self.invalidate_order_profits_for_tenant(tenant_id)

    # ----------------------------------------------------------- maintenance

    def invalidate_tenant(self, tenant_id: str) -> Dict[str, int]:
        return {
            "order_profits": self.invalidate_default_costs(tenant_id),
            "reports": self.invalidate_reports_for_tenant(tenant_id),
        }

    def clear_all(self) -> None:
        self.order_profits.clear()
        self.reports.clear()
        self.default_costs.clear()
        logger.info("Profit cache cleared")

    def clean_expired(self) -> Dict[str, int]:
        removed = {
            "order_profits": self.order_profits.clean_expired(),
            "reports": self.reports.clean_expired(),
            "default_costs": self.default_costs.clean_expired(),
        }
        if any(removed.values()):
            logger.info("Expired cache entries removed", **removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        return {
            "order_profits": self.order_profits.stats(),
            "reports": self.reports.stats(),
            "default_costs": self.default_costs.stats(),
        }

    def start_cleanup_task(self, interval_seconds: Optional[float] = None) -> asyncio.Task:
        """Sweep expired entries periodically on the running event loop"""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return self._cleanup_task

        interval = interval_seconds or self.settings.cleanup_interval_seconds

        async def _sweep() -> None:
            while True:
                await asyncio.sleep(interval)
                self.clean_expired()

        self._cleanup_task = asyncio.get_running_loop().create_task(_sweep())
        logger.info("Cache cleanup task started", interval_seconds=interval)
        return self._cleanup_task

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        try:
            await self._cleanup_task
        except asyncio.CancelledError:
            pass
        self._cleanup_task = None
        logger.info("Cache cleanup task stopped")
