"""
Performance Monitor

Duration and cache-hit tracking for the expensive profit operations
(order calculation and period reports).
"""

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_WINDOW_SECONDS = 60.0


@dataclass
class PerformanceMetric:
    operation: str
    duration_ms: float
    timestamp: float
    tenant_id: Optional[str] = None
    order_id: Optional[str] = None
    cache_hit: Optional[bool] = None
    record_count: Optional[int] = None
    error: bool = False


@dataclass
class TimerContext:
    """Metadata filled in by the timed block"""
    tenant_id: Optional[str] = None
    order_id: Optional[str] = None
    cache_hit: Optional[bool] = None
    record_count: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class PerformanceMonitor:
    """
    Keeps the most recent metrics in memory and summarizes them.

    Example:
        with monitor.timer("calculate_order_profit", tenant_id=t) as ctx:
            ctx.cache_hit = True
    """

    def __init__(
        self,
        max_metrics: int = 1000,
        slow_threshold_ms: float = 1000.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_metrics = max_metrics
        self.slow_threshold_ms = slow_threshold_ms
        self._clock = clock
        self._metrics: Deque[PerformanceMetric] = deque(maxlen=max_metrics)
        self._lock = threading.Lock()

    @contextmanager
    def timer(
        self,
        operation: str,
        tenant_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Iterator[TimerContext]:
        """Time the enclosed block; a raised exception is recorded with error=True and re-raised"""
        context = TimerContext(tenant_id=tenant_id, order_id=order_id)
        started = time.perf_counter()
        failed = False
        try:
            yield context
        except BaseException:
            failed = True
            raise
        finally:
            self.record(PerformanceMetric(
                operation=operation,
                duration_ms=(time.perf_counter() - started) * 1000,
                timestamp=self._clock(),
                tenant_id=context.tenant_id,
                order_id=context.order_id,
                cache_hit=context.cache_hit,
                record_count=context.record_count,
                error=failed,
            ))

    def record(self, metric: PerformanceMetric) -> None:
        with self._lock:
            self._metrics.append(metric)

        if metric.duration_ms > self.slow_threshold_ms:
            logger.warning(
                "Slow profit operation detected",
                operation=metric.operation,
                duration_ms=round(metric.duration_ms, 2),
                tenant_id=metric.tenant_id,
                order_id=metric.order_id,
                cache_hit=metric.cache_hit,
            )

    def _window(self, window_seconds: Optional[float], operation: Optional[str] = None) -> List[PerformanceMetric]:
        with self._lock:
            metrics = list(self._metrics)
        if window_seconds is not None:
            cutoff = self._clock() - window_seconds
            metrics = [m for m in metrics if m.timestamp > cutoff]
        if operation is not None:
            metrics = [m for m in metrics if m.operation == operation]
        return metrics

    def operation_stats(self, operation: str, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        metrics = self._window(window_seconds, operation)
        if not metrics:
            return {
                "count": 0,
                "avg_duration_ms": 0.0,
                "min_duration_ms": 0.0,
                "max_duration_ms": 0.0,
                "p95_duration_ms": 0.0,
                "cache_hit_rate": 0.0,
                "slow_operations": 0,
            }

        durations = np.array([m.duration_ms for m in metrics], dtype=float)
        cache_hits = sum(1 for m in metrics if m.cache_hit is True)
        return {
            "count": len(metrics),
            "avg_duration_ms": float(durations.mean()),
            "min_duration_ms": float(durations.min()),
            "max_duration_ms": float(durations.max()),
            "p95_duration_ms": float(np.percentile(durations, 95)),
            "cache_hit_rate": cache_hits / len(metrics) * 100,
            "slow_operations": int((durations > self.slow_threshold_ms).sum()),
        }

    def overall_stats(self, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        metrics = self._window(window_seconds)
        if not metrics:
            return {
                "total_operations": 0,
                "avg_duration_ms": 0.0,
                "p95_duration_ms": 0.0,
                "cache_hit_rate": 0.0,
                "slow_operations": 0,
                "operation_breakdown": {},
            }

        durations = np.array([m.duration_ms for m in metrics], dtype=float)
        breakdown: Dict[str, int] = {}
        for metric in metrics:
            breakdown[metric.operation] = breakdown.get(metric.operation, 0) + 1

        return {
            "total_operations": len(metrics),
            "avg_duration_ms": float(durations.mean()),
            "p95_duration_ms": float(np.percentile(durations, 95)),
            "cache_hit_rate": sum(1 for m in metrics if m.cache_hit is True) / len(metrics) * 100,
            "slow_operations": int((durations > self.slow_threshold_ms).sum()),
            "operation_breakdown": breakdown,
        }

    def cache_effectiveness(self, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> Dict[str, Any]:
        """
        Hit/miss durations and the time caching saved.

        Time saved assumes a miss duration approximates the real calculation cost.
        """
        metrics = self._window(window_seconds)
        hits = [m.duration_ms for m in metrics if m.cache_hit is True]
        misses = [m.duration_ms for m in metrics if m.cache_hit is False]

        avg_hit = float(np.mean(hits)) if hits else 0.0
        avg_miss = float(np.mean(misses)) if misses else 0.0

        return {
            "total_requests": len(metrics),
            "cache_hits": len(hits),
            "cache_misses": len(misses),
            "hit_rate": len(hits) / len(metrics) * 100 if metrics else 0.0,
            "avg_hit_duration_ms": avg_hit,
            "avg_miss_duration_ms": avg_miss,
            "time_saved_ms": len(hits) * max(0.0, avg_miss - avg_hit),
        }

    def export_metrics(self, window_seconds: Optional[float] = None) -> List[Dict[str, Any]]:
        return [asdict(m) for m in self._window(window_seconds)]

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)
