"""
Unit Tests - Performance Monitor
"""
import pytest

from profitcore.serving.monitor import PerformanceMetric, PerformanceMonitor

from tests.conftest import FakeClock


def metric(operation: str, duration_ms: float, timestamp: float, cache_hit=None) -> PerformanceMetric:
    return PerformanceMetric(operation=operation, duration_ms=duration_ms, timestamp=timestamp, cache_hit=cache_hit)


class TestPerformanceMonitor:
    """Tests for metric collection and statistics"""

    def test_timer_records_metric(self):
        monitor = PerformanceMonitor()

        with monitor.timer("calculate_order_profit", tenant_id="t1", order_id="o-1") as ctx:
            ctx.cache_hit = True

        exported = monitor.export_metrics()
        assert len(exported) == 1
        assert exported[0]["operation"] == "calculate_order_profit"
        assert exported[0]["cache_hit"] is True
        assert exported[0]["error"] is False

    def test_timer_records_failure_and_reraises(self):
        monitor = PerformanceMonitor()

        with pytest.raises(ValueError):
            with monitor.timer("calculate_order_profit"):
                raise ValueError("boom")

        assert monitor.export_metrics()[0]["error"] is True

    def test_retention_is_bounded(self):
        monitor = PerformanceMonitor(max_metrics=5)
        for i in range(8):
            monitor.record(metric("op", i, timestamp=float(i)))

        assert len(monitor) == 5
        assert monitor.export_metrics()[0]["duration_ms"] == 3

    def test_operation_stats(self):
        clock = FakeClock(100.0)
        monitor = PerformanceMonitor(slow_threshold_ms=50, clock=clock)
        for duration in (10, 20, 30, 40, 100):
            monitor.record(metric("calc", duration, timestamp=100.0, cache_hit=duration < 25))
        monitor.record(metric("other", 5, timestamp=100.0))

        stats = monitor.operation_stats("calc", window_seconds=60)

        assert stats["count"] == 5
        assert stats["avg_duration_ms"] == pytest.approx(40.0)
        assert stats["min_duration_ms"] == 10
        assert stats["max_duration_ms"] == 100
        assert stats["p95_duration_ms"] == pytest.approx(88.0)
        assert stats["cache_hit_rate"] == pytest.approx(40.0)
        assert stats["slow_operations"] == 1

    def test_window_excludes_old_metrics(self):
        clock = FakeClock(1000.0)
        monitor = PerformanceMonitor(clock=clock)
        monitor.record(metric("calc", 10, timestamp=900.0))
        monitor.record(metric("calc", 20, timestamp=990.0))

        assert monitor.operation_stats("calc", window_seconds=60)["count"] == 1

    def test_empty_stats(self):
        monitor = PerformanceMonitor()

        assert monitor.operation_stats("calc")["count"] == 0
        assert monitor.overall_stats()["total_operations"] == 0

    def test_overall_stats_breakdown(self):
        clock = FakeClock(100.0)
        monitor = PerformanceMonitor(clock=clock)
        monitor.record(metric("a", 10, 100.0))
        monitor.record(metric("a", 10, 100.0))
        monitor.record(metric("b", 10, 100.0))

        assert monitor.overall_stats()["operation_breakdown"] == {"a": 2, "b": 1}

    def test_cache_effectiveness(self):
        clock = FakeClock(100.0)
        monitor = PerformanceMonitor(clock=clock)
        monitor.record(metric("calc", 2, 100.0, cache_hit=True))
        monitor.record(metric("calc", 4, 100.0, cache_hit=True))
        monitor.record(metric("calc", 50, 100.0, cache_hit=False))

        report = monitor.cache_effectiveness()

        assert report["cache_hits"] == 2
        assert report["cache_misses"] == 1
        assert report["avg_hit_duration_ms"] == pytest.approx(3.0)
        assert report["time_saved_ms"] == pytest.approx(94.0)

    def test_clear(self):
        monitor = PerformanceMonitor()
        monitor.record(metric("calc", 1, 0.0))

        monitor.clear()

        assert len(monitor) == 0
