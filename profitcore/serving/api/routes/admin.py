"""
Admin Endpoints

Performance and cache diagnostics of the profit subsystem.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from profitcore.serving.api.dependencies import get_services
from profitcore.services import ProfitServices

router = APIRouter()

TRACKED_OPERATIONS = ("calculate_order_profit", "calculate_period_profit")


@router.get("/profit-performance")
async def profit_performance(
    window_seconds: float = Query(60.0, gt=0, le=86400),
    services: ProfitServices = Depends(get_services),
) -> Dict[str, Any]:
    monitor = services.monitor
    return {
        "window_seconds": window_seconds,
        "overall": monitor.overall_stats(window_seconds),
        "operations": {op: monitor.operation_stats(op, window_seconds) for op in TRACKED_OPERATIONS},
        "cache_effectiveness": monitor.cache_effectiveness(window_seconds),
        "cache": services.invalidation.cache_stats(),
    }


@router.post("/cache/cleanup")
async def cleanup_cache(services: ProfitServices = Depends(get_services)) -> Dict[str, int]:
    """Run the expired-entry sweep now"""
    return services.invalidation.perform_scheduled_cleanup()
