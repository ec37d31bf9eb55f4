"""
Health Check Endpoints

Liveness, readiness and a detailed health report covering the order store,
the invalidation bus and the profit caches.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from profitcore.serving.api.dependencies import get_services
from profitcore.services import ProfitServices

router = APIRouter()

# Worst status wins when folding component checks
STATUS_RANK = {"healthy": 0, "degraded": 1, "unhealthy": 2}


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


async def _database_check(services: ProfitServices) -> Optional[Dict[str, Any]]:
    if services.database is None:
        return None
    return await services.database.check_health()


async def _bus_check(services: ProfitServices) -> Optional[Dict[str, Any]]:
    # An unreachable bus only costs cross-instance invalidation
    bus = services.invalidation.bus
    if bus is None:
        return None
    try:
        await bus.client.ping()
    except Exception as e:
        return {"status": "degraded", "error": str(e), "channel": bus.channel}
    return {"status": "healthy", "channel": bus.channel}


def _cache_check(services: ProfitServices) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "entries": {name: store["size"] for name, store in services.cache.stats().items()},
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(services: ProfitServices = Depends(get_services)) -> HealthResponse:
    """Detailed component health; the overall status is the worst component status"""
    checks = {
        "database": await _database_check(services),
        "redis": await _bus_check(services),
        "cache": _cache_check(services),
    }
    checks = {name: check for name, check in checks.items() if check is not None}
    overall = max(
        (check.get("status", "unhealthy") for check in checks.values()),
        key=lambda status: STATUS_RANK.get(status, STATUS_RANK["unhealthy"]),
    )

    return HealthResponse(
        status=overall,
        version=services.settings.version,
        environment=services.settings.app_env,
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(response: Response, services: ProfitServices = Depends(get_services)) -> Dict[str, str]:
    """Ready once the order store answers; no database means an injected in-memory store"""
    db_health = await _database_check(services)
    if db_health is not None and db_health.get("status") != "healthy":
        response.status_code = 503
        return {"status": "not_ready", "reason": "database_unavailable"}
    return {"status": "ready"}
