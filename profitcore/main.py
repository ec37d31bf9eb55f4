"""
ASGI Application

Wires settings, logging and the profit services into the FastAPI app.
Run with `uvicorn profitcore.main:app` or `python run_server.py`.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from profitcore.config import get_settings
from profitcore.config.logging import configure_logging
from profitcore.serving.api import create_api_app
from profitcore.services import ProfitServices

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings=settings)
    logger.info(
        "Profit engine starting",
        environment=settings.app_env,
        version=settings.version,
        invalidation_bus=settings.redis.enabled,
    )

    services = ProfitServices.build(settings)
    # Schema is managed by migrations outside development
    await services.start(create_schema=settings.is_development)
    app.state.services = services
    try:
        yield
    finally:
        logger.info("Profit engine stopping")
        await services.stop()


app = create_api_app(settings, lifespan=lifespan)


@app.get("/api/v1/info")
async def api_info():
    """Service identity and cache lifetimes"""
    return {
        "name": settings.app_name,
        "version": settings.version,
        "environment": settings.app_env,
        "cache_ttl_seconds": {
            "order_profit": settings.cache.order_profit_ttl_seconds,
            "report": settings.cache.report_ttl_seconds,
            "default_costs": settings.cache.default_costs_ttl_seconds,
        },
        "documentation": "/docs" if settings.is_development else None,
    }


def run() -> None:
    """Console entry point"""
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
