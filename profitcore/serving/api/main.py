"""
FastAPI Application Factory

Creates the HTTP adapter over the profit services. The adapter holds no
state of its own; services live on app.state.services.
"""

from typing import Any, Callable, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from profitcore.config import Settings, get_settings
from profitcore.errors import ErrorCode, ErrorKind, ProfitError, user_friendly_message
from profitcore.serving.api.middleware import RequestLoggingMiddleware
from profitcore.serving.api.routes import (
    admin_router,
    costs_router,
    health_router,
    profit_router,
)

logger = structlog.get_logger(__name__)

NOT_FOUND_CODES = frozenset({
    ErrorCode.ORDER_NOT_FOUND,
    ErrorCode.PRODUCT_NOT_FOUND,
    ErrorCode.LEAD_BATCH_NOT_FOUND,
})


def status_code_for(error: ProfitError) -> int:
    if error.code in NOT_FOUND_CODES:
        return 404
    if error.kind == ErrorKind.VALIDATION:
        return 422
    if error.kind == ErrorKind.BUSINESS_RULE:
        return 409
    return 500


async def profit_error_handler(request: Request, exc: ProfitError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("Profit error response", path=request.url.path, status_code=status_code, **exc.to_dict())
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.kind.value,
            "code": exc.code.value,
            "detail": user_friendly_message(exc),
        },
    )


def create_api_app(
    settings: Optional[Settings] = None,
    lifespan: Optional[Callable[[FastAPI], Any]] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Order Profit Engine API",
        description="Per-order profit, period reports and cost configuration",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware, slow_request_ms=settings.profit.slow_operation_ms)

    app.add_exception_handler(ProfitError, profit_error_handler)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(profit_router, prefix="/api/v1", tags=["Profit"])
    app.include_router(costs_router, prefix="/api/v1", tags=["Costs"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

    return app
