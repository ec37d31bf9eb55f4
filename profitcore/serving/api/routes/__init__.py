"""
API Routes Module
"""
from .admin import router as admin_router
from .costs import router as costs_router
from .health import router as health_router
from .profit import router as profit_router

__all__ = [
    "admin_router",
    "costs_router",
    "health_router",
    "profit_router",
]
