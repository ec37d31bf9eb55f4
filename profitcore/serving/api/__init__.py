"""
API Module
"""
from .main import create_api_app, profit_error_handler, status_code_for
from .middleware import RequestLoggingMiddleware

__all__ = [
    "create_api_app",
    "profit_error_handler",
    "status_code_for",
    "RequestLoggingMiddleware",
]
