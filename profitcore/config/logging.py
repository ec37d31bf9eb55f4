"""
Logging Configuration for the Order Profit Engine

Structured logging through structlog. Engine code logs key/value events
(order_id, tenant_id, warnings); the request middleware binds request and
tenant ids into the context so every line of a request carries them.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

from profitcore.config.settings import Settings, get_settings

# Third-party loggers that follow the application level
ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# Chatty at INFO; raised to WARNING unless SQL echo is on
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio")


def drop_empty_values(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Remove keys logged as None, e.g. warnings=None when a validation passed cleanly"""
    return {key: value for key, value in event_dict.items() if value is not None}


def configure_logging(log_level: Optional[str] = None, settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        settings: Settings to read level and format from; the cached settings by default
    """
    settings = settings or get_settings()
    level = log_level or settings.monitoring.log_level
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        drop_empty_values,
        TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.monitoring.log_format == "json":
        renderer = JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    for name in ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers = [handler]
        routed.propagate = False
        routed.setLevel(numeric_level)

    if not settings.database.echo:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=settings.monitoring.log_format,
        environment=settings.app_env,
    )


def bind_tenant_context(tenant_id: str, **extra: Any) -> None:
    """Attach the tenant (and any extra keys) to every log line of the current context"""
    structlog.contextvars.bind_contextvars(tenant_id=tenant_id, **extra)


def clear_tenant_context() -> None:
    structlog.contextvars.clear_contextvars()
