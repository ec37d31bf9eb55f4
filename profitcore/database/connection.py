"""
Database Connection Management

Async SQLAlchemy 2.0 engine and session factory for the order store. Each
Database instance owns its own pool, so tests and parallel app instances
never share connections.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from profitcore.config.settings import DatabaseSettings
from profitcore.database.models import Base

logger = structlog.get_logger(__name__)


def engine_options(url: str, echo: bool) -> Dict[str, Any]:
    """Pool options per driver: sqlite shares one connection, asyncpg pools internally"""
    options: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["poolclass"] = NullPool
    return options


class Database:
    """
    Owner of the async engine and session factory.

    Example:
        db = Database("sqlite+aiosqlite:///:memory:")
        await db.init(create_schema=True)
        async with db.session() as session:
            ...
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "Database":
        return cls(settings.async_url, echo=settings.echo)

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    async def init(self, create_schema: bool = False) -> AsyncEngine:
        """Create the engine, check it answers, and create the tables when asked"""
        if self._engine is not None:
            logger.warning("Order store already initialized", url=self._safe_url())
            return self._engine

        engine = create_async_engine(self.url, **engine_options(self.url, self.echo))
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                if create_schema:
                    await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            await engine.dispose()
            logger.error("Order store unreachable", error=str(e))
            raise

        self._engine = engine
        self._sessions = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Order store connected", url=self._safe_url(), schema_created=create_schema)
        return engine

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Order store connections released")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database.init() has not been awaited")
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Unit of work: commits when the block exits cleanly, rolls back otherwise"""
        if self._sessions is None:
            raise RuntimeError("Database.init() has not been awaited")

        session = self._sessions()
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.warning("Rolling back order store session", error=str(e), error_type=type(e).__name__)
            await session.rollback()
            raise
        finally:
            await session.close()

    async def check_health(self) -> Dict[str, Any]:
        """Round-trip a trivial query; reports latency or the failure"""
        if not self.initialized:
            return {"status": "unhealthy", "error": "not initialized"}
        started = time.perf_counter()
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}
        return {"status": "healthy", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}

    def _safe_url(self) -> str:
        if self._engine is None:
            return self.url.split("@")[-1]
        return self._engine.url.render_as_string(hide_password=True)
