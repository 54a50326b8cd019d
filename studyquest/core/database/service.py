"""
Database Service - Core Infrastructure Layer

Purpose
-------
Async database engine and session management for the progression store.
Provides atomic transactions with automatic commit/rollback and a cheap
liveness probe.

Responsibilities
----------------
- Own one AsyncEngine with connection pooling
- Provide async context managers for read sessions and atomic transactions
- Enforce transaction discipline: commit on success, rollback on exception
- Configure PostgreSQL statement timeouts per session
- Create the schema for bootstrap (`create_all`) and expose `health_check`

Non-Responsibilities
--------------------
- Retry policies for transient failures (DatabaseRetryPolicy)
- Domain rules; the store and services own those
- Migrations

Architecture Notes
------------------
**Transaction Model**:
- `get_transaction()` is the interface for all state mutations
- Never call `session.commit()` inside store code
- Nested atomic steps (e.g. insert-or-ignore) use `session.begin_nested()`

**Connection Pooling**:
- AsyncAdaptedQueuePool for PostgreSQL in non-test environments
- NullPool for the testing environment and for SQLite URLs

**Instances**:
- One DatabaseService per process, created by the ServiceContainer and
  passed to the store. Tests build their own against a temporary SQLite file.

Usage Example
-------------
>>> db = DatabaseService("sqlite+aiosqlite:///./progress.db")
>>> await db.initialize()
>>> async with db.get_transaction() as session:
...     session.add(XPTransactionRecord(...))
...     # Automatic commit on exit
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Type

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from studyquest.core.config.config import Config
from studyquest.core.database.base import Base
from studyquest.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


# ============================================================================
# Configuration Snapshot
# ============================================================================


@dataclass(frozen=True)
class _DatabaseConfigSnapshot:
    url: str
    echo: bool
    pool_class: Type[Pool]
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql://", "postgresql+asyncpg://"))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def url_scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"


# ============================================================================
# DatabaseService
# ============================================================================


class DatabaseService:
    """
    Async engine and session management.

    Public API
    ----------
    - initialize() / shutdown()
    - get_session() -> read access, no automatic commit
    - get_transaction() -> atomic write transaction
    - create_all() -> create tables for every imported model
    - health_check() -> `SELECT 1` liveness probe
    """

    def __init__(self, url: Optional[str] = None, *, echo: Optional[bool] = None) -> None:
        self._url = url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._config_snapshot: Optional[_DatabaseConfigSnapshot] = None
        self._init_lock = asyncio.Lock()

    def _build_config_snapshot(self) -> _DatabaseConfigSnapshot:
        database_url = self._url or Config.DATABASE_URL
        if not database_url or not isinstance(database_url, str):
            logger.error("DATABASE_URL is not configured or invalid")
            raise DatabaseInitializationError("DATABASE_URL must be configured as a non-empty string")

        use_null_pool = Config.is_testing() or database_url.startswith("sqlite")
        pool_class: Type[Pool] = NullPool if use_null_pool else AsyncAdaptedQueuePool

        snapshot = _DatabaseConfigSnapshot(
            url=database_url,
            echo=Config.DATABASE_ECHO if self._echo is None else self._echo,
            pool_class=pool_class,
            pool_size=int(Config.DATABASE_POOL_SIZE),
            max_overflow=int(Config.DATABASE_MAX_OVERFLOW),
            pool_recycle=int(Config.DATABASE_POOL_RECYCLE),
            pool_timeout=int(Config.DATABASE_POOL_TIMEOUT),
            statement_timeout_ms=int(Config.DATABASE_STATEMENT_TIMEOUT_MS),
        )

        logger.debug(
            "Database configuration snapshot created",
            extra={
                "url_scheme": snapshot.url_scheme,
                "pool_class": pool_class.__name__,
                "pool_size": snapshot.pool_size,
                "max_overflow": snapshot.max_overflow,
                "statement_timeout_ms": snapshot.statement_timeout_ms,
            },
        )
        return snapshot

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        """Create the engine and session factory. Idempotent."""
        async with self._init_lock:
            if self._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            logger.info("Initializing DatabaseService")
            try:
                config = self._build_config_snapshot()
                self._config_snapshot = config

                engine_kwargs: dict[str, Any] = {
                    "echo": config.echo,
                    "poolclass": config.pool_class,
                }
                if config.pool_class is AsyncAdaptedQueuePool:
                    engine_kwargs.update(
                        {
                            "pool_size": config.pool_size,
                            "max_overflow": config.max_overflow,
                            "pool_recycle": config.pool_recycle,
                            "pool_timeout": config.pool_timeout,
                        }
                    )

                self._engine = create_async_engine(config.url, **engine_kwargs)
                self._session_factory = async_sessionmaker(
                    bind=self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )

                logger.info(
                    "DatabaseService initialized successfully",
                    extra={
                        "url_scheme": config.url_scheme,
                        "pool_class": config.pool_class.__name__,
                    },
                )
            except DatabaseInitializationError:
                raise
            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(f"Database initialization failed: {exc}") from exc

    async def shutdown(self) -> None:
        async with self._init_lock:
            if self._engine is None:
                logger.debug("DatabaseService not initialized; nothing to shutdown")
                return

            logger.info("Shutting down DatabaseService")
            try:
                await self._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                self._engine = None
                self._session_factory = None
                self._config_snapshot = None

    async def create_all(self) -> None:
        """Create tables for every model registered on `Base.metadata`."""
        # Registers the ORM models on Base.metadata
        import studyquest.database.models  # noqa: F401

        engine = self.engine
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(
            "Database schema ensured",
            extra={"table_count": len(Base.metadata.tables)},
        )

    async def health_check(self) -> bool:
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (DBAPIError, OSError, DatabaseNotInitializedError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseNotInitializedError("DatabaseService is not initialized")
        return self._engine

    def _get_config_snapshot(self) -> _DatabaseConfigSnapshot:
        if self._config_snapshot is None:
            raise DatabaseNotInitializedError("DatabaseService is not initialized")
        return self._config_snapshot

    def _get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            logger.error("DatabaseService used before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService is not initialized. Call initialize() first."
            )
        return self._session_factory

    async def _apply_statement_timeout(self, session: AsyncSession) -> None:
        config = self._get_config_snapshot()
        if config.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {config.statement_timeout_ms}")
            )

    # ========================================================================
    # Session Management
    # ========================================================================

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session without automatic commit, for read-only work.

        For writes use `get_transaction()`.
        """
        factory = self._get_session_factory()
        start = time.perf_counter()

        async with factory() as session:
            try:
                await self._apply_statement_timeout(session)
                yield session
            finally:
                await session.close()
                logger.debug(
                    "Database session closed",
                    extra={"duration_ms": round((time.perf_counter() - start) * 1000.0, 2)},
                )

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in an atomic transaction.

        Commits on success. Rolls back and re-raises on any exception.
        """
        factory = self._get_session_factory()
        start = time.perf_counter()

        async with factory() as session:
            try:
                await self._apply_statement_timeout(session)
                yield session
                await session.commit()
                logger.debug(
                    "Database transaction committed",
                    extra={"duration_ms": round((time.perf_counter() - start) * 1000.0, 2)},
                )
            except Exception as exc:
                await session.rollback()
                logger.debug(
                    "Database transaction rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "duration_ms": round((time.perf_counter() - start) * 1000.0, 2),
                    },
                )
                raise
            finally:
                await session.close()
