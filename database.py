"""Tool Ledger — Database Connection Manager.

Async database connection management using SQLAlchemy 2.0 (Async).
PostgreSQL runs through asyncpg with connection pooling; SQLite runs
through aiosqlite for tests and local runs.

Every ledger mutation runs inside a savepoint of the caller's session
(see transaction()), so the ledger row and the projection row are written
or discarded together.

Usage:
    from database import get_db_context, init_database, shutdown_database

    await init_database()
    async with get_db_context() as db:
        await ProjectionService(db).apply_maintenance_event(
            tool_id, "regrinding", actor_id="operator-7",
        )
    await shutdown_database()
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool

from config import get_settings
from logger import get_logger

# =============================================================================
# Module State
# =============================================================================

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

logger = get_logger(__name__)

QUERY_START_KEY = "_query_start_time"
SLOW_QUERY_THRESHOLD_MS = 500


# =============================================================================
# Engine Factory
# =============================================================================

def build_engine(url: str | None = None, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the configured (or given) database URL.

    Args:
        url: SQLAlchemy URL. Defaults to the DB_* settings.
        echo: Echo SQL statements.

    Returns:
        Configured AsyncEngine.
    """
    db_settings = get_settings().database
    dsn = url or db_settings.async_dsn

    if dsn.startswith("sqlite"):
        in_memory = ":memory:" in dsn or dsn.rstrip("/").endswith(":")
        engine = create_async_engine(
            dsn,
            echo=echo,
            # A single shared connection keeps an in-memory database alive
            poolclass=StaticPool if in_memory else None,
        )
        _register_sqlite_events(engine)
    else:
        logger.info(
            "creating_database_engine",
            dsn=db_settings.dsn_safe,
            pool_size=db_settings.pool_size,
            max_overflow=db_settings.max_overflow,
        )
        engine = create_async_engine(
            dsn,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=db_settings.pool_size,
            max_overflow=db_settings.max_overflow,
            pool_timeout=30,
            pool_recycle=1800,
            pool_pre_ping=True,
            connect_args={
                "server_settings": {
                    "application_name": "tool-ledger",
                    "jit": "off",
                },
                "command_timeout": 60,
            },
            echo=echo,
            hide_parameters=True,
        )

    _register_engine_events(engine)
    return engine


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create the async session maker bound to the engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Avoid lazy loading issues with async
        autoflush=False,
    )


def _register_sqlite_events(engine: AsyncEngine) -> None:
    """Hand transaction control to SQLAlchemy so SAVEPOINT works on SQLite.

    The sqlite3 driver otherwise issues its own BEGIN lazily and breaks
    nested transactions.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def _register_engine_events(engine: AsyncEngine) -> None:
    """Register event listeners for connection monitoring and slow query logging."""

    @event.listens_for(engine.sync_engine, "invalidate")
    def on_invalidate(
        dbapi_connection: Any,
        connection_record: Any,
        exception: BaseException | None,
    ) -> None:
        logger.warning(
            "connection_invalidated",
            error=str(exception) if exception else None,
        )

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info[QUERY_START_KEY] = time.perf_counter()

    @event.listens_for(engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        """Log slow queries (>500ms)."""
        start_time = conn.info.pop(QUERY_START_KEY, None)
        if start_time is None:
            return

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if elapsed_ms > SLOW_QUERY_THRESHOLD_MS:
            truncated_statement = statement[:500] + "..." if len(statement) > 500 else statement
            logger.warning(
                "slow_query",
                query=truncated_statement,
                latency_ms=round(elapsed_ms, 2),
                threshold_ms=SLOW_QUERY_THRESHOLD_MS,
            )


async def create_schema(engine: AsyncEngine) -> None:
    """Create every ledger table from the ORM metadata.

    Used for SQLite runs and tests; PostgreSQL deployments use the alembic
    migrations instead.
    """
    import db.models  # noqa: F401  (registers tables)
    from db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# =============================================================================
# Lifecycle Management
# =============================================================================

async def init_database() -> None:
    """Initialize the database engine and session maker.

    Validates connectivity by executing a test query.

    Raises:
        RuntimeError: If database connection fails.
    """
    global _engine, _session_maker

    if _engine is not None:
        logger.warning("database_already_initialized")
        return

    settings = get_settings()
    try:
        _engine = build_engine(echo=settings.debug)
        _session_maker = create_session_maker(_engine)

        async with _engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

        if settings.database.is_sqlite:
            await create_schema(_engine)

        logger.info("database_initialized", dsn=settings.database.dsn_safe)

    except Exception as exc:
        logger.error(
            "database_initialization_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if _engine is not None:
            await _engine.dispose()
            _engine = None
        _session_maker = None
        raise RuntimeError(f"Failed to initialize database: {exc}") from exc


async def shutdown_database() -> None:
    """Dispose all connections and forget the engine."""
    global _engine, _session_maker

    if _engine is None:
        logger.warning("database_not_initialized")
        return

    try:
        await _engine.dispose()
        logger.info("database_connections_disposed")
    finally:
        _engine = None
        _session_maker = None


def get_engine() -> AsyncEngine:
    """Get the current database engine.

    Raises:
        RuntimeError: If database is not initialized.
    """
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


# =============================================================================
# Session Scope
# =============================================================================

@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Provide a session committed on success and rolled back otherwise.

    Yields:
        AsyncSession: Database session.

    Raises:
        RuntimeError: If database is not initialized.
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    session = _session_maker()
    try:
        yield session
        await session.commit()
    except (OperationalError, InterfaceError) as exc:
        await session.rollback()
        logger.error(
            "database_connection_error",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    except DBAPIError as exc:
        await session.rollback()
        logger.error(
            "database_operation_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# =============================================================================
# Health Check
# =============================================================================

async def check_database_health() -> dict[str, Any]:
    """Check database connectivity.

    Returns:
        Dictionary with health status and, for pooled engines, pool info.
    """
    if _engine is None:
        return {"status": "unhealthy", "error": "Database not initialized"}

    try:
        async with _engine.begin() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()
    except Exception as exc:
        logger.error(
            "database_health_check_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return {"status": "unhealthy", "error": str(exc)}

    health: dict[str, Any] = {"status": "healthy"}
    pool = _engine.pool
    if isinstance(pool, AsyncAdaptedQueuePool):
        health["pool"] = {
            "size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout(),
            "overflow": pool.overflow(),
        }
    return health


# =============================================================================
# Transaction Helpers
# =============================================================================

@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run a block inside a savepoint of the session.

    Everything written in the block is released together or rolled back
    together; the outer transaction stays usable after a rollback.

    Example:
        async with transaction(db):
            db.add(event)
            tool.number_of_regrinding += 1
    """
    async with session.begin_nested():
        yield session


def dialect_name(session: AsyncSession) -> str:
    """Name of the SQL dialect the session is bound to."""
    return session.get_bind().dialect.name
