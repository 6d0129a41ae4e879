"""Async SQLAlchemy engine, session factory and the request-scoped session."""
import logging
import time
from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dashvault.config import settings
from dashvault.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)


def _engine_options() -> dict:
    options: dict = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
    # sqlite (local runs, tests) has no connection pool to size
    if settings.DATABASE_URL.startswith("postgresql"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
    return options


engine = create_async_engine(settings.DATABASE_URL, **_engine_options())


# ── Slow Query Logging ──

@event.listens_for(engine.sync_engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_started", []).append(time.perf_counter())


@event.listens_for(engine.sync_engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    started = conn.info.get("query_started")
    if not started:
        return
    elapsed_ms = (time.perf_counter() - started.pop()) * 1000
    if elapsed_ms >= settings.DB_SLOW_QUERY_MS:
        # statement text only: bound parameters may hold ciphertext
        logger.warning("Slow query (%.1fms): %s", elapsed_ms, statement[:200])


async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request, committed when the handler returns normally."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        try:
            await session.commit()
        except (OperationalError, InterfaceError) as exc:
            logger.error("Commit failed: %s", exc)
            raise StorageUnavailableError("Table store unavailable during commit") from exc
