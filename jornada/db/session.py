from typing import AsyncGenerator
import logging
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from jornada.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy own BEGIN on SQLite so SAVEPOINT (``begin_nested``) works.

    pysqlite/aiosqlite emit their own implicit BEGIN, which breaks nested
    transactions. The driver is told to stay out of it and we emit BEGIN ourselves.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> AsyncEngine:
    """Create and return the async SQLAlchemy engine.

    Returns:
        Async engine instance.
    """

    engine = create_async_engine(str(settings.DB_URL), echo=False, poolclass=NullPool, future=True)
    if engine.dialect.name == "sqlite":
        enable_sqlite_savepoints(engine)
    return engine


engine = get_engine()
SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an `AsyncSession` and ensures cleanup.

    Yields:
        AsyncSession: Database session for request scope.
    """

    async with SessionLocal() as session:
        try:
            yield session
        except Exception as exc:
            from jornada.core.exceptions import BusinessLogicError
            # Rejections are expected outcomes, not session failures
            if isinstance(exc, BusinessLogicError):
                logger.debug("Request rejected: %s", exc.message)
            else:
                logger.exception("DB session error: %s", exc)
            await session.rollback()
            raise
        finally:
            await session.close()
