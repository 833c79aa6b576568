import asyncio
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from santa_api.core.config import settings

logger = logging.getLogger("santa.db")

# Execution option that makes the SQLite connection open its transaction with
# BEGIN IMMEDIATE, i.e. take the database write lock up front.
SQLITE_IMMEDIATE = "sqlite_immediate"


def configure_sqlite_engine(engine: AsyncEngine) -> AsyncEngine:
    """Let us control BEGIN on SQLite.

    The driver normally emits its own deferred BEGIN lazily, which gives no
    way to lock the database before the first read. We switch the driver to
    autocommit and emit BEGIN ourselves from the ``begin`` event.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        if conn.get_execution_options().get(SQLITE_IMMEDIATE):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(dsn: str, **kwargs) -> AsyncEngine:
    if "sqlite" in dsn.lower():
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("timeout", settings.sqlite_busy_timeout_seconds)
        engine = create_async_engine(dsn, echo=False, future=True, connect_args=connect_args, **kwargs)
        return configure_sqlite_engine(engine)
    return create_async_engine(dsn, echo=False, future=True, pool_pre_ping=True, **kwargs)


engine = build_engine(settings.database_dsn)


class Base(DeclarativeBase):
    pass


async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)

_schema_ready = False
_schema_lock = asyncio.Lock()


async def ensure_schema_ready() -> None:
    """Create DB tables once for environments where startup hooks are skipped."""
    global _schema_ready
    if _schema_ready:
        return

    async with _schema_lock:
        if _schema_ready:
            return

        from santa_api.models import models as _models  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        _schema_ready = True
        logger.info("Database schema ready")
