"""
SQLAlchemy async engine and session factory.

Usage:
    from db.engine import SessionLocal, init_engine

    init_engine()  # binds SessionLocal to DATABASE_URL

    async with SessionLocal() as db:
        user = await db.get(User, user_id)

Row locks are awaited on the event loop, so a transaction waiting for
another one never blocks unrelated requests.
"""

from sqlalchemy import URL, event, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from auth.config import get_settings

ASYNC_DRIVERS = {"postgresql": "asyncpg", "sqlite": "aiosqlite"}
SYNC_DRIVERS = {"postgresql": "psycopg2", "sqlite": "pysqlite"}


# Session factory, bound by init_engine()
SessionLocal = async_sessionmaker(
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

# Base class for all models
Base = declarative_base()

_engine: AsyncEngine | None = None


def _with_driver(url: str | URL, drivers: dict[str, str]) -> URL:
    url = make_url(url)
    backend = url.get_backend_name()
    if backend not in drivers:
        return url
    return url.set(drivername=f"{backend}+{drivers[backend]}")


def async_url(url: str | URL) -> URL:
    """Convert postgresql:// or sqlite:// URLs to their async drivers."""
    return _with_driver(url, ASYNC_DRIVERS)


def sync_url(url: str | URL) -> URL:
    """The blocking-driver form of a URL, used by migrations."""
    return _with_driver(url, SYNC_DRIVERS)


def _serialize_sqlite_transactions(engine: AsyncEngine) -> None:
    """SQLite has no row locks, so each transaction takes the write lock when it begins."""

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str | URL | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine with lock waits bounded by DB_LOCK_TIMEOUT_SECONDS."""
    settings = get_settings()
    url = async_url(url or settings.DATABASE_URL)
    lock_timeout = settings.DB_LOCK_TIMEOUT_SECONDS
    options = {"echo": settings.DB_ECHO}
    if url.get_backend_name() == "sqlite":
        # sqlite3 waits this long for a competing writer
        options["connect_args"] = {"timeout": lock_timeout}
    else:
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=300,
            connect_args={"server_settings": {"lock_timeout": str(int(lock_timeout * 1000))}},
        )
    options.update(kwargs)
    engine = create_async_engine(url, **options)
    if url.get_backend_name() == "sqlite":
        _serialize_sqlite_transactions(engine)
    return engine


def init_engine(url: str | URL | None = None, **kwargs) -> AsyncEngine:
    """Create the engine and bind SessionLocal to it."""
    global _engine
    _engine = build_engine(url, **kwargs)
    SessionLocal.configure(bind=_engine)
    return _engine


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
