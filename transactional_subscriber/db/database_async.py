import contextlib
import logging
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse, urlunparse

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from transactional_subscriber.db.exceptions import DBConfigurationError, DBConnectionError
from transactional_subscriber.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

_ASYNC_SCHEMES = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}

# Global variables for async engines and session factories
_db_engine: Optional[AsyncEngine] = None

_db_session_factory: Optional[async_sessionmaker[AsyncSession]] = None

settings = Settings()


def _mask_password(url: str) -> str:
    """Masks the password in the database URL."""
    parsed = urlparse(url)
    if parsed.password:
        return urlunparse(parsed._replace(netloc=f"{parsed.username}:***@{parsed.hostname}:{parsed.port}"))
    return url


def _get_db_url() -> str:
    """Resolve DATABASE_URL to a URL with an async driver.

    Unset means an in-memory SQLite database. Bare ``postgresql://``, ``postgres://``
    and ``sqlite://`` URLs are switched to asyncpg and aiosqlite.

    Raises:
        DBConfigurationError: If the URL names no async driver and none can be chosen.
    """
    database_url = settings.get_database_url()
    if not database_url:
        logger.info(f"DATABASE_URL not set. Using {DEFAULT_DATABASE_URL}.")
        return DEFAULT_DATABASE_URL

    scheme, sep, rest = database_url.partition("://")
    if not sep:
        raise DBConfigurationError(f"DATABASE_URL is not a database URL: {_mask_password(database_url)}")
    if "+" not in scheme:
        driver_scheme = _ASYNC_SCHEMES.get(scheme)
        if driver_scheme is None:
            raise DBConfigurationError(
                f"DATABASE_URL scheme '{scheme}' has no async driver; use e.g. '{scheme}+<driver>://'."
            )
        database_url = f"{driver_scheme}://{rest}"

    logger.info(f"Using DATABASE_URL {_mask_password(database_url)}.")
    return database_url


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy, not the sqlite3 driver, emit BEGIN so SAVEPOINT works.

    Without this the driver's own transaction handling breaks nested transactions.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


async def create_db_engine() -> AsyncEngine:
    """Creates the async engine and session factory.

    Returns:
        The async engine.

    Raises:
        DBConfigurationError: If the database configuration is invalid.
        DBConnectionError: If the engine cannot be created.
    """
    global _db_engine, _db_session_factory
    if _db_engine:
        logger.debug("Database engine already initialized.")
        return _db_engine

    db_url = _get_db_url()
    try:
        if db_url.startswith("sqlite"):
            # SQLAlchemy gives :memory: aiosqlite URLs a single shared connection.
            engine = create_async_engine(db_url)
            enable_sqlite_savepoints(engine)
        else:
            pool_size = settings.get_main_db_pool_min_size()
            engine = create_async_engine(
                db_url,
                pool_pre_ping=True,
                pool_size=pool_size,
                max_overflow=max(settings.get_main_db_pool_max_size() - pool_size, 0),
            )
        _db_engine = engine

        # Handlers run after commit, so committed objects must stay loaded.
        _db_session_factory = async_sessionmaker(
            _db_engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

        logger.info(f"Database engine created for {_mask_password(db_url)}.")
        return _db_engine
    except Exception as e:
        raise DBConnectionError(f"Could not create database engine for {_mask_password(db_url)}: {e}") from e


async def close_db_engine() -> None:
    """Closes the database engine."""
    global _db_engine, _db_session_factory
    if _db_engine:
        try:
            await _db_engine.dispose()
            logger.info("Database engine closed successfully.")
        except Exception as e:
            logger.error(f"Error closing database engine: {e}", exc_info=True)
        finally:
            _db_engine = None
            _db_session_factory = None
    else:
        logger.debug("close_db_engine called with no engine open.")


@contextlib.asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get a SQLAlchemy async session for the database as a context manager."""
    if _db_session_factory is None:
        raise RuntimeError("Database session factory has not been initialized")

    async with _db_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
