from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from transactional_subscriber.core.dispatcher import TransactionalEventDispatcher
from transactional_subscriber.db.bridge import SessionEventBridge
from transactional_subscriber.db.database_async import enable_sqlite_savepoints
from transactional_subscriber.sample.models import Company, Person  # noqa: F401 - registers tables
from transactional_subscriber.sample.subscriber import EntityEventLog


@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite async engine with working SAVEPOINTs."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    enable_sqlite_savepoints(engine)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def sync_engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine for plain synchronous sessions."""
    engine = create_engine("sqlite://", poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Handlers read entity attributes after commit.
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
def event_log() -> EntityEventLog:
    return EntityEventLog()


@pytest.fixture
def entity_dispatcher(event_log: EntityEventLog) -> TransactionalEventDispatcher:
    return TransactionalEventDispatcher(event_log.as_handlers())


@pytest.fixture
def bridge(entity_dispatcher: TransactionalEventDispatcher):
    """A bridge listening on every Session and every mapper for the duration of a test."""
    bridge = SessionEventBridge(entity_dispatcher).listen()
    yield bridge
    bridge.remove()
