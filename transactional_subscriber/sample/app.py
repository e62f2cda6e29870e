"""Sample wiring: two entities saved in one transaction, recorded only after commit."""

import logging
from typing import List, Optional

from sqlmodel import SQLModel

from transactional_subscriber.core.dispatcher import TransactionalEventDispatcher
from transactional_subscriber.db.bridge import SessionEventBridge
from transactional_subscriber.db.database_async import close_db_engine, create_db_engine, get_db_session
from transactional_subscriber.exceptions import CommitHandlerError
from transactional_subscriber.sample.models import Company, Person
from transactional_subscriber.sample.subscriber import EntityEventLog

logger = logging.getLogger(__name__)


async def run_sample(event_log: Optional[EntityEventLog] = None) -> List[str]:
    """Create the tables, save a person and a company in one transaction and return the event log."""
    event_log = event_log if event_log is not None else EntityEventLog()
    dispatcher = TransactionalEventDispatcher.from_settings(event_log.as_handlers())
    bridge = SessionEventBridge(dispatcher)

    engine = await create_db_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        bridge.listen()
        async with get_db_session() as session:
            try:
                async with session.begin():
                    session.add(Person(name="John Doe"))
                    await session.flush()
                    session.add(Company(name="Acme Inc."))
                logger.info(f"Transaction committed. Event log: {event_log.entries}")
            except CommitHandlerError as e:
                logger.error(f"Transaction committed but a post-commit handler failed: {e}", exc_info=True)
            except Exception as e:
                logger.error(f"Transaction rolled back: {e}", exc_info=True)
                logger.info(f"Event log after rollback: {event_log.entries}")
        return list(event_log.entries)
    finally:
        bridge.remove()
        await close_db_engine()
