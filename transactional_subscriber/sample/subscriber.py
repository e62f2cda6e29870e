"""A subscriber that records committed entity changes as human-readable lines."""

import logging
from typing import List

from transactional_subscriber.core.events import CommitHandlers
from transactional_subscriber.db.bridge import EntityChange

logger = logging.getLogger(__name__)


class EntityEventLog:
    """Appends ``"<Entity> <action>: <name>"`` for every committed change.

    Only entities with a ``name`` attribute are recorded.
    """

    def __init__(self) -> None:
        self.entries: List[str] = []

    def _record(self, action: str, change: EntityChange) -> None:
        name = getattr(change.entity, "name", None)
        if name is None:
            return
        entry = f"{change.entity_name} {action}: {name}"
        logger.info(entry)
        self.entries.append(entry)

    async def on_inserted(self, change: EntityChange) -> None:
        self._record("inserted", change)

    async def on_updated(self, change: EntityChange) -> None:
        self._record("updated", change)

    async def on_removed(self, change: EntityChange) -> None:
        self._record("removed", change)

    async def on_soft_removed(self, change: EntityChange) -> None:
        self._record("soft removed", change)

    def clear(self) -> None:
        self.entries.clear()

    def as_handlers(self) -> CommitHandlers:
        return CommitHandlers(
            on_inserted=self.on_inserted,
            on_updated=self.on_updated,
            on_removed=self.on_removed,
            on_soft_removed=self.on_soft_removed,
        )
