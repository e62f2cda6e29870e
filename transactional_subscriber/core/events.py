"""Event types shared by the registry and the dispatcher."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

P = TypeVar("P")

# A commit handler receives the original lifecycle payload. It may be a plain
# function or a coroutine function.
CommitHandler = Callable[[Any], Union[Awaitable[None], None]]

# Middleware wraps a single handler invocation: ``await call_next()`` runs the handler.
CallNext = Callable[[], Awaitable[None]]
HandlerMiddleware = Callable[["BufferedEvent[Any]", CallNext], Awaitable[None]]


class EventKind(Enum):
    """Lifecycle event categories, in the order they are replayed after commit."""

    INSERTED = "inserted"
    UPDATED = "updated"
    REMOVED = "removed"
    SOFT_REMOVED = "soft_removed"


# Replay order is part of the public contract.
REPLAY_ORDER = (EventKind.INSERTED, EventKind.UPDATED, EventKind.REMOVED, EventKind.SOFT_REMOVED)


@dataclass(frozen=True)
class BufferedEvent(Generic[P]):
    """A lifecycle notification held until its transaction's outcome is known.

    Attributes:
        kind: Which lifecycle event occurred.
        payload: The resource manager's event payload, passed to handlers unmodified.
    """

    kind: EventKind
    payload: P


@dataclass(frozen=True)
class CommitHandlers:
    """The consumer's post-commit hooks. Any of them may be left as None.

    Attributes:
        on_inserted: Called once per committed insert.
        on_updated: Called once per committed update.
        on_removed: Called once per committed remove.
        on_soft_removed: Called once per committed soft remove.
    """

    on_inserted: Optional[CommitHandler] = None
    on_updated: Optional[CommitHandler] = None
    on_removed: Optional[CommitHandler] = None
    on_soft_removed: Optional[CommitHandler] = None

    def for_kind(self, kind: EventKind) -> Optional[CommitHandler]:
        """Return the handler for an event category, or None if the consumer didn't supply one."""
        handlers = {
            EventKind.INSERTED: self.on_inserted,
            EventKind.UPDATED: self.on_updated,
            EventKind.REMOVED: self.on_removed,
            EventKind.SOFT_REMOVED: self.on_soft_removed,
        }
        return handlers[kind]

    @property
    def configured_kinds(self) -> list[EventKind]:
        return [kind for kind in REPLAY_ORDER if self.for_kind(kind) is not None]
