"""Per-transaction event buffering and post-commit dispatch."""

from .dispatcher import TransactionalEventDispatcher
from .events import REPLAY_ORDER, BufferedEvent, CommitHandlers, EventKind
from .registry import TransactionRegistry, TransactionState

__all__ = [
    "BufferedEvent",
    "CommitHandlers",
    "EventKind",
    "REPLAY_ORDER",
    "TransactionRegistry",
    "TransactionState",
    "TransactionalEventDispatcher",
]
