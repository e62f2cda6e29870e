"""Run entity lifecycle hooks only after the surrounding database transaction commits."""

from transactional_subscriber.core import (
    BufferedEvent,
    CommitHandlers,
    EventKind,
    TransactionalEventDispatcher,
    TransactionRegistry,
)
from transactional_subscriber.exceptions import (
    CommitHandlerError,
    DepthUnderflowError,
    TransactionalSubscriberError,
)

__all__ = [
    "BufferedEvent",
    "CommitHandlerError",
    "CommitHandlers",
    "DepthUnderflowError",
    "EventKind",
    "TransactionRegistry",
    "TransactionalEventDispatcher",
    "TransactionalSubscriberError",
]
