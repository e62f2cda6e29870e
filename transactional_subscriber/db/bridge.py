"""Feeds SQLAlchemy ORM events into a TransactionalEventDispatcher.

The dispatcher's transaction handle is the synchronous ``Session`` (for an
``AsyncSession`` that is ``AsyncSession.sync_session``). Root transactions and
SAVEPOINTs open and close a scope; the internal subtransactions SQLAlchemy uses
during flush are ignored.

SQLAlchemy emits these events synchronously. For a session driven by an
``AsyncSession`` the dispatcher is awaited through SQLAlchemy's greenlet bridge.
A plain ``Session`` used outside any event loop runs each notification to
completion on a private loop. A plain ``Session`` used inside a running event loop
can't wait for async handlers and is rejected when its transaction begins.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import event, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapper, Session, SessionTransaction, object_session
from sqlalchemy.util.concurrency import await_, in_greenlet

from transactional_subscriber.core.dispatcher import TransactionalEventDispatcher
from transactional_subscriber.exceptions import TransactionalSubscriberError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class EntityChange:
    """Payload handed to commit handlers for ORM-level changes.

    Attributes:
        entity: The mapped instance that was inserted, updated or deleted.
        mapper: The instance's mapper.
        changed_attributes: For updates, the attribute keys with pending changes at flush time.
    """

    entity: Any
    mapper: Mapper
    changed_attributes: Tuple[str, ...] = ()

    @property
    def entity_name(self) -> str:
        return self.mapper.class_.__name__


def _is_boundary(transaction: SessionTransaction) -> bool:
    return transaction.nested or transaction.parent is None


def _event_loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class SessionEventBridge:
    """Translates session and mapper events into dispatcher notifications.

    Usage:
        dispatcher = TransactionalEventDispatcher(CommitHandlers(on_inserted=notify))
        bridge = SessionEventBridge(dispatcher, mapper_target=SQLModel).listen()
        async with session.begin():
            session.add(Person(name="Alice"))
        # notify(EntityChange(...)) has run by the time the block exits
        bridge.remove()
    """

    def __init__(
        self,
        dispatcher: TransactionalEventDispatcher,
        *,
        mapper_target: Any = Mapper,
        soft_delete_attribute: Optional[str] = "deleted_at",
    ) -> None:
        """
        Args:
            dispatcher: Receives the translated notifications.
            mapper_target: Which mappers to observe: the ``Mapper`` class for all of them, a
                mapped class, or an unmapped base class whose subclasses should be observed.
            soft_delete_attribute: An update that sets this attribute from None to a value is
                reported as a soft remove. None disables soft remove detection.
        """
        self.dispatcher = dispatcher
        self.mapper_target = mapper_target
        self.soft_delete_attribute = soft_delete_attribute
        self._registrations: List[Tuple[Any, str, Callable[..., Any]]] = []
        # Sessions with an open boundary transaction seen by this bridge.
        self._sessions: "weakref.WeakSet[Session]" = weakref.WeakSet()
        # Sessions whose innermost boundary transaction has committed but not yet ended.
        self._committed: "weakref.WeakSet[Session]" = weakref.WeakSet()

    @property
    def is_listening(self) -> bool:
        return bool(self._registrations)

    def listen(self, session_target: Any = Session) -> "SessionEventBridge":
        """Attach the listeners.

        Args:
            session_target: A ``Session`` subclass, ``sessionmaker``, ``Session`` instance,
                ``AsyncSession`` instance or ``AsyncSession`` subclass.
        """
        if self._registrations:
            raise RuntimeError("SessionEventBridge is already listening; call remove() first")

        session_target = self._resolve_session_target(session_target)
        mapper_kwargs = {} if self.mapper_target is Mapper else {"propagate": True}

        self._register(session_target, "after_transaction_create", self._after_transaction_create)
        self._register(session_target, "after_commit", self._after_commit)
        self._register(session_target, "after_transaction_end", self._after_transaction_end)
        self._register(self.mapper_target, "after_insert", self._after_insert, **mapper_kwargs)
        self._register(self.mapper_target, "after_update", self._after_update, **mapper_kwargs)
        self._register(self.mapper_target, "after_delete", self._after_delete, **mapper_kwargs)
        logger.debug(f"SessionEventBridge listening on {session_target!r} and {self.mapper_target!r}.")
        return self

    def remove(self) -> None:
        """Detach all listeners attached by ``listen``."""
        while self._registrations:
            target, identifier, fn = self._registrations.pop()
            event.remove(target, identifier, fn)
        self._sessions.clear()
        self._committed.clear()

    @staticmethod
    def _resolve_session_target(target: Any) -> Any:
        if isinstance(target, AsyncSession):
            return target.sync_session
        if isinstance(target, type) and issubclass(target, AsyncSession):
            return target.sync_session_class
        return target

    def _register(self, target: Any, identifier: str, fn: Callable[..., Any], **kwargs: Any) -> None:
        event.listen(target, identifier, fn, **kwargs)
        self._registrations.append((target, identifier, fn))

    # --- Session events ---

    def _run(self, awaitable: Awaitable[T]) -> T:
        """Wait for a dispatcher coroutine from inside a synchronous event hook."""
        if in_greenlet():
            return await_(awaitable)
        if _event_loop_running():
            awaitable.close()  # type: ignore[attr-defined]
            raise TransactionalSubscriberError(
                "A synchronous Session was used inside a running event loop; use AsyncSession so "
                "post-commit handlers can be awaited."
            )
        return asyncio.run(awaitable)  # type: ignore[arg-type]

    def _after_transaction_create(self, session: Session, transaction: SessionTransaction) -> None:
        if not _is_boundary(transaction):
            return
        if not in_greenlet() and _event_loop_running():
            raise TransactionalSubscriberError(
                f"Cannot track {session!r}: a synchronous Session was used inside a running event loop. "
                "Use AsyncSession, or run the synchronous session outside the loop."
            )
        self._sessions.add(session)
        self.dispatcher.on_transaction_start(session)

    def _after_commit(self, session: Session) -> None:
        # Emitted for root and SAVEPOINT commits, immediately before that transaction ends.
        self._committed.add(session)

    def _after_transaction_end(self, session: Session, transaction: SessionTransaction) -> None:
        # Transactions begun before listen() or rejected at creation were never started.
        if not _is_boundary(transaction) or session not in self._sessions:
            return
        committed = session in self._committed
        self._committed.discard(session)
        if transaction.parent is None:
            self._sessions.discard(session)

        if committed:
            self._run(self.dispatcher.on_transaction_commit(session))
        else:
            self._run(self.dispatcher.on_transaction_rollback(session))

    # --- Mapper events ---

    def _session_for(self, target: Any) -> Optional[Session]:
        session = object_session(target)
        if session is None or session not in self._sessions:
            return None
        return session

    def _after_insert(self, mapper: Mapper, connection: Any, target: Any) -> None:
        session = self._session_for(target)
        if session is None:
            return
        self._run(
            self.dispatcher.on_inserted(
                session, EntityChange(target, mapper), transaction_active=session.in_transaction()
            )
        )

    def _after_update(self, mapper: Mapper, connection: Any, target: Any) -> None:
        session = self._session_for(target)
        if session is None:
            return
        state = inspect(target)
        changed = tuple(attr.key for attr in state.attrs if attr.history.has_changes())
        change = EntityChange(target, mapper, changed)
        if self._is_soft_remove(mapper, state):
            notify = self.dispatcher.on_soft_removed
        else:
            notify = self.dispatcher.on_updated
        self._run(notify(session, change, transaction_active=session.in_transaction()))

    def _after_delete(self, mapper: Mapper, connection: Any, target: Any) -> None:
        session = self._session_for(target)
        if session is None:
            return
        self._run(
            self.dispatcher.on_removed(session, EntityChange(target, mapper), transaction_active=session.in_transaction())
        )

    def _is_soft_remove(self, mapper: Mapper, state: Any) -> bool:
        name = self.soft_delete_attribute
        if name is None or name not in mapper.attrs:
            return False
        history = state.attrs[name].history
        if not history.added or history.added[0] is None:
            return False
        return not history.deleted or history.deleted[0] is None
