"""Buffers entity lifecycle events per transaction and replays them after the outermost commit."""

import contextlib
import functools
import inspect
import logging
import threading
from typing import Any, Iterator, List, Optional, Sequence

from transactional_subscriber.core.events import (
    REPLAY_ORDER,
    BufferedEvent,
    CommitHandler,
    CommitHandlers,
    EventKind,
    HandlerMiddleware,
)
from transactional_subscriber.core.registry import TransactionRegistry, TransactionState
from transactional_subscriber.exceptions import CommitHandlerError, DepthUnderflowError
from transactional_subscriber.settings import Settings

logger = logging.getLogger(__name__)


def _describe(handle: Any) -> str:
    return f"{type(handle).__name__}@{id(handle):#x}"


class TransactionalEventDispatcher:
    """Receives lifecycle and transaction-boundary notifications from a resource manager.

    Events reported while a transaction is active are buffered on the transaction's
    handle. Nested scopes on the same handle share one buffer. When the outermost
    scope commits, the buffer is detached and replayed through the configured
    handlers: all inserts, then updates, then removes, then soft removes, each
    category in arrival order. When the outermost scope rolls back the buffer is
    dropped and no handler runs.

    Events reported outside a transaction are dispatched immediately.

    Typical usage:
        dispatcher = TransactionalEventDispatcher(CommitHandlers(on_inserted=send_welcome_email))
        dispatcher.on_transaction_start(conn)
        await dispatcher.on_inserted(conn, event, transaction_active=True)
        await dispatcher.on_transaction_commit(conn)  # send_welcome_email(event) runs here
    """

    def __init__(
        self,
        handlers: Optional[CommitHandlers] = None,
        *,
        middleware: Sequence[HandlerMiddleware] = (),
        registry: Optional[TransactionRegistry] = None,
        strict_depth: bool = False,
        discard_on_savepoint_rollback: bool = False,
    ) -> None:
        """Initializes the dispatcher.

        Args:
            handlers: The consumer's commit handlers. Missing handlers are no-ops.
            middleware: Wrappers applied around every handler call, first one outermost.
            registry: Where per-transaction state is kept. A private registry is created if omitted.
            strict_depth: Raise DepthUnderflowError on a commit/rollback with no open scope
                instead of logging a warning.
            discard_on_savepoint_rollback: Drop the events buffered inside a nested scope when
                that scope rolls back. By default they stay buffered and are dispatched if the
                outermost scope commits.
        """
        self._handlers = handlers or CommitHandlers()
        self._middleware = list(middleware)
        self._registry = registry if registry is not None else TransactionRegistry()
        self.strict_depth = strict_depth
        self.discard_on_savepoint_rollback = discard_on_savepoint_rollback
        self.underflow_count = 0
        self._underflow_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        handlers: Optional[CommitHandlers] = None,
        settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> "TransactionalEventDispatcher":
        """Create a dispatcher whose policy flags come from the environment."""
        settings = settings or Settings()
        kwargs.setdefault("strict_depth", settings.get_strict_depth())
        kwargs.setdefault("discard_on_savepoint_rollback", settings.get_discard_on_savepoint_rollback())
        return cls(handlers, **kwargs)

    @property
    def handlers(self) -> CommitHandlers:
        return self._handlers

    @property
    def registry(self) -> TransactionRegistry:
        return self._registry

    def add_middleware(self, middleware: HandlerMiddleware) -> None:
        """Append a middleware. It becomes the innermost wrapper."""
        self._middleware.append(middleware)

    # --- Inspection ---

    def depth(self, handle: Any) -> int:
        """Number of open scopes the dispatcher has seen for ``handle``."""
        state = self._registry.get(handle)
        if state is None:
            return 0
        with state.lock:
            return state.depth

    def pending_events(self, handle: Any) -> List[BufferedEvent]:
        """A copy of the events currently buffered for ``handle``."""
        state = self._registry.get(handle)
        if state is None:
            return []
        with state.lock:
            return list(state.buffered_events)

    # --- Transaction boundaries ---

    def on_transaction_start(self, handle: Any) -> None:
        """Record that a (possibly nested) transaction scope opened on ``handle``."""
        with self._locked_state(handle) as state:
            if state.depth == 0 and state.buffered_events:
                logger.warning(
                    f"Discarding {len(state.buffered_events)} event(s) buffered on {_describe(handle)} "
                    "outside any observed transaction."
                )
                state.drain()
            if state.depth > 0:
                state.savepoint_marks.append(len(state.buffered_events))
            state.depth += 1
            depth = state.depth
        logger.debug(f"Transaction started on {_describe(handle)} (depth {depth}).")

    async def on_transaction_commit(self, handle: Any) -> None:
        """Record a commit. The outermost commit replays the buffered events.

        Raises:
            CommitHandlerError: If a handler fails during replay. The buffer is already
                cleared and the remaining events are not replayed.
            DepthUnderflowError: In strict mode, if no scope is open on ``handle``.
        """
        events = self._close_scope(handle, "commit")
        if events is None:
            return

        logger.debug(f"Outermost commit on {_describe(handle)}; replaying {len(events)} event(s).")
        await self._replay(events)

    async def on_transaction_rollback(self, handle: Any) -> None:
        """Record a rollback. The outermost rollback discards the buffered events.

        Raises:
            DepthUnderflowError: In strict mode, if no scope is open on ``handle``.
        """
        events = self._close_scope(handle, "rollback")
        if events:
            logger.debug(f"Rollback on {_describe(handle)} discarded {len(events)} buffered event(s).")

    # --- Lifecycle events ---

    async def on_inserted(self, handle: Any, payload: Any, *, transaction_active: Optional[bool] = None) -> None:
        await self._on_event(handle, EventKind.INSERTED, payload, transaction_active)

    async def on_updated(self, handle: Any, payload: Any, *, transaction_active: Optional[bool] = None) -> None:
        await self._on_event(handle, EventKind.UPDATED, payload, transaction_active)

    async def on_removed(self, handle: Any, payload: Any, *, transaction_active: Optional[bool] = None) -> None:
        await self._on_event(handle, EventKind.REMOVED, payload, transaction_active)

    async def on_soft_removed(self, handle: Any, payload: Any, *, transaction_active: Optional[bool] = None) -> None:
        await self._on_event(handle, EventKind.SOFT_REMOVED, payload, transaction_active)

    async def _on_event(
        self,
        handle: Any,
        kind: EventKind,
        payload: Any,
        transaction_active: Optional[bool],
    ) -> None:
        """Buffer the event if ``handle`` is inside a transaction, otherwise dispatch it now.

        ``transaction_active`` is the resource manager's own flag. When the caller
        can't supply it, an open scope seen by this dispatcher counts as active.
        """
        if transaction_active is None:
            transaction_active = handle is not None and self.depth(handle) > 0

        event = BufferedEvent(kind, payload)
        if handle is not None and transaction_active:
            with self._locked_state(handle) as state:
                if state.depth == 0:
                    logger.warning(
                        f"{kind.value} event on {_describe(handle)} reported inside a transaction "
                        "whose start was not observed."
                    )
                state.buffered_events.append(event)
                size = len(state.buffered_events)
            logger.debug(f"Buffered {kind.value} event on {_describe(handle)} ({size} pending).")
            return

        handler = self._handlers.for_kind(kind)
        if handler is None:
            return
        try:
            await self._invoke(event, handler)
        except Exception as e:
            logger.error(f"Handler for {kind.value} event failed outside a transaction: {e}", exc_info=True)
            raise CommitHandlerError(f"{kind.value} handler failed: {e}", event, original_error=e) from e

    # --- Internals ---

    @contextlib.contextmanager
    def _locked_state(self, handle: Any) -> Iterator[TransactionState]:
        """Lock and yield the live state for ``handle``, creating it if needed."""
        while True:
            state = self._registry.get_or_create(handle)
            with state.lock:
                # The state may have been released between lookup and locking.
                if self._registry.get(handle) is state:
                    yield state
                    return

    def _close_scope(self, handle: Any, outcome: str) -> Optional[List[BufferedEvent]]:
        """Decrement depth for ``handle`` after a commit or rollback.

        Returns the detached buffer when the outermost scope just closed, and None
        for a nested scope or an underflow. The state is released from the registry
        before the buffer is returned.
        """
        state = self._registry.get(handle)
        if state is not None:
            with state.lock:
                if state.depth > 0:
                    state.depth -= 1
                    if state.depth > 0:
                        mark = state.savepoint_marks.pop() if state.savepoint_marks else None
                        if outcome == "rollback" and self.discard_on_savepoint_rollback and mark is not None:
                            dropped = len(state.buffered_events) - mark
                            del state.buffered_events[mark:]
                            logger.debug(f"Savepoint rollback on {_describe(handle)} dropped {dropped} event(s).")
                        else:
                            logger.debug(f"Nested {outcome} on {_describe(handle)} (depth {state.depth}).")
                        return None
                    events = state.drain()
                    self._registry.release(handle, state)
                    return events

        with self._underflow_lock:
            self.underflow_count += 1
        message = f"Received {outcome} for {_describe(handle)} with no open transaction; ignoring."
        if self.strict_depth:
            raise DepthUnderflowError(message, handle)
        logger.warning(message)
        return None

    async def _replay(self, events: List[BufferedEvent]) -> None:
        pending = []
        for kind in REPLAY_ORDER:
            handler = self._handlers.for_kind(kind)
            if handler is not None:
                pending.extend((event, handler) for event in events if event.kind is kind)

        for index, (event, handler) in enumerate(pending):
            try:
                await self._invoke(event, handler)
            except Exception as e:
                skipped = [skipped_event for skipped_event, _ in pending[index + 1 :]]
                logger.error(
                    f"Post-commit {event.kind.value} handler failed; {len(skipped)} event(s) not replayed: {e}",
                    exc_info=True,
                )
                raise CommitHandlerError(
                    f"{event.kind.value} handler failed after commit: {e}",
                    event,
                    skipped_events=skipped,
                    original_error=e,
                ) from e

    async def _invoke(self, event: BufferedEvent, handler: CommitHandler) -> None:
        async def call_handler() -> None:
            result = handler(event.payload)
            if inspect.isawaitable(result):
                await result

        call_next = call_handler
        for middleware in reversed(self._middleware):
            call_next = functools.partial(middleware, event, call_next)
        await call_next()
