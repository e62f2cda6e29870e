# Per-transaction buffering state, kept in a side table keyed by handle identity.

import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from transactional_subscriber.core.events import BufferedEvent

logger = logging.getLogger(__name__)


@dataclass
class TransactionState:
    """Buffering state for one live transaction handle.

    Attributes:
        depth: Number of currently open transaction scopes sharing the handle.
        buffered_events: Events observed since the outermost scope began, in arrival order.
        savepoint_marks: Buffer length recorded at each nested scope's start.
        lock: Serializes all reads and writes of this state.
    """

    depth: int = 0
    buffered_events: List[BufferedEvent] = field(default_factory=list)
    savepoint_marks: List[int] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def drain(self) -> List[BufferedEvent]:
        """Detach and return the buffered events, leaving the buffer empty."""
        events, self.buffered_events = self.buffered_events, []
        self.savepoint_marks.clear()
        return events


class TransactionRegistry:
    """Associates a TransactionState with each transaction handle.

    Handles are compared by identity and are never modified. Entries are created
    on first access and removed with ``release`` once the outermost transaction
    on that handle has ended, or when the handle is garbage collected.

    Handles that can't be weakly referenced are held strongly until released.
    """

    def __init__(self) -> None:
        # id(handle) -> (reference to handle, state)
        self._states: Dict[int, Tuple[Callable[[], Any], TransactionState]] = {}
        self._lock = threading.Lock()
        # Filled by weakref callbacks, which may run at any allocation, so they never take the lock.
        self._pending_removals: List[Tuple[int, Callable[[], Any]]] = []

    def _reference(self, handle: Any) -> Callable[[], Any]:
        key = id(handle)
        pending = self._pending_removals
        try:
            return weakref.ref(handle, lambda ref: pending.append((key, ref)))
        except TypeError:
            return lambda: handle

    def _purge_collected(self) -> None:
        while self._pending_removals:
            key, ref = self._pending_removals.pop()
            entry = self._states.get(key)
            if entry is None or entry[0] is not ref:
                continue
            del self._states[key]
            state = entry[1]
            if state.depth or state.buffered_events:
                logger.warning(
                    f"Transaction handle collected with {state.depth} open scope(s) and "
                    f"{len(state.buffered_events)} buffered event(s); dropping its state."
                )

    def _entry(self, handle: Any) -> Optional[Tuple[Callable[[], Any], TransactionState]]:
        entry = self._states.get(id(handle))
        if entry is None or entry[0]() is not handle:
            return None
        return entry

    def get_or_create(self, handle: Any) -> TransactionState:
        """Return the state for ``handle``, creating an empty one if needed."""
        with self._lock:
            self._purge_collected()
            entry = self._entry(handle)
            if entry is None:
                entry = (self._reference(handle), TransactionState())
                self._states[id(handle)] = entry
            return entry[1]

    def get(self, handle: Any) -> Optional[TransactionState]:
        """Return the state for ``handle`` without creating one."""
        with self._lock:
            self._purge_collected()
            entry = self._entry(handle)
        return None if entry is None else entry[1]

    def release(self, handle: Any, state: Optional[TransactionState] = None) -> None:
        """Forget ``handle``. If ``state`` is given, only forget it if it is still the current state."""
        with self._lock:
            self._purge_collected()
            entry = self._entry(handle)
            if entry is None:
                return
            if state is not None and entry[1] is not state:
                return
            del self._states[id(handle)]

    def __contains__(self, handle: Any) -> bool:
        return self.get(handle) is not None

    def __len__(self) -> int:
        with self._lock:
            self._purge_collected()
            return len(self._states)
