from unittest.mock import MagicMock

import pytest
from transactional_subscriber.core.events import REPLAY_ORDER, BufferedEvent, CommitHandlers, EventKind


def test_replay_order():
    assert REPLAY_ORDER == (EventKind.INSERTED, EventKind.UPDATED, EventKind.REMOVED, EventKind.SOFT_REMOVED)


@pytest.mark.parametrize("kind", list(EventKind))
def test_for_kind_returns_matching_handler(kind):
    handler = MagicMock()
    handlers = CommitHandlers(**{f"on_{kind.value}": handler})

    assert handlers.for_kind(kind) is handler
    assert handlers.configured_kinds == [kind]


def test_empty_handlers():
    handlers = CommitHandlers()

    assert all(handlers.for_kind(kind) is None for kind in EventKind)
    assert handlers.configured_kinds == []


def test_partial_handlers_report_configured_kinds_in_replay_order():
    handlers = CommitHandlers(on_removed=MagicMock(), on_inserted=MagicMock())

    assert handlers.on_updated is None
    assert handlers.on_soft_removed is None
    assert handlers.configured_kinds == [EventKind.INSERTED, EventKind.REMOVED]


def test_buffered_event_is_immutable():
    event = BufferedEvent(EventKind.UPDATED, {"id": 1})

    with pytest.raises(AttributeError):
        event.kind = EventKind.REMOVED  # type: ignore[misc]
