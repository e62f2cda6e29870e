import os
from pathlib import Path
from typing import Any, List, Tuple

import pytest
from dotenv import load_dotenv
from transactional_subscriber.core.dispatcher import TransactionalEventDispatcher
from transactional_subscriber.core.events import CommitHandlers


@pytest.fixture(autouse=True)
def override_environment():
    """AUTOUSE: Loads .env.test if present and restores the original environment afterwards."""
    project_root = Path(__file__).parent.parent
    original_environ = os.environ.copy()

    env_file_path = project_root / ".env.test"
    if env_file_path.exists():
        load_dotenv(dotenv_path=env_file_path, override=True)

    yield

    os.environ.clear()
    os.environ.update(original_environ)


class HandlerRecorder:
    """Records every handler call as a (category, payload) tuple."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any]] = []

    async def on_inserted(self, payload: Any) -> None:
        self.calls.append(("inserted", payload))

    async def on_updated(self, payload: Any) -> None:
        self.calls.append(("updated", payload))

    async def on_removed(self, payload: Any) -> None:
        self.calls.append(("removed", payload))

    async def on_soft_removed(self, payload: Any) -> None:
        self.calls.append(("soft_removed", payload))

    def handlers(self) -> CommitHandlers:
        return CommitHandlers(
            on_inserted=self.on_inserted,
            on_updated=self.on_updated,
            on_removed=self.on_removed,
            on_soft_removed=self.on_soft_removed,
        )


@pytest.fixture
def recorder() -> HandlerRecorder:
    return HandlerRecorder()


@pytest.fixture
def dispatcher(recorder: HandlerRecorder) -> TransactionalEventDispatcher:
    """A dispatcher wired to the recorder's handlers."""
    return TransactionalEventDispatcher(recorder.handlers())
