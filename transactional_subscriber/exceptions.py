from typing import Any, List, Optional


class TransactionalSubscriberError(Exception):
    """Base exception for all transactional subscriber errors."""

    pass


class CommitHandlerError(TransactionalSubscriberError):
    """Raised when a consumer-supplied commit handler fails.

    The transaction that produced the event has already committed. The buffer it
    came from has already been cleared, so the events listed in ``skipped_events``
    will not be replayed again.
    """

    def __init__(
        self,
        message: str,
        event: Any,
        skipped_events: Optional[List[Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        """Initialize the exception.

        Args:
            message: A descriptive error message
            event: The BufferedEvent whose handler failed
            skipped_events: Events that were not replayed because of the failure
            original_error: The exception raised by the handler
        """
        super().__init__(message)
        self.event = event
        self.skipped_events = list(skipped_events or [])
        self.original_error = original_error


class DepthUnderflowError(TransactionalSubscriberError):
    """Raised in strict mode when a commit or rollback arrives for a handle with no open transaction."""

    def __init__(self, message: str, handle: Any = None):
        super().__init__(message)
        self.handle = handle
