"""SQLAlchemy integration and database session management."""

from .bridge import EntityChange, SessionEventBridge

__all__ = ["EntityChange", "SessionEventBridge"]
