"""Database-specific exceptions for the transactional subscriber sample and adapters."""

from transactional_subscriber.exceptions import TransactionalSubscriberError


class DBException(TransactionalSubscriberError):
    """Base exception for all database related errors."""

    pass


class DBConfigurationError(DBException):
    """Exception raised when a database configuration is invalid or missing required variables."""

    pass


class DBConnectionError(DBException):
    """Exception raised when a connection to the database fails."""

    pass
