import os
from typing import Optional

from dotenv import load_dotenv

# Load .env file variables into environment
load_dotenv(verbose=True)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


def _parse_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} environment variable must be a boolean (true/false).")


def _parse_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} environment variable must be an integer.") from None


class Settings:
    """Configuration settings loaded from environment variables."""

    # --- Dispatcher Policy Settings ---
    def get_strict_depth(self) -> bool:
        """Whether a commit/rollback with no open transaction raises instead of logging."""
        return _parse_bool("TX_EVENTS_STRICT_DEPTH", False)

    def get_discard_on_savepoint_rollback(self) -> bool:
        """Whether events buffered inside a rolled-back savepoint are dropped."""
        return _parse_bool("TX_EVENTS_DISCARD_ON_SAVEPOINT_ROLLBACK", False)

    # --- Logging Settings ---
    def get_log_level(self, default: str = "INFO") -> str:
        """Gets the configured log level, defaulting if not set."""
        return os.getenv("LOG_LEVEL", default).upper()

    def get_tx_events_log_level(self) -> Optional[str]:
        """Level for this package's own loggers, if set separately from LOG_LEVEL."""
        value = os.getenv("TX_EVENTS_LOG_LEVEL")
        return value.upper() if value else None

    # --- Database Settings ---
    def get_database_url(self) -> Optional[str]:
        """The sample database URL. Unset means an in-memory SQLite database."""
        return os.getenv("DATABASE_URL")

    def get_main_db_pool_min_size(self) -> int:
        """Connections kept open by a server database pool."""
        return _parse_int("MAIN_DB_POOL_MIN_SIZE", 1)

    def get_main_db_pool_max_size(self) -> int:
        """Upper bound on pooled connections, including overflow."""
        return _parse_int("MAIN_DB_POOL_MAX_SIZE", 10)
