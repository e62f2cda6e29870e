import logging
import sys
from typing import Optional

from transactional_subscriber.settings import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_LOG_LEVEL = "INFO"

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

PACKAGE_LOGGER = "transactional_subscriber"

# SQL statements and pool chatter drown out dispatcher messages at DEBUG.
NOISY_LIBRARIES = ["sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio"]


def _resolve_level(name: Optional[str], variable: str, fallback: str) -> str:
    if name is None:
        return fallback
    if name not in VALID_LOG_LEVELS:
        print(
            f"WARNING: Invalid {variable} '{name}', using {fallback}. Valid levels: {', '.join(VALID_LOG_LEVELS)}",
            file=sys.stderr,
        )
        return fallback
    return name


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Send log records to stderr.

    LOG_LEVEL sets the root level. TX_EVENTS_LOG_LEVEL, if set, overrides it for the
    package's own loggers, so buffering and replay can be traced at DEBUG without
    turning on DEBUG everywhere.
    """
    settings = settings or Settings()
    root_level = _resolve_level(settings.get_log_level(default=DEFAULT_LOG_LEVEL), "LOG_LEVEL", DEFAULT_LOG_LEVEL)
    package_level = _resolve_level(settings.get_tx_events_log_level(), "TX_EVENTS_LOG_LEVEL", root_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(package_level)
    for lib_name in NOISY_LIBRARIES:
        logging.getLogger(lib_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured: root {root_level}, {PACKAGE_LOGGER} {package_level}.")
