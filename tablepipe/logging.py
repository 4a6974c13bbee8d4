import logging
import sys
from typing import Optional, TextIO

from tablepipe.security import sanitize_connection_string

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Map string log levels to logging constants
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Modules that trace every SQL statement or catalog query at DEBUG
# These stay at WARNING unless verbose mode is enabled
TECHNICAL_MODULES = [
    "tablepipe.dialects.duckdb_dialect",
    "tablepipe.dialects.sqlite_dialect",
    "tablepipe.dialects.postgres_dialect",
    "tablepipe.schema.inspector",
]

THIRD_PARTY_LOGGERS = [
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
    # Selector and slow-callback chatter in verbose mode
    "asyncio",
]


class CredentialMaskingFilter(logging.Filter):
    """Masks passwords embedded in connection strings of every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if message.strip():
            masked = sanitize_connection_string(message)
            if masked != message:
                record.msg = masked
                record.args = None
        return True


def _make_handler(stream: Optional[TextIO] = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    handler.addFilter(CredentialMaskingFilter())
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the specified name.

    Args:
        name: The name for the logger, typically __name__

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.addHandler(_make_handler())
        # Don't propagate to root logger to avoid duplicate logging
        logger.propagate = False

    return logger


def resolve_level(verbose: bool = False, quiet: bool = False, level: Optional[str] = None) -> int:
    """Turn CLI flags or a profile level name into a logging level.

    An explicit ``level`` wins over the flags.

    Raises:
        ValueError: If ``level`` is not one of ``LOG_LEVELS``
    """
    if level is not None:
        try:
            return LOG_LEVELS[level.lower()]
        except KeyError:
            raise ValueError(
                f"Unknown log level '{level}'. Valid levels: {', '.join(LOG_LEVELS)}"
            ) from None
    if quiet:
        return logging.WARNING
    if verbose:
        return logging.DEBUG
    return DEFAULT_LOG_LEVEL


def configure_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
) -> int:
    """Configure logging settings from command line flags or a profile.

    Args:
        verbose: Show debug output, including SQL tracing from the dialects
        quiet: Only show warnings and errors
        level: Exact level name from a profile; overrides both flags

    Returns:
        The root logging level that was applied
    """
    root_level = resolve_level(verbose, quiet, level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Clear existing handlers to avoid duplicate logs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = _make_handler(sys.stdout)
    root_logger.addHandler(handler)

    technical_level = logging.DEBUG if root_level <= logging.DEBUG else max(
        logging.WARNING, root_level
    )
    for module_name in TECHNICAL_MODULES:
        module_logger = logging.getLogger(module_name)
        module_logger.setLevel(technical_level)

        if not module_logger.handlers:
            module_logger.addHandler(handler)
            module_logger.propagate = False

    return root_level


def suppress_third_party_loggers() -> None:
    """Keep driver and event loop loggers at WARNING."""
    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
