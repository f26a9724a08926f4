"""
Database logging configuration.

This module sets up littleorm logging and provides helpers that give every
statement, transaction and pool event a consistent log format.
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Any, Optional, Sequence

ROOT_LOGGER = 'littleorm'


class SafeFormatter(logging.Formatter):
    """Formatter that provides a default for the database context field."""

    def format(self, record):
        if not hasattr(record, 'database_context'):
            record.database_context = 'db'
        return super().format(record)


def setup_orm_logging(config: Dict[str, Any]) -> logging.Logger:
    """
    Setup littleorm logging based on configuration.

    Args:
        config: littleorm configuration dictionary

    Returns:
        Configured root logger for littleorm
    """
    logging_config = config.get('logging', {})
    log_level = logging_config.get('level', 'INFO').upper()

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, log_level))

    # Remove handlers from a previous setup to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = SafeFormatter(
        '%(asctime)s.%(msecs)03d - [%(database_context)s] - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    log_file = logging_config.get('file')
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if logging_config.get('console'):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    # Own handlers replace the root logger's ones
    logger.propagate = not logger.handlers

    return logger


def log_query(logger: logging.Logger, query: str, params: Optional[Sequence] = None,
              duration: Optional[float] = None) -> None:
    """
    Log an executed statement.

    Args:
        logger: littleorm logger instance
        query: SQL statement
        params: Bound parameters
        duration: Execution time in seconds
    """
    if not logger.isEnabledFor(logging.DEBUG):
        return
    message = f"sql: <{query}>, args: {list(params or ())!r}"
    if duration is not None:
        message += f", duration: {duration:.3f}s"
    logger.debug(message)


def log_transaction(logger: logging.Logger, operation: str, success: bool,
                    duration: Optional[float] = None, error: Optional[str] = None) -> None:
    """
    Log a transaction outcome.

    Args:
        logger: littleorm logger instance
        operation: Transaction description
        success: Whether the transaction committed
        duration: Transaction duration in seconds
        error: Error message if the transaction failed
    """
    if success:
        message = f"Transaction '{operation}' committed"
        if duration is not None:
            message += f" in {duration:.3f}s"
        logger.info(message)
    else:
        message = f"Transaction '{operation}' rolled back"
        if error:
            message += f": {error}"
        logger.error(message)


def log_pool_event(logger: logging.Logger, event: str, details: Optional[str] = None) -> None:
    """
    Log a context pool event ('created', 'acquired', 'released', 'discarded').
    """
    if logger.isEnabledFor(logging.DEBUG):
        message = f"Context {event}"
        if details:
            message += f": {details}"
        logger.debug(message)


class OrmLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds the database context to log records and offers
    shortcuts for statement, transaction and pool logging.
    """

    def __init__(self, logger: logging.Logger, extra: Dict[str, Any] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})
        kwargs['extra']['database_context'] = self.extra.get('database', 'db')
        return msg, kwargs

    def query(self, query: str, params: Optional[Sequence] = None,
              duration: Optional[float] = None) -> None:
        """Log a statement."""
        log_query(self, query, params, duration)

    def transaction(self, operation: str, success: bool, duration: Optional[float] = None,
                    error: Optional[str] = None) -> None:
        """Log a transaction outcome."""
        log_transaction(self, operation, success, duration, error)

    def pool_event(self, event: str, details: Optional[str] = None) -> None:
        """Log a context pool event."""
        log_pool_event(self, event, details)
