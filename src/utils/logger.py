"""
Logging Module for the Arbitrage Engine

Provides structured logging with:
- Rotating file handlers for long-running detection loops
- JSON formatting for log aggregation
- Plain-text console output for operators
- Helpers for trade events and errors with context

Usage:
    logger = get_logger(__name__)
    logger.info("Opportunity detected", extra={'opportunity_type': 'negrisk', 'profit_percent': 2.1})
"""

import logging
import logging.handlers
import os
import sys
import json
from datetime import datetime, timezone
from typing import Optional

from config.constants import (
    LOG_LEVEL,
    LOG_FILE_PATH,
    MAX_LOG_FILE_SIZE,
    LOG_BACKUP_COUNT,
    STRUCTURED_LOGGING,
)


# Attributes every LogRecord carries; anything else came in through extra={...}
_RESERVED_RECORD_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'message', 'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'getMessage', 'taskName', 'asctime',
])


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs structured JSON logs"""

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON for better parsing and aggregation.
        Includes all relevant context in structured format.
        """
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line_number': record.lineno,
            'process_id': record.process,
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        # Extra fields passed via logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_ATTRS:
                continue
            if isinstance(value, (str, int, float, bool, type(None), dict, list)):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class PlainTextFormatter(logging.Formatter):
    """Simple text formatter for readable console output"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as plain text for console"""
        record.asctime = self.formatTime(record, self.datefmt)

        line = (
            f"{record.asctime} | {record.levelname:8} | "
            f"{record.name}:{record.funcName}:{record.lineno} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            return f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    structured: Optional[bool] = None
) -> None:
    """
    Configure logging for the engine.

    Sets up:
    - Console handler: Plain text for operator visibility
    - File handler: Rotating files to prevent disk space issues
    - JSON formatting: Structured logs for log aggregation tools

    Args:
        log_level: Logging level override (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                   If None, uses LOG_LEVEL from constants
        log_file: Log file path override. If None, uses LOG_FILE_PATH from constants
        structured: Use JSON formatting. If None, uses STRUCTURED_LOGGING from constants

    Raises:
        ValueError: If invalid log level specified
    """
    level = (log_level or LOG_LEVEL).upper()
    filepath = log_file or LOG_FILE_PATH
    use_json = structured if structured is not None else STRUCTURED_LOGGING

    valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
    if level not in valid_levels:
        raise ValueError(f"Invalid log level: {level}. Must be one of {valid_levels}")

    log_dir = os.path.dirname(filepath)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level))

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # ========================================================================
    # CONSOLE HANDLER - for operator visibility
    # ========================================================================
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level))
    console_handler.setFormatter(PlainTextFormatter(fmt='%(asctime)s', datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger.addHandler(console_handler)

    # ========================================================================
    # FILE HANDLER - rotating files for continuous operation
    # ========================================================================
    file_handler = logging.handlers.RotatingFileHandler(
        filepath,
        maxBytes=MAX_LOG_FILE_SIZE,
        backupCount=LOG_BACKUP_COUNT
    )
    file_handler.setLevel(getattr(logging, level))

    if use_json:
        file_formatter = JSONFormatter()
    else:
        file_formatter = PlainTextFormatter(fmt='%(asctime)s', datefmt='%Y-%m-%d %H:%M:%S')

    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            'log_level': level,
            'log_file': filepath,
            'max_size_mb': MAX_LOG_FILE_SIZE // (1024 * 1024),
            'backup_count': LOG_BACKUP_COUNT,
            'structured_logging': use_json,
        }
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        Configured logger instance

    Example:
        logger = get_logger(__name__)
        logger.info("Detection cycle complete")
        logger.warning("Detector failed", extra={'detector': 'CrossMarketDetector'})
    """
    return logging.getLogger(name)


def log_trade_event(
    logger: logging.Logger,
    event_type: str,
    **details
) -> None:
    """
    Log a simulated trade event with structured information.

    Args:
        logger: Logger instance
        event_type: Type of trade event (PAPER_TRADE, RISK_REJECTED, SETTLED, ...)
        **details: Trade details to include (opportunity_type, size_usd, pnl, ...)

    Example:
        log_trade_event(
            logger, 'PAPER_TRADE',
            opportunity_type='cross_market', size_usd=125.0, realized_pnl=1.8
        )
    """
    details['event_type'] = event_type
    logger.info(f"Trade event: {event_type}", extra=details)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **context
) -> None:
    """
    Log an error with full context and exception details.

    Args:
        logger: Logger instance
        message: Error description
        error: The exception that occurred
        **context: Additional context information

    Example:
        try:
            await repository.save_opportunity(opportunity)
        except PersistenceError as e:
            log_error_with_context(
                logger, "Failed to save opportunity", e,
                opportunity_key=opportunity.dedup_key()
            )
    """
    context['error_type'] = type(error).__name__
    context['error_message'] = str(error)
    logger.error(message, exc_info=error, extra=context)
