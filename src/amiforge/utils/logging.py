"""Logging infrastructure with structured JSON logging."""

import logging
import json
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


# Structured fields copied from log records when present
CONTEXT_FIELDS = ('image_id', 'resource_name', 'operation', 'status', 'duration')


class JSONFormatter(logging.Formatter):
    """Custom formatter that outputs logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: The log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console.

        Args:
            record: The log record to format

        Returns:
            Formatted log string with colors
        """
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.now(timezone.utc).strftime('%H:%M:%S')
        level = f"{color}{record.levelname:8}{reset}"
        message = record.getMessage()

        if hasattr(record, 'image_id') and record.image_id:
            message = f"[{record.image_id}] {message}"

        return f"{timestamp} {level} {message}"


def setup_logging(log_level: str = 'info', log_dir: str = '.amiforge/logs') -> None:
    """Setup logging infrastructure.

    Args:
        log_level: Logging level (debug, info, warning, error)
        log_dir: Directory receiving the JSON-lines log file
    """
    level = getattr(logging, log_level.upper())

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # Console handler with human-readable format
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.addFilter(ContextFilter())
    root_logger.addHandler(console_handler)

    # File handler with JSON format
    log_file = log_path / f"amiforge-{datetime.now(timezone.utc).strftime('%Y%m%d')}.jsonl"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)  # Always log debug to file
    file_handler.setFormatter(JSONFormatter())
    file_handler.addFilter(ContextFilter())
    root_logger.addHandler(file_handler)

    # Reduce noise from boto3 and other libraries
    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Name of the logger (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


# Fields of the innermost active LogContext in the current thread or task
_log_context: ContextVar[Dict[str, Any]] = ContextVar('amiforge_log_context', default={})


class ContextFilter(logging.Filter):
    """Copy the active LogContext fields onto every record a handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return True


class LogContext:
    """Context manager for adding structured fields to logs.

    Fields live in a context variable, so contexts entered by different
    threads or asyncio tasks never see each other's values.
    """

    def __init__(self, **kwargs: Any):
        """Initialize log context.

        Args:
            **kwargs: Key-value pairs to add to log records
        """
        self.context = kwargs
        self._token: Optional[Token] = None

    def __enter__(self):
        """Enter context and merge fields over any enclosing context."""
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def update(self, **kwargs: Any) -> None:
        """Add or replace fields for the rest of the context."""
        self.context.update(kwargs)
        _log_context.set({**_log_context.get(), **kwargs})

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context and restore the enclosing fields."""
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
