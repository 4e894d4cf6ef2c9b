"""Utility modules for logging, AWS client management, and helpers."""

from amiforge.utils.aws_client import AWSClientManager
from amiforge.utils.retry import RetryStrategy
from amiforge.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ImageError,
    ConfigurationError,
    CredentialError,
    NetworkError,
    StateError,
    ResourceNotFoundError,
    UnexpectedStatusError,
    WaitTimeoutError,
    PartialFailureError,
    ErrorHandler,
    error_handler
)
from amiforge.utils.logging import get_logger, setup_logging, ContextFilter, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ImageError',
    'ConfigurationError',
    'CredentialError',
    'NetworkError',
    'StateError',
    'ResourceNotFoundError',
    'UnexpectedStatusError',
    'WaitTimeoutError',
    'PartialFailureError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'ContextFilter',
    'LogContext',
]
