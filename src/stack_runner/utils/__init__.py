"""Utility modules for logging, AWS client management, and errors."""

from stack_runner.utils.aws_client import AWSClientManager
from stack_runner.utils.errors import (
    ErrorCategory,
    StackOperationError,
    NotFoundError,
    StateConflictError,
    ChangesetFailedError,
    InvalidLocationError,
    MissingCollaboratorError,
    StackOperationFailedError,
    TransportError,
    ErrorHandler,
    error_handler
)
from stack_runner.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',

    # Errors
    'ErrorCategory',
    'StackOperationError',
    'NotFoundError',
    'StateConflictError',
    'ChangesetFailedError',
    'InvalidLocationError',
    'MissingCollaboratorError',
    'StackOperationFailedError',
    'TransportError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
