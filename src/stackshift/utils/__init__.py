"""Utility modules for logging, errors, retry and AWS session management."""

from stackshift.utils.aws_client import AWSClientManager, AssumeRoleConfig
from stackshift.utils.retry import RetryStrategy
from stackshift.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    RefactorError,
    ConfigurationError,
    CredentialError,
    NotFoundError,
    StackNotFoundError,
    DeploymentNotFoundError,
    ResourceNotFoundError,
    ConflictError,
    AlreadyOwnedError,
    NotOwnerError,
    CompatibilityError,
    TransientBackendError,
    StateLockError,
    StateError,
    RollbackFailure,
    ErrorHandler,
    error_handler
)
from stackshift.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AssumeRoleConfig',

    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'RefactorError',
    'ConfigurationError',
    'CredentialError',
    'NotFoundError',
    'StackNotFoundError',
    'DeploymentNotFoundError',
    'ResourceNotFoundError',
    'ConflictError',
    'AlreadyOwnedError',
    'NotOwnerError',
    'CompatibilityError',
    'TransientBackendError',
    'StateLockError',
    'StateError',
    'RollbackFailure',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
