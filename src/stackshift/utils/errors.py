"""Error taxonomy for state refactoring operations."""

from typing import Optional, Dict, Any, List, Tuple
from enum import Enum
from dataclasses import dataclass, asdict
from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur while refactoring state."""
    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    COMPATIBILITY = "compatibility"
    TRANSIENT = "transient"
    STATE = "state"
    ROLLBACK = "rollback"
    CREDENTIAL = "credential"
    AWS = "aws"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # State may be ambiguous, operator action required
    ERROR = "error"  # Request failed, no state was left half-changed
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Where in the stack/deployment/component hierarchy an error occurred."""
    stack_id: Optional[str] = None
    deployment_id: Optional[str] = None
    component_id: Optional[str] = None
    resource_address: Optional[str] = None
    resource_key: Optional[str] = None
    plan_id: Optional[str] = None
    operation: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None

    @classmethod
    def for_locator(cls, locator: Any, **kwargs) -> "ErrorContext":
        """Build a context from anything shaped like a ResourceLocator."""
        return cls(
            stack_id=getattr(locator, 'stack_id', None),
            deployment_id=getattr(locator, 'deployment_id', None),
            component_id=getattr(locator, 'component_id', None),
            resource_address=getattr(locator, 'resource_address', None),
            **kwargs
        )

    def location(self) -> Optional[str]:
        """Render the locator portion as ``stack:deployment:component:address``."""
        parts = [self.stack_id, self.deployment_id, self.component_id, self.resource_address]
        present = [p for p in parts if p]
        return ":".join(present) if present else None


class RefactorError(Exception):
    """Base exception for state refactoring errors."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None
    ):
        """Initialize refactor error.

        Args:
            message: Human-readable error message
            context: Locator context of the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
            category: Override for the class-level category
            severity: Override for the class-level severity
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity

    def __str__(self) -> str:
        location = self.context.location()
        if location:
            return f"{self.message} ({location})"
        return self.message

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"❌ {self.severity.value.upper()}: {self.message}"]

        location = self.context.location()
        if location:
            lines.append(f"   Location: {location}")
        if self.context.plan_id:
            lines.append(f"   Plan: {self.context.plan_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(RefactorError):
    """Error in configuration file or settings."""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class CredentialError(RefactorError):
    """Error related to AWS credentials."""
    category = ErrorCategory.CREDENTIAL
    severity = ErrorSeverity.CRITICAL


class NotFoundError(RefactorError):
    """A locator could not be resolved. Reported, never retried."""
    category = ErrorCategory.NOT_FOUND


class StackNotFoundError(NotFoundError):
    """The locator names a stack that is not configured."""


class DeploymentNotFoundError(NotFoundError):
    """The locator names a deployment the stack does not have."""


class ResourceNotFoundError(NotFoundError):
    """The resource is absent from state, or no longer exists at the provider."""


class ConflictError(RefactorError):
    """Destination occupied, or another plan already touches the resource."""
    category = ErrorCategory.CONFLICT


class AlreadyOwnedError(ConflictError):
    """A claim was made on a resource key that already has an owner."""


class NotOwnerError(ConflictError):
    """An ownership transfer was requested by a deployment that is not the owner."""


class CompatibilityError(RefactorError):
    """Declared destination configuration does not match the real resource."""
    category = ErrorCategory.COMPATIBILITY

    def __init__(
        self,
        message: str,
        mismatches: Optional[Dict[str, Tuple[Any, Any]]] = None,
        **kwargs
    ):
        """Initialize compatibility error.

        Args:
            message: Human-readable error message
            mismatches: Field name -> (declared, actual)
        """
        self.mismatches = mismatches or {}
        suggestions = kwargs.pop('suggestions', None) or [
            f"Set '{field}' to {actual!r} in the destination declaration"
            for field, (_, actual) in sorted(self.mismatches.items())
        ]
        super().__init__(message, suggestions=suggestions, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['mismatches'] = {
            field: {'declared': declared, 'actual': actual}
            for field, (declared, actual) in self.mismatches.items()
        }
        return data


class TransientBackendError(RefactorError):
    """Timeout or throttling talking to a backend. Eligible for bounded retry."""
    category = ErrorCategory.TRANSIENT


class StateLockError(TransientBackendError):
    """Advisory lock on a state backend could not be acquired in time."""


class StateError(RefactorError):
    """A state document is corrupt or could not be written."""
    category = ErrorCategory.STATE
    severity = ErrorSeverity.CRITICAL


class RollbackFailure(RefactorError):
    """The source could not be restored after a failed transfer.

    State is ambiguous when this is raised: the resource may be managed by
    neither side. Always escalated, never swallowed.
    """
    category = ErrorCategory.ROLLBACK
    severity = ErrorSeverity.CRITICAL


class ErrorHandler:
    """Classifies exceptions from boto3 and the network into the taxonomy."""

    # AWS error codes that mean "slow down / try again"
    TRANSIENT_ERROR_CODES = {
        'RequestTimeout',
        'RequestTimeoutException',
        'ServiceUnavailable',
        'ThrottlingException',
        'Throttling',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'RequestThrottled',
        'SlowDown',
        'InternalError',
        'InternalFailure',
    }

    # AWS error codes that mean the queried resource does not exist
    NOT_FOUND_ERROR_CODES = {
        'InvalidInstanceID.NotFound',
        'InvalidInstanceID.Malformed',
        'InvalidGroup.NotFound',
        'InvalidGroupId.Malformed',
        'NoSuchBucket',
        'NotFound',
        '404',
        'ResourceNotFoundException',
    }

    CREDENTIAL_ERROR_CODES = {
        'InvalidClientTokenId',
        'SignatureDoesNotMatch',
        'ExpiredToken',
        'ExpiredTokenException',
        'AccessDenied',
        'UnauthorizedOperation',
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    @classmethod
    def error_code(cls, error: ClientError) -> str:
        return error.response.get('Error', {}).get('Code', 'Unknown')

    @classmethod
    def is_not_found(cls, error: Exception) -> bool:
        """True if a ClientError reports that the queried resource is absent."""
        return isinstance(error, ClientError) and cls.error_code(error) in cls.NOT_FOUND_ERROR_CODES

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> RefactorError:
        """Convert an exception into a RefactorError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            RefactorError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, RefactorError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return CredentialError(
                'No usable AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Configure credentials or a profile for this deployment',
                    'Verify credentials using: aws sts get-caller-identity',
                ]
            )

        if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError,
                              ConnectionError, TimeoutError)):
            return TransientBackendError(
                f'Network error: {str(error)}',
                context=context,
                cause=error,
                suggestions=['Check connectivity to the AWS endpoint', 'Retry the operation']
            )

        return RefactorError(
            message=str(error),
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(self, error: ClientError, context: ErrorContext) -> RefactorError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Categorized RefactorError
        """
        error_code = self.error_code(error)
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = getattr(error, 'operation_name', None)

        if error_code in self.TRANSIENT_ERROR_CODES:
            return TransientBackendError(
                f"AWS throttled or timed out ({error_code}): {error_message}",
                context=context,
                cause=error,
            )

        if error_code in self.NOT_FOUND_ERROR_CODES:
            return ResourceNotFoundError(
                f"Resource not found at provider ({error_code}): {error_message}",
                context=context,
                cause=error,
            )

        if error_code in self.CREDENTIAL_ERROR_CODES:
            return CredentialError(
                f"AWS rejected the credentials ({error_code}): {error_message}",
                context=context,
                cause=error,
                suggestions=[
                    'Check the role or profile configured for this deployment',
                    'Verify the role grants read access to the resource type',
                ]
            )

        return RefactorError(
            f"AWS Error ({error_code}): {error_message}",
            context=context,
            cause=error,
            category=ErrorCategory.AWS,
            suggestions=[f'AWS Request ID: {context.request_id}']
        )

    def log_error(self, error: RefactorError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(log_message)
        elif error.severity == ErrorSeverity.ERROR:
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
