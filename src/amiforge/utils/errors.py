"""Error handling framework for image lifecycle operations."""

from typing import Optional, Dict, Any, List, Iterable
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur while reconciling an image."""
    CONFIGURATION = "configuration"
    AWS = "aws"
    NETWORK = "network"
    STATE = "state"
    PROVISIONING = "provisioning"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    RESOURCE_LIMIT = "resource_limit"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PARTIAL_FAILURE = "partial_failure"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Operation cannot continue
    ERROR = "error"  # Operation failed
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ImageError(Exception):
    """Base exception for image lifecycle errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize image error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def with_context(self, **kwargs: Any) -> 'ImageError':
        """Fill in context fields that are not already set.

        Returns:
            Self, for raising inline
        """
        for key, value in kwargs.items():
            if getattr(self.context, key, None) is None:
                setattr(self.context, key, value)
        return self

    def with_prefix(self, prefix: str) -> 'ImageError':
        """Prepend text to the message, keeping type and context."""
        self.message = f"{prefix}{self.message}"
        self.args = (self.message,)
        return self

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = []

        lines.append(f"❌ {self.severity.value.upper()}: {self.message}")

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
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
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'aws_service': self.context.aws_service,
                'aws_operation': self.context.aws_operation,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(ImageError):
    """Declared configuration cannot be turned into a valid request."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class CredentialError(ImageError):
    """Error related to AWS credentials."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CREDENTIAL,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class NetworkError(ImageError):
    """Network-related error."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class StateError(ImageError):
    """Error related to resource record or state file handling."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ResourceNotFoundError(ImageError):
    """The remote API does not (yet) know the resource.

    Raised by probes and describe calls. Pollers and reads decide whether it
    is transient (read-after-write lag) or means the resource is gone.
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class UnexpectedStatusError(ImageError):
    """Remote resource reported a status outside the expected set."""

    def __init__(self, status: str, expected: Iterable[str] = (), message: Optional[str] = None, **kwargs):
        self.status = status
        self.expected = sorted(expected)
        if message is None:
            message = f"unexpected state '{status}'"
            if self.expected:
                message += f", wanted target {self.expected}"
        super().__init__(
            message,
            category=ErrorCategory.PROVISIONING,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class WaitTimeoutError(ImageError):
    """A wait exhausted its time budget before reaching a target status."""

    def __init__(self, last_status: Optional[str], timeout: float, message: Optional[str] = None, **kwargs):
        self.last_status = last_status
        self.timeout = timeout
        if message is None:
            message = (
                f"timeout while waiting for state to become ready "
                f"(last state: '{last_status or 'not found'}', timeout: {timeout:g}s)"
            )
        super().__init__(
            message,
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class PartialFailureError(ImageError):
    """Some items of a multi-item operation failed.

    The operation as a whole failed, but the items that did not fail (and the
    primary resource) stay in whatever state they reached.
    """

    MANUAL_CLEANUP_WARNING = "These are no longer managed and must be deleted manually."

    def __init__(self, summary: str, failures: Dict[str, Exception], **kwargs):
        self.failures = dict(failures)
        lines = [summary]
        for item_id in sorted(self.failures):
            lines.append(f"{item_id}: {self.failures[item_id]}")
        lines.append(self.MANUAL_CLEANUP_WARNING)
        super().__init__(
            "\n".join(lines),
            category=ErrorCategory.PARTIAL_FAILURE,
            severity=ErrorSeverity.ERROR,
            suggestions=[f"Delete {item_id} manually" for item_id in sorted(self.failures)],
            **kwargs
        )

    @property
    def failed_ids(self) -> List[str]:
        return sorted(self.failures)


def error_code(error: Exception) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


class ErrorHandler:
    """Handles and categorizes errors from AWS and other sources."""

    # Mapping of EC2 error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        # Credential errors
        'AuthFailure': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS was not able to validate the provided credentials',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
                'Update credentials if they have expired'
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Re-authenticate with your identity provider'
            ]
        },

        # Permission errors
        'UnauthorizedOperation': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Operation not authorized',
            'suggestions': [
                'Add the required ec2 IAM permission for this operation',
                'Check the encoded authorization message with: aws sts decode-authorization-message',
                'Verify you are operating in the correct AWS region'
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'Review service control policies (SCPs) if using AWS Organizations'
            ]
        },

        # Resource limit errors
        'ResourceLimitExceeded': {
            'category': ErrorCategory.RESOURCE_LIMIT,
            'message': 'AWS service limit exceeded',
            'suggestions': [
                'Deregister unused images',
                'Request a service limit increase through AWS Support'
            ]
        },
        'RequestLimitExceeded': {
            'category': ErrorCategory.RESOURCE_LIMIT,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Reduce the frequency of API calls',
                'Retry the operation later'
            ]
        },

        # Resource errors
        'InvalidAMIID.NotFound': {
            'category': ErrorCategory.NOT_FOUND,
            'message': 'Image not found',
            'suggestions': [
                'Verify the image exists in the specified region',
                'Check if the image was deregistered manually'
            ]
        },
        'InvalidAMIName.Duplicate': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'An image with this name already exists',
            'suggestions': [
                'Use a different name for the image',
                'Deregister the existing image if it is no longer needed'
            ]
        },
        'InvalidSnapshot.NotFound': {
            'category': ErrorCategory.NOT_FOUND,
            'message': 'Snapshot not found',
            'suggestions': [
                'Verify the snapshot id referenced by the block device mapping',
                'Check if the snapshot was deleted manually'
            ]
        },
        'InvalidSnapshot.InUse': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'Snapshot is still in use',
            'suggestions': [
                'Check for other images registered from this snapshot',
                'Wait for the image deregistration to complete and retry'
            ]
        },
        'IncorrectState': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'Resource is not in a state that allows this operation',
            'suggestions': [
                'Wait for the resource to become available',
                'Check the current state with: aws ec2 describe-images'
            ]
        },

        # Validation errors
        'InvalidParameterValue': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter value',
            'suggestions': [
                'Check parameter format and constraints',
                'Review the EC2 RegisterImage documentation for valid values'
            ]
        },
        'InvalidParameterCombination': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid combination of parameters',
            'suggestions': [
                'Review the block device mapping settings',
                'Check that virtualization type matches kernel and root device settings'
            ]
        },

        # Network errors
        'RequestTimeout': {
            'category': ErrorCategory.NETWORK,
            'message': 'Request timed out',
            'suggestions': [
                'Check your network connectivity',
                'Retry the operation'
            ]
        },
        'Unavailable': {
            'category': ErrorCategory.NETWORK,
            'message': 'EC2 service temporarily unavailable',
            'suggestions': [
                'Wait a few moments and retry',
                'Check AWS Service Health Dashboard'
            ]
        }
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ImageError:
        """Handle an exception and convert to ImageError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ImageError with categorization and suggestions
        """
        context = context or ErrorContext()

        # Already classified errors keep their type, gaining missing context
        if isinstance(error, ImageError):
            return error.with_context(**{
                key: value for key, value in vars(context).items() if value is not None
            })

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return self._handle_credential_error(error, context)

        if isinstance(error, (ConnectionError, TimeoutError)):
            return self._handle_network_error(error, context)

        return ImageError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> ImageError:
        """Handle AWS ClientError.

        Args:
            error: The ClientError
            context: Error context

        Returns:
            Categorized ImageError
        """
        code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        context.request_id = request_id
        if context.aws_operation is None:
            context.aws_operation = error.operation_name

        prefix = f"{context.operation} {context.resource_id or ''}".strip()
        if prefix:
            prefix = f"error during {prefix}: "

        error_info = self.AWS_ERROR_MAPPING.get(code)

        if error_info:
            return ImageError(
                message=f"{prefix}{error_info['message']}: {error_message}",
                category=error_info['category'],
                severity=ErrorSeverity.ERROR,
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return ImageError(
            message=f"{prefix}AWS Error ({code}): {error_message}",
            category=ErrorCategory.AWS,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {request_id}',
                'Review CloudTrail logs for more details'
            ]
        )

    def _handle_credential_error(
        self,
        error: Exception,
        context: ErrorContext
    ) -> CredentialError:
        """Handle credential-related errors.

        Args:
            error: The credential error
            context: Error context

        Returns:
            CredentialError
        """
        if isinstance(error, NoCredentialsError):
            return CredentialError(
                message='No AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables',
                    'Specify a profile with --profile flag'
                ]
            )

        return CredentialError(
            message='Incomplete AWS credentials',
            context=context,
            cause=error,
            suggestions=[
                'Ensure both access key ID and secret access key are provided',
                'Check credential configuration in ~/.aws/credentials'
            ]
        )

    def _handle_network_error(
        self,
        error: Exception,
        context: ErrorContext
    ) -> NetworkError:
        """Handle network-related errors.

        Args:
            error: The network error
            context: Error context

        Returns:
            NetworkError
        """
        return NetworkError(
            message=f'Network error: {str(error)}',
            context=context,
            cause=error,
            suggestions=[
                'Check your internet connection',
                'Check if VPN or proxy is interfering',
                'Verify AWS endpoints are accessible'
            ]
        )

    def log_error(self, error: ImageError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
