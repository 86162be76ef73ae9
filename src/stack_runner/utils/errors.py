"""Error taxonomy for stack operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError

from stack_runner.state.models import OperationalState
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during stack operations."""
    NOT_FOUND = "not_found"
    STATE = "state"
    CHANGESET = "changeset"
    LOCATION = "location"
    CONFIGURATION = "configuration"
    OPERATION = "operation"
    TRANSPORT = "transport"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    THROTTLING = "throttling"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# Messages describing why a stack in a given state cannot be operated on
OPERATIONAL_STATE_MESSAGES = {
    OperationalState.BUSY: "Stack is being modified by another process.",
    OperationalState.BROKEN: "Stack is broken. Please check in AWS Console and fix.",
    OperationalState.DELETE_FAILED: "Stack is in DELETE_FAILED state. Try deleting with Retain Resource.",
    OperationalState.DELETING: "Stack is being deleted by another process.",
    OperationalState.NOT_FOUND: "Stack does not exist.",
    OperationalState.READY: "Stack is ready.",
    OperationalState.EXISTS: "A stack with this name already exists.",
    OperationalState.UNKNOWN: "Stack is in an unknown state.",
}


class StackOperationError(Exception):
    """Base exception for stack operation errors."""
    
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        stack: Optional[Dict[str, Any]] = None,
        operational_state: OperationalState = OperationalState.UNKNOWN,
        changeset: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize stack operation error.
        
        Args:
            message: Human-readable error message
            category: Error category
            stack: Stack snapshot (DescribeStacks shape) if one is available
            operational_state: Operational state of the stack when the error arose
            changeset: Changeset snapshot (DescribeChangeSet shape) if one is available
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.stack = stack
        self.operational_state = operational_state
        self.changeset = changeset
        self.cause = cause
        self.suggestions = suggestions or []
    
    @property
    def stack_name(self) -> Optional[str]:
        """Name of the stack carried by this error, if any."""
        return self.stack.get('StackName') if self.stack else None
    
    def to_user_message(self) -> str:
        """Convert error to user-friendly message.
        
        Returns:
            Formatted error message for display to user
        """
        lines = [f"ERROR: {self.message}"]
        
        if self.stack_name:
            lines.append(f"   Stack: {self.stack_name}")
        if self.stack and self.stack.get('StackStatus'):
            lines.append(f"   Status: {self.stack['StackStatus']}")
        if self.operational_state != OperationalState.UNKNOWN:
            lines.append(f"   State: {self.operational_state.value}")
        
        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")
        
        if self.suggestions:
            lines.append("\nSuggested fixes:")
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
            'stack_name': self.stack_name,
            'stack_status': self.stack.get('StackStatus') if self.stack else None,
            'operational_state': self.operational_state.value,
            'changeset_id': self.changeset.get('ChangeSetId') if self.changeset else None,
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class NotFoundError(StackOperationError):
    """Target stack is absent where existence was required."""
    
    def __init__(self, stack_name: str, **kwargs):
        super().__init__(
            f"Stack '{stack_name}': {OPERATIONAL_STATE_MESSAGES[OperationalState.NOT_FOUND]}",
            category=ErrorCategory.NOT_FOUND,
            operational_state=OperationalState.NOT_FOUND,
            **kwargs
        )
        self.requested_stack_name = stack_name


class StateConflictError(StackOperationError):
    """Stack exists but its operational state is incompatible with the requested action."""
    
    def __init__(
        self,
        operational_state: OperationalState,
        stack: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        super().__init__(
            OPERATIONAL_STATE_MESSAGES[operational_state],
            category=ErrorCategory.STATE,
            stack=stack,
            operational_state=operational_state,
            **kwargs
        )


class ChangesetFailedError(StackOperationError):
    """Changeset creation failed for a reason other than there being no changes."""
    
    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.CHANGESET, **kwargs)


class InvalidLocationError(StackOperationError):
    """An artifact location failed URI or path validation."""
    
    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.LOCATION, **kwargs)


class MissingCollaboratorError(StackOperationError):
    """An artifact needs blob storage but no artifact store was configured."""
    
    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class StackOperationFailedError(StackOperationError):
    """A followed stack operation reached a failed or rolled back terminal status."""
    
    def __init__(self, stack: Dict[str, Any], **kwargs):
        super().__init__(
            f"Stack '{stack.get('StackName')}': Operation failed. Status is {stack.get('StackStatus')}",
            category=ErrorCategory.OPERATION,
            stack=stack,
            **kwargs
        )


class TransportError(StackOperationError):
    """Any other control plane communication failure."""
    
    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.TRANSPORT, **kwargs):
        super().__init__(message, category=category, **kwargs)


def get_error_code(error: ClientError) -> str:
    """Extract the error code of a botocore ClientError."""
    return error.response.get('Error', {}).get('Code', 'Unknown')


def get_error_message(error: ClientError) -> str:
    """Extract the error message of a botocore ClientError."""
    return error.response.get('Error', {}).get('Message', str(error))


def is_stack_not_found(error: Exception, stack_name: Optional[str] = None) -> bool:
    """Check whether an error is the control plane's "stack does not exist" error.
    
    Args:
        error: The exception raised by the client
        stack_name: Name or ID of the stack the call was made for. If given,
            the message must name it.
            
    Returns:
        True if the error means the stack does not exist
    """
    if not isinstance(error, ClientError):
        return False
    
    message = get_error_message(error)
    
    if stack_name:
        return f"Stack with id {stack_name} does not exist" in message
    
    return 'does not exist' in message and message.startswith('Stack')


class ErrorHandler:
    """Translates botocore errors into typed stack operation errors."""
    
    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Check if MFA token needs to be refreshed'
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'If passing a service role, check it can be assumed by CloudFormation'
            ]
        },
        'InsufficientCapabilitiesException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Template requires capabilities that were not acknowledged',
            'suggestions': [
                'Pass the required capability, e.g. --capability CAPABILITY_IAM'
            ]
        },
        'Throttling': {
            'category': ErrorCategory.THROTTLING,
            'message': 'API rate limit exceeded',
            'suggestions': [
                'Wait a few moments and retry',
                'Reduce the number of concurrent stack operations in this account'
            ]
        },
        'ValidationError': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Request failed validation',
            'suggestions': [
                'Review the error message for specific validation failures',
                'Validate the template with: aws cloudformation validate-template'
            ]
        },
        'AlreadyExistsException': {
            'category': ErrorCategory.STATE,
            'message': 'Stack already exists',
            'suggestions': [
                'Use update instead of create',
                'Use reset to delete and recreate the stack'
            ]
        },
        'TokenAlreadyExistsException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Client request token was already used',
            'suggestions': [
                'Supply a new client token for each distinct request'
            ]
        },
    }
    
    def translate(self, error: Exception, stack_name: Optional[str] = None) -> StackOperationError:
        """Convert an exception into a StackOperationError.
        
        Args:
            error: The exception to translate
            stack_name: Stack the failing call was made for
            
        Returns:
            StackOperationError with categorization and suggestions
        """
        if isinstance(error, StackOperationError):
            return error
        
        if isinstance(error, ClientError):
            return self._translate_aws_error(error)
        
        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return TransportError(
                'No usable AWS credentials found',
                category=ErrorCategory.CREDENTIAL,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Specify a profile with --profile'
                ]
            )
        
        return TransportError(
            str(error),
            category=ErrorCategory.UNKNOWN,
            cause=error,
            suggestions=['Check logs for more details']
        )
    
    def _translate_aws_error(self, error: ClientError) -> TransportError:
        """Translate a botocore ClientError.
        
        Args:
            error: The ClientError
            
        Returns:
            Categorized TransportError
        """
        error_code = get_error_code(error)
        error_message = get_error_message(error)
        request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        
        error_info = self.AWS_ERROR_MAPPING.get(error_code)
        
        if error_info:
            return TransportError(
                f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                cause=error,
                suggestions=error_info['suggestions']
            )
        
        suggestions = ['Check AWS documentation for this error code']
        if request_id:
            suggestions.append(f'AWS Request ID: {request_id}')
        
        return TransportError(
            f"AWS Error ({error_code}): {error_message}",
            cause=error,
            suggestions=suggestions
        )
    
    def log_error(self, error: StackOperationError):
        """Log an error with its details.
        
        Args:
            error: The error to log
        """
        logger.error(error.to_user_message())
        logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
