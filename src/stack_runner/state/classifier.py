"""Stack state classification against the CloudFormation control plane."""

from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from stack_runner.state.models import OperationalState, classify_status
from stack_runner.utils.errors import NotFoundError, is_stack_not_found
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class StackStateClassifier:
    """Observes stacks and classifies their readiness for modification.
    
    The only error ever swallowed is the control plane's "stack does not
    exist" error, which becomes OperationalState.NOT_FOUND. Everything else
    propagates unchanged.
    """
    
    def __init__(self, cloudformation_client):
        """Initialize the classifier.
        
        Args:
            cloudformation_client: boto3 CloudFormation client
        """
        self.client = cloudformation_client
    
    def describe(self, stack_name: str) -> Optional[Dict[str, Any]]:
        """Describe a stack by name or ID.
        
        Args:
            stack_name: Stack name or stack ID (ARN)
            
        Returns:
            The stack description, or None if the stack does not exist
        """
        try:
            stacks = self.client.describe_stacks(StackName=stack_name).get('Stacks', [])
        except ClientError as e:
            if is_stack_not_found(e, stack_name):
                return None
            raise
        
        return stacks[0] if stacks else None
    
    def classify_stack(self, stack_name: str) -> Tuple[Optional[Dict[str, Any]], OperationalState]:
        """Describe a stack and classify its operational state in one call.
        
        Args:
            stack_name: Stack name or stack ID (ARN)
            
        Returns:
            Tuple of (stack description or None, operational state)
        """
        stack = self.describe(stack_name)
        
        if stack is None:
            return None, OperationalState.NOT_FOUND
        
        state = classify_status(stack.get('StackStatus', ''))
        logger.debug(f"Stack {stack_name} is {stack.get('StackStatus')} ({state.value})")
        
        return stack, state
    
    def classify(self, stack_name: str) -> OperationalState:
        """Get the operational state of a stack.
        
        Args:
            stack_name: Stack name or stack ID (ARN)
            
        Returns:
            The operational state. Absent stacks are NOT_FOUND.
        """
        return self.classify_stack(stack_name)[1]
    
    def get_stack(self, stack_name: str) -> Dict[str, Any]:
        """Get a stack that must exist.
        
        Args:
            stack_name: Stack name or stack ID (ARN)
            
        Returns:
            The stack description
            
        Raises:
            NotFoundError: If the stack does not exist
        """
        stack = self.describe(stack_name)
        
        if stack is None:
            raise NotFoundError(stack_name)
        
        return stack
    
    def get_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """Get the outputs of a stack as a key/value mapping."""
        stack = self.get_stack(stack_name)
        return {o['OutputKey']: o.get('OutputValue', '') for o in stack.get('Outputs', [])}
    
    def get_stack_resources(self, stack_name: str) -> List[Dict[str, Any]]:
        """Get the resources of a stack.
        
        Raises:
            NotFoundError: If the stack does not exist
        """
        try:
            response = self.client.describe_stack_resources(StackName=stack_name)
        except ClientError as e:
            if is_stack_not_found(e, stack_name):
                raise NotFoundError(stack_name) from e
            raise
        
        return response.get('StackResources', [])
