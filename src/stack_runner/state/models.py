"""Operational state of a stack and helpers over raw stack status strings."""

from enum import Enum


class OperationalState(Enum):
    """Readiness of a stack to receive a modification."""
    UNKNOWN = "unknown"  # Only ever carried by errors
    NOT_FOUND = "not_found"
    EXISTS = "exists"  # Only used to reject a create
    READY = "ready"
    BUSY = "busy"
    DELETING = "deleting"
    DELETE_FAILED = "delete_failed"
    BROKEN = "broken"


DELETE_COMPLETE = "DELETE_COMPLETE"
DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
DELETE_FAILED = "DELETE_FAILED"

# Resource type of a nested stack within a parent template
NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"


def classify_status(status: str) -> OperationalState:
    """Map a raw stack status onto an operational state.
    
    DELETE_COMPLETE must be tested before the generic COMPLETE suffix,
    and DELETE_FAILED before the generic FAILED suffix.
    
    Args:
        status: Raw stack status, e.g. UPDATE_ROLLBACK_COMPLETE
        
    Returns:
        The operational state for the status
    """
    if not status or status == DELETE_COMPLETE:
        return OperationalState.NOT_FOUND
    
    if status == DELETE_IN_PROGRESS:
        return OperationalState.DELETING
    
    if status.endswith("COMPLETE"):
        return OperationalState.READY
    
    if status == DELETE_FAILED:
        return OperationalState.DELETE_FAILED
    
    if status.endswith("FAILED"):
        return OperationalState.BROKEN
    
    return OperationalState.BUSY


def is_terminal_status(status: str) -> bool:
    """Check whether no further transitions will occur without a new operation."""
    return status.endswith("COMPLETE") or status.endswith("FAILED")


def is_failed_status(status: str) -> bool:
    """Check whether a terminal status denotes a failed operation.
    
    Rollbacks that complete successfully still mean the requested
    operation failed.
    """
    return status.endswith("FAILED") or "ROLLBACK" in status
