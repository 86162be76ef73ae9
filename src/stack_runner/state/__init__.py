"""Stack operational state classification."""

from stack_runner.state.models import (
    OperationalState,
    NESTED_STACK_TYPE,
    classify_status,
    is_terminal_status,
    is_failed_status,
)

__all__ = [
    'OperationalState',
    'NESTED_STACK_TYPE',
    'classify_status',
    'is_terminal_status',
    'is_failed_status',
]
