"""Stack lifecycle orchestration."""

from stack_runner.orchestrator.results import OperationResult, StackOperationResult
from stack_runner.orchestrator.observer import StackObserver, LoggingStackObserver, changeset_rows
from stack_runner.orchestrator.events import StackEventTracker
from stack_runner.orchestrator.changeset import ChangesetWorkflow
from stack_runner.orchestrator.runner import StackRunner

__all__ = [
    'OperationResult',
    'StackOperationResult',
    'StackObserver',
    'LoggingStackObserver',
    'changeset_rows',
    'StackEventTracker',
    'ChangesetWorkflow',
    'StackRunner',
]
