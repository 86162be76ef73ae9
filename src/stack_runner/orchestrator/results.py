"""Results returned by stack operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class StackOperationResult(Enum):
    """Outcome of a create, update, delete or reset."""
    NO_CHANGE = "no_change"
    STACK_CREATED = "stack_created"
    STACK_UPDATED = "stack_updated"
    STACK_REPLACED = "stack_replaced"
    STACK_DELETED = "stack_deleted"
    STACK_CREATE_IN_PROGRESS = "stack_create_in_progress"
    STACK_UPDATE_IN_PROGRESS = "stack_update_in_progress"
    STACK_DELETE_IN_PROGRESS = "stack_delete_in_progress"

    @property
    def in_progress(self) -> bool:
        """Check whether the operation was started but not followed to completion."""
        return self in (
            StackOperationResult.STACK_CREATE_IN_PROGRESS,
            StackOperationResult.STACK_UPDATE_IN_PROGRESS,
            StackOperationResult.STACK_DELETE_IN_PROGRESS,
        )


@dataclass(frozen=True)
class OperationResult:
    """Result of a stack operation."""

    stack_arn: Optional[str]
    result: StackOperationResult
    changeset: Optional[Dict[str, Any]] = None

    @property
    def changes(self) -> List[Dict[str, Any]]:
        """Resource changes of the attached changeset, if any."""
        if not self.changeset:
            return []
        return [c.get('ResourceChange', {}) for c in self.changeset.get('Changes', [])]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for display or serialization."""
        return {
            'stack_arn': self.stack_arn,
            'result': self.result.value,
            'changeset_id': self.changeset.get('ChangeSetId') if self.changeset else None,
            'changes': len(self.changes),
        }
