"""Observers receiving progress notifications from stack operations."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from stack_runner.utils.logging import get_logger


def changeset_rows(changeset: Dict[str, Any]) -> List[Dict[str, str]]:
    """Flatten a changeset's changes into display rows.

    Args:
        changeset: DescribeChangeSet response

    Returns:
        One row per resource change with action, logical ID, physical ID,
        resource type and replacement
    """
    rows = []

    for change in changeset.get('Changes', []):
        resource_change = change.get('ResourceChange', {})
        rows.append({
            'action': resource_change.get('Action', ''),
            'logical_id': resource_change.get('LogicalResourceId', ''),
            'physical_id': resource_change.get('PhysicalResourceId', ''),
            'resource_type': resource_change.get('ResourceType', ''),
            'replacement': resource_change.get('Replacement', ''),
        })

    return rows


class StackObserver(ABC):
    """Receives messages, changesets and stack events. Has no effect on control flow."""

    def set_column_widths(self, stack_name_width: int, resource_name_width: int) -> None:
        """Hint the widest stack and resource names likely to be displayed."""

    @abstractmethod
    def on_message(self, message: str) -> None:
        """Called with an informational message."""
        pass

    @abstractmethod
    def on_warning(self, message: str) -> None:
        """Called with a warning."""
        pass

    @abstractmethod
    def on_changeset(self, changeset: Dict[str, Any], title: Optional[str] = None) -> None:
        """Called with a completed changeset.

        Args:
            changeset: DescribeChangeSet response
            title: Heading naming the root or nested stack the changeset belongs to
        """
        pass

    @abstractmethod
    def on_stack_event(self, event: Dict[str, Any]) -> None:
        """Called with each new stack event, oldest first."""
        pass


class LoggingStackObserver(StackObserver):
    """Observer that writes everything to a logger."""

    def __init__(self, logger_name: str = 'stack_runner.progress'):
        self.logger = get_logger(logger_name)
        self.stack_name_width = 0
        self.resource_name_width = 0

    def set_column_widths(self, stack_name_width: int, resource_name_width: int) -> None:
        self.stack_name_width = stack_name_width
        self.resource_name_width = resource_name_width

    def on_message(self, message: str) -> None:
        self.logger.info(message)

    def on_warning(self, message: str) -> None:
        self.logger.warning(message)

    def on_changeset(self, changeset: Dict[str, Any], title: Optional[str] = None) -> None:
        if title:
            self.logger.info(title)

        rows = changeset_rows(changeset)

        if not rows:
            self.logger.info("Changeset contains no resource changes")
            return

        width = max(self.resource_name_width, max(len(r['logical_id']) for r in rows))

        for row in rows:
            replacement = f" (replacement: {row['replacement']})" if row['replacement'] else ''
            self.logger.info(
                f"{row['action']:<8} {row['logical_id']:<{width}} {row['resource_type']}{replacement}"
            )

    def on_stack_event(self, event: Dict[str, Any]) -> None:
        timestamp = event.get('Timestamp')
        time_text = timestamp.strftime('%H:%M:%S') if timestamp else ''
        reason = event.get('ResourceStatusReason')

        message = (
            f"{time_text} {event.get('StackName', ''):<{self.stack_name_width}} "
            f"{event.get('LogicalResourceId', ''):<{self.resource_name_width}} "
            f"{event.get('ResourceStatus', '')}"
        )
        if reason:
            message += f" {reason}"

        if event.get('ResourceStatus', '').endswith('FAILED'):
            self.logger.error(message)
        else:
            self.logger.info(message)
