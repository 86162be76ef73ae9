"""Tracking of in-flight stack operations through the stack event stream."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from botocore.exceptions import ClientError

from stack_runner.orchestrator.observer import StackObserver
from stack_runner.state.models import DELETE_COMPLETE, is_failed_status, is_terminal_status
from stack_runner.utils.errors import StackOperationFailedError, is_stack_not_found
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)


class _StackGone(Exception):
    """The stack stopped answering describe calls because it was deleted."""


class StackEventTracker:
    """Polls a stack until its status is terminal, relaying new events to an observer.

    The read position in the event stream is a single timestamp. Events at
    or before it are never relayed, and it advances to the newest relayed
    event after each poll.
    """

    def __init__(
        self,
        cloudformation_client,
        observer: StackObserver,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the tracker.

        Args:
            cloudformation_client: boto3 CloudFormation client
            observer: Receives each new stack event
            poll_interval: Seconds between polls
            sleep: Sleep function, replaceable in tests
        """
        self.client = cloudformation_client
        self.observer = observer
        self.poll_interval = poll_interval
        self.sleep = sleep

    def capture_cursor(self, stack_id: str = None) -> datetime:
        """Get the read position from which to relay events of the next operation.

        Args:
            stack_id: Existing stack to read the most recent event of. For a
                stack yet to be created, the current time is used.

        Returns:
            Timestamp after which events are relayed
        """
        if stack_id:
            response = self.client.describe_stack_events(StackName=stack_id)
            events = response.get('StackEvents', [])
            if events:
                return events[0]['Timestamp']

        return datetime.now(timezone.utc)

    def wait(self, stack_id: str, since: datetime, raise_on_failure: bool = True) -> Dict[str, Any]:
        """Follow a stack operation until the stack reaches a terminal status.

        A stack that disappears while being followed was deleted, and is
        reported with a synthetic DELETE_COMPLETE status.

        Args:
            stack_id: Stack ID (ARN) or name
            since: Read position in the event stream
            raise_on_failure: Raise if the final status is a failure or rollback

        Returns:
            Final stack description

        Raises:
            StackOperationFailedError: If raise_on_failure is set and the operation failed
        """
        cursor = since

        while True:
            try:
                cursor = self._relay_new_events(stack_id, cursor)
                stack = self._describe(stack_id)
            except _StackGone:
                stack = {'StackId': stack_id, 'StackName': stack_id, 'StackStatus': DELETE_COMPLETE}
                break

            status = stack.get('StackStatus', '')

            if is_terminal_status(status):
                try:
                    self._relay_new_events(stack_id, cursor)
                except _StackGone:
                    pass
                break

            logger.debug(f"Stack {stack_id} is {status}, polling again in {self.poll_interval}s")
            self.sleep(self.poll_interval)

        logger.debug(f"Stack {stack_id} reached {stack['StackStatus']}")

        if raise_on_failure and is_failed_status(stack['StackStatus']):
            raise StackOperationFailedError(stack)

        return stack

    def get_new_events(self, stack_id: str, since: datetime) -> List[Dict[str, Any]]:
        """Get all events newer than a timestamp, oldest first."""
        events = []
        kwargs = {'StackName': stack_id}

        while True:
            try:
                response = self.client.describe_stack_events(**kwargs)
            except ClientError as e:
                if is_stack_not_found(e, stack_id):
                    raise _StackGone() from e
                raise

            page = response.get('StackEvents', [])
            newer = [e for e in page if e['Timestamp'] > since]
            events.extend(newer)

            # Events come newest first, so an older event means this page was the last needed
            if len(newer) < len(page) or not response.get('NextToken'):
                break

            kwargs['NextToken'] = response['NextToken']

        events.reverse()
        return events

    def _relay_new_events(self, stack_id: str, cursor: datetime) -> datetime:
        events = self.get_new_events(stack_id, cursor)

        for event in events:
            self.observer.on_stack_event(event)

        return events[-1]['Timestamp'] if events else cursor

    def _describe(self, stack_id: str) -> Dict[str, Any]:
        try:
            stacks = self.client.describe_stacks(StackName=stack_id).get('Stacks', [])
        except ClientError as e:
            if is_stack_not_found(e, stack_id):
                raise _StackGone() from e
            raise

        if not stacks:
            raise _StackGone()

        return stacks[0]
