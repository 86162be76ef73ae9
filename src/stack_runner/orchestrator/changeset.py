"""Changeset based preview-before-apply update workflow."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from stack_runner.config.models import StackConfig
from stack_runner.orchestrator.events import StackEventTracker
from stack_runner.orchestrator.observer import StackObserver
from stack_runner.orchestrator.results import OperationResult, StackOperationResult
from stack_runner.resolvers.models import ResolvedArtifact
from stack_runner.state.classifier import StackStateClassifier
from stack_runner.state.models import NESTED_STACK_TYPE, OperationalState
from stack_runner.utils.errors import ChangesetFailedError, StateConflictError
from stack_runner.utils.logging import get_logger

logger = get_logger(__name__)

# Changeset statuses after which a changeset no longer changes
CHANGESET_TERMINAL_STATUSES = ('CREATE_COMPLETE', 'FAILED', 'DELETE_COMPLETE', 'DELETE_FAILED')

PREVIOUS_TEMPLATE_ACCESS_DENIED = (
    "Unable to create changeset: It is probable that the template has been explicitly deleted "
    "or removed by lifecycle policy on your bucket. Please retry specifying the path to the template file"
)


def add_artifact_arguments(
    request: Dict[str, Any],
    artifact: Optional[ResolvedArtifact],
    body_key: str,
    url_key: str
) -> None:
    """Add an artifact to a request as either an inline body or an S3 URL."""
    if artifact is None:
        return

    if artifact.url:
        request[url_key] = artifact.url
    elif artifact.body is not None:
        request[body_key] = artifact.body


class ChangesetWorkflow:
    """Updates a stack through a changeset that is shown, and optionally confirmed, before it is applied.

    Import mode is used when resources to import are supplied. In that mode
    the changeset itself is executed, otherwise the stack is updated directly
    with the same arguments the changeset was created with.
    """

    # Depth of nested stacks below the root beyond which changesets are not shown
    MAX_NESTED_DEPTH = 10

    def __init__(
        self,
        cloudformation_client,
        config: StackConfig,
        classifier: StackStateClassifier,
        tracker: StackEventTracker,
        observer: StackObserver,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the workflow.

        Args:
            cloudformation_client: boto3 CloudFormation client
            config: Configuration of the stack being updated
            classifier: Used to re-check the stack before applying
            tracker: Follows the update when configured to
            observer: Receives changesets and messages
            sleep: Sleep function, replaceable in tests
        """
        self.client = cloudformation_client
        self.config = config
        self.classifier = classifier
        self.tracker = tracker
        self.observer = observer
        self.sleep = sleep

    def make_changeset_name(self, now: Optional[datetime] = None) -> str:
        """Generate a changeset name from the configured prefix and the current UTC time."""
        now = now or datetime.now(timezone.utc)
        return f"{self.config.changeset_prefix}-{now.strftime('%Y%m%d%H%M%S')}"

    def update(
        self,
        stack: Dict[str, Any],
        template: ResolvedArtifact,
        parameters: List[Dict[str, Any]],
        resources_to_import: Optional[List[Dict[str, Any]]] = None,
        stack_policy: Optional[ResolvedArtifact] = None,
        stack_policy_during_update: Optional[ResolvedArtifact] = None,
        confirm: Optional[Callable[[Dict[str, Any]], bool]] = None,
        follow: Optional[bool] = None
    ) -> OperationResult:
        """Preview an update as a changeset, then apply it.

        Args:
            stack: Description of the stack being updated
            template: Resolved template, already staged in S3 if oversize
            parameters: Parameters in API shape
            resources_to_import: Resources to import, in API shape
            stack_policy: Stack policy to set with a direct update
            stack_policy_during_update: Temporary stack policy for the duration of a direct update
            confirm: Called with the changeset; returning False abandons the update
            follow: Wait for the update to complete. Defaults to the configuration.

        Returns:
            NO_CHANGE if there was nothing to do or the update was not applied,
            else STACK_UPDATED or STACK_UPDATE_IN_PROGRESS

        Raises:
            ChangesetFailedError: If the changeset failed for a reason other than having no changes,
                or was deleted while being created
            StateConflictError: If the stack stopped being ready while the changeset was reviewed
            StackOperationFailedError: If the followed update failed
        """
        follow = self.config.follow_operation if follow is None else follow
        stack_id = stack['StackId']

        request = self.build_changeset_request(stack, template, parameters, resources_to_import)

        logger.info(f"Creating changeset {request['ChangeSetName']} for {self.config.stack_name}")
        response = self.client.create_change_set(**request)

        changeset = self.wait_for_changeset(response['Id'], stack_id)

        if changeset.get('Status') == 'FAILED':
            reason = changeset.get('StatusReason') or ''

            if self.is_no_change(reason):
                logger.info(f"Changeset for {self.config.stack_name} contains no changes")
                self.observer.on_message("No changes to stack were detected.")

                if self.config.delete_noop_changeset:
                    self.client.delete_change_set(ChangeSetName=changeset['ChangeSetId'], StackName=stack_id)
                    logger.debug(f"Deleted empty changeset {changeset['ChangeSetId']}")

                return OperationResult(stack_id, StackOperationResult.NO_CHANGE, changeset)

            if template.is_previous_template and 'Access Denied' in reason:
                raise ChangesetFailedError(PREVIOUS_TEMPLATE_ACCESS_DENIED, stack=stack, changeset=changeset)

            raise ChangesetFailedError(f"Unable to create changeset: {reason}", stack=stack, changeset=changeset)

        if changeset.get('Status') != 'CREATE_COMPLETE':
            raise ChangesetFailedError(
                f"Changeset {changeset.get('ChangeSetName', changeset.get('ChangeSetId'))} "
                f"was deleted before it could be applied. Status is {changeset.get('Status')}",
                stack=stack,
                changeset=changeset
            )

        self.show_changeset(changeset)

        if self.config.changeset_only:
            self.observer.on_message(
                f"Changeset {changeset.get('ChangeSetName')} created but not applied."
            )
            return OperationResult(stack_id, StackOperationResult.NO_CHANGE, changeset)

        if confirm is not None and not confirm(changeset):
            logger.info(f"Update of {self.config.stack_name} declined")
            return OperationResult(stack_id, StackOperationResult.NO_CHANGE, changeset)

        current, state = self.classifier.classify_stack(stack_id)
        if state != OperationalState.READY:
            raise StateConflictError(state, stack=current or stack, changeset=changeset)

        cursor = self.tracker.capture_cursor(stack_id)

        if resources_to_import:
            self.client.execute_change_set(
                ChangeSetName=changeset['ChangeSetId'],
                StackName=stack_id,
                **({'ClientRequestToken': self.config.client_token} if self.config.client_token else {})
            )
        else:
            self.client.update_stack(
                **self.build_update_request(
                    request, stack_id, stack_policy, stack_policy_during_update
                )
            )

        if not follow:
            return OperationResult(stack_id, StackOperationResult.STACK_UPDATE_IN_PROGRESS, changeset)

        self.tracker.wait(stack_id, cursor)
        return OperationResult(stack_id, StackOperationResult.STACK_UPDATED, changeset)

    def build_changeset_request(
        self,
        stack: Dict[str, Any],
        template: ResolvedArtifact,
        parameters: List[Dict[str, Any]],
        resources_to_import: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build the CreateChangeSet arguments for an update or import."""
        config = self.config
        request = {
            'StackName': stack['StackId'],
            'ChangeSetName': self.make_changeset_name(),
            'ChangeSetType': 'IMPORT' if resources_to_import else 'UPDATE',
            'Parameters': parameters,
            'Capabilities': list(config.capabilities),
        }

        # An empty tag list would remove the stack's existing tags
        if config.tags:
            request['Tags'] = config.tags_as_list()

        if template.is_previous_template:
            request['UsePreviousTemplate'] = True
        else:
            add_artifact_arguments(request, template, 'TemplateBody', 'TemplateURL')

        if resources_to_import:
            request['ResourcesToImport'] = resources_to_import

        if config.include_nested_stacks and not resources_to_import:
            request['IncludeNestedStacks'] = True

        if config.role_arn:
            request['RoleARN'] = config.role_arn
        if config.notification_arns:
            request['NotificationARNs'] = list(config.notification_arns)
        if config.resource_types:
            request['ResourceTypes'] = list(config.resource_types)
        if config.rollback_configuration:
            request['RollbackConfiguration'] = config.rollback_configuration
        if config.client_token:
            request['ClientToken'] = config.client_token

        return request

    def build_update_request(
        self,
        changeset_request: Dict[str, Any],
        stack_id: str,
        stack_policy: Optional[ResolvedArtifact] = None,
        stack_policy_during_update: Optional[ResolvedArtifact] = None
    ) -> Dict[str, Any]:
        """Build UpdateStack arguments carrying the same references as the changeset."""
        request = {'StackName': stack_id}

        for key in (
            'TemplateBody', 'TemplateURL', 'UsePreviousTemplate', 'Parameters', 'Capabilities',
            'ResourceTypes', 'RoleARN', 'RollbackConfiguration', 'NotificationARNs', 'Tags'
        ):
            if key in changeset_request:
                request[key] = changeset_request[key]

        if 'ClientToken' in changeset_request:
            request['ClientRequestToken'] = changeset_request['ClientToken']

        add_artifact_arguments(request, stack_policy, 'StackPolicyBody', 'StackPolicyURL')
        add_artifact_arguments(
            request, stack_policy_during_update,
            'StackPolicyDuringUpdateBody', 'StackPolicyDuringUpdateURL'
        )

        return request

    def wait_for_changeset(self, changeset_id: str, stack_name: Optional[str] = None) -> Dict[str, Any]:
        """Poll a changeset until its status is terminal.

        Returns:
            Final changeset description with all of its changes
        """
        while True:
            changeset = self.describe_changeset(changeset_id, stack_name)
            status = changeset.get('Status', '')

            if status in CHANGESET_TERMINAL_STATUSES:
                return changeset

            logger.debug(f"Changeset {changeset_id} is {status}")
            self.sleep(self.config.poll_interval)

    def describe_changeset(self, changeset_id: str, stack_name: Optional[str] = None) -> Dict[str, Any]:
        """Describe a changeset, collecting changes from every page."""
        kwargs = {'ChangeSetName': changeset_id}
        if stack_name:
            kwargs['StackName'] = stack_name

        changeset = self.client.describe_change_set(**kwargs)
        changes = list(changeset.get('Changes', []))
        next_token = changeset.get('NextToken')

        while next_token:
            page = self.client.describe_change_set(NextToken=next_token, **kwargs)
            changes.extend(page.get('Changes', []))
            next_token = page.get('NextToken')

        changeset = dict(changeset)
        changeset['Changes'] = changes
        changeset.pop('NextToken', None)
        return changeset

    def is_no_change(self, reason: str) -> bool:
        """Check whether a changeset failure reason means there was nothing to change."""
        return any(reason.startswith(message) for message in self.config.no_change_messages)

    def show_changeset(self, changeset: Dict[str, Any]) -> None:
        """Pass a changeset to the observer, followed by those of its nested stacks."""
        self.observer.on_changeset(changeset, f"Changes for stack {changeset.get('StackName', '')}")

        if self.config.include_nested_stacks:
            self._show_nested_changesets(changeset, [changeset.get('ChangeSetId')])

    def find_nested_changesets(self, changeset: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find the changesets of a changeset's immediate nested stacks.

        Each nested stack's changeset is the one whose parent changeset ID
        is the given changeset's ID.
        """
        nested = []

        for change in changeset.get('Changes', []):
            resource_change = change.get('ResourceChange', {})

            if resource_change.get('ResourceType') != NESTED_STACK_TYPE:
                continue

            nested_stack_id = resource_change.get('PhysicalResourceId')
            if not nested_stack_id:
                # A nested stack being added has no stack, and so no changeset, yet
                continue

            summary = self._find_child_summary(nested_stack_id, changeset['ChangeSetId'])
            if summary is None:
                logger.debug(f"No changeset found for nested stack {nested_stack_id}")
                continue

            nested.append(
                self.describe_changeset(summary['ChangeSetId'], summary.get('StackId', nested_stack_id))
            )

        return nested

    def _show_nested_changesets(self, changeset: Dict[str, Any], ancestors: List[str]) -> None:
        if len(ancestors) > self.MAX_NESTED_DEPTH:
            logger.warning(
                f"Nested stacks below {changeset.get('StackName')} exceed depth {self.MAX_NESTED_DEPTH} and are not shown"
            )
            return

        for nested in self.find_nested_changesets(changeset):
            if nested.get('ChangeSetId') in ancestors:
                continue

            self.observer.on_changeset(nested, f"Changes for nested stack {nested.get('StackName', '')}")
            self._show_nested_changesets(nested, ancestors + [nested.get('ChangeSetId')])

    def _find_child_summary(self, stack_id: str, parent_changeset_id: str) -> Optional[Dict[str, Any]]:
        kwargs = {'StackName': stack_id}

        while True:
            response = self.client.list_change_sets(**kwargs)

            for summary in response.get('Summaries', []):
                if summary.get('ParentChangeSetId') == parent_changeset_id:
                    return summary

            if not response.get('NextToken'):
                return None

            kwargs['NextToken'] = response['NextToken']
