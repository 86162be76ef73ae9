"""Lifecycle orchestration of a single named stack."""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from stack_runner.config.models import StackConfig
from stack_runner.orchestrator.changeset import ChangesetWorkflow, add_artifact_arguments
from stack_runner.orchestrator.events import StackEventTracker
from stack_runner.orchestrator.observer import LoggingStackObserver, StackObserver
from stack_runner.orchestrator.results import OperationResult, StackOperationResult
from stack_runner.parsers.inputs import parse_resource_import_file
from stack_runner.parsers.template import TemplateParseError, TemplateParser
from stack_runner.resolvers.base import ArtifactResolver
from stack_runner.resolvers.models import ResolvedArtifact
from stack_runner.resolvers.template import StackPolicyResolver, TemplateResolver
from stack_runner.state.classifier import StackStateClassifier
from stack_runner.state.models import OperationalState, classify_status
from stack_runner.storage.base import ArtifactStore
from stack_runner.utils.errors import MissingCollaboratorError, NotFoundError, StateConflictError
from stack_runner.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

# Read position used when following a stack that did not exist before the operation
START_OF_STREAM = datetime(1970, 1, 1, tzinfo=timezone.utc)

NO_ECHO_MASK = '****'

# States in which a stack may be deleted
DELETABLE_STATES = (
    OperationalState.READY,
    OperationalState.DELETE_FAILED,
    OperationalState.BROKEN,
)


class StackRunner:
    """Creates, updates, deletes and resets one named stack.

    Every operation checks the stack's operational state before mutating it
    and either follows the operation to completion or returns as soon as the
    control plane accepts the request, as configured.
    """

    def __init__(
        self,
        config: StackConfig,
        cloudformation_client,
        artifact_store: Optional[ArtifactStore] = None,
        observer: Optional[StackObserver] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize the runner.

        Args:
            config: Stack configuration
            cloudformation_client: boto3 CloudFormation client
            artifact_store: Blob store for S3 locations and oversize artifacts
            observer: Receives progress notifications. Defaults to logging them.
            sleep: Sleep function used between polls, replaceable in tests
        """
        self.config = config
        self.client = cloudformation_client
        self.artifact_store = artifact_store
        self.observer = observer or LoggingStackObserver()

        self.classifier = StackStateClassifier(cloudformation_client)
        self.tracker = StackEventTracker(
            cloudformation_client,
            self.observer,
            poll_interval=config.poll_interval,
            sleep=sleep
        )
        self.changesets = ChangesetWorkflow(
            cloudformation_client,
            config,
            self.classifier,
            self.tracker,
            self.observer,
            sleep=sleep
        )

    @property
    def stack_name(self) -> str:
        """Name of the stack operated on."""
        return self.config.stack_name

    def get_state(self) -> OperationalState:
        """Get the current operational state of the stack."""
        return self.classifier.classify(self.stack_name)

    def get_outputs(self) -> Dict[str, str]:
        """Get the stack's outputs.

        Raises:
            NotFoundError: If the stack does not exist
        """
        return self.classifier.get_stack_outputs(self.stack_name)

    def create(self) -> OperationResult:
        """Create the stack.

        Returns:
            STACK_CREATED, or STACK_CREATE_IN_PROGRESS when not following

        Raises:
            StateConflictError: If the stack already exists
            StackOperationFailedError: If the followed create failed
        """
        with LogContext(stack_name=self.stack_name, operation='create'):
            return self._create(self.config.follow_operation)

    def update(self, confirm: Optional[Callable[[Dict[str, Any]], bool]] = None) -> OperationResult:
        """Update the stack through a changeset.

        Args:
            confirm: Called with the changeset before it is applied; returning
                False abandons the update. Updates are applied if not given.

        Returns:
            NO_CHANGE, STACK_UPDATED, or STACK_UPDATE_IN_PROGRESS when not following

        Raises:
            NotFoundError: If the stack does not exist
            StateConflictError: If the stack cannot be updated in its current state
            ChangesetFailedError: If the changeset could not be created
            StackOperationFailedError: If the followed update failed
        """
        with LogContext(stack_name=self.stack_name, operation='update'):
            return self._update(confirm)

    def delete(
        self,
        confirm_retention_discard: Optional[Callable[[], bool]] = None,
        confirm_delete: Optional[Callable[[], bool]] = None
    ) -> OperationResult:
        """Delete the stack.

        Args:
            confirm_retention_discard: Called when resources to retain are
                configured but the stack is not in DELETE_FAILED state, where
                retention is not allowed. Returning True deletes without
                retaining anything, False abandons the delete.
            confirm_delete: Called before deleting; returning False abandons the delete

        Returns:
            NO_CHANGE if abandoned, STACK_DELETED, or STACK_DELETE_IN_PROGRESS when not following

        Raises:
            NotFoundError: If the stack does not exist
            StateConflictError: If the stack cannot be deleted in its current state
            StackOperationFailedError: If the followed delete failed
        """
        with LogContext(stack_name=self.stack_name, operation='delete'):
            return self._delete(
                self.config.follow_operation,
                confirm_retention_discard=confirm_retention_discard,
                confirm_delete=confirm_delete
            )

    def reset(self) -> OperationResult:
        """Delete and recreate the stack.

        The delete is always followed to completion so that the create can
        start. The create is followed as configured.

        Returns:
            STACK_REPLACED, or STACK_CREATE_IN_PROGRESS when not following
        """
        with LogContext(stack_name=self.stack_name, operation='reset'):
            self._delete(follow=True)
            result = self._create(self.config.follow_operation)

        if result.result == StackOperationResult.STACK_CREATED:
            return OperationResult(result.stack_arn, StackOperationResult.STACK_REPLACED, result.changeset)

        return result

    def _create(self, follow: bool) -> OperationResult:
        stack, state = self.classifier.classify_stack(self.stack_name)

        if state != OperationalState.NOT_FOUND:
            conflict = OperationalState.DELETING if state == OperationalState.DELETING else OperationalState.EXISTS
            raise StateConflictError(conflict, stack=stack)

        template = self._resolve_template()
        parser = self._parse_template(template)
        self._set_column_widths(parser)

        stack_policy = self._resolve_policy(self.config.stack_policy_location)
        parameters = self.build_parameters(parser)
        self._log_parameters(parameters, self._no_echo_names(template, parser))

        request = self.build_create_request(template, parameters, stack_policy)

        self.observer.on_message(f"Creating {self._describe_stack(parser)}")

        response = self.client.create_stack(**request)
        stack_id = response['StackId']
        logger.info(f"Create of {self.stack_name} started: {stack_id}")

        if not follow:
            return OperationResult(stack_id, StackOperationResult.STACK_CREATE_IN_PROGRESS)

        self.tracker.wait(stack_id, START_OF_STREAM)
        return OperationResult(stack_id, StackOperationResult.STACK_CREATED)

    def _update(self, confirm: Optional[Callable[[Dict[str, Any]], bool]]) -> OperationResult:
        stack, state = self.classifier.classify_stack(self.stack_name)

        if state == OperationalState.NOT_FOUND:
            raise NotFoundError(self.stack_name)

        if state in (OperationalState.DELETING, OperationalState.DELETE_FAILED):
            raise StateConflictError(state, stack=stack)

        if state == OperationalState.BROKEN:
            self.observer.on_warning("Stack is in a failed state from previous operation. Update may fail.")

        if state == OperationalState.BUSY:
            stack = self._wait_for_in_progress_operation(stack)

        template = self._resolve_template(stack)
        parser = self._parse_template(template)
        self._set_column_widths(parser)

        parameters = self.build_parameters(parser, stack)
        self._log_parameters(parameters, self._no_echo_names(template, parser))

        resources_to_import = self._resolve_resources_to_import()
        stack_policy = self._resolve_policy(self.config.stack_policy_location)
        stack_policy_during_update = self._resolve_policy(self.config.stack_policy_during_update_location)

        self.observer.on_message(f"Updating {self._describe_stack(parser)}")

        return self.changesets.update(
            stack,
            template,
            parameters,
            resources_to_import=resources_to_import,
            stack_policy=stack_policy,
            stack_policy_during_update=stack_policy_during_update,
            confirm=confirm
        )

    def _delete(
        self,
        follow: bool,
        confirm_retention_discard: Optional[Callable[[], bool]] = None,
        confirm_delete: Optional[Callable[[], bool]] = None
    ) -> OperationResult:
        stack = self.classifier.get_stack(self.stack_name)
        stack_id = stack['StackId']
        state = classify_status(stack.get('StackStatus', ''))

        if state not in DELETABLE_STATES:
            raise StateConflictError(state, stack=stack)

        if confirm_delete is not None and not confirm_delete():
            logger.info(f"Delete of {self.stack_name} declined")
            return OperationResult(stack_id, StackOperationResult.NO_CHANGE)

        retain_resources = list(self.config.retain_resources)

        if state != OperationalState.DELETE_FAILED and retain_resources and confirm_retention_discard is not None:
            if not confirm_retention_discard():
                logger.info(f"Delete of {self.stack_name} abandoned to keep retained resources")
                return OperationResult(stack_id, StackOperationResult.NO_CHANGE)
            retain_resources = []

        if state == OperationalState.BROKEN:
            self.observer.on_warning("Stack is in a failed state from previous operation. Delete may fail.")

        template = TemplateResolver(
            self.client,
            stack_id,
            use_previous_template=True
        ).resolve_previous()
        parser = self._parse_template(template)
        self._set_column_widths(parser)

        request = {'StackName': stack_id}
        if self.config.role_arn:
            request['RoleARN'] = self.config.role_arn
        if retain_resources:
            request['RetainResources'] = retain_resources
        if self.config.client_token:
            request['ClientRequestToken'] = self.config.client_token

        self.observer.on_message(f"Deleting {self._describe_stack(parser)}")

        cursor = self.tracker.capture_cursor(stack_id)
        self.client.delete_stack(**request)

        if not follow:
            return OperationResult(stack_id, StackOperationResult.STACK_DELETE_IN_PROGRESS)

        self.tracker.wait(stack_id, cursor)
        return OperationResult(stack_id, StackOperationResult.STACK_DELETED)

    def _wait_for_in_progress_operation(self, stack: Dict[str, Any]) -> Dict[str, Any]:
        if not self.config.wait_for_in_progress_update:
            raise StateConflictError(OperationalState.BUSY, stack=stack)

        stack_id = stack['StackId']
        self.observer.on_message(f"Waiting for in-progress operation on stack '{self.stack_name}' to complete")

        cursor = self.tracker.capture_cursor(stack_id)
        self.tracker.wait(stack_id, cursor, raise_on_failure=False)

        stack, state = self.classifier.classify_stack(stack_id)

        if state != OperationalState.READY:
            raise StateConflictError(state, stack=stack)

        return stack

    def build_create_request(
        self,
        template: ResolvedArtifact,
        parameters: List[Dict[str, Any]],
        stack_policy: Optional[ResolvedArtifact] = None
    ) -> Dict[str, Any]:
        """Build the CreateStack arguments."""
        config = self.config
        request = {
            'StackName': config.stack_name,
            'Parameters': parameters,
            'Capabilities': list(config.capabilities),
            'Tags': config.tags_as_list(),
            'EnableTerminationProtection': config.termination_protection,
        }

        add_artifact_arguments(request, template, 'TemplateBody', 'TemplateURL')
        add_artifact_arguments(request, stack_policy, 'StackPolicyBody', 'StackPolicyURL')

        if config.timeout_in_minutes and config.timeout_in_minutes > 0:
            request['TimeoutInMinutes'] = config.timeout_in_minutes
        if config.resource_types:
            request['ResourceTypes'] = list(config.resource_types)
        if config.on_failure:
            request['OnFailure'] = config.on_failure
        if config.disable_rollback:
            request['DisableRollback'] = True
        if config.role_arn:
            request['RoleARN'] = config.role_arn
        if config.notification_arns:
            request['NotificationARNs'] = list(config.notification_arns)
        if config.rollback_configuration:
            request['RollbackConfiguration'] = config.rollback_configuration
        if config.client_token:
            request['ClientRequestToken'] = config.client_token

        return request

    def build_parameters(
        self,
        parser: Optional[TemplateParser],
        existing_stack: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Reconcile configured parameter values with those of the template and existing stack.

        A configured value is always passed. A template parameter with no
        configured value keeps the existing stack's value where the stack
        has one, and is otherwise left to its template default.

        Args:
            parser: Parser over the template, if it could be parsed
            existing_stack: Description of the stack being updated

        Returns:
            Parameters in API shape
        """
        supplied = self.config.parameters
        existing = {p['ParameterKey'] for p in (existing_stack or {}).get('Parameters', [])}

        names = [p.name for p in parser.get_parameters()] if parser else []
        names.extend(name for name in supplied if name not in names)

        parameters = []

        for name in names:
            if name in supplied:
                parameters.append({'ParameterKey': name, 'ParameterValue': supplied[name]})
            elif name in existing:
                parameters.append({'ParameterKey': name, 'UsePreviousValue': True})

        return parameters

    def _resolve_template(self, stack: Optional[Dict[str, Any]] = None) -> ResolvedArtifact:
        use_previous = stack is not None and self.config.use_previous_template

        if not use_previous and not self.config.template_location:
            raise MissingCollaboratorError(f"No template given for stack '{self.stack_name}'")

        resolver = TemplateResolver(
            self.client,
            stack['StackId'] if stack else self.stack_name,
            use_previous_template=use_previous,
            artifact_store=self.artifact_store,
            force_s3=self.config.force_s3
        )

        return resolver.resolve_and_promote(self.config.template_location, self.stack_name)

    def _resolve_policy(self, location: Optional[str]) -> Optional[ResolvedArtifact]:
        resolver = StackPolicyResolver(artifact_store=self.artifact_store)
        return resolver.resolve_and_promote(location, self.stack_name)

    def _resolve_resources_to_import(self) -> Optional[List[Dict[str, Any]]]:
        if not self.config.resources_to_import:
            return None

        artifact = ArtifactResolver(artifact_store=self.artifact_store).resolve(self.config.resources_to_import)
        return parse_resource_import_file(artifact.content)

    def _parse_template(self, template: ResolvedArtifact) -> Optional[TemplateParser]:
        try:
            return TemplateParser.from_string(template.content)
        except TemplateParseError as e:
            logger.warning(f"Unable to read template for {self.stack_name}: {e}")
            return None

    def _set_column_widths(self, parser: Optional[TemplateParser]) -> None:
        stack_names = [self.stack_name]
        resource_names = [self.stack_name]

        if parser:
            stack_names.extend(parser.get_nested_stack_names(self.stack_name))
            resource_names = parser.get_logical_resource_names(self.stack_name)

        self.observer.set_column_widths(
            max(len(name) for name in stack_names),
            max(len(name) for name in resource_names)
        )

    def _describe_stack(self, parser: Optional[TemplateParser]) -> str:
        description = parser.get_description() if parser else None

        if description:
            return f"stack '{self.stack_name}' ({description})"

        return f"stack '{self.stack_name}'"

    @staticmethod
    def _no_echo_names(template: ResolvedArtifact, parser: Optional[TemplateParser]) -> FrozenSet[str]:
        names = set(template.no_echo_parameters)

        if parser:
            names.update(p.name for p in parser.get_parameters() if p.no_echo)

        return frozenset(names)

    @staticmethod
    def mask_parameters(parameters: List[Dict[str, Any]], no_echo: FrozenSet[str]) -> Dict[str, str]:
        """Render parameters for display with NoEcho values masked."""
        rendered = {}

        for parameter in parameters:
            name = parameter['ParameterKey']

            if parameter.get('UsePreviousValue'):
                rendered[name] = '(previous value)'
            elif name in no_echo:
                rendered[name] = NO_ECHO_MASK
            else:
                rendered[name] = parameter.get('ParameterValue', '')

        return rendered

    def _log_parameters(self, parameters: List[Dict[str, Any]], no_echo: FrozenSet[str]) -> None:
        if not parameters:
            return

        rendered = self.mask_parameters(parameters, no_echo)
        logger.info("Parameters: " + ", ".join(f"{k}={v}" for k, v in rendered.items()))
