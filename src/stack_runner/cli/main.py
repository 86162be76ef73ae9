"""Main CLI entry point."""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import click
from botocore.exceptions import BotoCoreError, ClientError
from click.core import ParameterSource
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from stack_runner.cli.output import outputs
from stack_runner.config.models import StackConfig
from stack_runner.config.parser import ConfigValidationError, build_stack_config, load_stack_config
from stack_runner.orchestrator.observer import StackObserver, changeset_rows
from stack_runner.orchestrator.results import OperationResult, StackOperationResult
from stack_runner.orchestrator.runner import StackRunner
from stack_runner.parsers.inputs import InputFileError, parse_parameter_file
from stack_runner.state.classifier import StackStateClassifier
from stack_runner.state.models import OperationalState
from stack_runner.storage.s3 import S3ArtifactStore
from stack_runner.utils.aws_client import AWSClientManager
from stack_runner.utils.errors import StackOperationError, error_handler
from stack_runner.utils.logging import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)

# Options that configure the command rather than the stack
CLI_ONLY_OPTIONS = {'config_path', 'parameter_file', 'artifact_bucket', 'artifact_prefix', 'yes'}

# Options given as key=value pairs
PAIR_OPTIONS = {'parameters', 'tags'}

RESULT_MESSAGES = {
    StackOperationResult.NO_CHANGE: "[yellow]No changes applied to stack '{name}'[/yellow]",
    StackOperationResult.STACK_CREATED: "[green]✓ Stack '{name}' created[/green]",
    StackOperationResult.STACK_UPDATED: "[green]✓ Stack '{name}' updated[/green]",
    StackOperationResult.STACK_REPLACED: "[green]✓ Stack '{name}' replaced[/green]",
    StackOperationResult.STACK_DELETED: "[green]✓ Stack '{name}' deleted[/green]",
    StackOperationResult.STACK_CREATE_IN_PROGRESS: "[cyan]Create of stack '{name}' in progress[/cyan]",
    StackOperationResult.STACK_UPDATE_IN_PROGRESS: "[cyan]Update of stack '{name}' in progress[/cyan]",
    StackOperationResult.STACK_DELETE_IN_PROGRESS: "[cyan]Delete of stack '{name}' in progress[/cyan]",
}


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region')
@click.option('--endpoint-url', help='Alternative CloudFormation and S3 endpoint, e.g. for LocalStack')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-dir', type=click.Path(file_okay=False), help='Directory to write JSON log files to')
@click.pass_context
def cli(ctx, profile, region, endpoint_url, log_level, log_dir):
    """Create, update, delete and reset CloudFormation stacks."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['endpoint_urls'] = {'cloudformation': endpoint_url, 's3': endpoint_url} if endpoint_url else {}

    setup_logging(log_level, log_dir)


# Add stack outputs command
cli.add_command(outputs)


class RichStackObserver(StackObserver):
    """Observer that renders progress using Rich."""

    ACTION_STYLES = {
        'Add': 'green',
        'Modify': 'yellow',
        'Remove': 'red',
        'Import': 'cyan',
        'Dynamic': 'magenta',
    }

    def __init__(self, console: Console):
        self.console = console
        self.stack_name_width = 0
        self.resource_name_width = 0

    def set_column_widths(self, stack_name_width: int, resource_name_width: int):
        """Called with the widest names expected in stack events."""
        self.stack_name_width = stack_name_width
        self.resource_name_width = resource_name_width

    def on_message(self, message: str):
        """Called with an informational message."""
        self.console.print(escape(message))

    def on_warning(self, message: str):
        """Called with a warning."""
        self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def on_changeset(self, changeset: Dict[str, Any], title: Optional[str] = None):
        """Called with a completed changeset."""
        rows = changeset_rows(changeset)

        if not rows:
            self.console.print(f"[dim]{escape(title or 'Changeset')}: no resource changes[/dim]")
            return

        table = Table(title=title, show_header=True)
        table.add_column("Action")
        table.add_column("Logical ID", style="cyan")
        table.add_column("Physical ID", overflow="fold")
        table.add_column("Resource Type")
        table.add_column("Replacement")

        for row in rows:
            style = self.ACTION_STYLES.get(row['action'], 'white')
            replacement = row['replacement']
            if replacement == 'True':
                replacement = f"[red]{replacement}[/red]"

            table.add_row(
                f"[{style}]{row['action']}[/{style}]",
                escape(row['logical_id']),
                escape(row['physical_id']),
                row['resource_type'],
                replacement
            )

        self.console.print(table)

    def on_stack_event(self, event: Dict[str, Any]):
        """Called with each new stack event."""
        status = event.get('ResourceStatus', '')

        if 'FAILED' in status or 'ROLLBACK' in status:
            style = 'red'
        elif status.endswith('COMPLETE'):
            style = 'green'
        else:
            style = 'yellow'

        timestamp = event.get('Timestamp')
        time_text = timestamp.strftime('%H:%M:%S') if timestamp else ''
        stack_name = event.get('StackName', '').ljust(self.stack_name_width)
        logical_id = event.get('LogicalResourceId', '').ljust(self.resource_name_width)

        line = f"[dim]{time_text}[/dim] {escape(stack_name)} {escape(logical_id)} [{style}]{status}[/{style}]"

        reason = event.get('ResourceStatusReason')
        if reason:
            line += f" [dim]{escape(reason)}[/dim]"

        self.console.print(line, highlight=False)


def stack_options(func):
    """Add the options shared by every stack operation."""
    options = [
        click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
                     help='Stack definition file (YAML)'),
        click.option('--stack-name', help='Name of the stack'),
        click.option('--template', 'template_location', help='Template file, S3 URL or template text'),
        click.option('--parameter', '-p', 'parameters', multiple=True, help='Parameter value (format: key=value)'),
        click.option('--parameter-file', type=click.Path(exists=True, dir_okay=False),
                     help='JSON or YAML parameter file'),
        click.option('--capability', 'capabilities', multiple=True, help='Capability to acknowledge'),
        click.option('--tag', 'tags', multiple=True, help='Stack tag (format: key=value)'),
        click.option('--role-arn', help='Service role for CloudFormation to assume'),
        click.option('--client-token', help='Idempotency token for the mutating call'),
        click.option('--notification-arn', 'notification_arns', multiple=True, help='SNS topic for stack events'),
        click.option('--resource-type', 'resource_types', multiple=True,
                     help='Resource type the operation may work with'),
        click.option('--artifact-bucket', help='S3 bucket for oversize templates and policies'),
        click.option('--artifact-prefix', help='Key prefix for uploaded templates and policies'),
        click.option('--force-s3', is_flag=True, help='Upload the template to S3 even when small enough to send inline'),
        click.option('--follow/--no-follow', 'follow_operation', default=False,
                     help='Wait for the operation to complete, showing stack events'),
        click.option('--poll-interval', type=float, help='Seconds between polls of the stack'),
    ]

    for option in reversed(options):
        func = option(func)

    return func


def create_options(func):
    """Add the options that only apply when a stack is created."""
    options = [
        click.option('--timeout', 'timeout_in_minutes', type=int, help='Minutes before the create fails'),
        click.option('--on-failure', type=click.Choice(['DO_NOTHING', 'ROLLBACK', 'DELETE']),
                     help='Action when the create fails'),
        click.option('--disable-rollback', is_flag=True, help='Keep created resources when the create fails'),
        click.option('--termination-protection', is_flag=True, help='Enable termination protection'),
        click.option('--stack-policy', 'stack_policy_location', help='Stack policy file, S3 URL or text'),
    ]

    for option in reversed(options):
        func = option(func)

    return func


def _parse_pairs(values: Iterable[str], option_name: str) -> Dict[str, str]:
    """Parse key=value option values."""
    pairs = {}

    for value in values:
        if '=' not in value:
            raise click.BadParameter(f"'{value}' (format: key=value)", param_hint=option_name)
        key, val = value.split('=', 1)
        pairs[key.strip()] = val

    return pairs


def _collect_overrides(ctx, options: Dict[str, Any]) -> Dict[str, Any]:
    """Collect stack configuration values given explicitly on the command line."""
    overrides = {}

    for name, value in options.items():
        if name in CLI_ONLY_OPTIONS:
            continue
        if ctx.get_parameter_source(name) in (None, ParameterSource.DEFAULT):
            continue

        if name in PAIR_OPTIONS:
            value = _parse_pairs(value, f"--{name.rstrip('s')}")
        elif isinstance(value, tuple):
            value = list(value)

        overrides[name] = value

    parameter_file = options.get('parameter_file')
    if parameter_file:
        try:
            file_parameters = parse_parameter_file(Path(parameter_file).read_text(encoding='utf-8'))
        except (OSError, InputFileError) as e:
            raise ConfigValidationError(f"Failed to read parameter file {parameter_file}: {e}")
        overrides['parameters'] = {**file_parameters, **overrides.get('parameters', {})}

    return overrides


def load_config(ctx, options: Dict[str, Any]) -> StackConfig:
    """Build the stack configuration from a definition file and command line options."""
    overrides = _collect_overrides(ctx, options)
    config_path = options.get('config_path')

    if config_path:
        return load_stack_config(config_path, overrides)

    return build_stack_config(overrides)


def create_runner(ctx, config: StackConfig, options: Dict[str, Any]) -> StackRunner:
    """Create a stack runner with all dependencies."""
    client_manager = AWSClientManager(
        profile=ctx.obj.get('profile'),
        region=ctx.obj.get('region'),
        endpoint_urls=ctx.obj.get('endpoint_urls')
    )

    artifact_store = S3ArtifactStore(
        client_manager.s3(),
        options.get('artifact_bucket'),
        options.get('artifact_prefix')
    )

    return StackRunner(
        config,
        client_manager.cloudformation(),
        artifact_store=artifact_store,
        observer=RichStackObserver(console)
    )


@contextmanager
def handle_errors(operation: str):
    """Report errors raised by a stack operation and exit with a failure status."""
    try:
        yield
    except (click.ClickException, click.Abort):
        raise
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        sys.exit(1)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    except StackOperationError as e:
        console.print(e.to_user_message(), markup=False)
        sys.exit(1)
    except (ClientError, BotoCoreError) as e:
        error = error_handler.translate(e)
        error_handler.log_error(error)
        console.print(error.to_user_message(), markup=False)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Unexpected error during {operation}")
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        sys.exit(1)


def print_result(result: OperationResult, stack_name: str):
    """Display the outcome of a stack operation."""
    console.print()
    console.print(RESULT_MESSAGES[result.result].format(name=escape(stack_name)))

    if result.stack_arn:
        console.print(f"[dim]{escape(result.stack_arn)}[/dim]")

    if result.result.in_progress:
        console.print(f"[dim]Check progress with: stack-runner status {escape(stack_name)}[/dim]")


@cli.command()
@stack_options
@create_options
@click.pass_context
def create(ctx, **options):
    """Create a new stack."""
    with handle_errors('create'):
        config = load_config(ctx, options)
        runner = create_runner(ctx, config, options)
        result = runner.create()

    print_result(result, config.stack_name)


@cli.command()
@stack_options
@click.option('--use-previous-template', is_flag=True, help='Reuse the template deployed with the stack')
@click.option('--resources-to-import', help='Resource import file; the update imports these resources')
@click.option('--include-nested-stacks', is_flag=True, help='Show changes to nested stacks')
@click.option('--changeset-only', is_flag=True, help='Create and show the changeset without applying it')
@click.option('--wait-for-in-progress', 'wait_for_in_progress_update', is_flag=True,
              help='Wait out another operation already in progress on the stack')
@click.option('--delete-noop-changeset/--keep-noop-changeset', default=True,
              help='Delete changesets that contain no changes')
@click.option('--stack-policy', 'stack_policy_location', help='Stack policy file, S3 URL or text')
@click.option('--stack-policy-during-update', 'stack_policy_during_update_location',
              help='Temporary stack policy for the duration of the update')
@click.option('--yes', '-y', is_flag=True, help='Apply the changeset without confirmation')
@click.pass_context
def update(ctx, yes, **options):
    """Update a stack through a changeset."""
    confirm = None
    if not yes:
        def confirm(changeset):
            return click.confirm("Apply these changes?", default=False)

    with handle_errors('update'):
        config = load_config(ctx, options)
        runner = create_runner(ctx, config, options)
        result = runner.update(confirm=confirm)

    print_result(result, config.stack_name)


@cli.command()
@stack_options
@click.option('--retain-resource', 'retain_resources', multiple=True,
              help='Logical ID of a resource to retain (stack must be in DELETE_FAILED state)')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def delete(ctx, yes, **options):
    """Delete a stack."""
    with handle_errors('delete'):
        config = load_config(ctx, options)

        if yes:
            def confirm_delete():
                return True

            def confirm_retention_discard():
                return True
        else:
            def confirm_delete():
                return click.confirm(
                    f"Are you sure you want to delete stack '{config.stack_name}'?",
                    default=False
                )

            def confirm_retention_discard():
                return click.confirm(
                    "Resources can only be retained when the stack is in DELETE_FAILED state. "
                    "Delete without retaining any resources?",
                    default=False
                )

        runner = create_runner(ctx, config, options)
        result = runner.delete(
            confirm_retention_discard=confirm_retention_discard,
            confirm_delete=confirm_delete
        )

    print_result(result, config.stack_name)


@cli.command()
@stack_options
@create_options
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def reset(ctx, yes, **options):
    """Delete a stack and create it again."""
    with handle_errors('reset'):
        config = load_config(ctx, options)

        console.print(Panel.fit(
            f"[bold red]⚠ WARNING: This will delete and recreate the stack[/bold red]\n\n"
            f"Stack: {escape(config.stack_name)}",
            title="Reset",
            border_style="red"
        ))

        if not yes and not click.confirm("Are you sure you want to reset this stack?", default=False):
            console.print("[yellow]Reset cancelled[/yellow]")
            return

        runner = create_runner(ctx, config, options)
        result = runner.reset()

    print_result(result, config.stack_name)


@cli.command()
@click.argument('stack_name')
@click.option('--resources', is_flag=True, help='List the resources of the stack')
@click.pass_context
def status(ctx, stack_name, resources):
    """Show the status of a stack."""
    with handle_errors('status'):
        client_manager = AWSClientManager(
            profile=ctx.obj.get('profile'),
            region=ctx.obj.get('region'),
            endpoint_urls=ctx.obj.get('endpoint_urls')
        )
        classifier = StackStateClassifier(client_manager.cloudformation())

        stack, state = classifier.classify_stack(stack_name)

        if stack is None or state == OperationalState.NOT_FOUND:
            console.print(f"[yellow]Stack '{escape(stack_name)}' does not exist[/yellow]")
            return

        last_updated = stack.get('LastUpdatedTime') or stack.get('CreationTime')
        details = [
            f"[bold]{escape(stack_name)}[/bold]",
            f"Status: {stack.get('StackStatus')}",
            f"State: {state.value}",
        ]
        if stack.get('StackStatusReason'):
            details.append(f"Reason: {escape(stack['StackStatusReason'])}")
        if last_updated:
            details.append(f"Last updated: {last_updated}")
        if stack.get('Description'):
            details.append(f"Description: {escape(stack['Description'])}")

        console.print(Panel.fit("\n".join(details), title="Stack Status", border_style="cyan"))

        if resources:
            table = Table(title="Resources", show_header=True)
            table.add_column("Logical ID", style="cyan")
            table.add_column("Type")
            table.add_column("Status")
            table.add_column("Physical ID", overflow="fold")

            for resource in classifier.get_stack_resources(stack['StackId']):
                table.add_row(
                    escape(resource.get('LogicalResourceId', '')),
                    resource.get('ResourceType', ''),
                    resource.get('ResourceStatus', ''),
                    escape(resource.get('PhysicalResourceId', ''))
                )

            console.print(table)


if __name__ == '__main__':
    cli()
