"""Output command for showing stack outputs."""

import sys

import click
from rich.console import Console
from rich.table import Table
import json

from ..state.classifier import StackStateClassifier
from ..utils.aws_client import AWSClientManager
from ..utils.errors import StackOperationError, error_handler
from ..utils.logging import get_logger

logger = get_logger(__name__)
console = Console()


@click.command()
@click.argument('stack_name')
@click.option('--format', type=click.Choice(['table', 'json', 'env']), default='table', help='Output format')
@click.option('--output-name', help='Show specific output value')
@click.pass_context
def outputs(ctx, stack_name: str, format: str, output_name: str):
    """Show stack outputs (endpoints, ARNs, etc.)."""
    ctx.ensure_object(dict)

    try:
        client_manager = AWSClientManager(
            profile=ctx.obj.get('profile'),
            region=ctx.obj.get('region'),
            endpoint_urls=ctx.obj.get('endpoint_urls')
        )
        classifier = StackStateClassifier(client_manager.cloudformation())

        stack_outputs = classifier.get_stack_outputs(stack_name)

        if not stack_outputs:
            console.print("[dim]No outputs found[/dim]")
            return

        if output_name:
            if output_name in stack_outputs:
                click.echo(stack_outputs[output_name])
            else:
                console.print(f"[red]Output '{output_name}' not found[/red]")
                sys.exit(1)
            return

        if format == 'table':
            _output_table(stack_outputs, stack_name)
        elif format == 'json':
            _output_json(stack_outputs)
        elif format == 'env':
            _output_env(stack_outputs)

    except StackOperationError as e:
        console.print(e.to_user_message(), markup=False)
        sys.exit(1)
    except Exception as e:
        error = error_handler.translate(e, stack_name)
        logger.debug("Failed to show outputs", exc_info=True)
        console.print(error.to_user_message(), markup=False)
        sys.exit(1)


def _output_table(stack_outputs: dict, stack_name: str):
    """Display outputs as a table."""
    table = Table(title=f"Outputs of {stack_name}", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green", overflow="fold")

    for key, value in sorted(stack_outputs.items()):
        table.add_row(key, value)

    console.print(table)


def _output_json(stack_outputs: dict):
    """Display outputs as JSON."""
    click.echo(json.dumps(stack_outputs, indent=2, sort_keys=True))


def _output_env(stack_outputs: dict):
    """Display outputs as environment variable assignments."""
    for key, value in sorted(stack_outputs.items()):
        env_key = ''.join(c if c.isalnum() else '_' for c in key).upper()
        click.echo(f"{env_key}={value}")
