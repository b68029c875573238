"""Main CLI entry point."""

import json
import sys
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackshift.config.parser import ConfigValidationError
from stackshift.orchestrator.coordinator import RefactorCoordinator
from stackshift.orchestrator.models import PlanStatus, TransferPlan
from stackshift.utils.errors import RefactorError, RollbackFailure
from stackshift.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


@click.group()
@click.option('--config', 'config_path', default='stackshift.yaml', help='Path to configuration file')
@click.option('--profile', help='AWS profile overriding the configured ones')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.pass_context
def cli(ctx, config_path, profile, log_level):
    """Move managed resources between deployment states."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['profile'] = profile

    log_dir = Path(config_path).parent / '.stackshift' / 'logs'
    setup_logging(log_level, log_dir=str(log_dir))


def load_coordinator(ctx) -> RefactorCoordinator:
    """Load configuration and build the coordinator, exiting on bad config."""
    config_path = ctx.obj['config_path']
    try:
        return RefactorCoordinator.from_config_file(config_path, profile=ctx.obj.get('profile'))
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)


def fail(error: RefactorError) -> None:
    console.print(f"[red]{error.to_user_message()}[/red]")
    sys.exit(2 if isinstance(error, RollbackFailure) else 1)


def with_ends(coordinator: RefactorCoordinator, source: str, destination: str, extras) -> Optional[List[str]]:
    """Explicit lock scope: both ends plus the extra deployments, or None for the default."""
    if not extras:
        return None
    ends = {coordinator.parse(source).deployment_key, coordinator.parse(destination).deployment_key}
    return sorted(ends | set(extras))


def print_plan(plan: TransferPlan) -> None:
    """Render a plan summary."""
    console.print(Panel.fit(
        f"[bold]{plan.resource_key}[/bold]\n"
        f"From: {plan.source}\n"
        f"To:   {plan.destination}\n"
        f"Preserve id: {'yes' if plan.preserve_id else 'no'}\n"
        f"Locks: {', '.join(plan.scope)}",
        title=f"Transfer plan {plan.plan_id}",
        border_style="cyan"
    ))

    if plan.drift:
        table = Table(title="Drift (mutable fields, reconciled on next apply)")
        table.add_column("Field", style="cyan")
        table.add_column("Declared")
        table.add_column("Actual")
        for field, (declared, actual) in sorted(plan.drift.items()):
            table.add_row(field, str(declared), str(actual))
        console.print(table)

    for warning in plan.warnings:
        console.print(f"[yellow]⚠[/yellow] {warning}")


@cli.command()
@click.argument('source')
@click.argument('destination')
@click.option('--no-preserve-id', is_flag=True, help='Allow the destination to end with a different provider id')
@click.option('--scope', multiple=True, help='Extra stack:deployment to lock (repeatable)')
@click.option('--json', 'as_json', is_flag=True, help='Print the plan as JSON')
@click.pass_context
def plan(ctx, source, destination, no_preserve_id, scope, as_json):
    """Validate a transfer without changing any state."""
    coordinator = load_coordinator(ctx)
    try:
        transfer_plan = coordinator.plan(
            source, destination, not no_preserve_id, with_ends(coordinator, source, destination, scope)
        )
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()

    if as_json:
        click.echo(json.dumps(transfer_plan.summary(), indent=2))
    else:
        print_plan(transfer_plan)


@cli.command()
@click.argument('source')
@click.argument('destination')
@click.option('--no-preserve-id', is_flag=True, help='Allow the destination to end with a different provider id')
@click.option('--scope', multiple=True, help='Extra stack:deployment to lock (repeatable)')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def transfer(ctx, source, destination, no_preserve_id, scope, yes):
    """Move a resource from SOURCE to DESTINATION."""
    coordinator = load_coordinator(ctx)
    try:
        transfer_plan = coordinator.plan(
            source, destination, not no_preserve_id, with_ends(coordinator, source, destination, scope)
        )
        print_plan(transfer_plan)

        if not yes and not click.confirm("\nApply this transfer?"):
            console.print("[yellow]Transfer cancelled[/yellow]")
            return

        coordinator.execute(transfer_plan)
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()

    if transfer_plan.status == PlanStatus.APPLIED:
        console.print(Panel.fit(
            f"[green]✓ {transfer_plan.resource_key} is now managed by {transfer_plan.destination}[/green]",
            title="Transfer Complete",
            border_style="green"
        ))


@cli.command()
@click.argument('plan_id')
@click.pass_context
def resume(ctx, plan_id):
    """Finish PLAN_ID, a transfer left behind by an interrupted or failed rollback."""
    coordinator = load_coordinator(ctx)
    try:
        transfer_plan = coordinator.resume(plan_id)
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()

    if transfer_plan.status == PlanStatus.APPLIED:
        console.print(Panel.fit(
            f"[green]✓ {transfer_plan.resource_key} is now managed by {transfer_plan.destination}[/green]",
            title="Transfer Complete",
            border_style="green"
        ))
    else:
        console.print(Panel.fit(
            f"[yellow]{transfer_plan.resource_key} is managed by {transfer_plan.source} again[/yellow]\n"
            f"Original failure: {transfer_plan.error}",
            title="Transfer Rolled Back",
            border_style="yellow"
        ))


@cli.command()
@click.argument('deployment_key')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def show(ctx, deployment_key, output_format):
    """Show the resources a STACK:DEPLOYMENT manages."""
    coordinator = load_coordinator(ctx)
    try:
        state = coordinator.show(deployment_key)
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()

    if output_format == 'json':
        click.echo(json.dumps(state.to_dict(), indent=2))
        return

    resources = state.all_resources()
    if not resources:
        console.print(f"[dim]{deployment_key} manages no resources[/dim]")
        return

    table = Table(title=f"{deployment_key} (serial {state.serial})")
    table.add_column("Component", style="cyan")
    table.add_column("Address")
    table.add_column("Provider ID", style="green")
    table.add_column("Owner")
    for component, resource in resources:
        owner = coordinator.ownership.owner_of(resource.resource_key)
        table.add_row(component, resource.address, resource.provider_id, owner or "[dim]-[/dim]")
    console.print(table)


@cli.group()
def owner():
    """Inspect and edit resource ownership."""
    pass


@owner.command('claim')
@click.argument('resource_key')
@click.argument('deployment_key')
@click.pass_context
def owner_claim(ctx, resource_key, deployment_key):
    """Record DEPLOYMENT_KEY as the owner of RESOURCE_KEY."""
    coordinator = load_coordinator(ctx)
    try:
        coordinator.locator.backend_for_key(deployment_key)
        coordinator.ownership.claim(resource_key, deployment_key)
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()
    console.print(f"[green]✓[/green] {deployment_key} owns {resource_key}")


@owner.command('transfer')
@click.argument('resource_key')
@click.argument('from_deployment')
@click.argument('to_deployment')
@click.pass_context
def owner_transfer(ctx, resource_key, from_deployment, to_deployment):
    """Hand RESOURCE_KEY from one deployment to another."""
    coordinator = load_coordinator(ctx)
    try:
        coordinator.locator.backend_for_key(to_deployment)
        coordinator.ownership.transfer(resource_key, from_deployment, to_deployment)
    except RefactorError as e:
        fail(e)
    finally:
        coordinator.close()
    console.print(f"[green]✓[/green] {to_deployment} owns {resource_key}")


@owner.command('show')
@click.argument('resource_key', required=False)
@click.pass_context
def owner_show(ctx, resource_key: Optional[str]):
    """Show the owner and readers of one resource, or of all recorded ones."""
    coordinator = load_coordinator(ctx)
    try:
        if resource_key:
            record = coordinator.ownership.get(resource_key)
            records = [record] if record is not None else []
        else:
            records = coordinator.ownership.records()
    finally:
        coordinator.close()

    if not records:
        if resource_key:
            console.print(f"[dim]{resource_key} has no recorded owner[/dim]")
        else:
            console.print("[dim]No ownership recorded[/dim]")
        return

    table = Table(title="Ownership")
    table.add_column("Resource", style="cyan")
    table.add_column("Owner", style="green")
    table.add_column("Readers")
    for record in records:
        table.add_row(record.resource_key, record.owning_deployment, ", ".join(sorted(record.readers)) or "-")
    console.print(table)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
