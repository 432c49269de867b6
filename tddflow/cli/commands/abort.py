"""tddflow abort command."""

from typing import Optional

import click

from tddflow.cli.helpers import build_service, console, handle_errors
from tddflow.core.exceptions import WorkflowStateError


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--reason", "-r", help="Reason recorded in the activity log")
@click.pass_context
@handle_errors
def abort_command(ctx: click.Context, yes: bool, reason: Optional[str]) -> None:
    """Abort the current workflow and delete its state.

    The feature branch and its commits are left in place.
    """
    service = build_service(ctx)
    if not service.has_active_workflow():
        console.print("[yellow]No active workflow[/yellow]")
        return

    if not yes:
        click.confirm("Abort the current workflow?", abort=True)

    try:
        service.resume_workflow()
    except WorkflowStateError as e:
        console.print(f"[yellow]Workflow state unreadable, removing it:[/yellow] {e}")

    if service.abort_workflow(reason=reason):
        console.print("[green]✓[/green] Workflow aborted")
    else:
        console.print("[yellow]No active workflow[/yellow]")
