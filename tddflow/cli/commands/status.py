"""tddflow status and next commands."""

import click

from tddflow.cli.helpers import (
    build_service,
    console,
    display_next_action,
    display_status,
    handle_errors,
    print_json,
)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON")
@click.pass_context
@handle_errors
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show the current workflow status.

    Examples:
        tddflow status          # Show current status
        tddflow status --json   # Machine-readable status
    """
    service = build_service(ctx)
    if not service.has_active_workflow():
        console.print("[yellow]No active workflow[/yellow]")
        console.print("Run 'tddflow start <task-file>' to begin")
        return

    status = service.resume_workflow()
    if as_json:
        print_json(status)
    else:
        display_status(status)


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print the action as JSON")
@click.pass_context
@handle_errors
def next_command(ctx: click.Context, as_json: bool) -> None:
    """Show what the agent should do next."""
    service = build_service(ctx)
    if not service.has_active_workflow():
        console.print("[yellow]No active workflow[/yellow]")
        return

    service.resume_workflow()
    action = service.get_next_action()
    if as_json:
        print_json(action)
    else:
        display_next_action(action)
