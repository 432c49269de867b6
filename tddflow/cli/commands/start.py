"""tddflow start and resume commands."""

from pathlib import Path
from typing import Optional

import click

from tddflow.cli.helpers import (
    build_service,
    console,
    display_next_action,
    display_status,
    handle_errors,
)
from tddflow.core.task_schema import load_task_from_yaml
from tddflow.orchestrator.workflow_service import StartWorkflowOptions


@click.command()
@click.argument("task_file", type=click.Path(exists=True, path_type=Path))
@click.option("--force", "-f", is_flag=True, help="Replace an existing workflow")
@click.option("--tag", "-t", help="Branch name prefix, e.g. 'feature'")
@click.option(
    "--max-attempts",
    type=click.IntRange(1, 20),
    help="Attempt ceiling per TDD phase (default: from config)",
)
@click.pass_context
@handle_errors
def start_command(
    ctx: click.Context,
    task_file: Path,
    force: bool,
    tag: Optional[str],
    max_attempts: Optional[int],
) -> None:
    """Start a TDD workflow for the task in TASK_FILE.

    The task file is YAML with an id, a title and a list of subtasks:

    \b
        id: "6"
        title: Add user authentication
        subtasks:
          - id: "6.1"
            title: Validate credentials
          - id: "6.2"
            title: Issue session token

    Examples:
        tddflow start task.yaml
        tddflow start task.yaml --tag feature --max-attempts 5
    """
    try:
        task = load_task_from_yaml(task_file)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    service = build_service(ctx)
    attempts = max_attempts or service.config.workflow.max_attempts

    status = service.start_workflow(
        StartWorkflowOptions(
            task_id=task.id,
            task_title=task.title,
            subtasks=task.to_subtask_infos(max_attempts=attempts),
            max_attempts=attempts,
            force=force,
            tag=tag,
        )
    )

    console.print(
        f"[green]✓[/green] Workflow started on branch [bold]{status.branch_name}[/bold]"
    )
    display_status(status)
    display_next_action(service.get_next_action())


@click.command()
@click.pass_context
@handle_errors
def resume_command(ctx: click.Context) -> None:
    """Resume the workflow persisted in this project."""
    service = build_service(ctx)
    status = service.resume_workflow()

    console.print("[green]✓[/green] Workflow resumed")
    display_status(status)
    display_next_action(service.get_next_action())
