"""Shared helpers for tddflow CLI commands."""

import functools
import json
from pathlib import Path
from typing import Any, Callable, Optional

import click
from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tddflow.config.loader import load_config
from tddflow.core.exceptions import TDDFlowError
from tddflow.core.workflow_types import NextAction, WorkflowStatus
from tddflow.orchestrator.workflow_service import WorkflowService

console = Console()

PHASE_STYLES = {
    "RED": "red",
    "GREEN": "green",
    "COMMIT": "cyan",
    "COMPLETE": "green",
    "ABORTED": "yellow",
}


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn tddflow errors into click errors (red message, exit code 1)."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except TDDFlowError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def build_service(ctx: click.Context) -> WorkflowService:
    """Create a workflow service for the current directory."""
    config_path: Optional[Path] = (ctx.obj or {}).get("config")
    project_root = Path.cwd()
    config = load_config(project_config_path=config_path, project_root=project_root)
    return WorkflowService(project_root=project_root, config=config)


def print_json(model: BaseModel) -> None:
    click.echo(json.dumps(model.model_dump(mode="json"), indent=2))


def _styled(value: Optional[str]) -> str:
    if value is None:
        return "[dim]-[/dim]"
    style = PHASE_STYLES.get(value)
    return f"[{style}]{value}[/{style}]" if style else value


def display_status(status: WorkflowStatus) -> None:
    """Render a workflow status summary."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="bold")
    table.add_column("Value")

    progress = status.progress
    table.add_row("Task", status.task_id)
    table.add_row("Branch", status.branch_name or "[dim]-[/dim]")
    table.add_row("Phase", _styled(status.phase.value))
    table.add_row("TDD phase", _styled(status.tdd_phase.value if status.tdd_phase else None))
    if status.current_subtask:
        subtask = status.current_subtask
        label = subtask.id + (f" - {subtask.title}" if subtask.title else "")
        table.add_row("Subtask", f"{label} ({progress.current}/{progress.total})")
        table.add_row("Attempts", f"{subtask.attempts}/{subtask.max_attempts}")
    table.add_row(
        "Progress",
        f"{progress.completed}/{progress.total} subtasks ({progress.percentage}%)",
    )

    console.print(Panel(table, title="Workflow Status", border_style="blue"))


def display_next_action(action: NextAction) -> None:
    console.print(f"[bold]Next:[/bold] {action.description}")
    console.print(f"[dim]Action:[/dim] {action.action.value}")
