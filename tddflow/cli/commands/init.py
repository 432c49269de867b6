"""tddflow init command."""

from pathlib import Path

import click
import yaml

from tddflow.cli.helpers import console, handle_errors
from tddflow.config.loader import create_default_config, save_config

GITIGNORE_CONTENT = """# tddflow generated files
workflow-state.json
logs/
*.tmp
"""


@click.command()
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force initialization even if .tddflow directory already exists",
)
@handle_errors
def init_command(force: bool) -> None:
    """Initialize tddflow in the current project.

    Creates a .tddflow directory with default configuration and an example
    task file.

    Examples:
        tddflow init                # Initialize with default settings
        tddflow init --force        # Reinitialize existing project
    """
    project_root = Path.cwd()
    state_dir = project_root / ".tddflow"

    if state_dir.exists() and not force:
        console.print(
            f"[yellow]tddflow already initialized in {project_root}[/yellow]\n"
            "Use --force to reinitialize"
        )
        return

    state_dir.mkdir(exist_ok=True)
    (state_dir / "logs").mkdir(exist_ok=True)
    (state_dir / "tasks").mkdir(exist_ok=True)

    config_path = state_dir / "config.yaml"
    if not config_path.exists() or force:
        save_config(create_default_config(), config_path)

    gitignore_path = state_dir / ".gitignore"
    if not gitignore_path.exists() or force:
        gitignore_path.write_text(GITIGNORE_CONTENT, encoding="utf-8")

    example_task_path = state_dir / "tasks" / "example.yaml"
    if not example_task_path.exists() or force:
        with open(example_task_path, "w", encoding="utf-8") as f:
            yaml.dump(
                _get_example_task(), f, default_flow_style=False, sort_keys=False
            )

    console.print(f"[green]✓[/green] tddflow initialized in {project_root}")
    console.print(f"[dim]Configuration:[/dim] {config_path}")
    console.print(f"[dim]Example task:[/dim] {example_task_path}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print("1. Review and customize .tddflow/config.yaml")
    console.print("2. Describe your task and subtasks in a YAML file")
    console.print("3. Start the workflow: tddflow start <task-file>")


def _get_example_task() -> dict:
    """Get example task definition."""
    return {
        "id": "1",
        "title": "Example feature",
        "description": "Replace this with the feature you want to build.",
        "subtasks": [
            {"id": "1.1", "title": "First behaviour to test and implement"},
            {"id": "1.2", "title": "Second behaviour to test and implement"},
        ],
    }
