"""Main CLI entry point for tddflow."""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from tddflow import __version__
from tddflow.cli.commands.abort import abort_command
from tddflow.cli.commands.complete import commit_command, complete_command
from tddflow.cli.commands.init import init_command
from tddflow.cli.commands.start import resume_command, start_command
from tddflow.cli.commands.status import next_command, status_command
from tddflow.core.exceptions import TDDFlowError

console = Console()


@click.group()
@click.version_option(__version__, prog_name="tddflow")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to project configuration file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: Optional[Path]) -> None:
    """tddflow: TDD workflow orchestrator for coding agents.

    Drives each subtask of a task through RED (failing test), GREEN (passing
    implementation) and COMMIT on a dedicated git branch, with state that
    survives restarts.

    \b
    Examples:
        tddflow init                         # Initialize in current project
        tddflow start task.yaml              # Start a workflow
        tddflow status                       # Show progress
        tddflow complete --total 3 --failed 1
        tddflow commit                       # Commit the current subtask
        tddflow abort                        # Give up and clean up state
    """
    ctx.ensure_object(dict)

    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config

    if verbose:
        console.print("[dim]tddflow CLI starting with verbose output enabled[/dim]")


cli.add_command(init_command, name="init")
cli.add_command(start_command, name="start")
cli.add_command(resume_command, name="resume")
cli.add_command(status_command, name="status")
cli.add_command(next_command, name="next")
cli.add_command(complete_command, name="complete")
cli.add_command(commit_command, name="commit")
cli.add_command(abort_command, name="abort")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except TDDFlowError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
