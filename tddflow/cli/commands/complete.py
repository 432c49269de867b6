"""tddflow complete and commit commands."""

from typing import Optional, Tuple

import click

from tddflow.cli.helpers import (
    build_service,
    console,
    display_next_action,
    display_status,
    handle_errors,
)
from tddflow.core.workflow_types import TDDPhase, TestResult, WorkflowPhase


@click.command()
@click.option("--total", type=click.IntRange(min=0), help="Number of tests run")
@click.option("--failed", type=click.IntRange(min=0), help="Number of failing tests")
@click.option(
    "--run-tests",
    is_flag=True,
    help="Run the configured test command instead of passing counts",
)
@click.pass_context
@handle_errors
def complete_command(
    ctx: click.Context,
    total: Optional[int],
    failed: Optional[int],
    run_tests: bool,
) -> None:
    """Complete the current RED or GREEN phase with test evidence.

    RED needs at least one failing test; GREEN needs every test passing.

    Examples:
        tddflow complete --total 5 --failed 1     # RED evidence
        tddflow complete --total 5 --failed 0     # GREEN evidence
        tddflow complete --run-tests              # Let tddflow run the tests
    """
    if run_tests and (total is not None or failed is not None):
        raise click.UsageError("Use either --run-tests or --total/--failed, not both")
    if not run_tests and (total is None or failed is None):
        raise click.UsageError("Provide --total and --failed, or use --run-tests")
    if not run_tests and failed > total:
        raise click.BadParameter("--failed cannot exceed --total", param_hint="--failed")

    service = build_service(ctx)
    service.resume_workflow()
    before = service.get_status()
    previous = before.tdd_phase

    if run_tests:
        subtask_id = before.current_subtask.id if before.current_subtask else None
        results = service.test_evaluator.validate_test_results("", subtask_id=subtask_id)
        console.print(
            f"[dim]Tests:[/dim] {results.pass_count}/{results.total_tests} passed"
        )
    else:
        results = TestResult.from_counts(total - failed, failed)

    status = service.complete_phase(results)

    label = previous.value if previous else "Phase"
    console.print(f"[green]✓[/green] {label} phase complete")
    display_status(status)
    display_next_action(service.get_next_action())


@click.command()
@click.argument("files", nargs=-1)
@click.pass_context
@handle_errors
def commit_command(ctx: click.Context, files: Tuple[str, ...]) -> None:
    """Commit the current subtask (COMMIT phase only).

    Commits FILES, or every changed file when none are given.
    """
    service = build_service(ctx)
    service.resume_workflow()
    subtask = service.get_status().current_subtask

    status = service.commit(list(files) if files else None)

    commits = service.get_context().metadata.get("commits", {})
    commit_hash = commits.get(subtask.id) if subtask else None
    short = commit_hash[:8] if commit_hash else "?"
    console.print(f"[green]✓[/green] Committed subtask {subtask.id if subtask else ''} ({short})")

    if status.phase == WorkflowPhase.COMPLETE:
        console.print("[bold green]All subtasks complete.[/bold green]")
    display_status(status)
    if status.tdd_phase == TDDPhase.RED:
        display_next_action(service.get_next_action())
