"""Phase orchestrators for the RED, GREEN and COMMIT steps of a TDD cycle.

Each orchestrator runs one phase for one subtask and reports a structured
result. Evidence problems (no failing test in RED, failures in GREEN, nothing
to commit) come back as ``success=False``; errors raised by collaborators
such as the git adapter propagate to the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from ..core.commit_message import CommitMessageGenerator
from ..core.exceptions import TestResultValidationError
from ..core.git_utils import CommitResult, StageResult
from ..core.workflow_types import (
    SubtaskInfo,
    TDDPhase,
    TestResult,
    parse_test_result,
    utcnow,
)
from ..tracking.activity_logger import ActivityLogger


class TestEvaluator(Protocol):
    """Anything that can turn freshly written code into test evidence."""

    def validate_test_results(self, code: str, subtask_id: Optional[str] = None) -> Any:
        ...


class GitAdapter(Protocol):
    def stage_files(self, files: Optional[Sequence[str]] = None) -> StageResult:
        ...

    def create_commit(self, message: str) -> CommitResult:
        ...


@dataclass
class PhaseResult:
    """Common envelope for phase outcomes."""

    success: bool
    phase: TDDPhase
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class RedPhaseResult(PhaseResult):
    tests_generated: bool = False
    test_results: Optional[TestResult] = None


@dataclass
class GreenPhaseResult(PhaseResult):
    test_results: Optional[TestResult] = None
    feedback: str = ""
    attempt: int = 1


@dataclass
class CommitPhaseResult(PhaseResult):
    commit_hash: Optional[str] = None
    commit_message: Optional[str] = None
    files_committed: List[str] = field(default_factory=list)


def _evidence_metadata(results: Optional[TestResult]) -> Dict[str, Any]:
    if results is None:
        return {}
    return {
        "total_tests": results.total_tests,
        "pass_count": results.pass_count,
        "failure_count": results.failure_count,
    }


class RedPhaseOrchestrator:
    """Checks that newly written tests fail for the right reason: they exist."""

    def __init__(
        self,
        test_evaluator: TestEvaluator,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.test_evaluator = test_evaluator
        self.activity_logger = activity_logger

    def execute(self, subtask: SubtaskInfo, test_code: str) -> RedPhaseResult:
        """Run the RED phase for a subtask.

        Args:
            subtask: Subtask the tests were written for
            test_code: The test code the agent produced

        Returns:
            RedPhaseResult; success requires at least one failing test
        """
        if not test_code or not test_code.strip():
            result = RedPhaseResult(
                success=False,
                phase=TDDPhase.RED,
                error="No test code provided for RED phase",
                tests_generated=False,
            )
            self._report(subtask, result)
            return result

        try:
            evidence = parse_test_result(
                self.test_evaluator.validate_test_results(test_code, subtask_id=subtask.id)
            )
        except TestResultValidationError as e:
            result = RedPhaseResult(
                success=False, phase=TDDPhase.RED, error=str(e), tests_generated=True
            )
            self._report(subtask, result)
            return result

        red_ok = (
            evidence.total_tests > 0
            and evidence.has_failures
            and evidence.failure_count > 0
        )
        if red_ok:
            result = RedPhaseResult(
                success=True,
                phase=TDDPhase.RED,
                tests_generated=True,
                test_results=evidence,
            )
        else:
            result = RedPhaseResult(
                success=False,
                phase=TDDPhase.RED,
                error=(
                    "RED phase requires at least one failing test "
                    f"(total: {evidence.total_tests}, failing: {evidence.failure_count})"
                ),
                tests_generated=True,
                test_results=evidence,
            )

        self._report(subtask, result)
        return result

    def _report(self, subtask: SubtaskInfo, result: RedPhaseResult) -> None:
        if self.activity_logger is None:
            return
        metadata = _evidence_metadata(result.test_results)
        metadata["tests_generated"] = result.tests_generated
        if result.error:
            metadata["error"] = result.error
        self.activity_logger.log_phase_result(
            subtask.id, TDDPhase.RED.value, result.success, metadata
        )


class GreenPhaseOrchestrator:
    """Checks that an implementation makes every test pass."""

    def __init__(
        self,
        test_evaluator: TestEvaluator,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.test_evaluator = test_evaluator
        self.activity_logger = activity_logger

    def execute(
        self, subtask: SubtaskInfo, implementation_code: str, attempt: int = 1
    ) -> GreenPhaseResult:
        """Run the GREEN phase for a subtask.

        Args:
            subtask: Subtask being implemented
            implementation_code: The implementation the agent produced
            attempt: Attempt number, used in the feedback

        Returns:
            GreenPhaseResult with feedback for the agent
        """
        if not implementation_code or not implementation_code.strip():
            result = GreenPhaseResult(
                success=False,
                phase=TDDPhase.GREEN,
                error="No implementation code provided for GREEN phase",
                feedback="Provide an implementation before running the GREEN phase.",
                attempt=attempt,
            )
            self._report(subtask, result)
            return result

        try:
            evidence = parse_test_result(
                self.test_evaluator.validate_test_results(
                    implementation_code, subtask_id=subtask.id
                )
            )
        except TestResultValidationError as e:
            result = GreenPhaseResult(
                success=False,
                phase=TDDPhase.GREEN,
                error=str(e),
                feedback=f"Test results could not be read (attempt {attempt}).",
                attempt=attempt,
            )
            self._report(subtask, result)
            return result

        green_ok = (
            evidence.total_tests > 0
            and evidence.failure_count == 0
            and evidence.passed
        )
        if green_ok:
            result = GreenPhaseResult(
                success=True,
                phase=TDDPhase.GREEN,
                test_results=evidence,
                feedback=f"All {evidence.total_tests} tests passing.",
                attempt=attempt,
            )
        elif evidence.total_tests == 0:
            result = GreenPhaseResult(
                success=False,
                phase=TDDPhase.GREEN,
                error="GREEN phase requires tests to run (total: 0)",
                test_results=evidence,
                feedback=f"No tests ran on attempt {attempt}.",
                attempt=attempt,
            )
        else:
            result = GreenPhaseResult(
                success=False,
                phase=TDDPhase.GREEN,
                error=(
                    "GREEN phase requires all tests passing "
                    f"({evidence.failure_count} of {evidence.total_tests} failing)"
                ),
                test_results=evidence,
                feedback=(
                    f"{evidence.failure_count} test(s) failing, "
                    f"{evidence.pass_count} passing (attempt {attempt}). "
                    "Fix the implementation and try again."
                ),
                attempt=attempt,
            )

        self._report(subtask, result)
        return result

    def _report(self, subtask: SubtaskInfo, result: GreenPhaseResult) -> None:
        if self.activity_logger is None:
            return
        metadata = _evidence_metadata(result.test_results)
        metadata["attempt"] = result.attempt
        if result.error:
            metadata["error"] = result.error
        self.activity_logger.log_phase_result(
            subtask.id, TDDPhase.GREEN.value, result.success, metadata
        )


class CommitPhaseOrchestrator:
    """Stages the subtask's changes and creates its commit."""

    def __init__(
        self,
        git: GitAdapter,
        message_generator: CommitMessageGenerator,
        activity_logger: Optional[ActivityLogger] = None,
        commit_type: Optional[str] = None,
    ):
        self.git = git
        self.message_generator = message_generator
        self.activity_logger = activity_logger
        self.commit_type = commit_type

    def execute(
        self,
        task_id: str,
        subtask: SubtaskInfo,
        changed_files: Sequence[str],
        test_results: Optional[TestResult] = None,
    ) -> CommitPhaseResult:
        """Commit the work done for a subtask.

        Args:
            task_id: Parent task identifier
            subtask: Subtask being committed
            changed_files: Files to include in the commit
            test_results: GREEN evidence for the message, if available

        Returns:
            CommitPhaseResult carrying the commit hash on success

        Raises:
            GitOperationError: If the git adapter fails
        """
        files = list(changed_files)
        if not files:
            result = CommitPhaseResult(
                success=False, phase=TDDPhase.COMMIT, error="No files to commit"
            )
            self._report(subtask, result)
            return result

        message = self.message_generator.generate_message(
            type=self.commit_type,
            description=subtask.title or f"complete subtask {subtask.id}",
            changed_files=files,
            task_id=task_id,
            phase=TDDPhase.COMMIT.value,
            tests_passing=test_results.pass_count if test_results else None,
            tests_failing=test_results.failure_count if test_results else None,
        )

        stage = self.git.stage_files(files)
        if not stage.success:
            result = CommitPhaseResult(
                success=False,
                phase=TDDPhase.COMMIT,
                error=f"Failed to stage files: {stage.error or 'unknown error'}",
                commit_message=message,
            )
            self._report(subtask, result)
            return result

        commit = self.git.create_commit(message)
        if not getattr(commit, "success", True) or not commit.commit_hash:
            result = CommitPhaseResult(
                success=False,
                phase=TDDPhase.COMMIT,
                error=f"Failed to create commit: {commit.error or 'no commit hash'}",
                commit_message=message,
                files_committed=stage.files or files,
            )
            self._report(subtask, result)
            return result

        result = CommitPhaseResult(
            success=True,
            phase=TDDPhase.COMMIT,
            commit_hash=commit.commit_hash,
            commit_message=message,
            files_committed=stage.files or files,
        )
        if self.activity_logger is not None:
            self.activity_logger.log_git_operation(
                "commit",
                {"commit_hash": commit.commit_hash, "files": result.files_committed},
                subtask_id=subtask.id,
            )
        self._report(subtask, result)
        return result

    def _report(self, subtask: SubtaskInfo, result: CommitPhaseResult) -> None:
        if self.activity_logger is None:
            return
        metadata: Dict[str, Any] = {"files_committed": result.files_committed}
        if result.commit_hash:
            metadata["commit_hash"] = result.commit_hash
        if result.error:
            metadata["error"] = result.error
        self.activity_logger.log_phase_result(
            subtask.id, TDDPhase.COMMIT.value, result.success, metadata
        )
