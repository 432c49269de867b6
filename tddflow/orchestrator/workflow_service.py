"""Workflow service: the facade used by the CLI and by agents.

The service owns one workflow at a time. It wires the orchestrator to the
state manager, derives the feature branch, enforces attempt ceilings and
routes test evidence and commits to the right transitions.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator

from ..config.models import TDDFlowConfig
from ..core.commit_message import CommitMessageGenerator
from ..core.exceptions import (
    CommitPhaseError,
    GitOperationError,
    MaxAttemptsExceededError,
    TestResultValidationError,
    WorkflowExistsError,
    WorkflowNotFoundError,
    WorkflowPreconditionError,
    WorkflowStateError,
)
from ..core.git_utils import GitUtils
from ..core.state_persistence import WorkflowStateManager
from ..core.test_runner import TestRunner
from ..core.workflow_orchestrator import WorkflowOrchestrator
from ..core.workflow_types import (
    NextAction,
    NextActionType,
    NotificationType,
    SubtaskInfo,
    SubtaskStatus,
    TDDPhase,
    TestResult,
    WorkflowContext,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowNotification,
    WorkflowPhase,
    WorkflowStatus,
    parse_test_result,
    utcnow,
)
from ..tracking.activity_logger import (
    ActivityLogger,
    cleanup_old_sessions,
    generate_session_id,
)
from .attempt_tracker import AttemptTracker
from .phases import (
    CommitPhaseOrchestrator,
    GreenPhaseOrchestrator,
    GreenPhaseResult,
    RedPhaseOrchestrator,
    RedPhaseResult,
)

MAX_TITLE_SLUG_LENGTH = 50

TDD_COMPLETION_EVENTS = {
    TDDPhase.RED: WorkflowEventType.RED_PHASE_COMPLETE,
    TDDPhase.GREEN: WorkflowEventType.GREEN_PHASE_COMPLETE,
}


def generate_branch_name(
    task_id: str, task_title: str, tag: Optional[str] = None
) -> str:
    """Derive the feature branch name for a task.

    The title is lower-cased, runs of non-alphanumeric characters become a
    single dash, leading and trailing dashes are trimmed and the result is
    cut to 50 characters without leaving a trailing dash. Dots in the task
    ID become dashes.

    Examples:
        >>> generate_branch_name("6", "Add User Auth!")
        'task-6-add-user-auth'
        >>> generate_branch_name("6.1", "Login", tag="feature")
        'feature/task-6-1-login'
    """
    slug = re.sub(r"[^a-z0-9]+", "-", task_title.lower()).strip("-")
    slug = slug[:MAX_TITLE_SLUG_LENGTH].rstrip("-")
    safe_id = str(task_id).replace(".", "-")

    name = f"task-{safe_id}-{slug}" if slug else f"task-{safe_id}"
    if tag:
        name = f"{tag}/{name}"
    return name


class StartWorkflowOptions(BaseModel):
    """Options for starting a new workflow."""

    task_id: str = Field(..., description="Parent task identifier")
    task_title: str = Field(..., description="Task title, used for the branch name")
    subtasks: List[SubtaskInfo] = Field(..., description="Subtasks in order")
    max_attempts: int = Field(default=3, ge=1, description="Attempt ceiling per phase")
    force: bool = Field(default=False, description="Replace an existing workflow")
    tag: Optional[str] = Field(default=None, description="Branch name prefix")

    @field_validator("task_id")
    @classmethod
    def validate_task_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Task ID cannot be empty")
        return v.strip()


class WorkflowService:
    """Facade that runs one TDD workflow on top of the orchestrator."""

    def __init__(
        self,
        project_root: Optional[Path] = None,
        git: Optional[Any] = None,
        state_manager: Optional[WorkflowStateManager] = None,
        test_evaluator: Optional[Any] = None,
        message_generator: Optional[CommitMessageGenerator] = None,
        activity_logger: Optional[ActivityLogger] = None,
        config: Optional[TDDFlowConfig] = None,
    ):
        """Initialize the service.

        Collaborators that are not supplied are built from ``config``.

        Args:
            project_root: Repository root (default: current directory)
            git: Git adapter (default: GitUtils)
            state_manager: Workflow state storage (default: WorkflowStateManager)
            test_evaluator: Object with ``validate_test_results(code, subtask_id)``
                (default: TestRunner)
            message_generator: Commit message composer
            activity_logger: Activity logger (default: one per workflow session)
            config: Configuration (default: built-in defaults)
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.config = config or TDDFlowConfig()

        self.git = git or GitUtils(
            self.project_root, ignored_paths=self.config.git.ignored_paths
        )
        self.state_manager = state_manager or WorkflowStateManager(
            self.project_root, self.config.get_state_file(self.project_root)
        )
        self.test_evaluator = test_evaluator or TestRunner(
            command=self.config.tests.command,
            working_dir=self.config.get_tests_working_dir(self.project_root),
            timeout=self.config.tests.get_timeout_seconds(),
        )
        self.message_generator = message_generator or CommitMessageGenerator(
            self.config.git.commit_format, self.config.git.commit_type
        )

        self._injected_logger = activity_logger
        self.activity_logger: Optional[ActivityLogger] = activity_logger

        self.attempt_tracker = AttemptTracker(self.config.workflow.max_attempts)
        self._orchestrator: Optional[WorkflowOrchestrator] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_workflow(
        self, options: Union[StartWorkflowOptions, Dict[str, Any]]
    ) -> WorkflowStatus:
        """Start a new workflow and create its feature branch.

        Args:
            options: StartWorkflowOptions or an equivalent mapping

        Returns:
            Status after entering the subtask loop

        Raises:
            WorkflowExistsError: If a workflow exists and force is not set
            WorkflowPreconditionError: If no subtasks are given
            GitOperationError: If the repository is missing or dirty, or the
                branch cannot be created
        """
        if isinstance(options, dict):
            options = StartWorkflowOptions(**options)

        if self.state_manager.exists() and not options.force:
            raise WorkflowExistsError(
                "A workflow is already in progress. Resume it, abort it, or "
                "start with force to replace it."
            )
        if not options.subtasks:
            raise WorkflowPreconditionError(
                f"Task {options.task_id} has no subtasks; nothing to run"
            )

        self.git.ensure_git_repository()
        self.git.ensure_clean_working_tree()

        if self.state_manager.exists():
            self.state_manager.delete()
        self._orchestrator = None
        self.attempt_tracker.reset_all()

        tag = options.tag or self.config.git.default_tag
        session_id = generate_session_id(options.task_id)
        subtasks = [
            s.model_copy(
                update={
                    "status": SubtaskStatus.PENDING,
                    "attempts": 0,
                    "max_attempts": options.max_attempts,
                },
                deep=True,
            )
            for s in options.subtasks
        ]
        context = WorkflowContext(
            task_id=options.task_id,
            subtasks=subtasks,
            metadata={
                "started_at": utcnow().isoformat(),
                "task_title": options.task_title,
                "tag": tag,
                "session_id": session_id,
            },
        )

        self._open_session(options.task_id, session_id)
        cleanup_old_sessions(
            self.config.get_log_dir(self.project_root),
            self.config.logging.retention_days,
            keep=session_id,
        )

        orchestrator = WorkflowOrchestrator(context)
        self._bind(orchestrator)
        self._orchestrator = orchestrator

        orchestrator.transition(
            WorkflowEvent(type=WorkflowEventType.PREFLIGHT_COMPLETE)
        )

        branch_name = generate_branch_name(options.task_id, options.task_title, tag)
        try:
            self.git.create_and_checkout_branch(branch_name)
        except GitOperationError as e:
            # A workflow without its branch cannot be resumed
            self._log_error(f"Branch creation failed: {e}")
            self.state_manager.delete()
            self._orchestrator = None
            raise

        orchestrator.transition(
            WorkflowEvent(type=WorkflowEventType.BRANCH_CREATED, branch_name=branch_name)
        )
        self._save_if_manual()

        if self.activity_logger:
            self.activity_logger.log_workflow_start(
                options.task_id, branch_name, len(subtasks)
            )

        return self.get_status()

    def resume_workflow(self) -> WorkflowStatus:
        """Resume the persisted workflow.

        Returns:
            Status of the restored workflow

        Raises:
            WorkflowNotFoundError: If there is no persisted workflow
            WorkflowStateError: If the persisted state is corrupted
        """
        if not self.state_manager.exists():
            raise WorkflowNotFoundError(
                "No workflow to resume. Start one with a task file."
            )

        state = self.state_manager.load()
        orchestrator = WorkflowOrchestrator(WorkflowContext(task_id=state.context.task_id))
        if not orchestrator.can_resume_from_state(state):
            raise WorkflowStateError(
                "Cannot resume workflow: state may be corrupted. Start a new workflow."
            )
        orchestrator.restore_state(state)

        context = orchestrator.get_context()
        session_id = context.metadata.get("session_id") or generate_session_id(
            context.task_id
        )
        self._open_session(context.task_id, session_id)

        self._bind(orchestrator)
        self._orchestrator = orchestrator

        # Attempt counts survive restarts through SubtaskInfo.attempts
        self.attempt_tracker.reset_all()
        current = orchestrator.get_current_subtask()
        tdd_phase = orchestrator.get_current_tdd_phase()
        if current is not None and tdd_phase is not None:
            self.attempt_tracker.seed(current.id, tdd_phase, current.attempts)

        if self.activity_logger:
            self.activity_logger.log_workflow_resume(
                context.task_id,
                orchestrator.get_current_phase().value,
                current.id if current else None,
            )

        return self.get_status()

    def abort_workflow(self, reason: Optional[str] = None) -> bool:
        """Abort the workflow and delete its persisted state.

        Returns:
            True if a workflow was aborted or a state file removed
        """
        aborted = False
        orchestrator = self._orchestrator

        if orchestrator is not None:
            task_id = orchestrator.get_context().task_id
            if orchestrator.get_current_phase() != WorkflowPhase.ABORTED:
                orchestrator.transition(
                    WorkflowEvent(type=WorkflowEventType.ABORT, reason=reason)
                )
            aborted = True
            if self.activity_logger:
                self.activity_logger.log_workflow_abort(task_id, reason)

        if self.state_manager.delete():
            aborted = True

        self._orchestrator = None
        self.attempt_tracker.reset_all()
        return aborted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_active_workflow(self) -> bool:
        """Check for a live workflow, or a persisted one when none is loaded."""
        if self._orchestrator is not None:
            return not self._orchestrator.is_terminal()
        return self.state_manager.exists()

    def get_status(self) -> WorkflowStatus:
        orchestrator = self._require_orchestrator()
        context = orchestrator.get_context()
        return WorkflowStatus(
            task_id=context.task_id,
            phase=orchestrator.get_current_phase(),
            tdd_phase=orchestrator.get_current_tdd_phase(),
            branch_name=context.branch_name,
            current_subtask=orchestrator.get_current_subtask(),
            progress=orchestrator.get_progress(),
        )

    def get_context(self) -> WorkflowContext:
        return self._require_orchestrator().get_context()

    def get_next_action(self) -> NextAction:
        """Recommend what the agent should do next."""
        orchestrator = self._require_orchestrator()
        phase = orchestrator.get_current_phase()
        tdd_phase = orchestrator.get_current_tdd_phase()
        subtask = orchestrator.get_current_subtask()

        label = ""
        if subtask is not None:
            label = f"subtask {subtask.id}" + (f": {subtask.title}" if subtask.title else "")

        if phase == WorkflowPhase.SUBTASK_LOOP and tdd_phase == TDDPhase.RED:
            action = NextActionType.GENERATE_TEST
            description = f"Write failing tests for {label}"
        elif phase == WorkflowPhase.SUBTASK_LOOP and tdd_phase == TDDPhase.GREEN:
            action = NextActionType.IMPLEMENT_FEATURE
            description = f"Implement code to make all tests pass for {label}"
        elif phase == WorkflowPhase.SUBTASK_LOOP and tdd_phase == TDDPhase.COMMIT:
            action = NextActionType.COMMIT_CHANGES
            description = f"Commit the changes for {label}"
        elif phase == WorkflowPhase.COMPLETE:
            action = NextActionType.UNKNOWN
            description = "Workflow complete; all subtasks are committed"
        else:
            action = NextActionType.UNKNOWN
            description = f"No agent action available in phase {phase.value}"

        return NextAction(
            action=action,
            description=description,
            phase=phase,
            tdd_phase=tdd_phase,
            subtask=subtask,
        )

    # ------------------------------------------------------------------
    # Phase operations
    # ------------------------------------------------------------------

    def complete_phase(
        self, test_results: Union[TestResult, Dict[str, Any]]
    ) -> WorkflowStatus:
        """Submit test evidence for the current RED or GREEN phase.

        Args:
            test_results: TestResult or an equivalent mapping

        Returns:
            Status after the phase advanced

        Raises:
            WorkflowPreconditionError: Outside RED/GREEN
            MaxAttemptsExceededError: If the phase's attempt ceiling is reached
            TestResultValidationError: If the evidence does not satisfy the phase
        """
        orchestrator = self._require_orchestrator()
        tdd_phase = self._require_evidence_phase(orchestrator)
        results = parse_test_result(test_results)
        subtask = self._check_attempts(orchestrator, tdd_phase)

        count = self.attempt_tracker.record_attempt(subtask.id, tdd_phase)
        orchestrator.record_attempt(count)

        try:
            orchestrator.transition(
                WorkflowEvent(
                    type=TDD_COMPLETION_EVENTS[tdd_phase], test_results=results
                )
            )
        except TestResultValidationError as e:
            orchestrator.record_error(str(e))
            self._save_if_manual()
            raise

        self.attempt_tracker.reset_attempts(subtask.id, tdd_phase)
        self._save_if_manual()
        return self.get_status()

    def run_red_phase(self, test_code: str) -> RedPhaseResult:
        """Evaluate freshly written tests and advance to GREEN if they fail.

        Returns:
            RedPhaseResult; a failed result has consumed one attempt
        """
        orchestrator = self._require_orchestrator()
        self._require_tdd_phase(orchestrator, TDDPhase.RED)
        subtask = self._check_attempts(orchestrator, TDDPhase.RED)

        result = RedPhaseOrchestrator(
            self.test_evaluator, self.activity_logger
        ).execute(subtask, test_code)

        if result.success:
            self.complete_phase(result.test_results)
        else:
            self._record_failed_attempt(orchestrator, subtask, TDDPhase.RED, result.error)
        return result

    def run_green_phase(self, implementation_code: str) -> GreenPhaseResult:
        """Evaluate an implementation and advance to COMMIT if all tests pass.

        Returns:
            GreenPhaseResult with feedback; a failed result has consumed one
            attempt
        """
        orchestrator = self._require_orchestrator()
        self._require_tdd_phase(orchestrator, TDDPhase.GREEN)
        subtask = self._check_attempts(orchestrator, TDDPhase.GREEN)
        attempt = self.attempt_tracker.get_attempt_count(subtask.id, TDDPhase.GREEN) + 1

        result = GreenPhaseOrchestrator(
            self.test_evaluator, self.activity_logger
        ).execute(subtask, implementation_code, attempt=attempt)

        if result.success:
            self.complete_phase(result.test_results)
        else:
            self._record_failed_attempt(
                orchestrator, subtask, TDDPhase.GREEN, result.error
            )
        return result

    def commit(self, changed_files: Optional[Sequence[str]] = None) -> WorkflowStatus:
        """Commit the current subtask and move on.

        Args:
            changed_files: Files to commit (default: all changed files)

        Returns:
            Status after the follow-up transition

        Raises:
            WorkflowPreconditionError: If not in the COMMIT phase
            CommitPhaseError: If nothing could be committed
            GitOperationError: If git fails
        """
        orchestrator = self._require_orchestrator()
        if (
            orchestrator.get_current_phase() != WorkflowPhase.SUBTASK_LOOP
            or orchestrator.get_current_tdd_phase() != TDDPhase.COMMIT
        ):
            current = orchestrator.get_current_tdd_phase() or orchestrator.get_current_phase()
            raise WorkflowPreconditionError(
                f"Cannot commit in {current.value} phase: "
                "complete RED and GREEN phases first"
            )

        files = (
            list(changed_files)
            if changed_files is not None
            else self.git.get_changed_files()
        )
        subtask = orchestrator.get_current_subtask()
        context = orchestrator.get_context()

        result = CommitPhaseOrchestrator(
            self.git, self.message_generator, self.activity_logger
        ).execute(context.task_id, subtask, files, test_results=context.last_test_results)

        if not result.success:
            orchestrator.record_error(result.error or "Commit failed")
            self._save_if_manual()
            raise CommitPhaseError(result.error or "Commit failed")

        orchestrator.transition(
            WorkflowEvent(
                type=WorkflowEventType.COMMIT_COMPLETE, commit_hash=result.commit_hash
            )
        )
        self._save_if_manual()
        return self.get_status()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_orchestrator(self) -> WorkflowOrchestrator:
        if self._orchestrator is None:
            raise WorkflowPreconditionError(
                "No active workflow. Start a new workflow or resume the existing one."
            )
        return self._orchestrator

    def _require_evidence_phase(self, orchestrator: WorkflowOrchestrator) -> TDDPhase:
        phase = orchestrator.get_current_phase()
        tdd_phase = orchestrator.get_current_tdd_phase()
        if phase != WorkflowPhase.SUBTASK_LOOP or tdd_phase is None:
            raise WorkflowPreconditionError(
                f"Cannot complete a phase outside the subtask loop "
                f"(current phase: {phase.value})"
            )
        if tdd_phase == TDDPhase.COMMIT:
            raise WorkflowPreconditionError(
                "Cannot complete the COMMIT phase with test results; use commit() instead"
            )
        return tdd_phase

    def _require_tdd_phase(
        self, orchestrator: WorkflowOrchestrator, expected: TDDPhase
    ) -> None:
        tdd_phase = self._require_evidence_phase(orchestrator)
        if tdd_phase != expected:
            raise WorkflowPreconditionError(
                f"Cannot run {expected.value} phase: current TDD phase is {tdd_phase.value}"
            )

    def _check_attempts(
        self, orchestrator: WorkflowOrchestrator, tdd_phase: TDDPhase
    ) -> SubtaskInfo:
        subtask = orchestrator.get_current_subtask()
        if subtask is None:
            raise WorkflowPreconditionError("No current subtask")
        if self.attempt_tracker.has_exceeded_max_attempts(
            subtask.id, tdd_phase, subtask.max_attempts
        ):
            raise MaxAttemptsExceededError(
                f"Maximum attempts ({subtask.max_attempts}) reached for "
                f"{tdd_phase.value} phase of subtask {subtask.id}. "
                "Abort the workflow to start over."
            )
        return subtask

    def _record_failed_attempt(
        self,
        orchestrator: WorkflowOrchestrator,
        subtask: SubtaskInfo,
        tdd_phase: TDDPhase,
        error: Optional[str],
    ) -> None:
        count = self.attempt_tracker.record_attempt(subtask.id, tdd_phase)
        orchestrator.record_attempt(count)
        orchestrator.record_error(error or f"{tdd_phase.value} phase failed")
        self._save_if_manual()

    def _open_session(self, task_id: str, session_id: str) -> None:
        if self._injected_logger is not None:
            self.activity_logger = self._injected_logger
        else:
            self.activity_logger = ActivityLogger(
                session_id=session_id,
                logs_dir=self.config.get_log_dir(self.project_root),
                task_id=task_id,
                level=self.config.logging.level,
            )
        if isinstance(self.test_evaluator, TestRunner):
            self.test_evaluator.activity_logger = self.activity_logger

    def _bind(self, orchestrator: WorkflowOrchestrator) -> None:
        if self.config.workflow.auto_persist:
            orchestrator.enable_auto_persist(self.state_manager.save)
        orchestrator.add_listener(self._on_notification)

    def _save_if_manual(self) -> None:
        # With auto-persist off, state is saved once per facade operation
        if self._orchestrator is not None and not self._orchestrator.auto_persist_enabled:
            self.state_manager.save(self._orchestrator.get_state())

    def _log_error(self, message: str) -> None:
        if self.activity_logger:
            self.activity_logger.log_error(message)

    def _on_notification(self, notification: WorkflowNotification) -> None:
        logger = self.activity_logger
        if logger is None:
            return

        if notification.type == NotificationType.PHASE_ENTERED:
            logger.log_phase_transition(
                notification.subtask_id,
                notification.data.get("from"),
                notification.phase.value,
            )
        elif notification.type in (
            NotificationType.TDD_RED_STARTED,
            NotificationType.TDD_GREEN_STARTED,
            NotificationType.TDD_COMMIT_STARTED,
        ):
            logger.log_phase_transition(
                notification.subtask_id,
                notification.data.get("from"),
                notification.tdd_phase.value if notification.tdd_phase else None,
            )
        elif notification.type == NotificationType.BRANCH_CREATED:
            logger.log_git_operation(
                "branch", {"branch_name": notification.data.get("branch_name")}
            )
        elif notification.type == NotificationType.SUBTASK_COMPLETED:
            logger.log_info(
                f"Subtask {notification.subtask_id} completed",
                subtask_id=notification.subtask_id,
                **notification.data,
            )
        elif notification.type == NotificationType.WORKFLOW_COMPLETED:
            orchestrator = self._orchestrator
            completed = orchestrator.get_progress().completed if orchestrator else 0
            task_id = orchestrator.get_context().task_id if orchestrator else ""
            logger.log_workflow_complete(task_id, completed)
        elif notification.type == NotificationType.ERROR_RECORDED:
            logger.log_error(
                notification.data.get("message", "Workflow error"),
                subtask_id=notification.subtask_id,
                phase=notification.tdd_phase.value if notification.tdd_phase else None,
            )
