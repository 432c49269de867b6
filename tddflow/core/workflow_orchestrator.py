"""State machine driving a workflow through its phases and TDD cycles."""

import math
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from .exceptions import (
    StateTransitionError,
    TestResultValidationError,
    WorkflowPreconditionError,
    WorkflowStateError,
)
from .phase_transitions import PhaseTransitionValidator
from .workflow_types import (
    TERMINAL_PHASES,
    NotificationType,
    SubtaskInfo,
    SubtaskStatus,
    TDDPhase,
    TestResult,
    WorkflowContext,
    WorkflowErrorRecord,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowNotification,
    WorkflowPhase,
    WorkflowProgress,
    WorkflowState,
)

PersistCallback = Callable[[WorkflowState], None]
Listener = Callable[[WorkflowNotification], None]
Guard = Callable[[WorkflowContext], bool]


# Events accepted in each top-level phase
PHASE_EVENTS: Dict[WorkflowPhase, List[WorkflowEventType]] = {
    WorkflowPhase.PREFLIGHT: [
        WorkflowEventType.PREFLIGHT_COMPLETE,
        WorkflowEventType.ABORT,
    ],
    WorkflowPhase.BRANCH_SETUP: [
        WorkflowEventType.BRANCH_CREATED,
        WorkflowEventType.ABORT,
    ],
    WorkflowPhase.SUBTASK_LOOP: [
        WorkflowEventType.RED_PHASE_COMPLETE,
        WorkflowEventType.GREEN_PHASE_COMPLETE,
        WorkflowEventType.COMMIT_COMPLETE,
        WorkflowEventType.SUBTASK_COMPLETE,
        WorkflowEventType.ALL_SUBTASKS_COMPLETE,
        WorkflowEventType.ABORT,
    ],
    WorkflowPhase.COMPLETE: [WorkflowEventType.ABORT],
    WorkflowPhase.ABORTED: [WorkflowEventType.ABORT],
}

# TDD phase that must be active for each subtask-loop event
TDD_EVENT_PHASES: Dict[WorkflowEventType, TDDPhase] = {
    WorkflowEventType.RED_PHASE_COMPLETE: TDDPhase.RED,
    WorkflowEventType.GREEN_PHASE_COMPLETE: TDDPhase.GREEN,
    WorkflowEventType.COMMIT_COMPLETE: TDDPhase.COMMIT,
    WorkflowEventType.SUBTASK_COMPLETE: TDDPhase.COMMIT,
    WorkflowEventType.ALL_SUBTASKS_COMPLETE: TDDPhase.COMMIT,
}

TDD_STARTED_NOTIFICATIONS: Dict[TDDPhase, NotificationType] = {
    TDDPhase.RED: NotificationType.TDD_RED_STARTED,
    TDDPhase.GREEN: NotificationType.TDD_GREEN_STARTED,
    TDDPhase.COMMIT: NotificationType.TDD_COMMIT_STARTED,
}


class WorkflowOrchestrator:
    """
    Authoritative state machine for one workflow run.

    This class provides:
    - Event-driven transitions with validation of every move
    - Evidence checks for the RED and GREEN phases
    - Listener notifications for phase, subtask and git events
    - Guard conditions on entering a phase
    - Auto-persistence of the full state after every transition
    """

    def __init__(
        self,
        context: WorkflowContext,
        phase: WorkflowPhase = WorkflowPhase.PREFLIGHT,
        tdd_phase: Optional[TDDPhase] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            context: Workflow context; owned by this orchestrator from now on
            phase: Initial top-level phase
            tdd_phase: Initial TDD phase (only inside SUBTASK_LOOP)
        """
        self._context = context
        self._phase = phase
        self._tdd_phase = tdd_phase
        self._lock = threading.RLock()
        self._listeners: List[Tuple[Optional[NotificationType], Listener]] = []
        self._guards: Dict[WorkflowPhase, List[Guard]] = {}
        self._persist_callback: Optional[PersistCallback] = None
        self._pending: List[WorkflowNotification] = []

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(self, event: WorkflowEvent) -> WorkflowState:
        """
        Apply a transition event.

        Args:
            event: Event to apply

        Returns:
            Snapshot of the state after the transition

        Raises:
            StateTransitionError: If the event is not legal in the current phase
            TestResultValidationError: If RED/GREEN evidence is missing or invalid
        """
        with self._lock:
            self._check_event_allowed(event)
            self._pending = []

            handler = self._handlers()[event.type]
            handler(event)
            self._after_change()

            if event.type == WorkflowEventType.COMMIT_COMPLETE:
                follow_up = (
                    WorkflowEventType.SUBTASK_COMPLETE
                    if self._has_next_subtask()
                    else WorkflowEventType.ALL_SUBTASKS_COMPLETE
                )
                return self.transition(WorkflowEvent(type=follow_up))

            return self.get_state()

    def _handlers(self) -> Dict[WorkflowEventType, Callable[[WorkflowEvent], None]]:
        return {
            WorkflowEventType.PREFLIGHT_COMPLETE: self._on_preflight_complete,
            WorkflowEventType.BRANCH_CREATED: self._on_branch_created,
            WorkflowEventType.RED_PHASE_COMPLETE: self._on_red_phase_complete,
            WorkflowEventType.GREEN_PHASE_COMPLETE: self._on_green_phase_complete,
            WorkflowEventType.COMMIT_COMPLETE: self._on_commit_complete,
            WorkflowEventType.SUBTASK_COMPLETE: self._on_subtask_complete,
            WorkflowEventType.ALL_SUBTASKS_COMPLETE: self._on_all_subtasks_complete,
            WorkflowEventType.ABORT: self._on_abort,
        }

    def _check_event_allowed(self, event: WorkflowEvent) -> None:
        allowed = PHASE_EVENTS.get(self._phase, [])
        if event.type not in allowed:
            raise StateTransitionError(
                f"Invalid transition: {event.type.value} is not allowed in phase "
                f"{self._phase.value}. Allowed events: {[e.value for e in allowed]}"
            )

        required_tdd = TDD_EVENT_PHASES.get(event.type)
        if required_tdd is not None and self._tdd_phase != required_tdd:
            current = self._tdd_phase.value if self._tdd_phase else None
            raise StateTransitionError(
                f"Invalid transition: {event.type.value} requires TDD phase "
                f"{required_tdd.value}, current TDD phase is {current}"
            )

    def _on_preflight_complete(self, event: WorkflowEvent) -> None:
        self._enter_phase(WorkflowPhase.BRANCH_SETUP)

    def _on_branch_created(self, event: WorkflowEvent) -> None:
        branch_name = (event.branch_name or "").strip()
        if not branch_name:
            raise StateTransitionError("Branch name required for BRANCH_CREATED")
        if self._context.branch_name and self._context.branch_name != branch_name:
            raise StateTransitionError(
                f"Branch name already set to '{self._context.branch_name}'"
            )
        if not self._context.subtasks:
            raise StateTransitionError("Cannot enter SUBTASK_LOOP without subtasks")

        self._check_guards(WorkflowPhase.SUBTASK_LOOP)
        self._context.branch_name = branch_name
        self._queue(
            NotificationType.BRANCH_CREATED, data={"branch_name": branch_name}
        )
        self._enter_phase(WorkflowPhase.SUBTASK_LOOP, TDDPhase.RED, check_guards=False)
        self._queue(NotificationType.SUBTASK_STARTED)
        self._queue(NotificationType.TDD_RED_STARTED)

    def _on_red_phase_complete(self, event: WorkflowEvent) -> None:
        results = self._require_test_results(event)
        if not (
            results.total_tests > 0
            and results.has_failures
            and results.failure_count > 0
        ):
            raise TestResultValidationError(
                "RED phase requires at least one failing test "
                f"(total: {results.total_tests}, failing: {results.failure_count})"
            )
        self._advance_tdd_phase(TDDPhase.GREEN, results)

    def _on_green_phase_complete(self, event: WorkflowEvent) -> None:
        results = self._require_test_results(event)
        if not (
            results.total_tests > 0 and results.failure_count == 0 and results.passed
        ):
            raise TestResultValidationError(
                "GREEN phase requires all tests passing "
                f"({results.failure_count} of {results.total_tests} failing)"
            )
        self._advance_tdd_phase(TDDPhase.COMMIT, results)

    def _on_commit_complete(self, event: WorkflowEvent) -> None:
        subtask = self._live_current_subtask()
        subtask.status = SubtaskStatus.COMPLETED
        subtask.attempts = 0

        data: Dict[str, Any] = {}
        if event.commit_hash:
            self._context.metadata.setdefault("commits", {})[subtask.id] = (
                event.commit_hash
            )
            data["commit_hash"] = event.commit_hash
        self._queue(NotificationType.SUBTASK_COMPLETED, data=data)

    def _on_subtask_complete(self, event: WorkflowEvent) -> None:
        subtask = self._live_current_subtask()
        if not subtask.is_completed:
            raise StateTransitionError(
                f"Invalid transition: subtask {subtask.id} is not completed"
            )
        if not self._has_next_subtask():
            raise StateTransitionError(
                "Invalid transition: no remaining subtasks, "
                "use ALL_SUBTASKS_COMPLETE"
            )

        validation = PhaseTransitionValidator.validate_transition(
            TDDPhase.COMMIT, TDDPhase.RED
        )
        if not validation.valid:
            raise StateTransitionError(validation.error)

        self._context.current_subtask_index += 1
        self._tdd_phase = TDDPhase.RED
        self._queue(NotificationType.SUBTASK_STARTED)
        self._queue(NotificationType.TDD_RED_STARTED, data={"from": TDDPhase.COMMIT.value})

    def _on_all_subtasks_complete(self, event: WorkflowEvent) -> None:
        pending = [s.id for s in self._context.subtasks if not s.is_completed]
        if pending:
            raise StateTransitionError(
                f"Invalid transition: subtasks still pending: {pending}"
            )
        self._enter_phase(WorkflowPhase.COMPLETE)
        self._queue(NotificationType.WORKFLOW_COMPLETED)

    def _on_abort(self, event: WorkflowEvent) -> None:
        # Guards are not consulted; abort is always legal
        from_phase = self._phase
        self._phase = WorkflowPhase.ABORTED
        self._tdd_phase = None
        self._queue(NotificationType.PHASE_EXITED, phase=from_phase)
        self._queue(NotificationType.PHASE_ENTERED, data={"from": from_phase.value})
        self._queue(
            NotificationType.WORKFLOW_ABORTED,
            data={"reason": event.reason} if event.reason else {},
        )

    def _enter_phase(
        self,
        to_phase: WorkflowPhase,
        tdd_phase: Optional[TDDPhase] = None,
        check_guards: bool = True,
    ) -> None:
        if check_guards:
            self._check_guards(to_phase)
        from_phase = self._phase
        self._phase = to_phase
        self._tdd_phase = tdd_phase
        self._queue(NotificationType.PHASE_EXITED, phase=from_phase)
        self._queue(NotificationType.PHASE_ENTERED, data={"from": from_phase.value})

    def _advance_tdd_phase(self, to_phase: TDDPhase, results: TestResult) -> None:
        validation = PhaseTransitionValidator.validate_transition(
            self._tdd_phase, to_phase
        )
        if not validation.valid:
            raise StateTransitionError(validation.error)

        from_phase = self._tdd_phase
        self._tdd_phase = to_phase
        self._live_current_subtask().attempts = 0
        self._context.last_test_results = results
        self._queue(
            TDD_STARTED_NOTIFICATIONS[to_phase],
            data={
                "from": from_phase.value,
                "total_tests": results.total_tests,
                "failure_count": results.failure_count,
            },
        )

    def _require_test_results(self, event: WorkflowEvent) -> TestResult:
        if event.test_results is None:
            raise TestResultValidationError(
                f"Test results required for {event.type.value}"
            )
        return event.test_results

    def _check_guards(self, phase: WorkflowPhase) -> None:
        for guard in self._guards.get(phase, []):
            if not guard(self._context):
                raise StateTransitionError(
                    f"Guard condition failed for transition to {phase.value}"
                )

    # ------------------------------------------------------------------
    # Context mutation outside transitions
    # ------------------------------------------------------------------

    def record_attempt(self, count: int) -> SubtaskInfo:
        """
        Store the attempt count for the current subtask's active TDD phase.

        Args:
            count: Attempt count reported by the attempt tracker

        Returns:
            Snapshot of the updated subtask
        """
        with self._lock:
            if self._phase != WorkflowPhase.SUBTASK_LOOP:
                raise WorkflowPreconditionError(
                    "Attempts can only be recorded inside the subtask loop"
                )
            subtask = self._live_current_subtask()
            subtask.attempts = count
            self._pending = []
            self._after_change()
            return subtask.model_copy(deep=True)

    def record_error(self, message: str, recoverable: bool = True) -> WorkflowErrorRecord:
        """
        Append a failure record to the context.

        Args:
            message: Error description
            recoverable: Whether the workflow can continue after this error

        Returns:
            The recorded entry
        """
        with self._lock:
            current = self.get_current_subtask()
            record = WorkflowErrorRecord(
                message=message,
                phase=self._phase,
                tdd_phase=self._tdd_phase,
                subtask_id=current.id if current else None,
                recoverable=recoverable,
            )
            self._context.errors.append(record)
            self._pending = []
            self._queue(
                NotificationType.ERROR_RECORDED,
                data={"message": message, "recoverable": recoverable},
            )
            self._after_change()
            return record

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_current_phase(self) -> WorkflowPhase:
        return self._phase

    def get_current_tdd_phase(self) -> Optional[TDDPhase]:
        return self._tdd_phase

    def get_current_subtask(self) -> Optional[SubtaskInfo]:
        """Get a copy of the subtask at the cursor, or None once the run is over."""
        if self._phase in TERMINAL_PHASES:
            return None
        index = self._context.current_subtask_index
        if index >= len(self._context.subtasks):
            return None
        return self._context.subtasks[index].model_copy(deep=True)

    def get_context(self) -> WorkflowContext:
        """Get a copy of the workflow context."""
        return self._context.model_copy(deep=True)

    def get_state(self) -> WorkflowState:
        """Get a snapshot of the full serializable state."""
        return WorkflowState(
            phase=self._phase,
            tdd_phase=self._tdd_phase,
            context=self._context.model_copy(deep=True),
        )

    def get_progress(self) -> WorkflowProgress:
        """Get subtask progress; ``current`` is 1-based for display."""
        total = len(self._context.subtasks)
        completed = sum(1 for s in self._context.subtasks if s.is_completed)
        # Half-up rounding, so 12.5% displays as 13%
        percentage = math.floor(100 * completed / total + 0.5) if total else 0
        return WorkflowProgress(
            completed=completed,
            total=total,
            current=self._context.current_subtask_index + 1,
            percentage=percentage,
        )

    def is_terminal(self) -> bool:
        return self._phase in TERMINAL_PHASES

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def enable_auto_persist(self, callback: PersistCallback) -> None:
        """
        Persist the full state after every transition.

        Args:
            callback: Receives a WorkflowState snapshot; replaces any previous hook
        """
        with self._lock:
            self._persist_callback = callback

    def disable_auto_persist(self) -> None:
        with self._lock:
            self._persist_callback = None

    @property
    def auto_persist_enabled(self) -> bool:
        return self._persist_callback is not None

    def persist_state(self) -> WorkflowState:
        """Hand the current state to the persistence hook, if one is set."""
        with self._lock:
            state = self.get_state()
            if self._persist_callback:
                self._persist_callback(state)
            self._notify(self._make_notification(NotificationType.STATE_PERSISTED))
            return state

    def can_resume_from_state(self, state: Union[WorkflowState, Dict[str, Any]]) -> bool:
        """
        Check that a loaded state is structurally sound.

        Args:
            state: WorkflowState or its serialized dictionary

        Returns:
            True if the state can be adopted with restore_state()
        """
        if isinstance(state, dict):
            try:
                state = WorkflowState.model_validate(state)
            except ValidationError:
                return False

        context = state.context
        if not context.subtasks:
            return False

        index = context.current_subtask_index
        if not 0 <= index <= len(context.subtasks):
            return False

        if state.phase == WorkflowPhase.ABORTED:
            return False

        if state.phase == WorkflowPhase.SUBTASK_LOOP:
            if state.tdd_phase is None or index >= len(context.subtasks):
                return False
        elif state.tdd_phase is not None:
            return False

        if state.phase == WorkflowPhase.COMPLETE:
            return all(s.is_completed for s in context.subtasks)

        return True

    def restore_state(self, state: Union[WorkflowState, Dict[str, Any]]) -> None:
        """
        Replace the orchestrator's context and phases with a loaded state.

        Args:
            state: WorkflowState or its serialized dictionary

        Raises:
            WorkflowStateError: If the state cannot be resumed
        """
        with self._lock:
            if not self.can_resume_from_state(state):
                raise WorkflowStateError(
                    "Cannot restore workflow state: state may be corrupted. "
                    "Start a new workflow."
                )
            if isinstance(state, dict):
                state = WorkflowState.model_validate(state)

            self._context = state.context.model_copy(deep=True)
            self._phase = state.phase
            self._tdd_phase = state.tdd_phase

    # ------------------------------------------------------------------
    # Listeners and guards
    # ------------------------------------------------------------------

    def add_listener(
        self, listener: Listener, event_type: Optional[NotificationType] = None
    ) -> None:
        """
        Add a listener for workflow notifications.

        Args:
            listener: Callback receiving a WorkflowNotification
            event_type: Only deliver notifications of this type (default: all)
        """
        with self._lock:
            self._listeners.append((event_type, listener))

    def remove_listener(
        self, listener: Listener, event_type: Optional[NotificationType] = None
    ) -> None:
        with self._lock:
            self._listeners = [
                (t, fn)
                for t, fn in self._listeners
                if not (fn is listener and (event_type is None or t == event_type))
            ]

    def add_guard(self, phase: WorkflowPhase, guard: Guard) -> None:
        """
        Add a guard that must return True before the phase can be entered.

        Args:
            phase: Phase the guard protects
            guard: Predicate over the workflow context
        """
        with self._lock:
            self._guards.setdefault(phase, []).append(guard)

    def remove_guard(self, phase: WorkflowPhase, guard: Guard) -> None:
        with self._lock:
            guards = self._guards.get(phase, [])
            if guard in guards:
                guards.remove(guard)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _live_current_subtask(self) -> SubtaskInfo:
        index = self._context.current_subtask_index
        if index >= len(self._context.subtasks):
            raise WorkflowPreconditionError("No current subtask")
        return self._context.subtasks[index]

    def _has_next_subtask(self) -> bool:
        return self._context.current_subtask_index + 1 < len(self._context.subtasks)

    def _make_notification(
        self,
        notification_type: NotificationType,
        phase: Optional[WorkflowPhase] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowNotification:
        index = self._context.current_subtask_index
        subtask_id = (
            self._context.subtasks[index].id
            if index < len(self._context.subtasks)
            else None
        )
        return WorkflowNotification(
            type=notification_type,
            phase=phase or self._phase,
            tdd_phase=self._tdd_phase,
            subtask_id=subtask_id,
            data=data or {},
        )

    def _queue(
        self,
        notification_type: NotificationType,
        phase: Optional[WorkflowPhase] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._pending.append(self._make_notification(notification_type, phase, data))

    def _after_change(self) -> None:
        """Deliver queued notifications, then persist if enabled."""
        pending, self._pending = self._pending, []
        for notification in pending:
            self._notify(notification)

        if self._persist_callback:
            self._persist_callback(self.get_state())
            self._notify(self._make_notification(NotificationType.STATE_PERSISTED))

    def _notify(self, notification: WorkflowNotification) -> None:
        """Notify matching listeners; listener failures are recorded, not raised."""
        for event_type, listener in list(self._listeners):
            if event_type is not None and event_type != notification.type:
                continue
            try:
                listener(notification)
            except Exception as e:
                self._context.errors.append(
                    WorkflowErrorRecord(
                        message=f"Listener error on {notification.type.value}: {e}",
                        phase=self._phase,
                        tdd_phase=self._tdd_phase,
                        subtask_id=notification.subtask_id,
                    )
                )
