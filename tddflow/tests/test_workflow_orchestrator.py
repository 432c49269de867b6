"""Tests for the workflow orchestrator state machine."""

from unittest.mock import Mock

import pytest

from tddflow.core.exceptions import (
    StateTransitionError,
    TestResultValidationError,
    WorkflowPreconditionError,
    WorkflowStateError,
)
from tddflow.core.workflow_orchestrator import WorkflowOrchestrator
from tddflow.core.workflow_types import (
    NotificationType,
    SubtaskInfo,
    SubtaskStatus,
    TDDPhase,
    TestResult,
    WorkflowContext,
    WorkflowEvent,
    WorkflowEventType,
    WorkflowPhase,
    WorkflowState,
)

BRANCH = "task-6-add-user-authentication"


def event(event_type, **kwargs):
    return WorkflowEvent(type=event_type, **kwargs)


def in_subtask_loop(context):
    """Orchestrator that has passed preflight and branch setup."""
    orchestrator = WorkflowOrchestrator(context)
    orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))
    orchestrator.transition(event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH))
    return orchestrator


def finish_cycle(orchestrator, commit_hash="abc123"):
    orchestrator.transition(
        event(
            WorkflowEventType.RED_PHASE_COMPLETE,
            test_results=TestResult.from_counts(0, 1),
        )
    )
    orchestrator.transition(
        event(
            WorkflowEventType.GREEN_PHASE_COMPLETE,
            test_results=TestResult.from_counts(1, 0),
        )
    )
    return orchestrator.transition(
        event(WorkflowEventType.COMMIT_COMPLETE, commit_hash=commit_hash)
    )


class TestWorkflowTransitions:
    """Test phase progression through a workflow."""

    def test_initial_state(self, context):
        orchestrator = WorkflowOrchestrator(context)

        assert orchestrator.get_current_phase() == WorkflowPhase.PREFLIGHT
        assert orchestrator.get_current_tdd_phase() is None
        assert not orchestrator.is_terminal()

    def test_preflight_to_branch_setup(self, context):
        orchestrator = WorkflowOrchestrator(context)
        state = orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        assert state.phase == WorkflowPhase.BRANCH_SETUP
        assert state.tdd_phase is None

    def test_branch_created_enters_subtask_loop(self, context):
        orchestrator = in_subtask_loop(context)

        assert orchestrator.get_current_phase() == WorkflowPhase.SUBTASK_LOOP
        assert orchestrator.get_current_tdd_phase() == TDDPhase.RED
        assert orchestrator.get_context().branch_name == BRANCH
        assert orchestrator.get_current_subtask().id == "6.1"

    def test_branch_created_requires_name(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        with pytest.raises(StateTransitionError, match="Branch name required"):
            orchestrator.transition(event(WorkflowEventType.BRANCH_CREATED))
        assert orchestrator.get_current_phase() == WorkflowPhase.BRANCH_SETUP

    def test_branch_created_requires_subtasks(self):
        orchestrator = WorkflowOrchestrator(WorkflowContext(task_id="6"))
        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        with pytest.raises(StateTransitionError, match="without subtasks"):
            orchestrator.transition(
                event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH)
            )

    def test_event_not_allowed_in_phase(self, context):
        orchestrator = WorkflowOrchestrator(context)

        with pytest.raises(StateTransitionError, match="Invalid transition"):
            orchestrator.transition(
                event(
                    WorkflowEventType.RED_PHASE_COMPLETE,
                    test_results=TestResult.from_counts(0, 1),
                )
            )
        assert orchestrator.get_current_phase() == WorkflowPhase.PREFLIGHT

    def test_event_requires_matching_tdd_phase(self, context):
        orchestrator = in_subtask_loop(context)

        with pytest.raises(StateTransitionError, match="requires TDD phase GREEN"):
            orchestrator.transition(
                event(
                    WorkflowEventType.GREEN_PHASE_COMPLETE,
                    test_results=TestResult.from_counts(1, 0),
                )
            )
        assert orchestrator.get_current_tdd_phase() == TDDPhase.RED

    def test_red_requires_test_results(self, context):
        orchestrator = in_subtask_loop(context)

        with pytest.raises(
            TestResultValidationError, match="Test results required for RED_PHASE_COMPLETE"
        ):
            orchestrator.transition(event(WorkflowEventType.RED_PHASE_COMPLETE))

    def test_red_rejects_all_passing(self, context):
        orchestrator = in_subtask_loop(context)

        with pytest.raises(
            TestResultValidationError,
            match=r"at least one failing test \(total: 1, failing: 0\)",
        ):
            orchestrator.transition(
                event(
                    WorkflowEventType.RED_PHASE_COMPLETE,
                    test_results=TestResult.from_counts(1, 0),
                )
            )
        assert orchestrator.get_current_tdd_phase() == TDDPhase.RED

    def test_red_rejects_no_tests(self, context):
        orchestrator = in_subtask_loop(context)

        with pytest.raises(TestResultValidationError, match="total: 0"):
            orchestrator.transition(
                event(
                    WorkflowEventType.RED_PHASE_COMPLETE,
                    test_results=TestResult.from_counts(0, 0),
                )
            )

    def test_green_rejects_failures(self, context):
        orchestrator = in_subtask_loop(context)
        orchestrator.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(0, 2),
            )
        )

        with pytest.raises(
            TestResultValidationError, match=r"all tests passing \(1 of 2 failing\)"
        ):
            orchestrator.transition(
                event(
                    WorkflowEventType.GREEN_PHASE_COMPLETE,
                    test_results=TestResult.from_counts(1, 1),
                )
            )
        assert orchestrator.get_current_tdd_phase() == TDDPhase.GREEN

    def test_commit_advances_to_next_subtask(self, context):
        orchestrator = in_subtask_loop(context)
        state = finish_cycle(orchestrator, commit_hash="abc123")

        assert state.phase == WorkflowPhase.SUBTASK_LOOP
        assert state.tdd_phase == TDDPhase.RED
        assert state.context.current_subtask_index == 1
        assert state.context.subtasks[0].status == SubtaskStatus.COMPLETED
        assert state.context.metadata["commits"] == {"6.1": "abc123"}
        assert orchestrator.get_current_subtask().id == "6.2"

    def test_last_commit_completes_workflow(self, context):
        orchestrator = in_subtask_loop(context)
        finish_cycle(orchestrator, "abc123")
        state = finish_cycle(orchestrator, "def456")

        assert state.phase == WorkflowPhase.COMPLETE
        assert state.tdd_phase is None
        assert orchestrator.is_terminal()
        assert orchestrator.get_current_subtask() is None
        assert all(s.status == SubtaskStatus.COMPLETED for s in state.context.subtasks)

    def test_subtask_complete_requires_completed_subtask(self, context):
        orchestrator = in_subtask_loop(context)
        orchestrator.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(0, 1),
            )
        )
        orchestrator.transition(
            event(
                WorkflowEventType.GREEN_PHASE_COMPLETE,
                test_results=TestResult.from_counts(1, 0),
            )
        )

        with pytest.raises(StateTransitionError, match="is not completed"):
            orchestrator.transition(event(WorkflowEventType.SUBTASK_COMPLETE))

    def test_all_subtasks_complete_requires_no_pending(self, context):
        orchestrator = in_subtask_loop(context)
        orchestrator.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(0, 1),
            )
        )
        orchestrator.transition(
            event(
                WorkflowEventType.GREEN_PHASE_COMPLETE,
                test_results=TestResult.from_counts(1, 0),
            )
        )

        with pytest.raises(StateTransitionError, match="still pending"):
            orchestrator.transition(event(WorkflowEventType.ALL_SUBTASKS_COMPLETE))

    @pytest.mark.parametrize("steps", [0, 1, 2])
    def test_abort_from_any_phase(self, context, steps):
        orchestrator = WorkflowOrchestrator(context)
        if steps >= 1:
            orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))
        if steps >= 2:
            orchestrator.transition(
                event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH)
            )

        state = orchestrator.transition(event(WorkflowEventType.ABORT, reason="stop"))

        assert state.phase == WorkflowPhase.ABORTED
        assert state.tdd_phase is None
        assert orchestrator.is_terminal()

    def test_abort_from_complete_and_aborted(self, context):
        orchestrator = in_subtask_loop(context)
        finish_cycle(orchestrator)
        finish_cycle(orchestrator)

        orchestrator.transition(event(WorkflowEventType.ABORT))
        orchestrator.transition(event(WorkflowEventType.ABORT))

        assert orchestrator.get_current_phase() == WorkflowPhase.ABORTED


class TestAttemptsAndErrors:
    """Test attempt and error recording."""

    def test_record_attempt_outside_loop(self, context):
        orchestrator = WorkflowOrchestrator(context)

        with pytest.raises(WorkflowPreconditionError, match="subtask loop"):
            orchestrator.record_attempt(1)

    def test_record_attempt_updates_current_subtask(self, context):
        orchestrator = in_subtask_loop(context)

        subtask = orchestrator.record_attempt(2)

        assert subtask.attempts == 2
        assert orchestrator.get_current_subtask().attempts == 2

    def test_phase_advance_resets_attempts(self, context):
        orchestrator = in_subtask_loop(context)
        orchestrator.record_attempt(2)
        orchestrator.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(0, 1),
            )
        )

        assert orchestrator.get_current_subtask().attempts == 0

    def test_phase_advance_stores_test_results(self, context):
        orchestrator = in_subtask_loop(context)
        green = TestResult.from_counts(4, 0)
        orchestrator.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(3, 1),
            )
        )
        orchestrator.transition(
            event(WorkflowEventType.GREEN_PHASE_COMPLETE, test_results=green)
        )

        state = WorkflowState.model_validate_json(
            orchestrator.get_state().model_dump_json()
        )
        assert state.context.last_test_results == green

    def test_record_error(self, context):
        orchestrator = in_subtask_loop(context)
        received = []
        orchestrator.add_listener(received.append, NotificationType.ERROR_RECORDED)

        record = orchestrator.record_error("tests did not run", recoverable=False)

        assert record.subtask_id == "6.1"
        assert record.tdd_phase == TDDPhase.RED
        assert not record.recoverable
        assert orchestrator.get_context().errors[-1].message == "tests did not run"
        assert received[0].data == {"message": "tests did not run", "recoverable": False}


class TestListenersAndGuards:
    """Test listener notifications and guard conditions."""

    def test_branch_created_notifications(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))
        received = []
        orchestrator.add_listener(received.append)

        orchestrator.transition(event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH))

        types = [n.type for n in received]
        assert types == [
            NotificationType.BRANCH_CREATED,
            NotificationType.PHASE_EXITED,
            NotificationType.PHASE_ENTERED,
            NotificationType.SUBTASK_STARTED,
            NotificationType.TDD_RED_STARTED,
        ]
        assert received[0].data == {"branch_name": BRANCH}
        assert received[1].phase == WorkflowPhase.BRANCH_SETUP
        assert received[2].phase == WorkflowPhase.SUBTASK_LOOP
        assert received[2].data == {"from": "BRANCH_SETUP"}
        assert received[3].subtask_id == "6.1"

    def test_filtered_listener(self, context):
        orchestrator = in_subtask_loop(context)
        completed = []
        orchestrator.add_listener(completed.append, NotificationType.SUBTASK_COMPLETED)

        finish_cycle(orchestrator, "abc123")

        assert len(completed) == 1
        assert completed[0].subtask_id == "6.1"
        assert completed[0].data == {"commit_hash": "abc123"}

    def test_workflow_completed_notification(self, context):
        orchestrator = in_subtask_loop(context)
        listener = Mock()
        orchestrator.add_listener(listener, NotificationType.WORKFLOW_COMPLETED)

        finish_cycle(orchestrator)
        listener.assert_not_called()

        finish_cycle(orchestrator)
        listener.assert_called_once()

    def test_listener_errors_are_recorded(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.add_listener(Mock(side_effect=RuntimeError("boom")))

        state = orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        assert state.phase == WorkflowPhase.BRANCH_SETUP
        errors = orchestrator.get_context().errors
        assert errors
        assert "boom" in errors[0].message

    def test_remove_listener(self, context):
        orchestrator = WorkflowOrchestrator(context)
        listener = Mock()
        orchestrator.add_listener(listener)
        orchestrator.remove_listener(listener)

        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        listener.assert_not_called()

    def test_guard_blocks_phase_entry(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))
        guard = Mock(return_value=False)
        orchestrator.add_guard(WorkflowPhase.SUBTASK_LOOP, guard)

        with pytest.raises(
            StateTransitionError, match="Guard condition failed for transition to SUBTASK_LOOP"
        ):
            orchestrator.transition(
                event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH)
            )

        guard.assert_called_once()
        assert orchestrator.get_current_phase() == WorkflowPhase.BRANCH_SETUP
        assert orchestrator.get_context().branch_name is None

    def test_remove_guard(self, context):
        orchestrator = WorkflowOrchestrator(context)
        guard = Mock(return_value=False)
        orchestrator.add_guard(WorkflowPhase.BRANCH_SETUP, guard)
        orchestrator.remove_guard(WorkflowPhase.BRANCH_SETUP, guard)

        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        assert orchestrator.get_current_phase() == WorkflowPhase.BRANCH_SETUP

    def test_guard_receives_context(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.add_guard(
            WorkflowPhase.BRANCH_SETUP, lambda ctx: ctx.task_id == "6"
        )

        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        assert orchestrator.get_current_phase() == WorkflowPhase.BRANCH_SETUP

    def test_abort_ignores_guards(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.add_guard(WorkflowPhase.ABORTED, lambda ctx: False)

        orchestrator.transition(event(WorkflowEventType.ABORT))

        assert orchestrator.get_current_phase() == WorkflowPhase.ABORTED


class TestPersistence:
    """Test auto-persistence and state restoration."""

    def test_auto_persist_after_each_transition(self, context):
        orchestrator = WorkflowOrchestrator(context)
        saved = []
        orchestrator.enable_auto_persist(saved.append)

        assert orchestrator.auto_persist_enabled
        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))
        orchestrator.transition(event(WorkflowEventType.BRANCH_CREATED, branch_name=BRANCH))

        assert [s.phase for s in saved] == [
            WorkflowPhase.BRANCH_SETUP,
            WorkflowPhase.SUBTASK_LOOP,
        ]
        assert saved[-1].context.branch_name == BRANCH

    def test_commit_persists_intermediate_and_final_state(self, context):
        orchestrator = in_subtask_loop(context)
        saved = []
        orchestrator.enable_auto_persist(saved.append)

        finish_cycle(orchestrator)

        assert saved[-1].tdd_phase == TDDPhase.RED
        assert saved[-1].context.current_subtask_index == 1

    def test_state_persisted_notification(self, context):
        orchestrator = WorkflowOrchestrator(context)
        orchestrator.enable_auto_persist(Mock())
        persisted = []
        orchestrator.add_listener(persisted.append, NotificationType.STATE_PERSISTED)

        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        assert len(persisted) == 1

    def test_disable_auto_persist(self, context):
        orchestrator = WorkflowOrchestrator(context)
        callback = Mock()
        orchestrator.enable_auto_persist(callback)
        orchestrator.disable_auto_persist()

        orchestrator.transition(event(WorkflowEventType.PREFLIGHT_COMPLETE))

        callback.assert_not_called()
        assert not orchestrator.auto_persist_enabled

    def test_persist_state_explicitly(self, context):
        orchestrator = WorkflowOrchestrator(context)
        callback = Mock()
        orchestrator.enable_auto_persist(callback)

        state = orchestrator.persist_state()

        callback.assert_called_once_with(state)
        assert state.phase == WorkflowPhase.PREFLIGHT

    def test_can_resume_valid_state(self, context):
        orchestrator = in_subtask_loop(context)
        state = orchestrator.get_state()

        fresh = WorkflowOrchestrator(WorkflowContext(task_id="6"))
        assert fresh.can_resume_from_state(state)
        assert fresh.can_resume_from_state(state.model_dump(mode="json"))

    @pytest.mark.parametrize(
        "phase,tdd_phase",
        [
            (WorkflowPhase.SUBTASK_LOOP, None),
            (WorkflowPhase.PREFLIGHT, TDDPhase.RED),
            (WorkflowPhase.ABORTED, None),
            (WorkflowPhase.COMPLETE, None),
        ],
    )
    def test_cannot_resume_inconsistent_state(self, context, phase, tdd_phase):
        state = WorkflowState(phase=phase, tdd_phase=tdd_phase, context=context)
        assert not WorkflowOrchestrator(context).can_resume_from_state(state)

    def test_cannot_resume_without_subtasks(self):
        context = WorkflowContext(task_id="6")
        state = WorkflowState(phase=WorkflowPhase.PREFLIGHT, context=context)
        assert not WorkflowOrchestrator(context).can_resume_from_state(state)

    def test_cannot_resume_loop_past_last_subtask(self, context):
        context.current_subtask_index = 2
        state = WorkflowState(
            phase=WorkflowPhase.SUBTASK_LOOP, tdd_phase=TDDPhase.RED, context=context
        )
        assert not WorkflowOrchestrator(context).can_resume_from_state(state)

    def test_cannot_resume_malformed_dict(self, context):
        orchestrator = WorkflowOrchestrator(context)
        assert not orchestrator.can_resume_from_state({"phase": "NOPE"})

    def test_restore_state(self, context):
        original = in_subtask_loop(context)
        original.transition(
            event(
                WorkflowEventType.RED_PHASE_COMPLETE,
                test_results=TestResult.from_counts(0, 1),
            )
        )
        state = original.get_state()

        restored = WorkflowOrchestrator(WorkflowContext(task_id="6"))
        restored.restore_state(state.model_dump(mode="json"))

        assert restored.get_state() == state
        assert restored.get_current_tdd_phase() == TDDPhase.GREEN

    def test_restore_invalid_state_raises(self, context):
        state = WorkflowState(phase=WorkflowPhase.ABORTED, context=context)

        with pytest.raises(WorkflowStateError, match="state may be corrupted"):
            WorkflowOrchestrator(context).restore_state(state)

    def test_get_context_returns_copy(self, context):
        orchestrator = WorkflowOrchestrator(context)
        copy = orchestrator.get_context()
        copy.subtasks[0].status = SubtaskStatus.COMPLETED

        assert not orchestrator.get_context().subtasks[0].is_completed


class TestProgress:
    """Test progress reporting."""

    def test_progress_at_start(self, context):
        progress = in_subtask_loop(context).get_progress()

        assert (progress.completed, progress.total, progress.current) == (0, 2, 1)
        assert progress.percentage == 0

    def test_progress_rounds_half_up(self):
        subtasks = [SubtaskInfo(id=str(i)) for i in range(8)]
        subtasks[0].status = SubtaskStatus.COMPLETED
        context = WorkflowContext(task_id="8", subtasks=subtasks, current_subtask_index=1)
        orchestrator = WorkflowOrchestrator(
            context, phase=WorkflowPhase.SUBTASK_LOOP, tdd_phase=TDDPhase.RED
        )

        progress = orchestrator.get_progress()

        assert progress.completed == 1
        assert progress.current == 2
        assert progress.percentage == 13

    def test_progress_without_subtasks(self):
        progress = WorkflowOrchestrator(WorkflowContext(task_id="6")).get_progress()
        assert progress.total == 0
        assert progress.percentage == 0
