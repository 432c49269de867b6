"""Core tddflow functionality."""

from .commit_message import CommitMessageGenerator
from .exceptions import (
    ActivityTrackingError,
    CommitPhaseError,
    ConfigurationError,
    GitOperationError,
    MaxAttemptsExceededError,
    StatePersistenceError,
    StateTransitionError,
    TDDFlowError,
    TestResultValidationError,
    TestRunnerError,
    WorkflowError,
    WorkflowExistsError,
    WorkflowNotFoundError,
    WorkflowPreconditionError,
    WorkflowStateError,
)
from .git_utils import CommitResult, GitUtils, StageResult
from .phase_transitions import PhaseTransitionValidator, TransitionValidation
from .state_persistence import WorkflowStateManager
from .task_schema import (
    SubtaskDefinition,
    TaskDefinition,
    load_task_from_yaml,
    save_task,
    validate_task,
)
from .test_runner import TestOutputParser, TestRunner
from .workflow_orchestrator import WorkflowOrchestrator
from .workflow_types import (
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
    WorkflowProgress,
    WorkflowState,
    WorkflowStatus,
)

__all__ = [
    # Exceptions
    "TDDFlowError",
    "ConfigurationError",
    "ActivityTrackingError",
    "GitOperationError",
    "TestRunnerError",
    "WorkflowError",
    "StateTransitionError",
    "TestResultValidationError",
    "WorkflowPreconditionError",
    "WorkflowExistsError",
    "WorkflowNotFoundError",
    "MaxAttemptsExceededError",
    "WorkflowStateError",
    "StatePersistenceError",
    "CommitPhaseError",
    # Workflow model
    "WorkflowPhase",
    "TDDPhase",
    "SubtaskStatus",
    "SubtaskInfo",
    "TestResult",
    "WorkflowContext",
    "WorkflowState",
    "WorkflowProgress",
    "WorkflowStatus",
    "NextAction",
    "NextActionType",
    "WorkflowEvent",
    "WorkflowEventType",
    "NotificationType",
    "WorkflowNotification",
    # State management
    "WorkflowOrchestrator",
    "PhaseTransitionValidator",
    "TransitionValidation",
    "WorkflowStateManager",
    # Collaborators
    "GitUtils",
    "StageResult",
    "CommitResult",
    "TestRunner",
    "TestOutputParser",
    "CommitMessageGenerator",
    # Task schema
    "TaskDefinition",
    "SubtaskDefinition",
    "load_task_from_yaml",
    "save_task",
    "validate_task",
]
