"""Workflow data model: phases, subtasks, test evidence and persisted state."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import TestResultValidationError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class WorkflowPhase(str, Enum):
    """Top-level workflow phases."""

    PREFLIGHT = "PREFLIGHT"
    BRANCH_SETUP = "BRANCH_SETUP"
    SUBTASK_LOOP = "SUBTASK_LOOP"
    COMPLETE = "COMPLETE"
    ABORTED = "ABORTED"


TERMINAL_PHASES = (WorkflowPhase.COMPLETE, WorkflowPhase.ABORTED)


class TDDPhase(str, Enum):
    """Phases of a single TDD cycle, active only inside SUBTASK_LOOP."""

    RED = "RED"
    GREEN = "GREEN"
    COMMIT = "COMMIT"


class SubtaskStatus(str, Enum):
    """Subtask completion status."""

    PENDING = "pending"
    COMPLETED = "completed"


class SubtaskInfo(BaseModel):
    """One unit of work processed by exactly one TDD cycle."""

    id: str = Field(..., description="Subtask identifier (e.g. '6.1')")
    title: str = Field(default="", description="Human readable subtask title")
    status: SubtaskStatus = Field(default=SubtaskStatus.PENDING)
    attempts: int = Field(
        default=0, ge=0, description="Attempts made at the current TDD phase"
    )
    max_attempts: int = Field(default=3, ge=1, description="Attempt ceiling per phase")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Subtask IDs must not be blank."""
        if not v.strip():
            raise ValueError("Subtask ID cannot be empty")
        return v.strip()

    @property
    def is_completed(self) -> bool:
        return self.status == SubtaskStatus.COMPLETED


class TestResult(BaseModel):
    """Test-run evidence supplied for a RED or GREEN phase.

    The counts and flags must agree with each other: ``pass_count +
    failure_count == total_tests``, ``has_failures`` is true exactly when
    ``failure_count > 0`` and ``passed`` is true exactly when there are tests
    and none of them fail.
    """

    __test__ = False

    passed: bool
    total_tests: int = Field(..., ge=0)
    pass_count: int = Field(..., ge=0)
    failure_count: int = Field(..., ge=0)
    has_failures: bool

    @model_validator(mode="after")
    def validate_consistency(self) -> "TestResult":
        """Reject evidence whose counts and flags disagree."""
        if self.pass_count + self.failure_count != self.total_tests:
            raise ValueError(
                f"pass_count ({self.pass_count}) + failure_count "
                f"({self.failure_count}) must equal total_tests ({self.total_tests})"
            )
        if self.has_failures != (self.failure_count > 0):
            raise ValueError("has_failures must be true exactly when failure_count > 0")
        if self.passed != (self.failure_count == 0 and self.total_tests > 0):
            raise ValueError(
                "passed must be true exactly when total_tests > 0 and failure_count == 0"
            )
        return self

    @classmethod
    def from_counts(cls, pass_count: int, failure_count: int) -> "TestResult":
        """Build a consistent result from raw pass/fail counts."""
        total = pass_count + failure_count
        return cls(
            passed=failure_count == 0 and total > 0,
            total_tests=total,
            pass_count=pass_count,
            failure_count=failure_count,
            has_failures=failure_count > 0,
        )


def parse_test_result(data: Any) -> TestResult:
    """Validate caller-supplied evidence into a TestResult.

    Args:
        data: A TestResult or a mapping with the TestResult fields

    Returns:
        Validated TestResult

    Raises:
        TestResultValidationError: If the evidence is malformed
    """
    if isinstance(data, TestResult):
        return data
    if not isinstance(data, dict):
        raise TestResultValidationError(
            f"Test results must be a mapping, got {type(data).__name__}"
        )
    try:
        return TestResult.model_validate(data)
    except ValidationError as e:
        raise TestResultValidationError(f"Invalid test results: {e}") from e


class WorkflowErrorRecord(BaseModel):
    """A recorded failure; diagnostic only."""

    message: str
    phase: WorkflowPhase
    tdd_phase: Optional[TDDPhase] = None
    subtask_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    recoverable: bool = True


class WorkflowContext(BaseModel):
    """Mutable, persisted record describing an in-progress run."""

    task_id: str = Field(..., description="Identifier of the parent task")
    subtasks: List[SubtaskInfo] = Field(default_factory=list)
    current_subtask_index: int = Field(default=0, ge=0)
    branch_name: Optional[str] = None
    last_test_results: Optional[TestResult] = Field(
        default=None, description="Evidence that completed the latest RED or GREEN phase"
    )
    errors: List[WorkflowErrorRecord] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_subtasks(self) -> "WorkflowContext":
        """Check the cursor range and subtask ID uniqueness."""
        if self.current_subtask_index > len(self.subtasks):
            raise ValueError(
                f"current_subtask_index {self.current_subtask_index} is out of range "
                f"for {len(self.subtasks)} subtasks"
            )
        ids = [s.id for s in self.subtasks]
        if len(ids) != len(set(ids)):
            raise ValueError("Subtask IDs must be unique")
        return self


class WorkflowState(BaseModel):
    """The serialized unit written to and read from durable storage."""

    phase: WorkflowPhase
    tdd_phase: Optional[TDDPhase] = None
    context: WorkflowContext


class WorkflowProgress(BaseModel):
    """Progress through the subtask list."""

    completed: int
    total: int
    current: int
    percentage: int


class WorkflowStatus(BaseModel):
    """Summary returned by every facade operation."""

    task_id: str
    phase: WorkflowPhase
    tdd_phase: Optional[TDDPhase] = None
    branch_name: Optional[str] = None
    current_subtask: Optional[SubtaskInfo] = None
    progress: WorkflowProgress


class NextActionType(str, Enum):
    """Recommended next agent action."""

    GENERATE_TEST = "generate_test"
    IMPLEMENT_FEATURE = "implement_feature"
    COMMIT_CHANGES = "commit_changes"
    UNKNOWN = "unknown"


class NextAction(BaseModel):
    """Recommendation derived from the current TDD phase."""

    action: NextActionType
    description: str
    phase: WorkflowPhase
    tdd_phase: Optional[TDDPhase] = None
    subtask: Optional[SubtaskInfo] = None


class WorkflowEventType(str, Enum):
    """Transition events accepted by the workflow orchestrator."""

    PREFLIGHT_COMPLETE = "PREFLIGHT_COMPLETE"
    BRANCH_CREATED = "BRANCH_CREATED"
    RED_PHASE_COMPLETE = "RED_PHASE_COMPLETE"
    GREEN_PHASE_COMPLETE = "GREEN_PHASE_COMPLETE"
    COMMIT_COMPLETE = "COMMIT_COMPLETE"
    SUBTASK_COMPLETE = "SUBTASK_COMPLETE"
    ALL_SUBTASKS_COMPLETE = "ALL_SUBTASKS_COMPLETE"
    ABORT = "ABORT"


class WorkflowEvent(BaseModel):
    """A tagged transition event with its payload."""

    type: WorkflowEventType
    branch_name: Optional[str] = None
    test_results: Optional[TestResult] = None
    commit_hash: Optional[str] = None
    reason: Optional[str] = None


class NotificationType(str, Enum):
    """Notifications emitted to orchestrator listeners."""

    PHASE_ENTERED = "phase:entered"
    PHASE_EXITED = "phase:exited"
    TDD_RED_STARTED = "tdd:red:started"
    TDD_GREEN_STARTED = "tdd:green:started"
    TDD_COMMIT_STARTED = "tdd:commit:started"
    SUBTASK_STARTED = "subtask:started"
    SUBTASK_COMPLETED = "subtask:completed"
    BRANCH_CREATED = "git:branch:created"
    WORKFLOW_COMPLETED = "workflow:completed"
    WORKFLOW_ABORTED = "workflow:aborted"
    STATE_PERSISTED = "state:persisted"
    ERROR_RECORDED = "error:recorded"


class WorkflowNotification(BaseModel):
    """Payload passed to orchestrator listeners."""

    type: NotificationType
    phase: WorkflowPhase
    tdd_phase: Optional[TDDPhase] = None
    subtask_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)
