"""tddflow exception classes."""


class TDDFlowError(Exception):
    """Base exception for all tddflow errors."""

    pass


class ConfigurationError(TDDFlowError):
    """Raised when configuration is invalid."""

    pass


class ActivityTrackingError(TDDFlowError):
    """Raised when activity tracking fails."""

    pass


class GitOperationError(TDDFlowError):
    """Raised when git operations fail."""

    pass


class TestRunnerError(TDDFlowError):
    """Raised when the test command cannot be executed or its output parsed."""

    __test__ = False


class WorkflowError(TDDFlowError):
    """Base class for workflow lifecycle errors."""

    pass


class StateTransitionError(WorkflowError):
    """Raised when an event is not legal for the current phase."""

    pass


class TestResultValidationError(WorkflowError):
    """Raised when test-result evidence is malformed or violates a phase invariant."""

    __test__ = False


class WorkflowPreconditionError(WorkflowError):
    """Raised when an operation is requested in the wrong workflow phase."""

    pass


class WorkflowExistsError(WorkflowPreconditionError):
    """Raised when starting a workflow while another one is persisted."""

    pass


class WorkflowNotFoundError(WorkflowPreconditionError):
    """Raised when no workflow is active or persisted."""

    pass


class MaxAttemptsExceededError(WorkflowPreconditionError):
    """Raised when a subtask phase has used all of its attempts."""

    pass


class WorkflowStateError(WorkflowError):
    """Raised when persisted workflow state is corrupted or cannot be resumed."""

    pass


class StatePersistenceError(WorkflowError):
    """Raised when workflow state cannot be written or removed."""

    pass


class CommitPhaseError(WorkflowError):
    """Raised when the COMMIT phase could not produce a commit."""

    pass
