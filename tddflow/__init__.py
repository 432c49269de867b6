"""
tddflow: TDD Workflow Orchestrator

Drives a coding agent through a disciplined RED -> GREEN -> COMMIT cycle for
every subtask of a task, on a dedicated git branch, with durable and
resumable workflow state.
"""

__version__ = "0.1.0"

from tddflow.core.exceptions import TDDFlowError

__all__ = ["TDDFlowError", "__version__"]
