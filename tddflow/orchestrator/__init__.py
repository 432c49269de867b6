"""Orchestration layer for driving subtasks through RED, GREEN and COMMIT.

This package provides the phase orchestrators, attempt accounting and the
workflow service facade used by the CLI.
"""

from .attempt_tracker import AttemptTracker
from .phases import (
    CommitPhaseOrchestrator,
    CommitPhaseResult,
    GreenPhaseOrchestrator,
    GreenPhaseResult,
    PhaseResult,
    RedPhaseOrchestrator,
    RedPhaseResult,
)
from .workflow_service import StartWorkflowOptions, WorkflowService, generate_branch_name

__all__ = [
    "AttemptTracker",
    "PhaseResult",
    "RedPhaseResult",
    "GreenPhaseResult",
    "CommitPhaseResult",
    "RedPhaseOrchestrator",
    "GreenPhaseOrchestrator",
    "CommitPhaseOrchestrator",
    "StartWorkflowOptions",
    "WorkflowService",
    "generate_branch_name",
]
