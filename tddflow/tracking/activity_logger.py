"""Activity logging for workflow operations."""

import json
import shutil
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events that can be logged."""

    WORKFLOW_START = "workflow_start"
    WORKFLOW_RESUME = "workflow_resume"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ABORT = "workflow_abort"
    PHASE_TRANSITION = "phase_transition"
    PHASE_RESULT = "phase_result"
    GIT_OPERATION = "git_operation"
    TEST_RUN = "test_run"
    ERROR = "error"
    INFO = "info"


# Level ordering; error events log at ERROR, everything else at INFO
LEVEL_ORDER = {"DEBUG": 0, "INFO": 1, "WARN": 2, "ERROR": 3}


class ActivityEvent(BaseModel):
    """Activity event model."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: EventType = Field(..., description="Type of event")
    session_id: str = Field(..., description="Session identifier")
    task_id: Optional[str] = Field(None, description="Task identifier")
    subtask_id: Optional[str] = Field(None, description="Subtask identifier")
    message: str = Field(..., description="Event message")

    # Additional event data
    data: Dict[str, Any] = Field(
        default_factory=dict, description="Additional event data"
    )

    # Execution context
    phase: Optional[str] = Field(None, description="TDD or workflow phase")
    git_branch: Optional[str] = Field(None, description="Git branch")

    # Performance data
    duration_ms: Optional[int] = Field(None, description="Duration in milliseconds")
    exit_code: Optional[int] = Field(None, description="Exit code for commands")

    files_changed: Optional[List[str]] = Field(None, description="Files changed")


def generate_session_id(task_id: str) -> str:
    """Build a session identifier for a workflow run."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    safe_task = "".join(c if c.isalnum() else "-" for c in task_id)
    return f"task-{safe_task}-{timestamp}"


class ActivityLogger:
    """Thread-safe JSON-lines activity logger for a workflow session.

    Write failures are reported back into the log when possible and never
    raised to the caller.
    """

    def __init__(
        self,
        session_id: str,
        logs_dir: Path,
        task_id: Optional[str] = None,
        level: str = "INFO",
    ):
        """Initialize activity logger.

        Args:
            session_id: Current session identifier
            logs_dir: Directory to store log files
            task_id: Default task identifier stamped on every event
            level: Minimum level to record (DEBUG, INFO, WARN or ERROR)
        """
        self.session_id = session_id
        self.logs_dir = Path(logs_dir)
        self.session_log_dir = self.logs_dir / "sessions" / session_id
        self.task_id = task_id
        self.min_level = LEVEL_ORDER.get(level.upper(), LEVEL_ORDER["INFO"])

        self.main_log_file = self.session_log_dir / "activity.jsonl"

        # Thread lock for safe concurrent logging
        self._lock = threading.Lock()

    def log_event(
        self,
        event_type: EventType,
        message: str,
        task_id: Optional[str] = None,
        subtask_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Log a general activity event.

        Args:
            event_type: Type of event
            message: Event message
            task_id: Optional task identifier (default: logger's task)
            subtask_id: Optional subtask identifier
            **kwargs: Additional event data
        """
        event_level = "ERROR" if event_type == EventType.ERROR else "INFO"
        if LEVEL_ORDER[event_level] < self.min_level:
            return

        event_fields: Dict[str, Any] = {
            "event_type": event_type,
            "session_id": self.session_id,
            "task_id": task_id or self.task_id,
            "subtask_id": subtask_id,
            "message": message,
        }

        # Extract known ActivityEvent fields from kwargs
        activity_event_field_names = {
            "phase",
            "git_branch",
            "duration_ms",
            "exit_code",
            "files_changed",
        }

        data_fields = {}
        for key, value in kwargs.items():
            if key in activity_event_field_names:
                event_fields[key] = value
            else:
                data_fields[key] = value

        if data_fields:
            event_fields["data"] = data_fields

        event = ActivityEvent(**event_fields)
        self._write_event(self.main_log_file, event)

    def log_workflow_start(
        self, task_id: str, branch_name: Optional[str], subtask_count: int
    ) -> None:
        self.log_event(
            EventType.WORKFLOW_START,
            f"Workflow started for task {task_id} ({subtask_count} subtasks)",
            task_id=task_id,
            git_branch=branch_name,
            subtask_count=subtask_count,
        )

    def log_workflow_resume(
        self, task_id: str, phase: str, subtask_id: Optional[str] = None
    ) -> None:
        self.log_event(
            EventType.WORKFLOW_RESUME,
            f"Workflow resumed for task {task_id} in {phase}",
            task_id=task_id,
            subtask_id=subtask_id,
            phase=phase,
        )

    def log_workflow_complete(self, task_id: str, completed_subtasks: int) -> None:
        self.log_event(
            EventType.WORKFLOW_COMPLETE,
            f"Workflow completed for task {task_id}",
            task_id=task_id,
            completed_subtasks=completed_subtasks,
        )

    def log_workflow_abort(self, task_id: str, reason: Optional[str] = None) -> None:
        self.log_event(
            EventType.WORKFLOW_ABORT,
            f"Workflow aborted for task {task_id}"
            + (f": {reason}" if reason else ""),
            task_id=task_id,
            reason=reason,
        )

    def log_phase_transition(
        self,
        subtask_id: Optional[str],
        from_phase: Optional[str],
        to_phase: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a workflow or TDD phase change.

        Args:
            subtask_id: Subtask active during the change
            from_phase: Phase before the change
            to_phase: Phase after the change
            metadata: Additional transition details
        """
        self.log_event(
            EventType.PHASE_TRANSITION,
            f"Phase transition: {from_phase} -> {to_phase}",
            subtask_id=subtask_id,
            phase=to_phase,
            from_phase=from_phase,
            to_phase=to_phase,
            **(metadata or {}),
        )

    def log_phase_result(
        self,
        subtask_id: Optional[str],
        phase: str,
        success: bool,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log the outcome of a RED, GREEN or COMMIT phase execution.

        Args:
            subtask_id: Subtask the phase ran for
            phase: TDD phase name
            success: Whether the phase succeeded
            metadata: Additional result details
        """
        outcome = "succeeded" if success else "failed"
        self.log_event(
            EventType.PHASE_RESULT,
            f"{phase} phase {outcome}",
            subtask_id=subtask_id,
            phase=phase,
            success=success,
            **(metadata or {}),
        )

    def log_git_operation(
        self,
        operation: str,
        details: Dict[str, Any],
        subtask_id: Optional[str] = None,
    ) -> None:
        """Log git operation.

        Args:
            operation: Git operation (commit, branch, etc.)
            details: Operation details
            subtask_id: Optional subtask identifier
        """
        self.log_event(
            EventType.GIT_OPERATION,
            f"Git {operation}",
            subtask_id=subtask_id,
            git_operation=operation,
            **details,
        )

    def log_test_run(
        self,
        command: str,
        exit_code: int,
        duration_ms: int,
        tests_run: int,
        tests_passed: int,
        tests_failed: int,
        subtask_id: Optional[str] = None,
    ) -> None:
        """Log test execution.

        Args:
            command: Test command executed
            exit_code: Exit code
            duration_ms: Execution duration
            tests_run: Number of tests run
            tests_passed: Number of tests passed
            tests_failed: Number of tests failed
            subtask_id: Optional subtask identifier
        """
        self.log_event(
            EventType.TEST_RUN,
            f"Tests: {tests_passed}/{tests_run} passed",
            subtask_id=subtask_id,
            command=command,
            exit_code=exit_code,
            duration_ms=duration_ms,
            tests_run=tests_run,
            tests_passed=tests_passed,
            tests_failed=tests_failed,
        )

    def log_error(
        self, error: str, subtask_id: Optional[str] = None, **kwargs
    ) -> None:
        self.log_event(
            EventType.ERROR, error, subtask_id=subtask_id, error=error, **kwargs
        )

    def log_info(
        self, message: str, subtask_id: Optional[str] = None, **kwargs
    ) -> None:
        self.log_event(EventType.INFO, message, subtask_id=subtask_id, **kwargs)

    def _read_events(self) -> List[ActivityEvent]:
        events = []

        if self.main_log_file.exists():
            with open(self.main_log_file, "r", encoding="utf-8") as f:
                for line in f:
                    try:
                        data = json.loads(line.strip())
                        events.append(ActivityEvent(**data))
                    except (json.JSONDecodeError, ValueError):
                        continue

        return events

    def get_subtask_events(self, subtask_id: str) -> List[ActivityEvent]:
        """Get all events for a specific subtask.

        Args:
            subtask_id: Subtask identifier

        Returns:
            List of events for the subtask
        """
        return [e for e in self._read_events() if e.subtask_id == subtask_id]

    def get_recent_events(self, limit: int = 100) -> List[ActivityEvent]:
        """Get recent events from the session.

        Args:
            limit: Maximum number of events to return

        Returns:
            List of recent events, oldest first
        """
        if limit <= 0:
            return []
        return self._read_events()[-limit:]

    def _write_event(
        self,
        log_file: Path,
        event: Union[ActivityEvent, BaseModel, Dict[str, Any]],
    ) -> None:
        """Write event to log file in a thread-safe manner.

        Args:
            log_file: Log file to write to
            event: Event to write
        """
        with self._lock:
            try:
                if isinstance(event, BaseModel):
                    event_dict = event.model_dump(mode="json")
                else:
                    event_dict = dict(event)

                if "timestamp" not in event_dict:
                    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

                log_file.parent.mkdir(parents=True, exist_ok=True)
                with open(log_file, "a", encoding="utf-8") as f:
                    json.dump(event_dict, f, default=str, separators=(",", ":"))
                    f.write("\n")

            except Exception as e:
                # Fallback: write error to main log if possible
                try:
                    error_event = {
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "event_type": "error",
                        "message": f"Failed to write log event: {e}",
                        "session_id": self.session_id,
                    }

                    with open(self.main_log_file, "a", encoding="utf-8") as f:
                        json.dump(error_event, f, separators=(",", ":"))
                        f.write("\n")
                except Exception:
                    # If we can't even write the error, give up silently
                    pass


def cleanup_old_sessions(
    logs_dir: Path, retention_days: int, keep: Optional[str] = None
) -> int:
    """Remove session log directories older than the retention period.

    Args:
        logs_dir: Base log directory containing ``sessions/``
        retention_days: Number of days to retain sessions
        keep: Session ID that is never removed

    Returns:
        Number of sessions cleaned up
    """
    sessions_dir = Path(logs_dir) / "sessions"
    if not sessions_dir.exists():
        return 0

    cutoff_time = datetime.now(timezone.utc).timestamp() - (
        retention_days * 24 * 3600
    )
    cleaned_count = 0

    for session_dir in sessions_dir.iterdir():
        if not session_dir.is_dir() or session_dir.name == keep:
            continue
        if session_dir.stat().st_mtime < cutoff_time:
            try:
                shutil.rmtree(session_dir)
                cleaned_count += 1
            except OSError:
                # Skip if cannot remove
                continue

    return cleaned_count
