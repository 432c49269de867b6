"""Durable storage for the workflow state record."""

import json
import threading
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .exceptions import (
    StatePersistenceError,
    WorkflowNotFoundError,
    WorkflowStateError,
)
from .workflow_types import WorkflowState

DEFAULT_STATE_FILE = Path(".tddflow") / "workflow-state.json"


class WorkflowStateManager:
    """
    Handles persistence of one workflow state per project.

    The state is stored as a pretty-printed JSON file so it can be inspected
    by hand. Every save rewrites the whole record.
    """

    def __init__(
        self,
        project_root: Optional[Path] = None,
        state_file: Union[str, Path, None] = None,
    ):
        """
        Initialize the state manager.

        Args:
            project_root: Project root directory (default: current directory)
            state_file: State file path; relative paths are resolved against
                project_root (default: .tddflow/workflow-state.json)
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()
        state_path = Path(state_file) if state_file else DEFAULT_STATE_FILE
        if not state_path.is_absolute():
            state_path = self.project_root / state_path
        self.state_file = state_path
        self._lock = threading.Lock()

    def get_state_file_path(self) -> Path:
        return self.state_file

    def exists(self) -> bool:
        """Check if a workflow state has been persisted."""
        return self.state_file.exists()

    def save(self, state: WorkflowState) -> None:
        """
        Save workflow state to disk.

        Args:
            state: Full workflow state

        Raises:
            StatePersistenceError: If save fails
        """
        with self._lock:
            try:
                self.state_file.parent.mkdir(parents=True, exist_ok=True)

                # Write atomically by writing to temp file first
                temp_file = self.state_file.with_suffix(".tmp")
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(state.model_dump(mode="json"), f, indent=2)
                    f.write("\n")

                temp_file.replace(self.state_file)

            except OSError as e:
                raise StatePersistenceError(
                    f"Failed to save workflow state to {self.state_file}: {e}"
                ) from e

    def load(self) -> WorkflowState:
        """
        Load workflow state from disk.

        Returns:
            The persisted WorkflowState

        Raises:
            WorkflowNotFoundError: If no state file exists
            WorkflowStateError: If the file cannot be read or is invalid
        """
        with self._lock:
            if not self.state_file.exists():
                raise WorkflowNotFoundError(
                    f"No workflow state found at {self.state_file}"
                )

            try:
                with open(self.state_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise WorkflowStateError(
                    f"Failed to read workflow state from {self.state_file}: {e}. "
                    "State may be corrupted; start a new workflow."
                ) from e

            try:
                return WorkflowState.model_validate(data)
            except ValidationError as e:
                raise WorkflowStateError(
                    f"Invalid workflow state in {self.state_file}: {e}. "
                    "State may be corrupted; start a new workflow."
                ) from e

    def delete(self) -> bool:
        """
        Delete the persisted workflow state.

        Returns:
            True if deleted, False if no state existed

        Raises:
            StatePersistenceError: If delete fails
        """
        with self._lock:
            if not self.state_file.exists():
                return False

            try:
                self.state_file.unlink()
                return True
            except OSError as e:
                raise StatePersistenceError(
                    f"Failed to delete workflow state {self.state_file}: {e}"
                ) from e
