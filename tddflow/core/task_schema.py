"""Task definition schema for workflow task files."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .workflow_types import SubtaskInfo


class _TaskLoader(yaml.SafeLoader):
    """SafeLoader that leaves float-looking scalars such as 6.10 as strings."""


_TaskLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:float"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _coerce_id(v: Any) -> Any:
    # Unquoted integer ids such as 6 arrive as numbers
    if isinstance(v, bool):
        return v
    if isinstance(v, int):
        return str(v)
    if isinstance(v, float):
        # 6.10 and 6.1 are the same float; the original text is gone
        raise ValueError(f"Ambiguous numeric ID {v!r}: quote dotted IDs such as \"6.10\"")
    return v


class SubtaskDefinition(BaseModel):
    """A subtask as written in a task file."""

    id: str = Field(..., description="Subtask identifier (e.g. '6.1')")
    title: str = Field(default="", description="Subtask title")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate subtask ID."""
        if not v.strip():
            raise ValueError("Subtask ID cannot be empty")
        return v.strip()


class TaskDefinition(BaseModel):
    """Task definition model."""

    id: str = Field(..., description="Parent task identifier")
    title: str = Field(..., description="Task title, used for the branch name")
    description: Optional[str] = Field(None, description="Additional context")
    subtasks: List[SubtaskDefinition] = Field(
        ..., description="Subtasks processed in order, one TDD cycle each"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _coerce_id(v)

    @field_validator("id", "title")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Validate required text fields."""
        if not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_subtasks(self) -> "TaskDefinition":
        """Require at least one subtask and unique subtask IDs."""
        if not self.subtasks:
            raise ValueError("Task must define at least one subtask")
        ids = [s.id for s in self.subtasks]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate subtask IDs: {', '.join(duplicates)}")
        return self

    def to_subtask_infos(self, max_attempts: int = 3) -> List[SubtaskInfo]:
        """Build pending workflow subtasks from this definition."""
        return [
            SubtaskInfo(id=s.id, title=s.title, max_attempts=max_attempts)
            for s in self.subtasks
        ]


def load_task_from_yaml(file_path: Union[str, Path]) -> TaskDefinition:
    """Load a task definition from a YAML file."""
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Task file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.load(f, Loader=_TaskLoader)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Task file must contain a YAML object, got {type(data)}")

    return validate_task(data, source=file_path)


def validate_task(
    task_data: Dict[str, Any], source: Optional[Path] = None
) -> TaskDefinition:
    """Validate a task definition from a dictionary."""
    try:
        return TaskDefinition(**task_data)
    except ValidationError as e:
        where = f" in {source}" if source else ""
        raise ValueError(f"Invalid task definition{where}: {e}") from e


def save_task(task: TaskDefinition, file_path: Union[str, Path]) -> None:
    """Save a task definition to a YAML file."""
    file_path = Path(file_path)

    file_path.parent.mkdir(parents=True, exist_ok=True)

    task_dict = task.model_dump(exclude_none=True, mode="json")

    try:
        with open(file_path, "w", encoding="utf-8") as f:
            yaml.dump(task_dict, f, default_flow_style=False, sort_keys=False, indent=2)
    except OSError as e:
        raise ValueError(f"Could not save task to {file_path}: {e}") from e
