"""Tests for task schema and validation."""

import pytest
import yaml

from tddflow.core.task_schema import (
    SubtaskDefinition,
    TaskDefinition,
    load_task_from_yaml,
    save_task,
    validate_task,
)
from tddflow.core.workflow_types import SubtaskStatus


class TestTaskDefinition:
    """Test TaskDefinition model."""

    def test_valid_task(self):
        """Test creating a task with subtasks."""
        task = TaskDefinition(
            id="6",
            title="Add user authentication",
            subtasks=[
                SubtaskDefinition(id="6.1", title="Validate credentials"),
                SubtaskDefinition(id="6.2"),
            ],
        )

        assert task.id == "6"
        assert task.description is None
        assert [s.id for s in task.subtasks] == ["6.1", "6.2"]
        assert task.subtasks[1].title == ""

    def test_integer_ids_coerced(self):
        """Integer IDs such as 6 become strings."""
        task = TaskDefinition(id=6, title="Numbers", subtasks=[{"id": 1}, {"id": 2}])

        assert task.id == "6"
        assert [s.id for s in task.subtasks] == ["1", "2"]

    def test_float_ids_rejected(self):
        """A float cannot tell 6.1 from 6.10, so it is refused."""
        with pytest.raises(ValueError, match="quote dotted IDs"):
            SubtaskDefinition(id=6.1)

    def test_blank_title_rejected(self):
        with pytest.raises(ValueError, match="Field cannot be empty"):
            TaskDefinition(id="6", title="  ", subtasks=[{"id": "6.1"}])

    def test_requires_subtasks(self):
        with pytest.raises(ValueError, match="at least one subtask"):
            TaskDefinition(id="6", title="Nothing", subtasks=[])

    def test_duplicate_subtasks_rejected(self):
        with pytest.raises(ValueError, match="Duplicate subtask IDs: 6.1"):
            TaskDefinition(
                id="6", title="Dupes", subtasks=[{"id": "6.1"}, {"id": "6.1"}]
            )

    def test_blank_subtask_id_rejected(self):
        with pytest.raises(ValueError, match="Subtask ID cannot be empty"):
            SubtaskDefinition(id=" ")

    def test_to_subtask_infos(self):
        task = TaskDefinition(
            id="6", title="Auth", subtasks=[{"id": "6.1", "title": "Validate"}]
        )

        infos = task.to_subtask_infos(max_attempts=4)

        assert infos[0].id == "6.1"
        assert infos[0].title == "Validate"
        assert infos[0].status == SubtaskStatus.PENDING
        assert infos[0].max_attempts == 4


class TestTaskFiles:
    """Test loading and saving task files."""

    def test_load_task(self, task_yaml_file):
        task = load_task_from_yaml(task_yaml_file)

        assert task.title == "Add user authentication"
        assert len(task.subtasks) == 2

    def test_load_unquoted_ids(self, tmp_path):
        path = tmp_path / "task.yaml"
        path.write_text(
            "id: 6\ntitle: Auth\nsubtasks:\n  - id: 6.1\n    title: Validate\n",
            encoding="utf-8",
        )

        task = load_task_from_yaml(path)

        assert task.subtasks[0].id == "6.1"

    def test_load_unquoted_ids_keep_trailing_zeros(self, tmp_path):
        path = tmp_path / "task.yaml"
        lines = ["id: 6", "title: Many steps", "subtasks:"]
        lines += [f"  - id: 6.{n}" for n in range(1, 11)]
        lines.append("  - id: 6.20")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        task = load_task_from_yaml(path)

        ids = [s.id for s in task.subtasks]
        assert ids[0] == "6.1"
        assert ids[9] == "6.10"
        assert ids[10] == "6.20"
        assert len(set(ids)) == 11

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Task file not found"):
            load_task_from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "task.yaml"
        path.write_text("id: [unclosed", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_task_from_yaml(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "task.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ValueError, match="must contain a YAML object"):
            load_task_from_yaml(path)

    def test_invalid_task_names_source(self, tmp_path):
        path = tmp_path / "task.yaml"
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump({"id": "6", "title": "Auth"}, f)

        with pytest.raises(ValueError, match="Invalid task definition in"):
            load_task_from_yaml(path)

    def test_validate_task(self):
        task = validate_task(
            {"id": "1", "title": "One", "subtasks": [{"id": "1.1", "title": "Step"}]}
        )
        assert task.subtasks[0].title == "Step"

    def test_save_and_load(self, tmp_path):
        task = TaskDefinition(
            id="6",
            title="Auth",
            description="Login flow",
            subtasks=[{"id": "6.1", "title": "Validate"}],
        )
        path = tmp_path / "nested" / "task.yaml"

        save_task(task, path)

        assert load_task_from_yaml(path) == task
