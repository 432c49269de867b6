"""Shared pytest fixtures and utilities for tddflow tests."""

import itertools
import subprocess
from pathlib import Path
from typing import Generator, List
from unittest.mock import Mock

import pytest
import yaml

from tddflow.config.models import TDDFlowConfig
from tddflow.core.git_utils import CommitResult, GitUtils, StageResult
from tddflow.core.state_persistence import WorkflowStateManager
from tddflow.core.workflow_types import SubtaskInfo, TestResult, WorkflowContext
from tddflow.orchestrator.workflow_service import StartWorkflowOptions, WorkflowService
from tddflow.tracking.activity_logger import ActivityLogger


# ============================================================================
# Directory and File Fixtures
# ============================================================================


@pytest.fixture
def git_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository for testing.

    The repository is initialized with:
    - Git config (user.name and user.email)
    - Initial commit with README.md

    Yields:
        Path to the git repository
    """
    repo_path = tmp_path / "test_repo"
    repo_path.mkdir(parents=True, exist_ok=True)

    for args in (
        ["git", "init"],
        ["git", "config", "user.name", "Test User"],
        ["git", "config", "user.email", "test@example.com"],
        ["git", "config", "commit.gpgsign", "false"],
    ):
        subprocess.run(args, cwd=repo_path, check=True, capture_output=True)

    readme = repo_path / "README.md"
    readme.write_text("# Test Repository\n\nGenerated for testing.\n")
    subprocess.run(["git", "add", "."], cwd=repo_path, check=True, capture_output=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"],
        cwd=repo_path,
        check=True,
        capture_output=True,
    )

    yield repo_path


@pytest.fixture
def task_yaml_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a task file with two subtasks.

    Yields:
        Path to the task YAML file
    """
    task_file = tmp_path / "task.yaml"
    task_data = {
        "id": "6",
        "title": "Add user authentication",
        "subtasks": [
            {"id": "6.1", "title": "Validate credentials"},
            {"id": "6.2", "title": "Issue session token"},
        ],
    }
    with open(task_file, "w", encoding="utf-8") as f:
        yaml.dump(task_data, f, default_flow_style=False, sort_keys=False)

    yield task_file


# ============================================================================
# Workflow Data Fixtures
# ============================================================================


@pytest.fixture
def subtasks() -> List[SubtaskInfo]:
    """Two pending subtasks, 6.1 and 6.2."""
    return [
        SubtaskInfo(id="6.1", title="Validate credentials"),
        SubtaskInfo(id="6.2", title="Issue session token"),
    ]


@pytest.fixture
def context(subtasks: List[SubtaskInfo]) -> WorkflowContext:
    return WorkflowContext(task_id="6", subtasks=subtasks)


@pytest.fixture
def red_results() -> TestResult:
    """One failing test: valid RED evidence."""
    return TestResult.from_counts(pass_count=0, failure_count=1)


@pytest.fixture
def green_results() -> TestResult:
    """One passing test: valid GREEN evidence."""
    return TestResult.from_counts(pass_count=1, failure_count=0)


@pytest.fixture
def start_options(subtasks: List[SubtaskInfo]) -> StartWorkflowOptions:
    return StartWorkflowOptions(
        task_id="6",
        task_title="Add user authentication",
        subtasks=subtasks,
        max_attempts=3,
    )


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def mock_git() -> Mock:
    """Git adapter double that always succeeds.

    Each commit gets a distinct hash.
    """
    git = Mock()
    git.ensure_git_repository.return_value = None
    git.ensure_clean_working_tree.return_value = None
    git.create_and_checkout_branch.return_value = None
    git.get_changed_files.return_value = ["src/auth.py"]
    git.stage_files.side_effect = lambda files: StageResult(
        success=True, files=list(files)
    )

    counter = itertools.count(1)

    def _commit(message):
        return CommitResult(
            success=True, commit_hash=f"{next(counter):040x}", message=message
        )

    git.create_commit.side_effect = _commit
    return git


@pytest.fixture
def mock_evaluator() -> Mock:
    """Test evaluator double; set return_value per test."""
    return Mock()


@pytest.fixture
def activity_logger(tmp_path: Path) -> ActivityLogger:
    return ActivityLogger("test-session", tmp_path / "logs", task_id="6")


@pytest.fixture
def state_manager(tmp_path: Path) -> WorkflowStateManager:
    return WorkflowStateManager(project_root=tmp_path)


@pytest.fixture
def service(
    tmp_path: Path,
    mock_git: Mock,
    mock_evaluator: Mock,
    state_manager: WorkflowStateManager,
    activity_logger: ActivityLogger,
) -> WorkflowService:
    """Workflow service wired to mock git and evaluator in a temp project."""
    return WorkflowService(
        project_root=tmp_path,
        git=mock_git,
        state_manager=state_manager,
        test_evaluator=mock_evaluator,
        activity_logger=activity_logger,
        config=TDDFlowConfig(),
    )


@pytest.fixture
def git_utils(git_repo: Path) -> GitUtils:
    return GitUtils(git_repo)


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may be slower)"
    )
    config.addinivalue_line("markers", "git: mark test as requiring git operations")
    config.addinivalue_line("markers", "unit: mark test as unit test (fast, isolated)")
