"""Git utilities for branch setup and per-subtask commits."""

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .exceptions import GitOperationError

DEFAULT_IGNORED_PATHS = (".tddflow/",)


@dataclass
class StageResult:
    """Outcome of staging files for a commit."""

    success: bool
    files: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class CommitResult:
    """Outcome of creating a commit."""

    success: bool
    commit_hash: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class GitUtils:
    """
    Utility class for the Git operations the workflow needs.

    Provides safe wrappers around Git commands for creating branches and
    commits and for querying repository state. Paths under the workflow's own
    state directory are ignored when deciding whether the tree is clean.
    """

    def __init__(
        self,
        repo_path: Optional[Path] = None,
        ignored_paths: Optional[Sequence[str]] = None,
    ):
        """
        Initialize Git utilities.

        Args:
            repo_path: Path to git repository (default: current directory)
            ignored_paths: Path prefixes excluded from change detection
                (default: .tddflow/)
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        self.ignored_paths = list(
            DEFAULT_IGNORED_PATHS if ignored_paths is None else ignored_paths
        )

    def _run_git(
        self, *args: str, check: bool = True, capture: bool = True
    ) -> Tuple[int, str, str]:
        """
        Run a git command.

        Args:
            args: Git command arguments
            check: Raise error on non-zero exit
            capture: Capture stdout/stderr

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            GitOperationError: If command fails and check=True
        """
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise GitOperationError("Git command not found") from e
        except OSError as e:
            raise GitOperationError(f"Git operation failed: {e}") from e

        if check and result.returncode != 0:
            raise GitOperationError(
                f"Git command failed: git {' '.join(args)}\n"
                f"Error: {result.stderr}"
            )

        return result.returncode, result.stdout, result.stderr

    def _is_ignored(self, path: str) -> bool:
        normalized = path.strip().strip('"')
        for prefix in self.ignored_paths:
            bare = prefix.rstrip("/")
            if normalized == bare or normalized.startswith(bare + "/"):
                return True
        return False

    def is_git_repo(self) -> bool:
        """Check if the repository path is inside a git work tree."""
        if not self.repo_path.exists():
            return False
        returncode, _, _ = self._run_git(
            "rev-parse", "--git-dir", check=False, capture=True
        )
        return returncode == 0

    def ensure_git_repository(self) -> None:
        """
        Require the repository path to be a git repository.

        Raises:
            GitOperationError: If it is not
        """
        if not self.is_git_repo():
            raise GitOperationError(f"Not a git repository: {self.repo_path}")

    def get_current_branch(self) -> str:
        """
        Get the name of the current branch.

        Returns:
            Current branch name

        Raises:
            GitOperationError: If not on a branch
        """
        _, stdout, _ = self._run_git("rev-parse", "--abbrev-ref", "HEAD")
        branch = stdout.strip()

        if branch == "HEAD":
            raise GitOperationError("Not currently on a branch (detached HEAD)")

        return branch

    def get_current_commit(self) -> str:
        """Get the current commit hash."""
        _, stdout, _ = self._run_git("rev-parse", "HEAD")
        return stdout.strip()

    def _porcelain_paths(self) -> List[str]:
        _, stdout, _ = self._run_git("status", "--porcelain", "--untracked-files=all")
        paths = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            # Porcelain format: "XY path" or "XY old -> new"
            path = line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            paths.append(path.strip().strip('"'))
        return paths

    def get_changed_files(self) -> List[str]:
        """
        Get changed and untracked files, excluding ignored paths.

        Returns:
            List of changed file paths relative to the repository root
        """
        return [p for p in self._porcelain_paths() if not self._is_ignored(p)]

    def has_uncommitted_changes(self) -> bool:
        """Check if there are uncommitted changes outside ignored paths."""
        return bool(self.get_changed_files())

    def is_clean_working_tree(self) -> bool:
        """Check if working tree is clean (no uncommitted changes)."""
        return not self.has_uncommitted_changes()

    def ensure_clean_working_tree(self) -> None:
        """
        Require a clean working tree.

        Raises:
            GitOperationError: If there are uncommitted changes
        """
        changed = self.get_changed_files()
        if changed:
            preview = ", ".join(changed[:5])
            if len(changed) > 5:
                preview += f" (+{len(changed) - 5} more)"
            raise GitOperationError(
                f"Working tree has uncommitted changes: {preview}. "
                "Commit or stash them before starting a workflow."
            )

    def branch_exists(self, branch_name: str) -> bool:
        """Check if a local branch exists."""
        returncode, _, _ = self._run_git(
            "show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}",
            check=False,
        )
        return returncode == 0

    def create_and_checkout_branch(self, branch_name: str) -> None:
        """
        Create a new branch and switch to it.

        Args:
            branch_name: Name of the branch to create

        Raises:
            GitOperationError: If the branch exists or creation fails
        """
        if self.branch_exists(branch_name):
            raise GitOperationError(f"Branch already exists: {branch_name}")
        self._run_git("checkout", "-b", branch_name)

    def stage_files(self, files: Optional[Iterable[str]] = None) -> StageResult:
        """
        Stage files for commit.

        Args:
            files: Specific files to stage (None = all changes outside
                ignored paths)

        Returns:
            StageResult listing what was staged
        """
        targets = list(files) if files is not None else self.get_changed_files()
        targets = [f for f in targets if not self._is_ignored(f)]
        if not targets:
            return StageResult(success=False, error="No files to stage")

        returncode, _, stderr = self._run_git("add", "-A", "--", *targets, check=False)
        if returncode != 0:
            return StageResult(success=False, error=stderr.strip() or "git add failed")

        return StageResult(success=True, files=targets)

    def create_commit(self, message: str, allow_empty: bool = False) -> CommitResult:
        """
        Commit whatever is staged.

        Args:
            message: Commit message
            allow_empty: Allow empty commits

        Returns:
            CommitResult carrying the new commit hash on success
        """
        args = ["commit", "-m", message]
        if allow_empty:
            args.append("--allow-empty")

        returncode, stdout, stderr = self._run_git(*args, check=False)
        if returncode != 0:
            return CommitResult(
                success=False,
                error=(stderr.strip() or stdout.strip() or "git commit failed"),
            )

        return CommitResult(
            success=True, commit_hash=self.get_current_commit(), message=message
        )
