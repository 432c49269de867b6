"""Commit message composition for the COMMIT phase."""

from string import Template
from typing import List, Optional, Sequence

from .exceptions import ConfigurationError

DEFAULT_COMMIT_FORMAT = (
    "${type}(${scope}): ${description}\n"
    "\n"
    "Task: ${task_id}\n"
    "Phase: ${phase}\n"
    "Tests: ${tests_passing} passing, ${tests_failing} failing\n"
    "Files: ${files}"
)

PLACEHOLDERS = (
    "type",
    "scope",
    "description",
    "task_id",
    "phase",
    "tests_passing",
    "tests_failing",
    "files_count",
    "files",
)

MAX_LISTED_FILES = 10


class CommitMessageGenerator:
    """Render commit messages from a ``${placeholder}`` template.

    Available placeholders: type, scope, description, task_id, phase,
    tests_passing, tests_failing, files_count, files.
    """

    def __init__(self, template: str = DEFAULT_COMMIT_FORMAT, default_type: str = "feat"):
        self.template = Template(template)
        self.default_type = default_type
        self._check_placeholders(template)

    def _check_placeholders(self, template: str) -> None:
        # Template.pattern groups: escaped, named, braced, invalid
        for match in self.template.pattern.finditer(template):
            name = match.group("named") or match.group("braced")
            if match.group("invalid") is not None:
                raise ConfigurationError(
                    f"Invalid placeholder in commit format at position {match.start()}"
                )
            if name and name not in PLACEHOLDERS:
                raise ConfigurationError(
                    f"Unknown commit format placeholder '${{{name}}}'. "
                    f"Available: {', '.join(PLACEHOLDERS)}"
                )

    @staticmethod
    def _format_files(changed_files: Sequence[str]) -> str:
        files: List[str] = list(changed_files)[:MAX_LISTED_FILES]
        listed = ", ".join(files)
        if len(changed_files) > MAX_LISTED_FILES:
            listed += f" (+{len(changed_files) - MAX_LISTED_FILES} more)"
        return listed

    def generate_message(
        self,
        type: Optional[str],
        description: str,
        changed_files: Sequence[str],
        task_id: str,
        phase: str = "COMMIT",
        tests_passing: Optional[int] = None,
        tests_failing: Optional[int] = None,
        scope: Optional[str] = None,
    ) -> str:
        """
        Compose a commit message.

        Args:
            type: Conventional commit type (default: configured type)
            description: One-line summary, usually the subtask title
            changed_files: Files included in the commit
            task_id: Parent task identifier
            phase: Workflow phase producing the commit
            tests_passing: Passing test count, if known
            tests_failing: Failing test count, if known
            scope: Commit scope (default: task-<task_id>)

        Returns:
            Rendered commit message
        """
        values = {
            "type": type or self.default_type,
            "scope": scope or f"task-{task_id}",
            "description": description.strip() or f"update task {task_id}",
            "task_id": task_id,
            "phase": phase,
            "tests_passing": "?" if tests_passing is None else str(tests_passing),
            "tests_failing": "?" if tests_failing is None else str(tests_failing),
            "files_count": str(len(changed_files)),
            "files": self._format_files(changed_files),
        }
        return self.template.substitute(values).strip()
