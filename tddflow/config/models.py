"""Configuration models for tddflow."""

import os
import re
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.commit_message import DEFAULT_COMMIT_FORMAT

DURATION_UNITS = {"h": 3600, "m": 60, "s": 1}


def parse_duration_seconds(value: str) -> int:
    """Convert a duration such as '10m', '2h' or '300s' into seconds."""
    match = re.match(r"^(\d+)([hms])$", value.strip())
    if not match:
        raise ValueError(f"Invalid duration: {value}")
    return int(match.group(1)) * DURATION_UNITS[match.group(2)]


class WorkflowConfig(BaseModel):
    """Workflow behaviour configuration."""

    max_attempts: int = Field(default=3, description="Attempt ceiling per TDD phase")
    state_file: str = Field(
        default=".tddflow/workflow-state.json", description="Workflow state file"
    )
    auto_persist: bool = Field(
        default=True, description="Persist state after every transition"
    )

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """Validate attempt ceiling."""
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        if v > 20:
            raise ValueError("max_attempts cannot exceed 20")
        return v

    @field_validator("state_file")
    @classmethod
    def validate_state_file(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("state_file cannot be empty")
        return v.strip()


class GitConfig(BaseModel):
    """Git configuration."""

    default_tag: Optional[str] = Field(
        default=None, description="Branch prefix tag, e.g. 'feature'"
    )
    commit_type: str = Field(default="feat", description="Conventional commit type")
    commit_format: str = Field(
        default=DEFAULT_COMMIT_FORMAT, description="Commit message format"
    )
    ignored_paths: List[str] = Field(
        default=[".tddflow/"], description="Paths ignored for change detection"
    )

    @field_validator("commit_type")
    @classmethod
    def validate_commit_type(cls, v: str) -> str:
        if not re.match(r"^[a-z]+$", v):
            raise ValueError("commit_type must be lowercase letters, e.g. 'feat'")
        return v

    @field_validator("default_tag")
    @classmethod
    def validate_default_tag(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().strip("/")


class TestsConfig(BaseModel):
    """Test command configuration."""

    __test__ = False

    command: str = Field(default="pytest -q", description="Test command")
    working_dir: str = Field(default=".", description="Working directory")
    timeout: str = Field(default="10m", description="Command timeout")

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Test command cannot be empty")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: str) -> str:
        """Validate timeout format."""
        if not re.match(r"^\d+[hms]$", v):
            raise ValueError("Timeout must be in format like '30m', '2h', or '300s'")
        return v

    def get_timeout_seconds(self) -> int:
        return parse_duration_seconds(self.timeout)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    output_dir: str = Field(default=".tddflow/logs", description="Log output directory")
    retention_days: int = Field(default=30, description="Log retention in days")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARN", "ERROR"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        """Validate retention days."""
        if v < 1:
            raise ValueError("retention_days must be at least 1")
        if v > 365:
            raise ValueError("retention_days cannot exceed 365")
        return v


class TDDFlowConfig(BaseModel):
    """Main tddflow configuration."""

    workflow: WorkflowConfig = Field(
        default_factory=WorkflowConfig, description="Workflow configuration"
    )
    git: GitConfig = Field(default_factory=GitConfig, description="Git configuration")
    tests: TestsConfig = Field(
        default_factory=TestsConfig, description="Test command configuration"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    def resolve_env_vars(self) -> "TDDFlowConfig":
        """Resolve environment variables in configuration values."""
        config_dict = self.model_dump()
        resolved_dict = _resolve_env_vars_recursive(config_dict)
        return TDDFlowConfig(**resolved_dict)

    def get_log_dir(self, project_root: Optional[Path] = None) -> Path:
        """Get the log directory, relative paths resolved against project_root."""
        return _resolve_path(self.logging.output_dir, project_root)

    def get_state_file(self, project_root: Optional[Path] = None) -> Path:
        return _resolve_path(self.workflow.state_file, project_root)

    def get_tests_working_dir(self, project_root: Optional[Path] = None) -> Path:
        return _resolve_path(self.tests.working_dir, project_root)


def _resolve_path(value: str, project_root: Optional[Path]) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (Path(project_root) if project_root else Path.cwd()) / path
    return path.resolve()


def _resolve_env_vars_recursive(obj: Any) -> Any:
    """Recursively resolve environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # ${VAR_NAME} or ${VAR_NAME:default}; only upper-case names, so lower-case
    # commit template placeholders such as ${type} are left alone
    pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?::([^}]*))?\}"

    def replace_var(match):
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
