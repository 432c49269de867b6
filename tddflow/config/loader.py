"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from tddflow.config.models import TDDFlowConfig
from tddflow.core.commit_message import CommitMessageGenerator
from tddflow.core.exceptions import ConfigurationError

STATE_DIR_NAME = ".tddflow"
CONFIG_FILE_NAME = "config.yaml"


def load_config(
    project_config_path: Optional[Path] = None,
    global_config_path: Optional[Path] = None,
    project_root: Optional[Path] = None,
) -> TDDFlowConfig:
    """Load tddflow configuration from multiple sources.

    Configuration is loaded in the following order (later sources override earlier ones):
    1. Default configuration (built into the models)
    2. Global configuration (~/.config/tddflow/config.yaml)
    3. Project configuration (.tddflow/config.yaml)

    Args:
        project_config_path: Explicit path to project config file
        global_config_path: Explicit path to global config file
        project_root: Directory to search for .tddflow/ (default: current
            directory and its parents)

    Returns:
        Merged and validated configuration

    Raises:
        ConfigurationError: If configuration is invalid or cannot be loaded
    """
    config_data: Dict[str, Any] = {}

    global_path = global_config_path or _get_global_config_path()
    if global_path and global_path.exists():
        config_data = _merge_config(config_data, _load_yaml_file(global_path))

    project_path = project_config_path or _get_project_config_path(project_root)
    if project_path and project_path.exists():
        config_data = _merge_config(config_data, _load_yaml_file(project_path))

    try:
        config = TDDFlowConfig(**config_data).resolve_env_vars()
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e

    # Reject commit templates with unknown placeholders at load time
    CommitMessageGenerator(config.git.commit_format, config.git.commit_type)

    return config


def save_config(config: TDDFlowConfig, config_path: Path) -> None:
    """Save configuration to a YAML file.

    Args:
        config: Configuration to save
        config_path: Path to save the configuration file

    Raises:
        ConfigurationError: If configuration cannot be saved
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(exclude_none=True, mode="json")

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                config_dict,
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                allow_unicode=True,
            )

    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Failed to save configuration to {config_path}: {e}"
        ) from e


def create_default_config() -> TDDFlowConfig:
    """Create a default configuration with all default values."""
    return TDDFlowConfig()


def validate_config_file(config_path: Path) -> Dict[str, Any]:
    """Validate a configuration file without merging it with other sources.

    Args:
        config_path: Path to configuration file to validate

    Returns:
        Dictionary with "valid", "errors", "warnings" and "config" keys

    Raises:
        ConfigurationError: If file cannot be read or parsed
    """
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    config_data = _load_yaml_file(config_path)

    warnings = []
    known_sections = set(TDDFlowConfig.model_fields)
    for key in config_data:
        if key not in known_sections:
            warnings.append(f"Unknown configuration section '{key}' is ignored")

    try:
        config = TDDFlowConfig(**config_data)
        CommitMessageGenerator(config.git.commit_format, config.git.commit_type)
    except ValidationError as e:
        return {
            "valid": False,
            "errors": [str(error) for error in e.errors()],
            "warnings": warnings,
            "config": None,
        }
    except ConfigurationError as e:
        return {
            "valid": False,
            "errors": [str(e)],
            "warnings": warnings,
            "config": None,
        }

    return {
        "valid": True,
        "errors": [],
        "warnings": warnings,
        "config": config.model_dump(),
    }


def get_config_paths(project_root: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get all possible configuration file paths.

    Returns:
        Dictionary with 'global' and 'project' config paths
    """
    return {
        "global": _get_global_config_path(),
        "project": _get_project_config_path(project_root),
    }


def _get_global_config_path() -> Optional[Path]:
    """Get the global configuration file path."""
    # Try XDG config directory first
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "tddflow" / CONFIG_FILE_NAME

    return Path.home() / ".config" / "tddflow" / CONFIG_FILE_NAME


def _get_project_config_path(project_root: Optional[Path] = None) -> Optional[Path]:
    """Get the project configuration file path."""
    if project_root is not None:
        return Path(project_root) / STATE_DIR_NAME / CONFIG_FILE_NAME

    current = Path.cwd()
    for path in [current] + list(current.parents):
        state_dir = path / STATE_DIR_NAME
        if state_dir.exists() and state_dir.is_dir():
            return state_dir / CONFIG_FILE_NAME

    return None


def _load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """Load and parse a YAML file.

    Raises:
        ConfigurationError: If file cannot be loaded or parsed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read {file_path}: {e}") from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file must contain a YAML object, got {type(data)}"
        )

    return data


def _merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two configuration dictionaries recursively."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value

    return result
