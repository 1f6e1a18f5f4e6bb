"""
Configuration Tools for Beads Worktree MCP Server

Handles YAML configuration cascade merge:
  1. Global defaults:  ~/.beads/worktree-config.yaml
  2. Project config:   <repo>/.beads/worktree-config.yaml

Each level overrides the previous. Workspace naming (.worktrees/bd-<id>) is
not configurable.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR = ".beads"
CONFIG_FILE = "worktree-config.yaml"

DEFAULT_CONFIG = {
    "remote": "origin",
    "base_branches": ["main", "master"],
    "rebase_target": "origin/main",
    "default_merge_method": "squash",
    "bd": {
        "timeout_seconds": 30,
        "allowed_commands": ["list", "show", "comment", "update", "close", "create"],
    },
    "gitignore": {
        "manage": True,
    },
    "logging": {
        "level": "INFO",
    },
}


def _validate_config(config: dict, defaults: dict, prefix: str = "") -> list[str]:
    """Validate config against defaults, returning warnings for unknown keys."""
    warnings = []
    for key, value in config.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if key not in defaults:
            warnings.append(f"Unknown config key: '{full_key}'")
        elif isinstance(value, dict) and isinstance(defaults.get(key), dict):
            warnings.extend(_validate_config(value, defaults[key], full_key))
        elif value is not None:
            expected_type = type(defaults.get(key))
            if expected_type is not type(None) and not isinstance(value, expected_type):
                if not (expected_type == int and isinstance(value, float)):
                    warnings.append(
                        f"Invalid type for '{full_key}': expected {expected_type.__name__}, got {type(value).__name__}"
                    )
    return warnings


def _deep_merge(base: dict, override: dict) -> dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Optional[dict]:
    if not path.exists():
        return None

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return None

    if not isinstance(data, dict):
        return None
    return data


def _get_global_config_path() -> Path:
    return Path.home() / CONFIG_DIR / CONFIG_FILE


def _get_project_config_path(project_dir: Optional[str] = None) -> Path:
    base = Path(project_dir) if project_dir else Path.cwd()
    return base / CONFIG_DIR / CONFIG_FILE


def config_get_effective(project_dir: Optional[str] = None) -> dict[str, Any]:
    """Merge defaults, global and project configuration.

    Args:
        project_dir: Repository root. Defaults to the current directory.

    Returns:
        The merged config plus the files it came from and validation warnings.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    warnings = []

    global_path = _get_global_config_path()
    global_config = _load_yaml(global_path)
    if global_config:
        warnings.extend(_validate_config(global_config, DEFAULT_CONFIG))
        config = _deep_merge(config, global_config)

    project_path = _get_project_config_path(project_dir)
    project_config = _load_yaml(project_path)
    if project_config:
        warnings.extend(_validate_config(project_config, DEFAULT_CONFIG))
        config = _deep_merge(config, project_config)

    sources = []
    if global_config:
        sources.append(str(global_path))
    if project_config:
        sources.append(str(project_path))

    return {
        "config": config,
        "sources": sources,
        "warnings": warnings,
        "has_global": global_config is not None,
        "has_project": project_config is not None,
    }


def get_config(project_dir: Optional[str] = None) -> dict[str, Any]:
    """Shortcut for the merged config dict alone."""
    return config_get_effective(project_dir)["config"]
