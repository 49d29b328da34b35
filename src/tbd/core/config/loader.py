"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < project config (.tbd/config.yml) < env vars
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tbd.core.paths import config_path

from .models import TbdConfig

logger = logging.getLogger(__name__)

# Cache keyed by resolved project dir to avoid re-reading per command
_config_cache: dict[Path, TbdConfig] = {}


class ConfigError(ValueError):
    """Raised when a config file or override is invalid."""


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`.
    Nested dicts are merged, not replaced.

    Example:
        >>> deep_merge({"sync": {"branch": "a", "remote": "o"}}, {"sync": {"branch": "b"}})
        {'sync': {'branch': 'b', 'remote': 'o'}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML mapping, returning None if the file doesn't exist.

    Raises:
        ConfigError: If the file exists but is not a valid YAML mapping.
    """
    if not path.exists():
        return None

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as e:
        raise ConfigError(f"Failed to read config at {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config at {path} must be a mapping")
    return data


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        TBD_SYNC_BRANCH - overrides sync.branch
        TBD_SYNC_REMOTE - overrides sync.remote
        TBD_SYNC_MAX_RETRIES - overrides sync.max_push_retries
    """
    result = config_dict.copy()
    sync = dict(result.get("sync") or {})

    if branch := os.environ.get("TBD_SYNC_BRANCH"):
        sync["branch"] = branch

    if remote := os.environ.get("TBD_SYNC_REMOTE"):
        sync["remote"] = remote

    if retries_str := os.environ.get("TBD_SYNC_MAX_RETRIES"):
        try:
            sync["max_push_retries"] = int(retries_str)
        except ValueError:
            logger.warning("Invalid TBD_SYNC_MAX_RETRIES value '%s', ignoring", retries_str)

    if sync:
        result["sync"] = sync
    return result


def load_config(project_dir: Path, use_cache: bool = True) -> TbdConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (TBD_*)
        2. Project config (.tbd/config.yml)
        3. Model defaults

    Args:
        project_dir: Project root (the directory containing .tbd/)
        use_cache: If True, return the cached config from a previous load

    Raises:
        ConfigError: If the file is unreadable or the merged config is invalid

    Example:
        >>> config = load_config(Path("."))
        >>> config.sync.branch
        'tbd-sync'
    """
    key = project_dir.resolve()
    if use_cache and key in _config_cache:
        return _config_cache[key]

    merged: dict[str, Any] = {}
    if project_config := load_yaml_file(config_path(key)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    try:
        config = TbdConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    _config_cache[key] = config
    return config


def save_config(project_dir: Path, config: TbdConfig) -> Path:
    """
    Write ``.tbd/config.yml``.

    Returns:
        Path of the written file.
    """
    path = config_path(project_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    _config_cache.pop(project_dir.resolve(), None)
    return path


def clear_cache() -> None:
    """Clear the configuration cache (used by tests)."""
    _config_cache.clear()
