"""Layered configuration for the graph memory adapter.

Layers, lowest precedence first:

1. Built-in defaults (``GraphMemoryConfig``)
2. ``~/.graph-memory/config.toml``
3. ``.graph-memory/config.toml`` in the project directory or any parent
4. ``GRAPH_MEMORY_*`` environment variables

A broken user file is skipped with a warning; a broken project file is an
error, since it usually means the project is misconfigured.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore

from pydantic import ValidationError

from .backends import ConfigError
from .config_schema import GraphMemoryConfig


CONFIG_FILENAME = "config.toml"
USER_CONFIG_DIR = ".graph-memory"
PROJECT_CONFIG_DIR = ".graph-memory"
ENV_PREFIX = "GRAPH_MEMORY_"

_SECTION_ENV: Dict[str, Dict[str, str]] = {
    "adapter": {
        "ENABLED": "enabled",
        "GROUP_ID": "default_group_id",
        "MAX_NODES": "max_nodes",
        "MAX_FACTS": "max_facts",
        "AUTO_SYNC": "enable_auto_sync",
        "SYNC_INTERVAL": "sync_interval",
        "SYNC_MODE": "sync_mode",
        "TEMPORAL_TRACKING": "enable_temporal_tracking",
        "RETENTION_DAYS": "knowledge_retention_days",
        "FALLBACK_MAX_RESULTS": "fallback_max_results",
        "CALL_TIMEOUT": "call_timeout",
    },
    "mcp": {
        "MCP_URL": "url",
        "MCP_SERVER_NAME": "server_name",
    },
    "logging": {
        "LOG_LEVEL": "level",
        "LOG_DIR": "dir",
        "LOG_MAX_BYTES": "max_bytes",
        "LOG_BACKUP_COUNT": "backup_count",
        "LOG_DISABLE_FILE": "disable_file",
    },
}

# GRAPH_MEMORY_SYNC_INTERVAL -> (["adapter"], "sync_interval")
ENV_MAPPING: Dict[str, Tuple[list[str], str]] = {
    f"{ENV_PREFIX}{suffix}": ([section], key)
    for section, keys in _SECTION_ENV.items()
    for suffix, key in keys.items()
}


def _get_user_config_dir() -> Path:
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.graph-memory`` directory at or above ``project_path``."""
    start = (project_path or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        candidate = directory / PROJECT_CONFIG_DIR
        if candidate.is_dir():
            return candidate
    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Parse one TOML file.

    Raises:
        ConfigError: If the file is missing or is not valid TOML
    """
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated by ``override``; tables merge, everything else replaces."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        elif isinstance(value, dict):
            merged[key] = _deep_merge({}, value)
        else:
            merged[key] = value
    return merged


def _env_to_config_key(env_var: str) -> Tuple[list[str], str]:
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``config_dict`` with every set ``GRAPH_MEMORY_*`` variable applied.

    Values stay strings here; pydantic coerces them during validation.
    """
    result = _deep_merge({}, config_dict)
    for env_var, (sections, key) in ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        table = result
        for section in sections:
            table = table.setdefault(section, {})
        table[key] = value
    return result


def _read_user_layer(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return _load_toml(path)
    except ConfigError as e:
        warnings.warn(f"Skipping invalid user config at {path}: {e}", UserWarning)
        return {}


def _read_project_layer(path: Optional[Path]) -> Dict[str, Any]:
    if path is None or not path.exists():
        return {}
    try:
        return _load_toml(path)
    except ConfigError as e:
        raise ConfigError(f"Invalid project config: {e}") from e


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> GraphMemoryConfig:
    """Merge every configuration layer and validate the result.

    Args:
        project_path: Where to start looking for ``.graph-memory/``
        skip_env: Ignore ``GRAPH_MEMORY_*`` variables

    Raises:
        ConfigError: If the project file is unreadable or the merged
            values fail validation
    """
    paths = get_config_paths(project_path)
    merged = _deep_merge(
        _read_user_layer(paths["user_config"]),
        _read_project_layer(paths["project_config"]),
    )
    if not skip_env:
        merged = _apply_env_overlay(merged)

    try:
        return GraphMemoryConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}") from e


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Config file locations; ``project_config`` is None outside a project."""
    project_dir = _get_project_config_dir(project_path)
    return {
        "user_config": _get_user_config_dir() / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
    }


_config_lock = threading.Lock()
_cached: Optional[Tuple[Optional[Path], GraphMemoryConfig]] = None


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> GraphMemoryConfig:
    """Process-wide config, reloaded when the project path changes."""
    global _cached
    key = project_path.resolve() if project_path else None
    with _config_lock:
        if force_reload or _cached is None or _cached[0] != key:
            _cached = (key, load_config(project_path))
        return _cached[1]


def clear_config_cache() -> None:
    global _cached
    with _config_lock:
        _cached = None
