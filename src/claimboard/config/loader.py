"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from claimboard.config.merge import merge_configs
from claimboard.config.paths import get_config_paths
from claimboard.config.schema import BoardConfig, Config, LoggingConfig

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("claimboard.config")

_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build a config layer from CLAIMBOARD_* environment variables."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("CLAIMBOARD_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    stale_after = os.environ.get("CLAIMBOARD_STALE_AFTER")
    if stale_after:
        try:
            overrides.setdefault("board", {})["stale_after"] = float(stale_after)
        except ValueError:
            _log.warning("Ignoring non-numeric CLAIMBOARD_STALE_AFTER=%r", stale_after)

    return overrides


def _number(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    defaults = BoardConfig()
    board_data = data.get("board") or {}
    board = BoardConfig(
        tasks_file=str(board_data.get("tasks_file", defaults.tasks_file)),
        sessions_file=str(board_data.get("sessions_file", defaults.sessions_file)),
        stale_after=_number(board_data.get("stale_after"), defaults.stale_after),
        lock_timeout=_number(board_data.get("lock_timeout"), defaults.lock_timeout),
    )

    log_data = data.get("logging") or {}
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=int(verbose) if verbose is not None else None,
        file=log_data.get("file"),
    )

    known_keys = {"board", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(board=board, logging=logging_config, extra=extra)


def load_config(root: str | Path | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($root/.claimboard/config.yaml)
    3. User config
    4. System config

    Args:
        root: Board root for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            layers.append(config_data)

    env_config = env_overrides()
    if env_config:
        layers.append(env_config)

    config = dict_to_config(merge_configs(*layers))

    # Only the global (root-less) config is cached
    if root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config (used by tests)."""
    global _cached_config
    _cached_config = None
