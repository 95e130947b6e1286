"""Configuration management for claimboard.

Hierarchical YAML configuration with:
- System-level config (/etc/claimboard/ or %PROGRAMDATA%)
- User-level config (~/.config/claimboard/, ~/.claimboard/ or %APPDATA%)
- Project-level config ($root/.claimboard/)
- Environment variable overrides (highest priority)

Example usage:
    from claimboard.config import load_config

    config = load_config(root="/path/to/project")
    print(config.board.stale_after)
"""

from claimboard.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from claimboard.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from claimboard.config.schema import (
    BoardConfig,
    Config,
    LoggingConfig,
)

__all__ = [
    "BoardConfig",
    "Config",
    "LoggingConfig",
    "get_config",
    "get_config_paths",
    "get_project_config_path",
    "get_system_config_path",
    "get_user_config_path",
    "load_config",
    "reset_config",
]
