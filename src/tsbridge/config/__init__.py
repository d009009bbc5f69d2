"""Configuration management for tsbridge.

Layered YAML configuration:
- User-level config (~/.config/tsbridge/ or %APPDATA%)
- Project-level config ($project_root/.tsbridge/)
- An explicit file (e.g. --config)
- Environment variable overrides (TSBRIDGE_NODE, TSBRIDGE_TSSERVER, TSBRIDGE_LOG)

Example usage:
    from tsbridge.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.server.node, config.timeouts.request)
"""

from tsbridge.config.loader import dict_to_config, load_config
from tsbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_user_config_path,
)
from tsbridge.config.schema import (
    FRAMING_CONTENT_LENGTH,
    FRAMING_LINE,
    Config,
    LoggingConfig,
    ProtocolConfig,
    ServerConfig,
    ShutdownConfig,
    TimeoutConfig,
)

__all__ = [
    "Config",
    "load_config",
    "dict_to_config",
    "ServerConfig",
    "ProtocolConfig",
    "TimeoutConfig",
    "ShutdownConfig",
    "LoggingConfig",
    "FRAMING_CONTENT_LENGTH",
    "FRAMING_LINE",
    "get_config_paths",
    "get_user_config_path",
    "get_project_config_path",
]
