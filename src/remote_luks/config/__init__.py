"""Configuration system for remote-luks.

This module provides TOML-based configuration loading, validation,
and schema definitions.
"""

from .loader import (
    ConfigError,
    find_config_file,
    generate_example_config,
    load_config,
    require_configured,
)
from .schema import (
    Config,
    GeneralConfig,
    ImageConfig,
    PathsConfig,
    RemoteConfig,
    RsyncConfig,
)

__all__ = [
    "Config",
    "GeneralConfig",
    "ImageConfig",
    "PathsConfig",
    "RemoteConfig",
    "RsyncConfig",
    "load_config",
    "find_config_file",
    "generate_example_config",
    "require_configured",
    "ConfigError",
]
