"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path
from typing import Any

from ..__util__ import SIZE_BASES, parse_size
from ..core.errors import ConfigurationError
from .schema import (
    Config,
    GeneralConfig,
    ImageConfig,
    PathsConfig,
    RemoteConfig,
    RsyncConfig,
)


class ConfigError(ConfigurationError):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "remote-luks" / "config.toml",
    Path("/etc/remote-luks/config.toml"),
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _string_list(data: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Read a list of strings, accepting a single string as a one-item list."""
    value = data.get(key, default)
    if isinstance(value, str):
        return (value,) if value else ()
    if not isinstance(value, (list, tuple)) or not all(
        isinstance(v, str) for v in value
    ):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


def _parse_general(data: dict[str, Any]) -> GeneralConfig:
    """Parse general configuration from dict."""
    return GeneralConfig(
        configured=data.get("configured", False),
        confirm_every_command=data.get("confirm_every_command", False),
        use_colors=data.get("use_colors", True),
        show_status=data.get("show_status", True),
        load_kernel_modules=data.get("load_kernel_modules", True),
    )


def _parse_image(data: dict[str, Any]) -> ImageConfig:
    """Parse image configuration from dict."""
    image = ImageConfig(
        size=str(data.get("size", "10M")),
        size_base=data.get("size_base", 1000),
        prefix=data.get("prefix", "my_secure_remote"),
        volume_name=data.get("volume_name", "RemoteLUKS"),
        filesystem=data.get("filesystem", "ext4"),
    )

    if image.size_base not in SIZE_BASES:
        raise ConfigError(
            f"Invalid size_base {image.size_base!r}: must be 1000 or 1024"
        )
    try:
        parse_size(image.size, image.size_base)
    except ValueError as e:
        raise ConfigError(f"Invalid image size: {e}")
    if not image.volume_name:
        raise ConfigError("Image 'volume_name' must not be empty")
    if not image.prefix:
        raise ConfigError("Image 'prefix' must not be empty")

    return image


def _parse_remote(data: dict[str, Any]) -> RemoteConfig:
    """Parse remote configuration from dict."""
    remote = RemoteConfig(
        location=data.get("location", RemoteConfig.location),
        sshfs_options=_string_list(data, "sshfs_options", ()),
    )
    if not remote.location:
        raise ConfigError("Remote 'location' must not be empty")
    return remote


def _parse_paths(data: dict[str, Any]) -> PathsConfig:
    """Parse paths configuration from dict."""
    key_size = data.get("key_size", 1024)
    if not isinstance(key_size, int) or key_size <= 0:
        raise ConfigError(f"Invalid key_size {key_size!r}: must be a positive integer")

    return PathsConfig(
        working_dir=data.get("working_dir", "~/remote_luks"),
        key_file=data.get("key_file") or None,
        key_size=key_size,
    )


def _parse_rsync(data: dict[str, Any]) -> RsyncConfig:
    """Parse rsync configuration from dict."""
    defaults = RsyncConfig()
    return RsyncConfig(
        source=data.get("source", ""),
        options=_string_list(data, "options", defaults.options),
        exclude=_string_list(data, "exclude", defaults.exclude),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.rsync.source:
        warnings.append("No rsync source configured, backup will not work")
    elif not Path(config.rsync.source).expanduser().exists():
        warnings.append(f"rsync source '{config.rsync.source}' does not exist")

    if "/" in config.image.volume_name:
        warnings.append(
            f"Volume name '{config.image.volume_name}' contains '/', "
            "cryptsetup will reject it"
        )

    if config.user_key_configured and not config.key_file.exists():
        warnings.append(f"Key file '{config.key_file}' does not exist")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    config = Config(
        general=_parse_general(data.get("general", {})),
        image=_parse_image(data.get("image", {})),
        remote=_parse_remote(data.get("remote", {})),
        paths=_parse_paths(data.get("paths", {})),
        rsync=_parse_rsync(data.get("rsync", {})),
    )

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def require_configured(config: Config) -> None:
    """Refuse to run until the user has marked the configuration as done."""
    if not config.general.configured:
        raise ConfigError(
            "I AM UNCONFIGURED - review the settings and set "
            "'configured = true' in the [general] section"
        )


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# remote-luks configuration
# Adjust these settings, then set configured = true

[general]
configured = false
# Show and confirm every command before it is executed
confirm_every_command = false
use_colors = true
# Print a status summary after every command
show_status = true
load_kernel_modules = true

[image]
# Size of a newly created image: 123K, 123M or 123G
size = "10M"
# 1000: 1K = 1000 bytes, 1024: 1K = 1024 bytes
size_base = 1000
# ".luks.img" will be appended
prefix = "my_secure_remote"
# Name of the unlocked volume (may show on your desktop)
volume_name = "RemoteLUKS"
filesystem = "ext4"

[remote]
# How to connect to the server with sshfs
location = "user@server:/home/username/remote_luks/"
# Example: login using an alternate port number
# sshfs_options = ["-p", "12345"]

[paths]
# Temporary files and mount points
working_dir = "~/remote_luks"
# Use your own existing key file instead of a generated one
# key_file = "/path/to/my_keyfile.dat"
key_size = 1024

[rsync]
# Add a "/" to the end to back up only the contents of the folder
source = "/this/directory/"
options = ["-avxHAWX", "--info=progress2", "--delete"]
# Names are matched against the root of the source directory
exclude = ["lost+found"]
"""
