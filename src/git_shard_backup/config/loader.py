"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import dataclasses
import tomllib
from pathlib import Path
from typing import Any

from .schema import (
    ClusterConfig,
    CommandsConfig,
    Config,
    RestoreConfig,
    StorageConfig,
    TransferConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "git-shard-backup" / "config.toml",
    Path("/etc/git-shard-backup/config.toml"),
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


def _parse_section(name: str, cls, data: dict[str, Any]):
    """Build a schema dataclass from a TOML table, rejecting unknown keys."""
    if not isinstance(data, dict):
        raise ConfigError(f"[{name}] must be a table")

    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ConfigError(f"Unknown key(s) in [{name}]: {', '.join(unknown)}")

    defaults = cls()
    for key, value in data.items():
        expected = type(getattr(defaults, key))
        if getattr(defaults, key) is None or isinstance(value, expected):
            continue
        if expected is float and isinstance(value, int):
            continue
        raise ConfigError(
            f"[{name}] {key} must be {expected.__name__}, got {type(value).__name__}"
        )
    return cls(**data)


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if config.restore.finalize_chunk_size < 1:
        raise ConfigError("[restore] finalize_chunk_size must be at least 1")
    if config.restore.finalize_parallelism < 1:
        raise ConfigError("[restore] finalize_parallelism must be at least 1")
    if not 0 < config.cluster.ssh_port < 65536:
        raise ConfigError(f"[cluster] ssh_port out of range: {config.cluster.ssh_port}")

    if config.restore.finalize_chunk_size > 1000:
        warnings.append(
            "finalize_chunk_size above 1000 sends large payloads to the routing service"
        )

    nodes = config.cluster.nodes
    if len(nodes) != len(set(nodes)):
        warnings.append("Duplicate node names in [cluster] nodes")

    if not Path(config.storage.data_dir).is_absolute():
        warnings.append(
            f"Storage data_dir '{config.storage.data_dir}' is relative to the working directory"
        )

    for cache_dir in config.transfer.cache_dirs:
        if not (cache_dir.startswith("__") and cache_dir.endswith("__")):
            warnings.append(f"Cache dir '{cache_dir}' is not a special directory name")

    return warnings


def parse_config(data: dict[str, Any]) -> tuple[Config, list[str]]:
    """Build and validate a Config from already parsed TOML data."""
    sections = {
        "cluster": ClusterConfig,
        "storage": StorageConfig,
        "commands": CommandsConfig,
        "transfer": TransferConfig,
        "restore": RestoreConfig,
    }
    unknown = sorted(set(data) - set(sections))
    if unknown:
        raise ConfigError(f"Unknown section(s): {', '.join(unknown)}")

    parsed = {
        name: _parse_section(name, cls, data.get(name, {}))
        for name, cls in sections.items()
    }
    config = Config(**parsed)

    return config, _validate_config(config)


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

    return parse_config(data)
