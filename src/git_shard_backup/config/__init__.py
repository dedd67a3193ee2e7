"""Configuration system for git-shard-backup.

This module provides TOML-based configuration loading, validation,
and schema definitions for cluster backup and restore runs.
"""

from .loader import ConfigError, find_config_file, load_config, parse_config
from .schema import (
    ClusterConfig,
    CommandsConfig,
    Config,
    RestoreConfig,
    StorageConfig,
    TransferConfig,
)

__all__ = [
    "ClusterConfig",
    "CommandsConfig",
    "Config",
    "RestoreConfig",
    "StorageConfig",
    "TransferConfig",
    "load_config",
    "parse_config",
    "find_config_file",
    "ConfigError",
]
