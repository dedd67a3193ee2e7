"""Shared CLI utilities and argument parsers."""

import argparse
import logging
from typing import Optional

from ..config import Config, ConfigError, find_config_file, load_config

logger = logging.getLogger(__name__)


def create_global_parser() -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent."""
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser)
    settings = parser.add_argument_group("Settings")
    settings.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="TOML configuration file (default: first of the standard locations)",
    )
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add -v/-q/--debug to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show ssh commands and rsync output per node",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Only report warnings, errors and the final summary",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output (overrides --quiet)",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Map the verbosity flags to a logging level name.

    ``--debug`` wins over ``--quiet``, which wins over ``--verbose``.
    """
    for flag, level in (("debug", "DEBUG"), ("quiet", "WARNING"), ("verbose", "DEBUG")):
        if getattr(args, flag, False):
            return level
    return "INFO"


def load_settings(args: argparse.Namespace) -> Optional[Config]:
    """Load the configuration named on the command line, or the defaults.

    Returns:
        The configuration, or None if it could not be loaded
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            logger.info("No configuration file found, using defaults")
            return Config()

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config
