"""Backup command: snapshot every repository network of a cluster."""

import argparse
import logging

from .. import __logger__, __util__
from ..core import render_summary, run_backup
from ..core.transport import check_rsync
from .common import get_log_level, load_settings

logger = logging.getLogger(__name__)


def add_backup_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("cluster_host", help="Cluster host to back up")


def execute_backup(args: argparse.Namespace) -> int:
    """Execute the backup command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success or nothing to do, non-zero for failure)
    """
    __logger__.create_logger(level=get_log_level(args))

    config = load_settings(args)
    if config is None:
        return 1

    try:
        check_rsync(config.transfer.rsync)
    except __util__.SetupError as e:
        logger.error("Setup failed: %s", e)
        return 1

    report = run_backup(config, args.cluster_host)
    render_summary(report, __logger__.cons)
    return report.exit_code
