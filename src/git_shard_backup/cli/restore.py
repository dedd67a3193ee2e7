"""Restore command: push one snapshot back onto a cluster."""

import argparse
import logging

from .. import __logger__, __util__
from ..core import render_summary, run_restore
from ..core.transport import check_rsync
from .common import get_log_level, load_settings

logger = logging.getLogger(__name__)


def add_restore_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("cluster_host", help="Cluster host to restore onto")
    parser.add_argument(
        "snapshot",
        help="Snapshot to restore from (a snapshot name, or 'current')",
    )


def execute_restore(args: argparse.Namespace) -> int:
    """Execute the restore command.

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

    report = run_restore(config, args.cluster_host, args.snapshot)
    render_summary(report, __logger__.cons)
    return report.exit_code
