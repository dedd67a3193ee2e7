"""CLI dispatcher.

Routes ``backup`` and ``restore`` subcommands to their handlers, and
provides the single purpose ``git-shard-backup`` / ``git-shard-restore``
entry points.
"""

import argparse
import sys
from typing import Callable, Optional

from .. import __version__
from .backup import add_backup_args, execute_backup
from .common import create_global_parser
from .restore import add_restore_args, execute_restore

COMMANDS: dict[str, tuple[str, Callable, Callable]] = {
    "backup": ("Back up every repository network of a cluster", add_backup_args, execute_backup),
    "restore": ("Restore a snapshot onto a cluster", add_restore_args, execute_restore),
}


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="git_shard_backup",
        description="Consistent, incremental backup and restore of a sharded Git store",
        parents=[create_global_parser()],
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )
    for name, (help_text, add_args, _) in COMMANDS.items():
        sub = subparsers.add_parser(name, help=help_text, description=help_text)
        add_args(sub)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for ``python -m git_shard_backup``."""
    parser = create_subcommand_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1
    return COMMANDS[args.command][2](args)


def _single_command(name: str, argv: Optional[list[str]]) -> int:
    help_text, add_args, execute = COMMANDS[name]
    parser = argparse.ArgumentParser(
        prog=f"git-shard-{name}",
        description=help_text,
        parents=[create_global_parser()],
    )
    add_args(parser)
    return execute(parser.parse_args(argv))


def backup_main(argv: Optional[list[str]] = None) -> int:
    return _single_command("backup", argv)


def restore_main(argv: Optional[list[str]] = None) -> int:
    return _single_command("restore", argv)


def run_backup_cli() -> None:
    sys.exit(backup_main())


def run_restore_cli() -> None:
    sys.exit(restore_main())
