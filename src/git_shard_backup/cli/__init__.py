"""Command line interface for git-shard-backup."""

from .dispatcher import backup_main, main, restore_main

__all__ = ["main", "backup_main", "restore_main"]
