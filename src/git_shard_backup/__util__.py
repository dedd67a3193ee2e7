"""git-shard-backup: git_shard_backup/__util__.py
Common utility code shared among modules.
"""

import time

DATE_FORMAT = "%Y%m%dT%H%M%S"


class AbortError(Exception):
    """Exception where the run must be aborted (interrupt or termination)."""


class SetupError(Exception):
    """Exception raised before any mutation when the run cannot start."""


def log_heading(caption: str) -> str:
    """Formats a caption for logging."""
    return f"--[ {caption} ]" + "-" * max(0, 50 - len(caption))


def timestamp(now: float | None = None) -> str:
    """Return a snapshot name for the given epoch time (or now)."""
    return time.strftime(DATE_FORMAT, time.localtime(now))


def chunked(items: list, size: int) -> list[list]:
    """Split a list into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]
