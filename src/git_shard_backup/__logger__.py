# pyright: standard

"""git-shard-backup: git_shard_backup/__logger__.py
A common logger that renders through rich, shared by every transfer thread.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)
logger = logging.Logger("git-shard-backup", logging.INFO)


def create_logger(level: str = "INFO") -> None:
    """Route all logging through a fresh rich console at ``level``.

    Records carry the thread name, so output from parallel node jobs
    (``transfer_0``, ``transfer_1``, ...) can be told apart.
    """
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console()
    rich_handler = RichHandler(console=cons, show_path=False)

    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(rich_handler)
    logger.setLevel(level)

    logging.basicConfig(
        format="(%(threadName)s) %(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=[rich_handler],
        force=True,
    )
