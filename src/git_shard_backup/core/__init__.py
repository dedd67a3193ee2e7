"""Core orchestration: gate, routes, phased transfers, fan-out, cleanup.

Provides the backup and restore pipelines used by the CLI commands.
"""

from .backup import run_backup
from .report import RunOutcome, RunReport, render_summary
from .restore import run_restore

__all__ = [
    "run_backup",
    "run_restore",
    "RunOutcome",
    "RunReport",
    "render_summary",
]
