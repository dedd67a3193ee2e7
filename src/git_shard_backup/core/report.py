"""Run outcome, exit codes, and the final summary table."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rich.console import Console
from rich.table import Table

from .context import CleanupReport
from .finalize import FinalizeResult
from .gate import MaintenanceLease
from .models import JobResult


class RunOutcome(Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    PARTIAL = "completed with failures"
    FINALIZE_FAILED = "data present, not yet registered"
    ABORTED = "aborted"
    FAILED = "failed"


EXIT_CODES = {
    RunOutcome.SUCCEEDED: 0,
    RunOutcome.SKIPPED: 0,
    RunOutcome.FAILED: 1,
    RunOutcome.PARTIAL: 2,
    RunOutcome.FINALIZE_FAILED: 3,
    RunOutcome.ABORTED: 130,
}


@dataclass
class RunReport:
    """Everything a backup or restore run produced."""

    direction: str
    cluster_host: str
    snapshot: Optional[str] = None
    jobs: list[JobResult] = field(default_factory=list)
    lease: Optional[MaintenanceLease] = None
    cleanup: Optional[CleanupReport] = None
    finalize: Optional[FinalizeResult] = None
    skipped_reason: str = ""
    error: str = ""
    aborted: bool = False

    @property
    def jobs_ok(self) -> bool:
        return all(job.ok for job in self.jobs)

    def node_counts(self) -> tuple[int, int]:
        """(nodes whose every job succeeded, nodes with any job)."""
        nodes: dict[str, bool] = {}
        for job in self.jobs:
            nodes[job.node] = nodes.get(job.node, True) and job.ok
        return sum(nodes.values()), len(nodes)

    @property
    def outcome(self) -> RunOutcome:
        if self.error:
            return RunOutcome.FAILED
        if self.aborted:
            return RunOutcome.ABORTED
        if self.skipped_reason:
            return RunOutcome.SKIPPED
        if self.finalize is not None and not self.finalize.ok:
            return RunOutcome.FINALIZE_FAILED
        if not self.jobs_ok or (self.cleanup is not None and not self.cleanup.ok):
            return RunOutcome.PARTIAL
        return RunOutcome.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.outcome]


def render_summary(report: RunReport, console: Console) -> None:
    """Print a per-job table and a one line verdict."""
    if report.jobs:
        table = Table(title=f"{report.direction} of {report.cluster_host}")
        table.add_column("Node")
        table.add_column("Set")
        table.add_column("Networks", justify="right")
        table.add_column("Phases", justify="right")
        table.add_column("Status")
        table.add_column("Time", justify="right")
        table.add_column("Notes")
        for job in report.jobs:
            notes = job.message
            if job.missing_sources:
                notes = ", ".join(filter(None, [notes, "missing sources skipped"]))
            style = "green" if job.ok else "red"
            table.add_row(
                job.node,
                job.label,
                str(job.network_count),
                str(sum(1 for p in job.phases if p.ok)),
                f"[{style}]{job.status.value}[/{style}]",
                f"{job.duration:.1f}s",
                notes,
            )
        console.print(table)

    succeeded, total = report.node_counts()
    if total:
        console.print(f"{succeeded}/{total} nodes succeeded")
    if report.snapshot:
        console.print(f"Snapshot: {report.snapshot}")
    if report.cleanup is not None:
        for description, message in report.cleanup.failures:
            console.print(f"[red]Cleanup failed:[/red] {description}: {message}")
    if report.finalize is not None and not report.finalize.ok:
        console.print(
            f"[bold red]Restored data present, not yet registered:[/bold red] "
            f"{len(report.finalize.failed_chunks)} of {report.finalize.chunks} "
            "finalize chunk(s) failed; re-run the restore to register them"
        )
    console.print(f"Run {report.outcome.value}")
