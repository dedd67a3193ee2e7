"""Cluster wide restore: push a snapshot's networks to freshly routed nodes.

Routes are asked for on every run, so a network lands on whichever node the
routing service picks now, not where it lived when the snapshot was taken.
"""

import logging
import time
from typing import Callable, Optional

from .. import __util__
from ..config import Config
from .context import RunContext
from .finalize import Finalizer
from .gate import MaintenanceGate
from .jobs import RESTORE, jobs_from_table, unroutable_results
from .models import Route
from .phases import PhasedTransfer
from .report import RunReport
from .routes import ResolutionError, RouteResolver, RouteTable
from .scheduler import FanOutScheduler
from .snapshot import Snapshot, SnapshotError, SnapshotStore, scan_networks
from .special import SpecialPathHandler
from .transport import RemoteShell

logger = logging.getLogger(__name__)


def destination_routes(routes: list[Route]) -> list[Route]:
    """Keep only the top ranked candidate node of each restore route."""
    return [Route(route.network_id, route.nodes[:1]) for route in routes]


def _restore(
    context: RunContext,
    snapshot: Snapshot,
    ids: list,
    shell,
    report: RunReport,
) -> None:
    config = context.config
    resolver = RouteResolver(shell, shell.node(context.cluster_host), config.commands)

    names = list(config.cluster.nodes) or resolver.cluster_nodes()
    nodes = [shell.node(name) for name in names]
    gate = MaintenanceGate(shell, config.commands.gc_disable, config.commands.gc_enable)
    lease = gate.acquire(nodes, context)
    report.lease = lease

    routes = destination_routes(resolver.restore_routes(ids))
    table = RouteTable.from_routes(routes, eligible=lease.held)

    scheduler = FanOutScheduler(context, PhasedTransfer(context, shell))
    jobs = jobs_from_table(context, shell, table, snapshot.repositories)
    report.jobs.extend(unroutable_results(table))
    results = scheduler.run(jobs)
    report.jobs.extend(results)

    special = SpecialPathHandler(context, shell, scheduler, resolver, snapshot.repositories)
    report.jobs.extend(
        special.sync_special_dirs([n for n in nodes if lease.holds(n.name)])
    )

    if context.aborted:
        return

    restored = {result.node for result in results if result.ok}
    placements = [(node, nid) for node, nid in table.placements() if node in restored]
    skipped = len(table) - len(placements)
    if skipped:
        logger.warning(
            "%d network(s) on failed nodes will not be registered", skipped
        )

    finalizer = Finalizer(
        shell,
        shell.node(context.cluster_host),
        config.commands.finalize,
        chunk_size=config.restore.finalize_chunk_size,
        parallelism=config.restore.finalize_parallelism,
    )
    report.finalize = finalizer.finalize(placements)
    if not report.finalize.ok:
        logger.error(
            "Restored data is present but %d finalize chunk(s) failed; "
            "the networks are not yet registered",
            len(report.finalize.failed_chunks),
        )


def run_restore(
    config: Config,
    cluster_host: str,
    snapshot_id: str,
    shell_factory: Callable[[RunContext], object] = RemoteShell,
    store: Optional[SnapshotStore] = None,
) -> RunReport:
    """Restore snapshot ``snapshot_id`` onto ``cluster_host``."""
    store = store or SnapshotStore(config.storage.data_dir, config.storage.current_link)
    report = RunReport(direction=RESTORE, cluster_host=cluster_host)
    logger.info(
        __util__.log_heading(f"Restore to {cluster_host} started at {time.ctime()}")
    )

    try:
        snapshot = store.resolve(snapshot_id)
    except SnapshotError as e:
        report.error = str(e)
        logger.error("Restore failed: %s", e)
        return report
    report.snapshot = snapshot.name

    ids = scan_networks(snapshot.repositories)
    if not ids:
        report.skipped_reason = f"no repository networks in snapshot {snapshot}"
        logger.warning("Nothing to restore from %s", snapshot)
        return report
    logger.info("%d repository network(s) in snapshot %s", len(ids), snapshot)

    context = RunContext(config, cluster_host, RESTORE)
    try:
        with context:
            _restore(context, snapshot, ids, shell_factory(context), report)
    except (KeyboardInterrupt, __util__.AbortError):
        report.aborted = True
    except (ResolutionError, __util__.SetupError, OSError) as e:
        report.error = str(e)
        logger.error("Restore failed: %s", e)
    report.cleanup = context.cleanup_report

    logger.info(__util__.log_heading(f"Restore finished at {time.ctime()}"))
    return report
