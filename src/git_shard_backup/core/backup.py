"""Cluster wide backup: pull every repository network into a new snapshot."""

import logging
import time
from typing import Callable, Optional

from filelock import Timeout

from .. import __util__
from ..config import Config
from .context import RunContext
from .gate import MaintenanceGate
from .jobs import BACKUP, jobs_from_table, unroutable_results
from .phases import PhasedTransfer
from .report import RunReport
from .routes import ResolutionError, RouteResolver, RouteTable
from .scheduler import FanOutScheduler
from .snapshot import Snapshot, SnapshotError, SnapshotStore
from .special import SpecialPathHandler
from .transport import RemoteShell

logger = logging.getLogger(__name__)


def _storage_nodes(config: Config, resolver: RouteResolver) -> list[str]:
    if config.cluster.nodes:
        return list(config.cluster.nodes)
    return resolver.cluster_nodes()


def _backup(
    context: RunContext,
    store: SnapshotStore,
    shell,
    report: RunReport,
) -> Optional[Snapshot]:
    config = context.config
    resolver = RouteResolver(shell, shell.node(context.cluster_host), config.commands)

    ids = resolver.list_networks()
    if not ids:
        report.skipped_reason = "no repository networks to back up"
        logger.warning("Nothing to back up on %s", context.cluster_host)
        return None
    logger.info("%d repository network(s) on %s", len(ids), context.cluster_host)

    nodes = [shell.node(name) for name in _storage_nodes(config, resolver)]
    gate = MaintenanceGate(shell, config.commands.gc_disable, config.commands.gc_enable)
    lease = gate.acquire(nodes, context)
    report.lease = lease

    routes = resolver.backup_routes(ids)
    table = RouteTable.from_routes(routes, eligible=lease.held)

    previous = store.previous()
    snapshot = store.create()
    report.snapshot = snapshot.name
    link_dest = previous.repositories if previous else None
    if previous:
        logger.info("Linking unchanged files against %s", previous)

    scheduler = FanOutScheduler(context, PhasedTransfer(context, shell))
    jobs = jobs_from_table(context, shell, table, snapshot.repositories, link_dest)
    report.jobs.extend(unroutable_results(table))
    report.jobs.extend(scheduler.run(jobs))

    special = SpecialPathHandler(
        context, shell, scheduler, resolver, snapshot.repositories, link_dest
    )
    report.jobs.extend(
        special.sync_special_dirs([n for n in nodes if lease.holds(n.name)])
    )
    report.jobs.extend(special.sync_archived(lease.held))
    return snapshot


def run_backup(
    config: Config,
    cluster_host: str,
    shell_factory: Callable[[RunContext], object] = RemoteShell,
    store: Optional[SnapshotStore] = None,
) -> RunReport:
    """Back up every repository network of ``cluster_host``.

    GC stays suspended on the storage nodes from before the first transfer
    until every transfer is terminal. The new snapshot only becomes
    ``current`` if every job succeeded.
    """
    store = store or SnapshotStore(config.storage.data_dir, config.storage.current_link)
    report = RunReport(direction=BACKUP, cluster_host=cluster_host)
    logger.info(__util__.log_heading(f"Backup of {cluster_host} started at {time.ctime()}"))

    lock = store.lock()
    try:
        lock.acquire(timeout=0)
    except Timeout:
        report.error = f"Another backup is running in {store.data_dir}"
        logger.error(report.error)
        return report

    try:
        context = RunContext(config, cluster_host, BACKUP)
        snapshot = None
        try:
            with context:
                snapshot = _backup(context, store, shell_factory(context), report)
        except (KeyboardInterrupt, __util__.AbortError):
            report.aborted = True
        except (ResolutionError, SnapshotError, __util__.SetupError, OSError) as e:
            report.error = str(e)
            logger.error("Backup failed: %s", e)
        report.cleanup = context.cleanup_report

        if snapshot is not None:
            if report.jobs_ok and not report.aborted and not report.error:
                store.promote(snapshot)
            else:
                logger.warning(
                    "Snapshot %s is incomplete and was not made current", snapshot
                )
    finally:
        lock.release()

    logger.info(__util__.log_heading(f"Backup finished at {time.ctime()}"))
    return report
