"""Special asset directories and archived repository networks.

Both are low volume and not partitioned by the routing service, so they
are synced one node at a time after the parallel fan-out.
"""

import logging
from pathlib import Path
from typing import Optional

from .context import RunContext
from .jobs import jobs_from_table, make_job, unroutable_results
from .models import JobResult, NodeRef
from .phases import Phase
from .routes import RouteResolver, RouteTable

logger = logging.getLogger(__name__)


class SpecialPathHandler:
    """Serial transfers of ``__*__`` directories and archived networks."""

    def __init__(
        self,
        context: RunContext,
        shell,
        scheduler,
        resolver: RouteResolver,
        local_root: Path,
        link_dest: Optional[Path] = None,
    ):
        self.context = context
        self.shell = shell
        self.scheduler = scheduler
        self.resolver = resolver
        self.local_root = local_root
        self.link_dest = link_dest

    def sync_special_dirs(self, nodes: list[NodeRef]) -> list[JobResult]:
        """Single phase sync of the special directories, node by node."""
        if not nodes:
            return []
        skipped = ", ".join(self.context.config.transfer.cache_dirs) or "none"
        logger.info(
            "Syncing special directories on %d node(s) (cache dirs skipped: %s)",
            len(nodes),
            skipped,
        )
        jobs = [
            make_job(
                self.context,
                node,
                self.local_root,
                [Phase.SPECIAL],
                link_dest=self.link_dest,
                label="special",
            )
            for node in nodes
        ]
        return self.scheduler.run_serial(jobs)

    def sync_archived(self, eligible: list[str]) -> list[JobResult]:
        """Four phase sync of archived networks, node by node.

        No archived routes is a normal, empty outcome.
        """
        routes = self.resolver.archived_routes()
        if not routes:
            logger.info("No archived repository networks")
            return []

        table = RouteTable.from_routes(routes, eligible=eligible)
        logger.info(
            "Syncing %d archived network(s) from %d node(s)",
            len(table),
            len(table.nodes()),
        )
        jobs = jobs_from_table(
            self.context,
            self.shell,
            table,
            self.local_root,
            link_dest=self.link_dest,
            label="archived",
        )
        return unroutable_results(table, label="archived") + self.scheduler.run_serial(jobs)
