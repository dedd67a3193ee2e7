"""Turn a route table into transfer jobs for either direction."""

import time
from pathlib import Path
from typing import Optional

from .context import RunContext
from .models import JobResult, JobStatus, NodeRef, TransferJob
from .phases import REPOSITORY_PHASES, Phase
from .routes import RouteTable

BACKUP = "backup"
RESTORE = "restore"


def remote_repositories(context: RunContext, node: NodeRef) -> str:
    """rsync address of a node's ``repositories/`` directory."""
    data_dir = context.config.cluster.remote_data_dir.rstrip("/")
    return f"{node.hostname}:{data_dir}/repositories/"


def make_job(
    context: RunContext,
    node: NodeRef,
    local_root: Path,
    phases: list[Phase],
    file_list: Optional[Path] = None,
    network_ids: Optional[list] = None,
    link_dest: Optional[Path] = None,
    label: str = "repositories",
) -> TransferJob:
    """Build a job pulling from (backup) or pushing to (restore) ``node``."""
    remote = remote_repositories(context, node)
    local = f"{local_root}/"
    if context.direction == BACKUP:
        source, destination = remote, local
    else:
        source, destination = local, remote
        # restore never links against anything on the node
        link_dest = None
    return TransferJob(
        node=node,
        file_list=str(file_list) if file_list is not None else None,
        network_ids=list(network_ids or []),
        phases=list(phases),
        source=source,
        destination=destination,
        link_dest=str(link_dest) if link_dest is not None else None,
        label=label,
    )


def jobs_from_table(
    context: RunContext,
    shell,
    table: RouteTable,
    local_root: Path,
    link_dest: Optional[Path] = None,
    label: str = "repositories",
) -> list[TransferJob]:
    """One four-phase job per node in the table."""
    assert context.workspace is not None
    prefix = "" if label == "repositories" else f"{label}-"
    lists = table.write_file_lists(context.workspace, prefix=prefix)
    return [
        make_job(
            context,
            shell.node(node),
            local_root,
            REPOSITORY_PHASES,
            file_list=lists[node],
            network_ids=table.ids_for(node),
            link_dest=link_dest,
            label=label,
        )
        for node in table.nodes()
    ]


def unroutable_results(table: RouteTable, label: str = "repositories") -> list[JobResult]:
    """Failed results for networks whose nodes hold no GC lease."""
    return [
        JobResult(
            node=node,
            label=label,
            status=JobStatus.FAILED,
            network_count=len(ids),
            message="GC could not be suspended; partition skipped",
            completed_at=time.time(),
        )
        for node, ids in sorted(table.unroutable.items())
    ]
