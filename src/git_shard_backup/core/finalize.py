"""Commit restored placements to the routing service.

Until this step succeeds the restored networks exist on disk but the
routing service does not know where they are.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from .. import __util__
from .models import NetworkId, NodeRef

logger = logging.getLogger(__name__)


class FinalizeError(Exception):
    """Restored data is present on the nodes but not registered."""


@dataclass
class FinalizeResult:
    """Outcome of all finalize chunks."""

    chunks: int = 0
    lines: int = 0
    failed_chunks: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_chunks


class Finalizer:
    """Sends ``<node> <network-id>`` lines to the routing service in chunks."""

    def __init__(
        self,
        shell,
        cluster: NodeRef,
        command: str,
        chunk_size: int = 1000,
        parallelism: int = 4,
    ):
        self.shell = shell
        self.cluster = cluster
        self.command = command
        self.chunk_size = chunk_size
        self.parallelism = parallelism

    def _send(self, index: int, lines: list[str]) -> None:
        result = self.shell.run(self.cluster, self.command, "".join(lines))
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise FinalizeError(
                f"chunk {index} ({len(lines)} line(s)) exit {result.returncode}: {stderr}"
            )

    def finalize(self, placements: list[tuple[str, NetworkId]]) -> FinalizeResult:
        """Register every placement; never raises for a failed chunk."""
        lines = [f"{node} {network_id}\n" for node, network_id in placements]
        chunks = __util__.chunked(lines, self.chunk_size) if lines else []
        result = FinalizeResult(chunks=len(chunks), lines=len(lines))
        if not chunks:
            return result

        logger.info(
            "Finalizing %d placement(s) in %d chunk(s)", len(lines), len(chunks)
        )
        workers = max(1, min(self.parallelism, len(chunks)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="finalize") as executor:
            futures = {
                executor.submit(self._send, index, chunk): index
                for index, chunk in enumerate(chunks)
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except (FinalizeError, OSError) as e:
                    logger.error("Finalize %s", e)
                    result.failed_chunks.append(index)
                    result.errors.append(str(e))

        result.failed_chunks.sort()
        return result
