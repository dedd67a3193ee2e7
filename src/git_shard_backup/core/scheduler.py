"""Parallel fan-out of transfer jobs, one worker per node."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

from .. import __util__
from .context import RunContext
from .models import JobResult, JobStatus, TransferJob

logger = logging.getLogger(__name__)


class FanOutScheduler:
    """Runs one job per node concurrently and joins on all of them.

    A failing job is recorded and never cancels its siblings. An interrupt
    while joining terminates every running rsync child and propagates.
    """

    def __init__(self, context: RunContext, engine):
        self.context = context
        self.engine = engine

    def _run_one(self, job: TransferJob) -> JobResult:
        try:
            return self.engine.run_job(job)
        except Exception as e:
            logger.error("[%s] %s job failed: %s", job.node, job.label, e)
            return JobResult(
                node=job.node.name,
                label=job.label,
                status=JobStatus.FAILED,
                network_count=len(job.network_ids),
                message=str(e),
                completed_at=time.time(),
            )

    def run(self, jobs: list[TransferJob]) -> list[JobResult]:
        if not jobs:
            return []

        nodes = [job.node.name for job in jobs]
        if len(nodes) != len(set(nodes)):
            raise ValueError("more than one job for the same node")

        logger.info("Launching %d parallel transfer job(s)", len(jobs))
        results: list[JobResult] = []
        executor = ThreadPoolExecutor(
            max_workers=len(jobs), thread_name_prefix="transfer"
        )
        try:
            futures = {executor.submit(self._run_one, job): job for job in jobs}
            for future in as_completed(futures):
                result = future.result()
                results.append(result)
                if not result.ok:
                    logger.warning(
                        "[%s] %s %s: %s",
                        result.node,
                        result.label,
                        result.status.value,
                        result.message,
                    )
        except (KeyboardInterrupt, __util__.AbortError):
            logger.error("Interrupted, terminating %d transfer job(s)", len(jobs))
            self.context.abort()
            raise
        finally:
            # cancel_futures only drops jobs that never started
            executor.shutdown(wait=True, cancel_futures=True)

        order = {node: i for i, node in enumerate(nodes)}
        results.sort(key=lambda r: order[r.node])
        return results

    def run_serial(self, jobs: list[TransferJob]) -> list[JobResult]:
        """Run jobs one after another, for the low volume special paths."""
        results = []
        for job in jobs:
            if self.context.aborted:
                break
            results.append(self._run_one(job))
        return results
