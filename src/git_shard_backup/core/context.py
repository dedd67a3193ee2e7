"""Run-scoped context and cleanup controller.

Every resource a run acquires (the temporary workspace, one GC lease per
node, ssh control connections) registers its release action here at the
moment it is acquired. ``close()`` runs the actions in reverse order on
every exit path and keeps going through individual failures, so one node
refusing ``enable`` never stops the others from being released.
"""

import logging
import signal
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .. import __util__
from ..config import Config

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5


@dataclass
class CleanupReport:
    """Outcome of running the release actions."""

    actions: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _raise_abort(signum, frame):
    raise __util__.AbortError(f"received signal {signal.Signals(signum).name}")


class RunContext:
    """State shared by every component of one backup or restore run."""

    def __init__(self, config: Config, cluster_host: str, direction: str):
        self.config = config
        self.cluster_host = cluster_host
        self.direction = direction
        self.workspace: Optional[Path] = None
        self.lease = None
        self.cleanup_report: Optional[CleanupReport] = None
        self._aborted = threading.Event()
        self._releases: list[tuple[str, Callable[[], object]]] = []
        self._processes: set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._sigterm_before = None

    def __enter__(self) -> "RunContext":
        tmpdir = tempfile.TemporaryDirectory(prefix=f"git-shard-{self.direction}-")
        self.workspace = Path(tmpdir.name)
        self.defer(f"remove workspace {self.workspace}", tmpdir.cleanup)
        logger.debug("Run workspace: %s", self.workspace)

        if threading.current_thread() is threading.main_thread():
            self._sigterm_before = signal.signal(signal.SIGTERM, _raise_abort)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None and issubclass(
            exc_type, (KeyboardInterrupt, __util__.AbortError)
        ):
            logger.error("Run interrupted, stopping transfers")
            self.abort()
        self.cleanup_report = self.close()
        return False

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def defer(self, description: str, action: Callable[[], object]) -> None:
        """Register a release action; actions run last-registered first."""
        with self._lock:
            self._releases.append((description, action))

    def close(self) -> CleanupReport:
        """Run every registered release action, in reverse order.

        SIGINT and SIGTERM are ignored until the last action has run. The
        SIGTERM handler in place before the run is restored afterwards.
        """
        report = CleanupReport()
        in_main = threading.current_thread() is threading.main_thread()
        if in_main:
            previous_sigint = signal.signal(signal.SIGINT, signal.SIG_IGN)
            previous_sigterm = signal.signal(signal.SIGTERM, signal.SIG_IGN)
        try:
            while True:
                with self._lock:
                    if not self._releases:
                        break
                    description, action = self._releases.pop()
                logger.debug("Cleanup: %s", description)
                report.actions.append(description)
                try:
                    action()
                except Exception as e:
                    logger.warning("Cleanup step failed (%s): %s", description, e)
                    report.failures.append((description, str(e)))
        finally:
            if in_main:
                signal.signal(signal.SIGINT, previous_sigint)
                if self._sigterm_before is not None:
                    previous_sigterm, self._sigterm_before = self._sigterm_before, None
                signal.signal(signal.SIGTERM, previous_sigterm)
        return report

    def register_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if self._aborted.is_set():
                proc.terminate()
            self._processes.add(proc)

    def unregister_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(proc)

    def abort(self) -> None:
        """Stop launching phases and terminate every running child process."""
        self._aborted.set()
        with self._lock:
            procs = list(self._processes)
        for proc in procs:
            if proc.poll() is None:
                logger.debug("Terminating child process %s", proc.pid)
                proc.terminate()
        for proc in procs:
            try:
                proc.wait(timeout=TERMINATE_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning("Killing child process %s", proc.pid)
                proc.kill()
