"""Remote command execution and rsync child processes.

``RemoteShell`` is the only place that starts processes: ssh commands for the
routing service and GC control, and the local rsync processes that do the
bulk transfer. rsync children are registered with the run context so an
interrupt can terminate them.
"""

import logging
import re
import shutil
import subprocess
import threading
from typing import Callable, Optional

from .. import __util__
from ..sshutil.master import SSHMasterManager
from .context import RunContext
from .models import NodeRef

logger = logging.getLogger(__name__)

# --ignore-missing-args appeared in rsync 3.1.0
MIN_RSYNC_VERSION = (3, 1, 0)
RSYNC_VERSION_RE = re.compile(r"rsync\s+version\s+v?(\d+)\.(\d+)\.(\d+)")


def parse_rsync_version(output: str) -> Optional[tuple[int, int, int]]:
    """Extract the version triple from ``rsync --version`` output."""
    match = RSYNC_VERSION_RE.search(output)
    if not match:
        return None
    return tuple(int(part) for part in match.groups())  # type: ignore[return-value]


def check_rsync(rsync: str = "rsync") -> tuple[int, int, int]:
    """Make sure a usable rsync is installed.

    Raises:
        SetupError: rsync is missing or too old
    """
    path = shutil.which(rsync)
    if path is None:
        raise __util__.SetupError(f"rsync not found: {rsync}")

    try:
        result = subprocess.run(
            [path, "--version"], capture_output=True, text=True, check=True
        )
    except (subprocess.CalledProcessError, OSError) as e:
        raise __util__.SetupError(f"Cannot run {path} --version: {e}")

    version = parse_rsync_version(result.stdout)
    if version is None:
        raise __util__.SetupError(f"Cannot determine rsync version from {path}")
    if version < MIN_RSYNC_VERSION:
        wanted = ".".join(str(v) for v in MIN_RSYNC_VERSION)
        found = ".".join(str(v) for v in version)
        raise __util__.SetupError(f"rsync {wanted} or newer required, found {found}")

    logger.debug("Using %s (version %s)", path, ".".join(str(v) for v in version))
    return version


class RemoteShell:
    """Runs commands on cluster nodes and rsync processes locally."""

    def __init__(self, context: RunContext):
        self.context = context
        self._cluster = context.config.cluster
        self._masters: dict[str, SSHMasterManager] = {}
        self._lock = threading.Lock()
        context.defer("close ssh connections", self.stop_all)

    def node(self, name: str) -> NodeRef:
        return NodeRef.parse(
            name,
            user=self._cluster.ssh_user,
            port=self._cluster.ssh_port,
            identity_file=self._cluster.ssh_key,
        )

    def _master(self, node: NodeRef) -> SSHMasterManager:
        key = f"{node.hostname}:{node.port}"
        with self._lock:
            master = self._masters.get(key)
            if master is None:
                control_dir = (
                    self.context.workspace / "ssh" if self.context.workspace else None
                )
                master = SSHMasterManager(
                    node.hostname,
                    username=node.user,
                    port=node.port,
                    ssh_opts=self._cluster.ssh_opts,
                    control_dir=str(control_dir) if control_dir else None,
                    identity_file=node.identity_file,
                )
                self._masters[key] = master
        return master

    def run(
        self, node: NodeRef, command: str, stdin_text: str = ""
    ) -> subprocess.CompletedProcess:
        """Run ``command`` on ``node``, feeding ``stdin_text`` to it."""
        argv = self._master(node).get_ssh_base_cmd() + ["--", command]
        logger.debug("[%s] $ %s", node, command)
        return subprocess.run(argv, input=stdin_text, capture_output=True, text=True)

    def rsync_shell(self, node: NodeRef) -> str:
        """The ``-e`` argument rsync needs to reach ``node``."""
        master = self._master(node)
        master.start_master()
        return master.get_rsync_shell()

    def spawn(
        self,
        argv: list[str],
        label: str,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> int:
        """Run a local transfer process to completion and return its status.

        Output lines are logged at debug level and passed to ``on_line``.
        """
        logger.debug("[%s] $ %s", label, " ".join(argv))
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        self.context.register_process(proc)
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                line = line.rstrip()
                logger.debug("[%s] %s", label, line)
                if on_line is not None:
                    on_line(line)
            return proc.wait()
        except BaseException:
            # interrupted in this thread: the child must not outlive the run
            if proc.poll() is None:
                proc.terminate()
                try:
                    proc.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    proc.kill()
            raise
        finally:
            self.context.unregister_process(proc)

    def stop_all(self) -> None:
        with self._lock:
            masters = list(self._masters.values())
            self._masters.clear()
        for master in masters:
            master.stop_master()
