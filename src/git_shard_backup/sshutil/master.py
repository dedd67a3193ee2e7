"""ssh ControlMaster connections, one per storage node.

Every routing call, GC toggle and rsync phase aimed at a node multiplexes
over the same control socket, so a run pays one ssh handshake per node.
"""

import getpass
import os
import shlex
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from git_shard_backup.__logger__ import logger

KEEPALIVE_OPTIONS = [
    "ServerAliveInterval=5",
    "ServerAliveCountMax=6",
    "TCPKeepAlive=yes",
    "ConnectTimeout=30",
    "ConnectionAttempts=3",
]


class SSHMasterManager:
    """Shared control connection to one storage node."""

    def __init__(
        self,
        hostname: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        ssh_opts: Optional[List[str]] = None,
        control_dir: Optional[str] = None,
        persist: str = "60",
        identity_file: Optional[str] = None,
    ):
        self.hostname = hostname
        self.username = username or getpass.getuser()
        self.port = port
        self.identity_file = identity_file
        self.extra_opts = list(ssh_opts or [])
        self.persist = persist

        self.control_dir = (
            Path(control_dir) if control_dir else Path.home() / ".ssh" / "controlmasters"
        )
        self.control_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        # unix socket paths are short: keep the name compact
        self.control_path = (
            self.control_dir / f"{self.username}@{self.hostname}-{self.port or 22}-{os.getpid()}"
        )
        self._lock = threading.Lock()
        self._started = False

    def options(self) -> List[str]:
        """Connection arguments shared by plain ssh and rsync's ``-e``."""
        opts = [
            f"ControlPath={self.control_path}",
            "ControlMaster=auto",
            f"ControlPersist={self.persist}",
            "BatchMode=yes",
            "StrictHostKeyChecking=accept-new",
            *KEEPALIVE_OPTIONS,
            *self.extra_opts,
        ]
        args = [arg for opt in opts for arg in ("-o", opt)]
        if self.port:
            args += ["-p", str(self.port)]
        if self.identity_file:
            args += ["-i", str(self.identity_file)]
        return args + ["-l", self.username]

    def _control(self, operation: str) -> subprocess.CompletedProcess:
        """Send ``check`` or ``exit`` to the running master."""
        cmd = [
            "ssh",
            "-O",
            operation,
            "-o",
            f"ControlPath={self.control_path}",
            self.hostname,
        ]
        return subprocess.run(cmd, capture_output=True, text=True)

    def is_master_alive(self) -> bool:
        if not self.control_path.exists():
            return False
        try:
            return self._control("check").returncode == 0
        except OSError:
            return False

    def start_master(self) -> bool:
        """Open the control connection unless one is already up.

        A node whose master cannot be started is still reachable: every call
        then opens its own connection.
        """
        with self._lock:
            if self.is_master_alive():
                return True
            try:
                result = subprocess.run(
                    ["ssh", "-MNf", *self.options(), self.hostname],
                    capture_output=True,
                    text=True,
                )
            except OSError as e:
                logger.error("Cannot start ssh master for %s: %s", self.hostname, e)
                return False
            if result.returncode != 0:
                logger.warning(
                    "No shared ssh connection to %s: %s",
                    self.hostname,
                    result.stderr.strip(),
                )
                return False
            self._started = True
            return True

    def stop_master(self) -> bool:
        with self._lock:
            if not self._started:
                return True
            try:
                stopped = self._control("exit").returncode == 0
            except OSError as e:
                logger.error("Cannot stop ssh master for %s: %s", self.hostname, e)
                stopped = False
            finally:
                self._started = False
                self.cleanup_socket()
            return stopped

    def cleanup_socket(self) -> None:
        try:
            self.control_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error("Cannot remove control socket %s: %s", self.control_path, e)

    def get_ssh_base_cmd(self) -> List[str]:
        """ssh argv up to and including the host name."""
        return ["ssh", *self.options(), self.hostname]

    def get_rsync_shell(self) -> str:
        """The value for rsync's ``-e`` option; rsync appends the host."""
        return shlex.join(["ssh", *self.options()])
