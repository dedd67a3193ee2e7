"""Run-scoped data model: network ids, nodes, routes, jobs and results."""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# <shard>/nw/<aa>/<bb>/<cc>/<network-number>
NETWORK_ID_RE = re.compile(r"^[^/]+/nw/[0-9a-f]{2}/[0-9a-f]{2}/[0-9a-f]{2}/\d+$")


class InvalidNetworkId(ValueError):
    """A string does not look like a repository network path."""


class NetworkId(str):
    """Path of one repository network, relative to ``repositories/``."""

    def __new__(cls, value: str) -> "NetworkId":
        value = value.strip()
        if not NETWORK_ID_RE.match(value):
            raise InvalidNetworkId(f"not a repository network path: {value!r}")
        return super().__new__(cls, value)


@dataclass(frozen=True)
class NodeRef:
    """One storage node reachable over ssh.

    ``name`` is the token the node was listed or routed under (``host`` or
    ``host:port``). Leases, route tables and job results are keyed by it.
    """

    hostname: str
    port: Optional[int] = None
    user: Optional[str] = None
    identity_file: Optional[str] = None
    name: str = ""

    def __post_init__(self):
        if not self.name:
            object.__setattr__(self, "name", self.hostname)

    @classmethod
    def parse(
        cls,
        token: str,
        user: Optional[str] = None,
        port: Optional[int] = None,
        identity_file: Optional[str] = None,
    ) -> "NodeRef":
        """Build a node from ``host`` or ``host:port``."""
        host, sep, port_str = token.rpartition(":")
        if sep and port_str.isdigit():
            return cls(host, int(port_str), user, identity_file, token)
        return cls(token, port, user, identity_file)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Route:
    """A network id and the node(s) that hold or receive it."""

    network_id: NetworkId
    nodes: tuple[str, ...]

    def __post_init__(self):
        if not self.nodes:
            raise ValueError(f"route for {self.network_id} has no nodes")

    @property
    def primary(self) -> str:
        return self.nodes[0]


class JobStatus(Enum):
    """Terminal state of one node's transfer job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class PhaseResult:
    """Outcome of a single rsync call."""

    phase: str
    returncode: int
    missing_sources: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        # 24: source files vanished during the transfer
        return self.returncode in (0, 24)


@dataclass
class TransferJob:
    """One node's ordered id list and the phases to run against it.

    Attributes:
        node: Node the job talks to
        file_list: ``--files-from`` file holding the node's network ids
        network_ids: Ids covered by this job
        phases: Phases to execute, in order
        source: rsync source root
        destination: rsync destination root
        link_dest: Previous snapshot tree to hard-link unchanged files against
        label: Short name used in logs and the summary
    """

    node: NodeRef
    file_list: Optional[str]
    network_ids: list[NetworkId]
    phases: list
    source: str
    destination: str
    link_dest: Optional[str] = None
    label: str = "repositories"


@dataclass
class JobResult:
    """Result of a transfer job, as collected by the scheduler."""

    node: str
    label: str
    status: JobStatus
    network_count: int = 0
    phases: list[PhaseResult] = field(default_factory=list)
    message: str = ""
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    @property
    def missing_sources(self) -> bool:
        return any(p.missing_sources for p in self.phases)

    @property
    def duration(self) -> float:
        if self.completed_at:
            return self.completed_at - self.started_at
        return time.time() - self.started_at
