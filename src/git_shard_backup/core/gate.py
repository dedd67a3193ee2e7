"""Maintenance gate: suspend and resume garbage collection on storage nodes.

GC must be off on every node before the first transfer phase starts and
back on only after every stage of the run is terminal. The ``enable``
release for a node is registered with the run context before ``disable``
is sent, so a node whose ``disable`` failed, or a run interrupted halfway
through acquisition, still gets exactly one ``enable`` per ``disable``.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field

from .context import RunContext
from .models import NodeRef

logger = logging.getLogger(__name__)


class GateError(Exception):
    """A GC control command failed on a node."""

    def __init__(self, node: str, action: str, message: str):
        super().__init__(f"GC {action} failed on {node}: {message}")
        self.node = node
        self.action = action


@dataclass
class MaintenanceLease:
    """Which nodes have GC suspended for this run."""

    attempted: list[str] = field(default_factory=list)
    held: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    disable_calls: Counter = field(default_factory=Counter)
    enable_calls: Counter = field(default_factory=Counter)

    def holds(self, node: str) -> bool:
        return node in self.held

    @property
    def degraded(self) -> bool:
        return bool(self.failed)

    @property
    def balanced(self) -> bool:
        return self.disable_calls == self.enable_calls


class MaintenanceGate:
    """Issues GC disable/enable commands through a remote shell."""

    def __init__(self, shell, disable_command: str, enable_command: str):
        self.shell = shell
        self.disable_command = disable_command
        self.enable_command = enable_command

    def _call(self, node: NodeRef, action: str, command: str) -> None:
        result = self.shell.run(node, command)
        if result.returncode != 0:
            raise GateError(
                node.name, action, (result.stderr or "").strip() or f"exit {result.returncode}"
            )

    def acquire(self, nodes: list[NodeRef], context: RunContext) -> MaintenanceLease:
        """Disable GC on every node, degrading on per-node failures."""
        lease = MaintenanceLease()
        context.lease = lease

        for node in nodes:
            name = node.name
            context.defer(
                f"enable GC on {name}", lambda node=node: self.release(node, lease)
            )
            lease.attempted.append(name)
            lease.disable_calls[name] += 1
            try:
                self._call(node, "disable", self.disable_command)
            except GateError as e:
                logger.warning("%s; its partition will be skipped", e)
                lease.failed.append(name)
                continue
            except OSError as e:
                logger.warning("GC disable failed on %s: %s", name, e)
                lease.failed.append(name)
                continue
            lease.held.append(name)
            logger.info("GC suspended on %s", name)

        if lease.degraded:
            logger.warning(
                "GC suspended on %d of %d node(s)", len(lease.held), len(nodes)
            )
        return lease

    def release(self, node: NodeRef, lease: MaintenanceLease) -> None:
        """Enable GC on ``node``. Raises GateError so cleanup can record it."""
        name = node.name
        lease.enable_calls[name] += 1
        self._call(node, "enable", self.enable_command)
        logger.info("GC resumed on %s", name)
