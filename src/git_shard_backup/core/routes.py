"""Route resolution and the per-node route table.

The routing service speaks a line protocol: the request is a newline
separated list of network ids on stdin, the response one
``<network-id> <node> [<node> ...]`` line per id. Responses are decoded
into ``Route`` records; a malformed line fails the whole call instead of
dropping the id.
"""

import logging
from collections import defaultdict
from pathlib import Path
from typing import Iterable, Optional

from .. import node_file_name
from ..config import CommandsConfig
from .models import InvalidNetworkId, NetworkId, NodeRef, Route

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """The routing service could not produce routes for this run."""


class RouteParseError(ResolutionError):
    """A line of a routing response could not be decoded."""

    def __init__(self, direction: str, lineno: int, line: str, reason: str):
        super().__init__(f"{direction} routes, line {lineno}: {reason}: {line!r}")
        self.direction = direction
        self.lineno = lineno
        self.line = line


def parse_network_ids(text: str) -> list[NetworkId]:
    """Decode a newline separated id list, skipping blank lines."""
    ids = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            ids.append(NetworkId(line))
        except InvalidNetworkId as e:
            raise RouteParseError("network list", lineno, line, str(e))
    return ids


def parse_routes(text: str, direction: str) -> list[Route]:
    """Decode a routing response into routes.

    Raises:
        RouteParseError: a line has no node list or an invalid network id
    """
    routes: list[Route] = []
    seen: set[str] = set()
    for lineno, line in enumerate(text.splitlines(), 1):
        tokens = line.split()
        if not tokens:
            continue
        if len(tokens) < 2:
            raise RouteParseError(direction, lineno, line, "missing node list")
        try:
            network_id = NetworkId(tokens[0])
        except InvalidNetworkId as e:
            raise RouteParseError(direction, lineno, line, str(e))
        if network_id in seen:
            logger.warning("Duplicate %s route for %s ignored", direction, network_id)
            continue
        seen.add(network_id)
        routes.append(Route(network_id, tuple(tokens[1:])))
    return routes


class RouteResolver:
    """Client for the routing service running on the cluster host."""

    def __init__(self, shell, cluster: NodeRef, commands: CommandsConfig):
        self.shell = shell
        self.cluster = cluster
        self.commands = commands

    def _call(self, what: str, command: str, stdin_text: str = "") -> str:
        try:
            result = self.shell.run(self.cluster, command, stdin_text)
        except OSError as e:
            raise ResolutionError(f"Cannot run {what} on {self.cluster}: {e}")
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise ResolutionError(
                f"{what} failed on {self.cluster} (exit {result.returncode}): {stderr}"
            )
        return result.stdout

    def cluster_nodes(self) -> list[str]:
        """Names of the cluster's storage nodes."""
        output = self._call("node listing", self.commands.cluster_nodes)
        nodes = [line.strip() for line in output.splitlines() if line.strip()]
        if not nodes:
            raise ResolutionError(f"{self.cluster} reported no storage nodes")
        return nodes

    def list_networks(self) -> list[NetworkId]:
        """Every repository network currently known to the cluster."""
        return parse_network_ids(
            self._call("network listing", self.commands.list_networks)
        )

    def _routes(self, direction: str, command: str, ids: list[NetworkId]) -> list[Route]:
        if not ids:
            logger.info("No network ids to route for %s, nothing to do", direction)
            return []
        logger.info("Resolving %s routes for %d network(s)", direction, len(ids))
        stdin_text = "".join(f"{network_id}\n" for network_id in ids)
        routes = parse_routes(self._call(f"{direction} routes", command, stdin_text), direction)

        routed = {route.network_id for route in routes}
        unrouted = [network_id for network_id in ids if network_id not in routed]
        if unrouted:
            raise ResolutionError(
                f"{direction} routes missing for {len(unrouted)} network(s), "
                f"first: {unrouted[0]}"
            )
        return routes

    def backup_routes(self, ids: list[NetworkId]) -> list[Route]:
        return self._routes("backup", self.commands.backup_routes, ids)

    def restore_routes(self, ids: list[NetworkId]) -> list[Route]:
        return self._routes("restore", self.commands.restore_routes, ids)

    def archived_routes(self) -> list[Route]:
        """Routes for archived networks; the service enumerates them itself."""
        return parse_routes(
            self._call("archived routes", self.commands.archived_routes), "archived"
        )


class RouteTable:
    """Network ids grouped by the node that a job will talk to."""

    def __init__(self):
        self._by_node: dict[str, list[NetworkId]] = defaultdict(list)
        self.unroutable: dict[str, list[NetworkId]] = defaultdict(list)

    @classmethod
    def from_routes(
        cls, routes: Iterable[Route], eligible: Optional[Iterable[str]] = None
    ) -> "RouteTable":
        """Pick one node per route.

        The first listed node that is eligible (holds a GC lease) wins. Routes
        without an eligible node are kept under their primary node in
        ``unroutable``.
        """
        table = cls()
        allowed = None if eligible is None else set(eligible)
        for route in routes:
            node = next(
                (n for n in route.nodes if allowed is None or n in allowed), None
            )
            if node is None:
                table.unroutable[route.primary].append(route.network_id)
            else:
                table._by_node[node].append(route.network_id)
        return table

    def nodes(self) -> list[str]:
        return sorted(self._by_node)

    def ids_for(self, node: str) -> list[NetworkId]:
        return list(self._by_node.get(node, []))

    def placements(self) -> list[tuple[str, NetworkId]]:
        """``(node, network_id)`` pairs, in node order."""
        return [(node, nid) for node in self.nodes() for nid in self._by_node[node]]

    def __len__(self) -> int:
        return sum(len(ids) for ids in self._by_node.values())

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def write_file_lists(self, workspace: Path, prefix: str = "") -> dict[str, Path]:
        """Write one ``--files-from`` list per node into the run workspace."""
        lists = {}
        for node in self.nodes():
            path = workspace / f"{prefix}{node_file_name(node)}.list"
            path.write_text("".join(f"{nid}\n" for nid in sorted(self._by_node[node])))
            lists[node] = path
        return lists
