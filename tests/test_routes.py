"""Tests for route resolution and the route table."""

import subprocess
from unittest.mock import MagicMock

import pytest

from git_shard_backup.config import CommandsConfig
from git_shard_backup.core.models import NetworkId, NodeRef, Route
from git_shard_backup.core.routes import (
    ResolutionError,
    RouteParseError,
    RouteResolver,
    RouteTable,
    parse_network_ids,
    parse_routes,
)

NW1 = NetworkId("a/nw/11/22/33/500")
NW2 = NetworkId("a/nw/44/55/66/501")
NW3 = NetworkId("b/nw/77/88/99/502")


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(["ssh"], returncode, stdout, stderr)


def make_resolver(stdout="", returncode=0, stderr=""):
    shell = MagicMock()
    shell.run.return_value = completed(stdout, returncode, stderr)
    return RouteResolver(shell, NodeRef("cluster"), CommandsConfig()), shell


class TestParseRoutes:
    """Tests for parse_routes."""

    def test_single_and_multiple_nodes(self):
        routes = parse_routes(f"{NW1} n1\n{NW2} n2 n3 n4\n", "backup")
        assert routes == [Route(NW1, ("n1",)), Route(NW2, ("n2", "n3", "n4"))]

    def test_blank_lines_ignored(self):
        routes = parse_routes(f"\n{NW1} n1\n   \n", "backup")
        assert routes == [Route(NW1, ("n1",))]

    def test_extra_whitespace(self):
        routes = parse_routes(f"  {NW1}\t n1   n2 \n", "restore")
        assert routes[0].nodes == ("n1", "n2")

    def test_missing_node_list_is_fatal(self):
        with pytest.raises(RouteParseError) as excinfo:
            parse_routes(f"{NW1} n1\n{NW2}\n", "backup")
        assert excinfo.value.lineno == 2
        assert excinfo.value.direction == "backup"
        assert "missing node list" in str(excinfo.value)

    def test_invalid_id_is_fatal(self):
        with pytest.raises(RouteParseError, match="not a repository network path"):
            parse_routes("garbage n1\n", "restore")

    def test_parse_error_is_resolution_error(self):
        with pytest.raises(ResolutionError):
            parse_routes(f"{NW1}\n", "archived")

    def test_duplicates_keep_first(self):
        routes = parse_routes(f"{NW1} n1\n{NW1} n2\n", "backup")
        assert routes == [Route(NW1, ("n1",))]

    def test_empty_response(self):
        assert parse_routes("", "archived") == []


class TestParseNetworkIds:
    """Tests for parse_network_ids."""

    def test_parses_list(self):
        assert parse_network_ids(f"{NW1}\n\n{NW2}\n") == [NW1, NW2]

    def test_invalid_line(self):
        with pytest.raises(RouteParseError) as excinfo:
            parse_network_ids(f"{NW1}\nnope\n")
        assert excinfo.value.lineno == 2


class TestRouteResolver:
    """Tests for RouteResolver."""

    def test_empty_input_short_circuits(self):
        resolver, shell = make_resolver()
        assert resolver.backup_routes([]) == []
        assert resolver.restore_routes([]) == []
        shell.run.assert_not_called()

    def test_sends_ids_on_stdin(self):
        resolver, shell = make_resolver(f"{NW1} n1\n{NW2} n2\n")
        routes = resolver.backup_routes([NW1, NW2])

        assert [r.network_id for r in routes] == [NW1, NW2]
        node, command, stdin_text = shell.run.call_args.args
        assert node == NodeRef("cluster")
        assert command == "git-route backup"
        assert stdin_text == f"{NW1}\n{NW2}\n"

    def test_restore_uses_restore_command(self):
        resolver, shell = make_resolver(f"{NW1} n2\n")
        resolver.restore_routes([NW1])
        assert shell.run.call_args.args[1] == "git-route restore"

    def test_command_failure(self):
        resolver, _ = make_resolver(returncode=2, stderr="service down")
        with pytest.raises(ResolutionError, match="service down"):
            resolver.backup_routes([NW1])

    def test_ssh_error(self):
        resolver, shell = make_resolver()
        shell.run.side_effect = OSError("no ssh")
        with pytest.raises(ResolutionError, match="no ssh"):
            resolver.list_networks()

    def test_unrouted_id_is_fatal(self):
        resolver, _ = make_resolver(f"{NW1} n1\n")
        with pytest.raises(ResolutionError, match="missing for 1 network"):
            resolver.backup_routes([NW1, NW2])

    def test_malformed_response_is_fatal(self):
        resolver, _ = make_resolver(f"{NW1}\n")
        with pytest.raises(RouteParseError):
            resolver.backup_routes([NW1])

    def test_archived_routes_without_input(self):
        resolver, shell = make_resolver(f"{NW3} n2\n")
        routes = resolver.archived_routes()
        assert routes == [Route(NW3, ("n2",))]
        assert shell.run.call_args.args[1:] == ("git-route archived", "")

    def test_cluster_nodes(self):
        resolver, _ = make_resolver("n1\n\nn2\n")
        assert resolver.cluster_nodes() == ["n1", "n2"]

    def test_cluster_without_nodes(self):
        resolver, _ = make_resolver("")
        with pytest.raises(ResolutionError, match="no storage nodes"):
            resolver.cluster_nodes()

    def test_list_networks(self):
        resolver, _ = make_resolver(f"{NW2}\n{NW1}\n")
        assert resolver.list_networks() == [NW2, NW1]


class TestRouteTable:
    """Tests for RouteTable."""

    def test_groups_by_primary_node(self):
        table = RouteTable.from_routes(
            [Route(NW1, ("n1", "n2")), Route(NW2, ("n2",)), Route(NW3, ("n1",))]
        )
        assert table.nodes() == ["n1", "n2"]
        assert table.ids_for("n1") == [NW1, NW3]
        assert table.ids_for("n2") == [NW2]
        assert len(table) == 3
        assert not table.is_empty

    def test_falls_back_to_eligible_replica(self):
        table = RouteTable.from_routes(
            [Route(NW1, ("n1", "n2")), Route(NW2, ("n1",))], eligible=["n2"]
        )
        assert table.ids_for("n2") == [NW1]
        assert table.ids_for("n1") == []
        assert table.unroutable == {"n1": [NW2]}

    def test_empty(self):
        table = RouteTable.from_routes([])
        assert table.is_empty
        assert table.nodes() == []

    def test_placements(self):
        table = RouteTable.from_routes([Route(NW2, ("n2",)), Route(NW1, ("n1",))])
        assert table.placements() == [("n1", NW1), ("n2", NW2)]

    def test_write_file_lists(self, tmp_path):
        table = RouteTable.from_routes(
            [Route(NW3, ("n1",)), Route(NW1, ("n1",)), Route(NW2, ("git-2:122",))]
        )
        lists = table.write_file_lists(tmp_path, prefix="archived-")

        assert lists["n1"] == tmp_path / "archived-n1.list"
        assert lists["n1"].read_text() == f"{NW1}\n{NW3}\n"
        assert lists["git-2:122"].name == "archived-git-2_122.list"
