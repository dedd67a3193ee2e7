"""End to end tests for the restore orchestrator against a fake cluster."""

import pytest

from git_shard_backup.core import RunOutcome, run_restore
from git_shard_backup.core.models import NetworkId, Route
from git_shard_backup.core.restore import destination_routes
from git_shard_backup.core.snapshot import SnapshotStore

NW1 = "a/nw/11/22/33/500"
NW2 = "a/nw/44/55/66/501"
NW3 = "b/nw/77/88/99/502"
ALL_PHASES = ["auxiliary", "packed-refs", "loose-refs", "objects", "special"]


@pytest.fixture
def snapshot(config):
    store = SnapshotStore(config.storage.data_dir)
    snapshot = store.create(1_700_000_000.0)
    for nid in (NW1, NW2, NW3):
        (snapshot.repositories / nid / "repo.git" / "objects").mkdir(parents=True)
    (snapshot.repositories / "__special__").mkdir()
    store.promote(snapshot)
    return snapshot


@pytest.fixture
def cluster(fake_cluster):
    fake_cluster.responses["git-route restore"] = f"{NW1} n2 n1\n{NW2} n1\n{NW3} n2\n"
    return fake_cluster


def restore(config, cluster, snapshot_id="current"):
    return run_restore(config, "cluster", snapshot_id, shell_factory=cluster.factory)


def finalized_lines(cluster):
    return sorted(
        line for e in cluster.commands("git-route finalize") for line in e[3].splitlines()
    )


class TestRestore:
    """Tests for a complete restore run."""

    def test_pushes_to_routed_nodes(self, config, cluster, snapshot):
        report = restore(config, cluster)

        assert report.outcome is RunOutcome.SUCCEEDED
        assert report.snapshot == snapshot.name
        assert cluster.phases("n1") == ALL_PHASES
        assert cluster.phases("n2") == ALL_PHASES
        assert finalized_lines(cluster) == [f"n1 {NW2}", f"n2 {NW1}", f"n2 {NW3}"]

    def test_restore_direction(self, config, cluster, snapshot):
        restore(config, cluster)

        for _, host, _, argv in cluster.rsyncs():
            assert argv[-1] == f"{host}:/data/user/repositories/"
            assert argv[-2] == f"{snapshot.path.resolve() / 'repositories'}/"
            assert not any(a.startswith("--link-dest=") for a in argv)

    def test_snapshot_ids_sent_for_routing(self, config, cluster, snapshot):
        restore(config, cluster)

        (event,) = cluster.commands("git-route restore")
        assert event[3] == f"{NW1}\n{NW2}\n{NW3}\n"

    def test_routes_asked_on_every_run(self, config, cluster, snapshot):
        restore(config, cluster)
        cluster.events.clear()
        cluster.responses["git-route restore"] = f"{NW1} n1\n{NW2} n1\n{NW3} n1\n"

        restore(config, cluster)

        assert cluster.phases("n2") == ["special"]
        assert finalized_lines(cluster) == [f"n1 {NW1}", f"n1 {NW2}", f"n1 {NW3}"]

    def test_finalize_chunks(self, config, cluster, snapshot):
        config.restore.finalize_chunk_size = 2

        report = restore(config, cluster)

        assert report.finalize.chunks == 2
        assert len(cluster.commands("git-route finalize")) == 2
        assert len(finalized_lines(cluster)) == 3

    def test_gc_released_after_finalize_and_transfers(self, config, cluster, snapshot):
        report = restore(config, cluster)

        kinds = [(e[0], e[2]) for e in cluster.events]
        first_enable = kinds.index(("run", "git-gc-control enable"))
        assert all(i < first_enable for i, k in enumerate(kinds) if k[0] == "rsync")
        assert report.lease.balanced

    def test_empty_snapshot_skipped(self, config, cluster):
        store = SnapshotStore(config.storage.data_dir)
        empty = store.create()
        store.promote(empty)

        report = restore(config, cluster)

        assert report.outcome is RunOutcome.SKIPPED
        assert cluster.events == []


    def test_nodes_named_with_ports(self, config, cluster, snapshot):
        cluster.responses[config.commands.cluster_nodes] = "n1:2222\nn1:2223\n"
        cluster.responses["git-route restore"] = (
            f"{NW1} n1:2223\n{NW2} n1:2222\n{NW3} n1:2223\n"
        )

        report = restore(config, cluster)

        assert report.outcome is RunOutcome.SUCCEEDED
        assert report.lease.held == ["n1:2222", "n1:2223"]
        assert all(j.ok for j in report.jobs)
        assert finalized_lines(cluster) == [
            f"n1:2222 {NW2}",
            f"n1:2223 {NW1}",
            f"n1:2223 {NW3}",
        ]
        ports = [e[3][e[3].index("-e") + 1] for e in cluster.rsyncs()]
        assert sum("-p 2222" in p for p in ports) == len(ALL_PHASES)
        assert sum("-p 2223" in p for p in ports) == len(ALL_PHASES)


class TestRestoreFailures:
    """Tests for failed and partially failed restores."""

    def test_missing_snapshot(self, config, cluster):
        report = restore(config, cluster, "20200101T000000")

        assert report.exit_code == 1
        assert "not found" in report.error
        assert cluster.events == []

    def test_failed_node_not_registered(self, config, cluster, snapshot):
        cluster.rsync_codes[("n1", "objects")] = 12

        report = restore(config, cluster)

        assert report.outcome is RunOutcome.PARTIAL
        assert finalized_lines(cluster) == [f"n2 {NW1}", f"n2 {NW3}"]

    def test_finalize_failure(self, config, cluster, snapshot):
        cluster.failing.add(("*", "git-route finalize"))

        report = restore(config, cluster)

        assert report.outcome is RunOutcome.FINALIZE_FAILED
        assert report.exit_code == 3
        assert report.lease.balanced

    def test_disable_failure_skips_node(self, config, cluster, snapshot):
        cluster.failing.add(("n2", "git-gc-control disable"))

        report = restore(config, cluster)

        assert report.exit_code == 2
        assert cluster.rsyncs("n2") == []
        assert finalized_lines(cluster) == [f"n1 {NW2}"]

    def test_interrupt_skips_finalize(self, config, cluster, snapshot):
        def interrupt(host, phase, argv):
            if phase == "objects":
                raise KeyboardInterrupt

        cluster.spawn_hook = interrupt

        report = restore(config, cluster)

        assert report.exit_code == 130
        assert cluster.commands("git-route finalize") == []
        assert report.lease.balanced


class TestDestinationRoutes:
    """Tests for destination_routes."""

    def test_keeps_top_ranked_node(self):
        nid = NetworkId(NW1)
        assert destination_routes([Route(nid, ("n2", "n1"))]) == [Route(nid, ("n2",))]
