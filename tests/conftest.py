"""Pytest configuration and shared fixtures."""

import subprocess
import threading

import pytest

from git_shard_backup.config import Config
from git_shard_backup.core.models import NodeRef


class FakeShell:
    """Stands in for RemoteShell: records commands, never starts processes."""

    def __init__(self, cluster, context):
        self.cluster = cluster
        self.context = context

    def node(self, name):
        return NodeRef.parse(name, user="admin", port=122)

    def run(self, node, command, stdin_text=""):
        return self.cluster.run(node.name, command, stdin_text)

    def rsync_shell(self, node):
        return f"ssh -p {node.port} -l {node.user}"

    def spawn(self, argv, label, on_line=None):
        return self.cluster.spawn(argv, on_line)


class FakeCluster:
    """A scripted cluster: routing responses, GC control and rsync results."""

    def __init__(self):
        self.lock = threading.Lock()
        self.events = []
        self.responses = {}
        self.failing = set()
        self.rsync_codes = {}
        self.rsync_lines = {}
        self.spawn_hook = None

    def factory(self, context):
        return FakeShell(self, context)

    def run(self, host, command, stdin_text=""):
        with self.lock:
            self.events.append(("run", host, command, stdin_text))
        if (host, command) in self.failing or ("*", command) in self.failing:
            return subprocess.CompletedProcess([command], 1, "", f"{command} refused")
        return subprocess.CompletedProcess([command], 0, self.responses.get(command, ""), "")

    def spawn(self, argv, on_line=None):
        remote = next(a for a in argv[-2:] if ":" in a)
        host = remote.split(":", 1)[0]
        rules = next(a for a in argv if a.startswith("--filter=merge "))
        phase = rules.rsplit("/", 1)[1].removesuffix(".rules")
        with self.lock:
            self.events.append(("rsync", host, phase, list(argv)))
        if self.spawn_hook is not None:
            self.spawn_hook(host, phase, argv)
        for line in self.rsync_lines.get((host, phase), []):
            if on_line is not None:
                on_line(line)
        return self.rsync_codes.get((host, phase), 0)

    def commands(self, command=None, host=None):
        return [
            e
            for e in self.events
            if e[0] == "run"
            and (command is None or e[2] == command)
            and (host is None or e[1] == host)
        ]

    def rsyncs(self, host=None):
        return [e for e in self.events if e[0] == "rsync" and (host is None or e[1] == host)]

    def phases(self, host):
        return [e[2] for e in self.rsyncs(host)]


@pytest.fixture
def fake_cluster():
    """A fake cluster with two storage nodes and no networks."""
    cluster = FakeCluster()
    commands = Config().commands
    cluster.responses[commands.cluster_nodes] = "n1\nn2\n"
    return cluster


@pytest.fixture
def config(tmp_path):
    """Default configuration storing snapshots under tmp_path."""
    config = Config()
    config.storage.data_dir = str(tmp_path / "backups")
    return config


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[cluster]
ssh_user = "backup"
ssh_port = 2222
ssh_key = "/root/.ssh/cluster"
remote_data_dir = "/srv/git"
nodes = ["git-1", "git-2", "git-3"]

[storage]
data_dir = "/var/backups/git"

[commands]
backup_routes = "route-tool backup"

[transfer]
rsync = "/usr/local/bin/rsync"
extra_args = ["--timeout=600"]
cache_dirs = ["__render__"]

[restore]
finalize_chunk_size = 500
finalize_parallelism = 2
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[storage]
data_dir = "/var/backups/git"
"""


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
