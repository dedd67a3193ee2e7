"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_CACHE_DIRS = ["__nodeload_archives__", "__gitmon__", "__render__"]


@dataclass
class ClusterConfig:
    """How to reach the cluster and its storage nodes.

    Attributes:
        ssh_user: Remote user for ssh connections
        ssh_port: SSH port on the cluster host and storage nodes
        ssh_key: Path to SSH private key
        ssh_opts: Extra ``-o`` options passed to ssh
        remote_data_dir: Directory on each node holding ``repositories/``
        nodes: Storage node names; empty means ask the cluster
    """

    ssh_user: str = "admin"
    ssh_port: int = 122
    ssh_key: Optional[str] = None
    ssh_opts: list[str] = field(default_factory=list)
    remote_data_dir: str = "/data/user"
    nodes: list[str] = field(default_factory=list)


@dataclass
class StorageConfig:
    """Local snapshot storage.

    Attributes:
        data_dir: Directory holding one subdirectory per snapshot
        current_link: Name of the link pointing at the last complete snapshot
    """

    data_dir: str = "/var/lib/git-shard-backup"
    current_link: str = "current"


@dataclass
class CommandsConfig:
    """Remote commands run on the cluster host or on a storage node."""

    cluster_nodes: str = "git-cluster-nodes --storage"
    list_networks: str = "git-route list-networks"
    backup_routes: str = "git-route backup"
    restore_routes: str = "git-route restore"
    archived_routes: str = "git-route archived"
    finalize: str = "git-route finalize"
    gc_disable: str = "git-gc-control disable"
    gc_enable: str = "git-gc-control enable"


@dataclass
class TransferConfig:
    """Bulk transfer settings.

    Attributes:
        rsync: Local rsync binary
        remote_rsync: rsync command on the storage nodes
        extra_args: Extra arguments appended to every rsync call
        cache_dirs: Special directories that only hold caches and are skipped
    """

    rsync: str = "rsync"
    remote_rsync: str = "sudo -u git rsync"
    extra_args: list[str] = field(default_factory=list)
    cache_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_CACHE_DIRS))


@dataclass
class RestoreConfig:
    """Restore finalize settings."""

    finalize_chunk_size: int = 1000
    finalize_parallelism: int = 4


@dataclass
class Config:
    """Root configuration object."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    restore: RestoreConfig = field(default_factory=RestoreConfig)
