"""git-shard-backup: git_shard_backup/__init__.py."""

__version__ = "0.1.0"


def node_file_name(node: str) -> str:
    """Replace characters that are unsafe in a file name with '_'"""
    return node.replace("/", "_").replace(":", "_")
