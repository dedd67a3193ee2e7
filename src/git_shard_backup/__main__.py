"""git-shard-backup: git_shard_backup/__main__.py

Consistent, incremental backup and restore of a sharded Git object store
spread across a cluster of storage nodes.

Usage:
    python -m git_shard_backup backup <cluster-host>
    python -m git_shard_backup restore <cluster-host> <snapshot>
"""

import sys

from .cli.dispatcher import main

if __name__ == "__main__":
    sys.exit(main())
