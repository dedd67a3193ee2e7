"""Local snapshot directories.

Each backup run writes ``<data_dir>/<timestamp>/repositories/``. A snapshot
carries an ``incomplete`` marker until the run finishes, and only then does
the ``current`` link move to it; the next run links unchanged files against
``current``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from filelock import FileLock

from .. import __util__
from .models import InvalidNetworkId, NetworkId

logger = logging.getLogger(__name__)

INCOMPLETE_MARKER = "incomplete"
LOCK_FILE = ".git-shard-backup.lock"


class SnapshotError(Exception):
    """A snapshot could not be found or used."""


@dataclass(frozen=True)
class Snapshot:
    """One snapshot directory."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def repositories(self) -> Path:
        return self.path / "repositories"

    @property
    def complete(self) -> bool:
        return not (self.path / INCOMPLETE_MARKER).exists()

    def __str__(self) -> str:
        return self.name


class SnapshotStore:
    """All snapshots under one data directory."""

    def __init__(self, data_dir: Path | str, current_link: str = "current"):
        self.data_dir = Path(data_dir)
        self.current_link = current_link

    @property
    def current_path(self) -> Path:
        return self.data_dir / self.current_link

    def lock(self) -> FileLock:
        """Lock held for the whole backup run."""
        self.data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        return FileLock(str(self.data_dir / LOCK_FILE))

    def create(self, now: Optional[float] = None) -> Snapshot:
        """Create an empty, incomplete snapshot named after the current time."""
        base = __util__.timestamp(now)
        name = base
        counter = 1
        while (self.data_dir / name).exists():
            name = f"{base}-{counter}"
            counter += 1

        snapshot = Snapshot(self.data_dir / name)
        snapshot.repositories.mkdir(parents=True, mode=0o700)
        (snapshot.path / INCOMPLETE_MARKER).touch()
        logger.info("Created snapshot %s", snapshot.path)
        return snapshot

    def previous(self) -> Optional[Snapshot]:
        """The snapshot ``current`` points at, if any."""
        if not self.current_path.exists():
            return None
        snapshot = Snapshot(self.current_path.resolve())
        if not snapshot.repositories.is_dir():
            logger.warning("%s has no repositories directory, ignoring", snapshot.path)
            return None
        return snapshot

    def promote(self, snapshot: Snapshot) -> None:
        """Mark ``snapshot`` complete and point ``current`` at it."""
        (snapshot.path / INCOMPLETE_MARKER).unlink(missing_ok=True)
        tmp_link = self.data_dir / f".{self.current_link}.tmp"
        tmp_link.unlink(missing_ok=True)
        os.symlink(snapshot.name, tmp_link)
        os.replace(tmp_link, self.current_path)
        logger.info("%s -> %s", self.current_path, snapshot.name)

    def list(self) -> list[Snapshot]:
        if not self.data_dir.is_dir():
            return []
        return sorted(
            (
                Snapshot(p)
                for p in self.data_dir.iterdir()
                if p.is_dir() and not p.is_symlink() and (p / "repositories").is_dir()
            ),
            key=lambda s: s.name,
        )

    def resolve(self, snapshot_id: str) -> Snapshot:
        """Find a complete snapshot to restore from.

        Raises:
            SnapshotError: no such snapshot, or it never completed
        """
        if snapshot_id == self.current_link:
            snapshot = self.previous()
            if snapshot is None:
                raise SnapshotError(f"No '{self.current_link}' snapshot in {self.data_dir}")
        else:
            if "/" in snapshot_id or snapshot_id in ("", ".", ".."):
                raise SnapshotError(f"Invalid snapshot id: {snapshot_id!r}")
            snapshot = Snapshot(self.data_dir / snapshot_id)
            if not snapshot.repositories.is_dir():
                latest = [s.name for s in self.list() if s.complete][-3:]
                raise SnapshotError(
                    f"Snapshot not found: {snapshot.path} "
                    f"(latest complete: {', '.join(latest) or 'none'})"
                )
        if not snapshot.complete:
            raise SnapshotError(f"Snapshot {snapshot} is incomplete")
        return snapshot


def scan_networks(repositories: Path) -> list[NetworkId]:
    """Network ids present in a snapshot's ``repositories/`` tree."""
    ids = []
    for path in sorted(repositories.glob("*/nw/*/*/*/*")):
        if not path.is_dir() or not any(path.glob("*.git")):
            continue
        relative = path.relative_to(repositories).as_posix()
        try:
            ids.append(NetworkId(relative))
        except InvalidNetworkId:
            logger.warning("Skipping unexpected directory %s", relative)
    return ids
