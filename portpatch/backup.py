"""Timestamped snapshots of port source directories.

Snapshots live under a backup root as ``{port}-original-{timestamp}``
directories. They accumulate rather than overwrite; ``prune`` is the
explicit retention policy for callers that need bounded disk usage.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from portpatch.errors import (
    BackupDirUnavailable,
    BackupFailed,
    NoBackupFound,
    RestoreFailed,
)
from portpatch.schemas.job import Snapshot

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def snapshot_prefix(port_name: str) -> str:
    return f"{port_name}-original-"


class BackupManager:
    """Creates, lists, restores, and prunes snapshots under one backup root.

    Args:
        backup_dir: Root directory holding all snapshots.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        backup_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = Path(backup_dir)
        self._clock = clock or datetime.now

    @property
    def root(self) -> Path:
        return self._root

    def ensure_backup_root(self) -> None:
        """Create the backup root (and parents) if it does not exist.

        Raises:
            BackupDirUnavailable: If the directory cannot be created.
        """
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupDirUnavailable(
                f"Failed to create backup directory {self._root}: {e}"
            ) from e
        logger.debug("Backup directory ready: %s", self._root)

    def snapshot(self, source_dir: Path, port_name: str) -> Snapshot:
        """Copy ``source_dir`` recursively into a new timestamped snapshot.

        Symbolic links are copied as links. A partial copy is left in
        place when copying fails.

        Returns:
            The created Snapshot.

        Raises:
            BackupFailed: If the source is missing or any copy step fails.
        """
        source_dir = Path(source_dir)
        if not source_dir.is_dir():
            raise BackupFailed(f"Source directory not found: {source_dir}")

        timestamp = self._clock().strftime(TIMESTAMP_FORMAT)
        target = self._unique_path(snapshot_prefix(port_name) + timestamp)
        timestamp = target.name.removeprefix(snapshot_prefix(port_name))

        try:
            shutil.copytree(source_dir, target, symlinks=True)
            # copytree copies the source's mtime; stamp creation time instead
            os.utime(target)
        except (shutil.Error, OSError) as e:
            raise BackupFailed(
                f"Backup of {source_dir} to {target} failed: {e}"
            ) from e

        logger.info("Backup created at: %s", target)
        return Snapshot(path=target, port_name=port_name, timestamp=timestamp)

    def list_snapshots(self, port_name: str) -> list[Snapshot]:
        """Return all snapshots for ``port_name``, newest first."""
        if not self._root.is_dir():
            return []

        prefix = snapshot_prefix(port_name)
        entries = [
            p for p in self._root.iterdir()
            if p.name.startswith(prefix) and p.is_dir()
        ]
        entries.sort(key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)
        return [
            Snapshot(path=p, port_name=port_name, timestamp=p.name.removeprefix(prefix))
            for p in entries
        ]

    def latest(self, port_name: str) -> Snapshot:
        """Return the most recently created snapshot for ``port_name``.

        Raises:
            NoBackupFound: If the port has no snapshots.
        """
        snapshots = self.list_snapshots(port_name)
        if not snapshots:
            raise NoBackupFound(
                f"No backup found for {port_name} in {self._root}"
            )
        return snapshots[0]

    def restore(self, snapshot: Snapshot, target_dir: Path) -> None:
        """Replace the contents of ``target_dir`` with the snapshot's tree.

        Existing entries are removed first; a removal failure is logged
        and skipped. Copy failures abort the restore.

        Raises:
            RestoreFailed: If the snapshot is missing or a copy step fails.
        """
        source = snapshot.path
        target_dir = Path(target_dir)
        if not source.is_dir():
            raise RestoreFailed(f"Snapshot directory not found: {source}")

        logger.info("Restoring from backup: %s", source)
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RestoreFailed(f"Cannot create restore target {target_dir}: {e}") from e

        try:
            entries = list(target_dir.iterdir())
        except OSError as e:
            raise RestoreFailed(f"Cannot list restore target {target_dir}: {e}") from e

        for entry in entries:
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except OSError as e:
                logger.warning("Failed to remove %s: %s", entry, e)

        try:
            for dirpath, dirnames, filenames in os.walk(source):
                current = Path(dirpath)
                dest_dir = target_dir / current.relative_to(source)
                dest_dir.mkdir(parents=True, exist_ok=True)

                # os.walk does not descend into symlinked directories
                for name in [*dirnames, *filenames]:
                    src = current / name
                    dest = dest_dir / name
                    if src.is_symlink():
                        _copy_symlink(src, dest)
                    elif src.is_file():
                        shutil.copy2(src, dest)
        except OSError as e:
            raise RestoreFailed(f"Restore failed during copy: {e}") from e

        logger.info("Restored %s into %s", snapshot.name, target_dir)

    def prune(self, port_name: str, keep: int) -> list[Path]:
        """Delete all but the ``keep`` newest snapshots for ``port_name``.

        Returns:
            Paths of the deleted snapshots.

        Raises:
            ValueError: If ``keep`` is less than 1.
        """
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")

        removed: list[Path] = []
        for snap in self.list_snapshots(port_name)[keep:]:
            shutil.rmtree(snap.path)
            logger.info("Pruned old backup: %s", snap.path)
            removed.append(snap.path)
        return removed

    def _unique_path(self, name: str) -> Path:
        """Return a snapshot path that does not exist yet."""
        candidate = self._root / name
        counter = 2
        while candidate.exists() or candidate.is_symlink():
            candidate = self._root / f"{name}-{counter}"
            counter += 1
        return candidate


def _copy_symlink(src: Path, dest: Path) -> None:
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.is_dir():
        shutil.rmtree(dest)
    os.symlink(os.readlink(src), dest)
