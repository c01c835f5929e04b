"""Backup rotation and atomic writes for persisted artifacts.

Every overwrite of ``concerts.json`` and the metadata documents goes
through ``BackupGuard.protected_write``: the current file is copied to
``<name>.backup.<timestamp>``, the new content replaces it atomically,
and only the newest N backups are kept.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from concert_binder.errors import ArtifactWriteError

log = logging.getLogger(__name__)

BACKUP_MARKER = ".backup."
TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S-%fZ"
DEFAULT_RETENTION = 10


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write ``content`` to ``path`` through a sibling temp file and ``os.replace``.

    Readers see either the old file or the complete new one. Parent
    directories are created; the existing file mode is preserved.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else 0o644
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def list_backups(path: Path) -> list[Path]:
    """Backups of ``path``, newest first (mtime, then timestamp in the name)."""
    prefix = f"{path.name}{BACKUP_MARKER}"
    if not path.parent.is_dir():
        return []
    backups = [p for p in path.parent.iterdir() if p.name.startswith(prefix) and p.is_file()]
    return sorted(backups, key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)


def _delete_all(paths: list[Path]) -> int:
    deleted = 0
    for old in paths:
        try:
            old.unlink()
            deleted += 1
            log.debug(f"Deleted old backup {old.name}")
        except OSError as e:
            log.warning(f"Could not delete old backup {old}: {e}")
    return deleted


class ArtifactSink(Protocol):
    """Destination for the final write of a pipeline run."""

    def protected_write(self, path: Path, content: str) -> Path | None: ...


class BackupGuard:
    """Writes artifacts with a rotating set of timestamped backups."""

    def __init__(self, retention: int = DEFAULT_RETENTION):
        if retention < 1:
            raise ValueError(f"Backup retention must be at least 1, got {retention}")
        self.retention = retention

    def protected_write(self, path: Path, content: str) -> Path | None:
        """
        Back up ``path`` (when it exists), then replace it with ``content``.

        Returns the backup path, or None when there was nothing to back up.

        Raises:
            ArtifactWriteError: The backup or the write failed. The live
                file and existing backups are left as they were.
        """
        backup_path = None
        if path.exists():
            try:
                backup_path = self._make_backup(path)
            except OSError as e:
                raise ArtifactWriteError(path, e) from e
            log.info(f"Backed up {path.name} -> {backup_path.name}")

        try:
            atomic_write_text(path, content)
        except OSError as e:
            raise ArtifactWriteError(path, e) from e

        self.rotate(path)
        return backup_path

    def rotate(self, path: Path) -> int:
        """Delete backups beyond the retention bound; return how many went."""
        backups = list_backups(path)
        return _delete_all(backups[self.retention :])

    def _make_backup(self, path: Path) -> Path:
        stamp = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)
        candidate = path.with_name(f"{path.name}{BACKUP_MARKER}{stamp}")
        counter = 1
        while candidate.exists():
            candidate = path.with_name(f"{path.name}{BACKUP_MARKER}{stamp}-{counter}")
            counter += 1
        # copy() leaves mtime at now, so rotation ranks this backup newest
        shutil.copy(path, candidate)
        return candidate


@dataclass
class PlannedWrite:
    """A write the dry-run sink declined to perform."""

    path: Path
    content: str

    @property
    def size(self) -> int:
        return len(self.content.encode("utf-8"))


@dataclass
class DryRunSink:
    """Sink that records writes instead of touching the filesystem."""

    writes: list[PlannedWrite] = field(default_factory=list)

    def protected_write(self, path: Path, content: str) -> Path | None:
        self.writes.append(PlannedWrite(path=path, content=content))
        log.info(f"[dry-run] would write {path} ({len(content.encode('utf-8'))} bytes)")
        return None


def cleanup_backups(directory: Path, keep: int) -> dict[str, int]:
    """
    Trim every backup set in ``directory`` to its ``keep`` newest files.

    Returns the number of deleted backups per artifact name. A missing
    directory is skipped.
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")
    if not directory.is_dir():
        log.warning(f"Backup directory {directory} not found, skipping")
        return {}

    groups: dict[str, list[Path]] = {}
    for entry in directory.iterdir():
        if BACKUP_MARKER in entry.name and entry.is_file():
            base = entry.name.split(BACKUP_MARKER, 1)[0]
            groups.setdefault(base, []).append(entry)

    deleted: dict[str, int] = {}
    for base, backups in sorted(groups.items()):
        backups.sort(key=lambda p: (p.stat().st_mtime_ns, p.name), reverse=True)
        deleted[base] = _delete_all(backups[keep:])
        log.info(f"{base}: kept {min(keep, len(backups))}, deleted {deleted[base]}")
    return deleted
