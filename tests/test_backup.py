"""BackupGuard rotation, atomic writes and the dry-run sink."""

from __future__ import annotations

import os

import pytest

from concert_binder.backup import (
    BackupGuard,
    DryRunSink,
    atomic_write_text,
    cleanup_backups,
    list_backups,
)
from concert_binder.errors import ArtifactWriteError


def _age(path, seconds: int) -> None:
    """Push mtime into the past so ordering does not depend on clock resolution."""
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns - seconds * 1_000_000_000))


def test_first_write_has_nothing_to_back_up(tmp_path):
    target = tmp_path / "concerts.json"
    assert BackupGuard().protected_write(target, "{}\n") is None
    assert target.read_text() == "{}\n"
    assert list_backups(target) == []


def test_backup_holds_previous_content(tmp_path):
    target = tmp_path / "concerts.json"
    guard = BackupGuard()
    guard.protected_write(target, "v1")

    backup = guard.protected_write(target, "v2")

    assert backup is not None
    assert backup.name.startswith("concerts.json.backup.")
    assert backup.read_text() == "v1"
    assert target.read_text() == "v2"


@pytest.mark.parametrize("retention", [1, 3, 10])
def test_rotation_keeps_newest_n(tmp_path, retention):
    target = tmp_path / "artists-metadata.json"
    guard = BackupGuard(retention)

    for version in range(retention + 5):
        for existing in list_backups(target):
            _age(existing, 10)
        guard.protected_write(target, f"v{version}")

    backups = list_backups(target)
    assert len(backups) == retention
    # newest backup holds the version before the live one
    assert backups[0].read_text() == f"v{retention + 3}"
    assert target.read_text() == f"v{retention + 4}"


def test_rotation_keeps_new_backup_of_old_live_file(tmp_path):
    target = tmp_path / "concerts.json"
    guard = BackupGuard(3)
    for version in range(5):
        for existing in list_backups(target):
            _age(existing, 10)
        guard.protected_write(target, f"v{version}")
    for existing in list_backups(target):
        _age(existing, 10)
    # live file restored with an old timestamp (cp -p, rsync -t)
    os.utime(target, (0, 0))

    backup = guard.protected_write(target, "v5")

    assert backup is not None and backup.exists()
    assert [b.read_text() for b in list_backups(target)] == ["v4", "v3", "v2"]


def test_rotation_ignores_other_artifacts(tmp_path):
    concerts = tmp_path / "concerts.json"
    venues = tmp_path / "venues-metadata.json"
    guard = BackupGuard(1)
    for i in range(3):
        guard.protected_write(concerts, f"c{i}")
        guard.protected_write(venues, f"v{i}")
    assert len(list_backups(concerts)) == 1
    assert len(list_backups(venues)) == 1


def test_retention_must_be_positive():
    with pytest.raises(ValueError):
        BackupGuard(0)


def test_failed_write_leaves_live_file(tmp_path, monkeypatch):
    target = tmp_path / "concerts.json"
    target.write_text("original")

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    with pytest.raises(ArtifactWriteError, match="disk full"):
        BackupGuard().protected_write(target, "new")

    assert target.read_text() == "original"
    # no stray temp files
    assert sorted(p.name for p in tmp_path.iterdir() if ".tmp" in p.name) == []


def test_atomic_write_creates_parents_and_keeps_mode(tmp_path):
    target = tmp_path / "nested" / "dir" / "file.json"
    atomic_write_text(target, "a")
    os.chmod(target, 0o600)
    atomic_write_text(target, "b")
    assert target.read_text() == "b"
    assert target.stat().st_mode & 0o777 == 0o600


def test_dry_run_sink_records_writes(tmp_path):
    target = tmp_path / "concerts.json"
    sink = DryRunSink()

    assert sink.protected_write(target, "über") is None

    assert not target.exists()
    assert [w.path for w in sink.writes] == [target]
    assert sink.writes[0].size == 5


def test_cleanup_backups(tmp_path):
    guard = BackupGuard(10)
    concerts = tmp_path / "concerts.json"
    artists = tmp_path / "artists-metadata.json"
    for i in range(6):
        for existing in list_backups(concerts) + list_backups(artists):
            _age(existing, 10)
        guard.protected_write(concerts, f"c{i}")
        guard.protected_write(artists, f"a{i}")

    deleted = cleanup_backups(tmp_path, keep=2)

    assert deleted == {"artists-metadata.json": 3, "concerts.json": 3}
    assert len(list_backups(concerts)) == 2
    assert list_backups(concerts)[0].read_text() == "c4"


def test_cleanup_missing_directory(tmp_path):
    assert cleanup_backups(tmp_path / "missing", keep=1) == {}
