# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for backup creation, restore and age-based pruning."""

from __future__ import annotations

import logging
import shutil
import stat
import zipfile
from collections.abc import Callable
from datetime import timedelta
from typing import TypeAlias
from pathlib import Path

import pytest

from scaffoldtx.clock import FakeClock
from scaffoldtx.errors import BackupCreationError, RestoreFailedError
from scaffoldtx.filesystem import (
    ArchiveStrategy,
    BackupKind,
    BackupRecord,
    BackupVault,
    ChecksumStore,
    CopyStrategy,
    strategy_for,
)

AgePath: TypeAlias = Callable[[Path, timedelta], None]


def _make_tree(root: Path) -> Path:
    tree = root / "site"
    (tree / "css").mkdir(parents=True)
    (tree / "empty").mkdir()
    (tree / "index.html").write_text("<html></html>")
    (tree / "css" / "main.css").write_text("body {}")
    return tree


class TestFileBackups:
    def test_backup_name_uses_basename_and_timestamp(
        self, project_root: Path, vault: BackupVault, fake_clock: FakeClock
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")

        record = vault.create_backup(source, BackupKind.FILE)

        assert record.backup_path.name == "notes.txt-2024-01-01T00-00-00-000Z.bak"
        assert record.backup_path.parent == vault.directory
        assert record.created_at == fake_clock.utcnow()
        assert record.kind is BackupKind.FILE
        assert record.strategy == "copy"
        assert record.digest == ChecksumStore.digest_bytes(b"v1")
        assert record.backup_path.read_bytes() == b"v1"

    def test_backup_mtime_matches_creation_time(
        self, project_root: Path, vault: BackupVault, fake_clock: FakeClock
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")

        record = vault.create_backup(source)

        assert record.backup_path.stat().st_mtime == fake_clock.utcnow().timestamp()

    def test_name_collision_gets_random_suffix(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")

        first = vault.create_backup(source, BackupKind.FILE)
        second = vault.create_backup(source, BackupKind.FILE)

        assert first.backup_path != second.backup_path
        stem = "notes.txt-2024-01-01T00-00-00-000Z-"
        assert second.backup_path.name.startswith(stem)
        assert len(second.backup_path.name) == len(stem) + 8 + len(".bak")
        assert first.backup_path.exists()

    def test_missing_source_fails(self, project_root: Path, vault: BackupVault) -> None:
        with pytest.raises(BackupCreationError, match="not a regular file"):
            _ = vault.create_backup(project_root / "missing.txt", BackupKind.FILE)

        assert vault.list_backups() == ()

    def test_copy_mismatch_fails_without_leaving_backup(
        self,
        project_root: Path,
        vault: BackupVault,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")

        def corrupt_copy(src: Path, dst: Path) -> Path:
            Path(dst).write_text("garbage")
            return Path(dst)

        monkeypatch.setattr("scaffoldtx.filesystem._vault.shutil.copy2", corrupt_copy)

        with pytest.raises(BackupCreationError, match="does not match"):
            _ = vault.create_backup(source, BackupKind.FILE)

        assert list(vault.directory.iterdir()) == []

    def test_restore_overwrites_changed_file(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")
        record = vault.create_backup(source, BackupKind.FILE)
        source.write_text("v2")

        vault.restore(record)

        assert source.read_text() == "v1"
        assert ChecksumStore.digest(source) == ChecksumStore.digest_bytes(b"v1")

    def test_restore_recreates_deleted_file(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")
        record = vault.create_backup(source, BackupKind.FILE)
        source.unlink()

        vault.restore(record)

        assert source.read_text() == "v1"

    def test_restore_missing_backup_fails(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")
        record = vault.create_backup(source, BackupKind.FILE)
        record.backup_path.unlink()

        with pytest.raises(RestoreFailedError, match="missing"):
            vault.restore(record)

    def test_restore_detects_corrupted_backup(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")
        record = vault.create_backup(source, BackupKind.FILE)
        record.backup_path.write_text("bit rot")

        with pytest.raises(RestoreFailedError, match="digest"):
            vault.restore(record)


class TestDirectoryBackups:
    def test_archive_round_trip(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        tree = _make_tree(project_root)

        record = vault.create_backup(tree, BackupKind.DIRECTORY)
        shutil.rmtree(tree)
        tree.mkdir()
        (tree / "stray.txt").write_text("new")
        vault.restore(record)

        assert record.backup_path.suffix == ".zip"
        assert record.strategy == "archive"
        assert record.digest is None
        assert (tree / "index.html").read_text() == "<html></html>"
        assert (tree / "css" / "main.css").read_text() == "body {}"
        assert (tree / "empty").is_dir()
        assert not (tree / "stray.txt").exists()

    def test_archive_members_are_rooted_at_basename(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        tree = _make_tree(project_root)

        record = vault.create_backup(tree, BackupKind.DIRECTORY)

        with zipfile.ZipFile(record.backup_path) as zf:
            names = zf.namelist()
        assert all(name.startswith("site/") for name in names)
        assert "site/css/main.css" in names

    def test_archive_keeps_modes_and_symlinks(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        tree = _make_tree(project_root)
        script = tree / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        (tree / "linkdir").symlink_to(project_root, target_is_directory=True)
        (tree / "alias.html").symlink_to("index.html")

        record = vault.create_backup(tree, BackupKind.DIRECTORY)
        shutil.rmtree(tree)
        tree.mkdir()
        vault.restore(record)

        assert stat.S_IMODE(script.stat().st_mode) == 0o755
        assert (tree / "linkdir").is_symlink()
        assert (tree / "linkdir").readlink() == project_root
        assert (tree / "alias.html").is_symlink()
        assert (tree / "alias.html").readlink() == Path("index.html")
        assert (tree / "css" / "main.css").read_text() == "body {}"
        assert [p.name for p in project_root.iterdir()] == ["site"]

    def test_archive_member_below_symlink_is_rejected(
        self,
        project_root: Path,
        tmp_path: Path,
        vault: BackupVault,
        fake_clock: FakeClock,
    ) -> None:
        tree = _make_tree(project_root)
        outside = tmp_path / "outside"
        outside.mkdir()
        crafted = vault.directory / "crafted.zip"
        link = zipfile.ZipInfo("site/link")
        link.external_attr = (stat.S_IFLNK | 0o777) << 16
        with zipfile.ZipFile(crafted, "w") as zf:
            zf.writestr("site/", "")
            zf.writestr(link, str(outside))
            zf.writestr("site/link/owned.txt", "owned")
        record = BackupRecord(
            source_path=tree,
            backup_path=crafted,
            kind=BackupKind.DIRECTORY,
            created_at=fake_clock.utcnow(),
            strategy="archive",
        )

        with pytest.raises(RestoreFailedError, match="symlink"):
            vault.restore(record)

        assert list(outside.iterdir()) == []
        assert (tree / "index.html").exists()

    def test_failed_extraction_leaves_tree_untouched(
        self,
        project_root: Path,
        vault: BackupVault,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        tree = _make_tree(project_root)
        record = vault.create_backup(tree, BackupKind.DIRECTORY)
        (tree / "index.html").write_text("changed")

        def failing_copy(*args: object, **kwargs: object) -> None:
            raise OSError("No space left on device")

        monkeypatch.setattr(shutil, "copyfileobj", failing_copy)

        with pytest.raises(RestoreFailedError, match="No space left"):
            vault.restore(record)

        assert (tree / "index.html").read_text() == "changed"
        assert (tree / "css" / "main.css").read_text() == "body {}"
        assert [p.name for p in project_root.iterdir()] == ["site"]

    def test_copy_strategy_round_trip(
        self, project_root: Path, tmp_path: Path, fake_clock: FakeClock
    ) -> None:
        vault = BackupVault.open(
            tmp_path / "copies",
            retention=None,
            strategy=CopyStrategy(),
            clock=fake_clock,
        )
        tree = _make_tree(project_root)

        record = vault.create_backup(tree)
        (tree / "index.html").write_text("changed")
        vault.restore(record)

        assert record.strategy == "copy"
        assert record.backup_path.is_dir()
        assert record.backup_path.name.endswith(".bak")
        assert (tree / "index.html").read_text() == "<html></html>"

    def test_restore_uses_strategy_recorded_on_backup(
        self, project_root: Path, tmp_path: Path, fake_clock: FakeClock
    ) -> None:
        archive_vault = BackupVault.open(
            tmp_path / "shared", retention=None, clock=fake_clock
        )
        tree = _make_tree(project_root)
        record = archive_vault.create_backup(tree, BackupKind.DIRECTORY)
        copy_vault = BackupVault(
            tmp_path / "shared", strategy=CopyStrategy(), clock=fake_clock
        )
        shutil.rmtree(tree)

        copy_vault.restore(record)

        assert (tree / "css" / "main.css").read_text() == "body {}"

    def test_archive_escaping_parent_is_rejected(
        self, project_root: Path, vault: BackupVault, fake_clock: FakeClock
    ) -> None:
        tree = _make_tree(project_root)
        evil = vault.directory / "evil.zip"
        with zipfile.ZipFile(evil, "w") as zf:
            zf.writestr("../escaped.txt", "owned")
        record = BackupRecord(
            source_path=tree,
            backup_path=evil,
            kind=BackupKind.DIRECTORY,
            created_at=fake_clock.utcnow(),
            strategy="archive",
        )

        with pytest.raises(RestoreFailedError):
            vault.restore(record)

        assert not (project_root.parent / "escaped.txt").exists()
        assert (tree / "index.html").exists()

    def test_unknown_strategy_fails(
        self, project_root: Path, vault: BackupVault, fake_clock: FakeClock
    ) -> None:
        tree = _make_tree(project_root)
        record = BackupRecord(
            source_path=tree,
            backup_path=vault.directory,
            kind=BackupKind.DIRECTORY,
            created_at=fake_clock.utcnow(),
            strategy="tarball",
        )

        with pytest.raises(RestoreFailedError, match="Unknown backup strategy"):
            vault.restore(record)

    def test_file_given_as_directory_fails(
        self, project_root: Path, vault: BackupVault
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")

        with pytest.raises(BackupCreationError, match="not a directory"):
            _ = vault.create_backup(source, BackupKind.DIRECTORY)

    def test_strategy_lookup(self) -> None:
        assert isinstance(strategy_for("archive"), ArchiveStrategy)
        assert isinstance(strategy_for("copy"), CopyStrategy)
        with pytest.raises(KeyError):
            _ = strategy_for("rsync")


class TestPruning:
    def test_prunes_entries_older_than_max_age(
        self, vault: BackupVault, age_path: AgePath
    ) -> None:
        old = vault.directory / "old.txt-2023-12-24T00-00-00-000Z.bak"
        old.write_text("old")
        recent = vault.directory / "recent.txt-2023-12-31T00-00-00-000Z.bak"
        recent.write_text("recent")
        old_tree = vault.directory / "site-2023-12-20T00-00-00-000Z.bak"
        (old_tree / "nested").mkdir(parents=True)
        age_path(old, timedelta(days=8))
        age_path(recent, timedelta(days=1))
        age_path(old_tree, timedelta(days=12))

        removed = vault.prune_older_than(timedelta(days=7))

        assert set(removed) == {old, old_tree}
        assert not old.exists()
        assert not old_tree.exists()
        assert recent.exists()

    def test_backups_expire_as_clock_advances(
        self, project_root: Path, vault: BackupVault, fake_clock: FakeClock
    ) -> None:
        source = project_root / "notes.txt"
        source.write_text("v1")
        record = vault.create_backup(source)

        _ = fake_clock.advance(timedelta(days=6))
        assert vault.prune_older_than(timedelta(days=7)) == ()
        _ = fake_clock.advance(timedelta(days=2))
        assert vault.prune_older_than(timedelta(days=7)) == (record.backup_path,)

    def test_open_prunes_with_retention(
        self, tmp_path: Path, fake_clock: FakeClock, age_path: AgePath
    ) -> None:
        directory = tmp_path / "vault"
        directory.mkdir()
        stale = directory / "stale.bak"
        stale.write_text("x")
        age_path(stale, timedelta(days=30))

        vault = BackupVault.open(directory, clock=fake_clock)

        assert vault.list_backups() == ()

    def test_open_creates_directory(self, tmp_path: Path) -> None:
        vault = BackupVault.open(tmp_path / "a" / "b", retention=None)

        assert vault.directory.is_dir()

    def test_deletion_failure_is_logged_and_skipped(
        self,
        vault: BackupVault,
        age_path: AgePath,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        stuck = vault.directory / "a-stuck.bak"
        stuck.write_text("x")
        gone = vault.directory / "b-gone.bak"
        gone.write_text("y")
        age_path(stuck, timedelta(days=9))
        age_path(gone, timedelta(days=9))
        original_unlink = Path.unlink

        def flaky_unlink(self: Path, missing_ok: bool = False) -> None:
            if self.name == "a-stuck.bak":
                raise PermissionError("busy")
            original_unlink(self, missing_ok=missing_ok)

        monkeypatch.setattr(Path, "unlink", flaky_unlink)

        with caplog.at_level(logging.WARNING, logger="scaffoldtx.filesystem._vault"):
            removed = vault.prune_older_than(timedelta(days=7))

        assert removed == (gone,)
        assert stuck.exists()
        failures = [
            r
            for r in caplog.records
            if getattr(r, "event", None) == "vault.prune_failed"
        ]
        assert len(failures) == 1

    def test_missing_directory_prunes_nothing(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path / "never-created")

        assert vault.prune_older_than(timedelta(0)) == ()
        assert vault.list_backups() == ()

    def test_list_backups_hides_temporary_entries(self, vault: BackupVault) -> None:
        (vault.directory / "b.bak").write_text("b")
        (vault.directory / "a.zip").write_text("a")
        (vault.directory / ".c.bak.tmp").write_text("partial")

        assert [p.name for p in vault.list_backups()] == ["a.zip", "b.bak"]
