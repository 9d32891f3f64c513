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

"""Backup vault holding pre-change snapshots of files and directories.

Every destructive change in a batch is preceded by a snapshot in the vault.
Snapshots are written under a hidden temporary name and renamed into place,
so a half-written backup is never visible under its final name. Entries
outlive the batch and are removed by age through
:meth:`BackupVault.prune_older_than`.

Naming: ``<basename>-<UTC timestamp>`` where the timestamp is ISO-8601 with
``:`` and ``.`` replaced by ``-``, followed by ``.bak`` for files and copied
trees or ``.zip`` for archived trees. A name already present in the vault
gets a random eight-character hex suffix before the extension.

Example usage::

    from datetime import timedelta
    from scaffoldtx.filesystem import BackupKind, BackupVault

    vault = BackupVault.open("~/.scaffold-backups", retention=timedelta(days=7))
    record = vault.create_backup("/proj/notes.txt", BackupKind.FILE)
    ...
    vault.restore(record)
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import tempfile
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Final, Protocol
from uuid import uuid4

from ..clock import SYSTEM_CLOCK, WallClock
from ..errors import BackupCreationError, RestoreFailedError
from ..runtime.logging import StructuredLogger, get_logger
from ._checksums import ChecksumStore
from ._guard import PathGuard, lexical_path

DEFAULT_VAULT_DIR: Final = Path("~/.scaffold-backups")
DEFAULT_RETENTION: Final = timedelta(days=7)
FILE_SUFFIX: Final = ".bak"


class BackupKind(StrEnum):
    """What a backup captured."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """A snapshot stored in the vault.

    Attributes:
        source_path: The absolute path that was backed up.
        backup_path: Where the snapshot lives inside the vault.
        kind: Whether a file or a directory tree was captured.
        created_at: UTC time the snapshot was taken.
        strategy: ``"copy"`` for byte copies, ``"archive"`` for zipped trees.
        digest: sha256 of the backed-up bytes for files, ``None`` for trees.
    """

    source_path: Path
    backup_path: Path
    kind: BackupKind
    created_at: datetime
    strategy: str
    digest: str | None = None


class BackupStrategy(Protocol):
    """How directory trees are captured and put back."""

    @property
    def name(self) -> str: ...

    @property
    def suffix(self) -> str: ...

    def snapshot(self, source: Path, destination: Path) -> None:
        """Capture the tree at ``source`` into ``destination``."""
        ...

    def restore(self, backup: Path, source: Path) -> None:
        """Replace the tree at ``source`` with the contents of ``backup``."""
        ...


@dataclass(frozen=True, slots=True)
class ArchiveStrategy:
    """Packs a tree into a zip whose members are rooted at its basename.

    Each member keeps its Unix mode in ``external_attr``. Symlinks are stored
    as link entries holding their target and are recreated, not followed.
    """

    compression: int = zipfile.ZIP_DEFLATED

    @property
    def name(self) -> str:
        return "archive"

    @property
    def suffix(self) -> str:
        return ".zip"

    def snapshot(self, source: Path, destination: Path) -> None:
        base = source.parent
        with zipfile.ZipFile(destination, "w", self.compression) as zf:
            for root, dirs, files in source.walk():
                zf.write(root, root.relative_to(base).as_posix())
                links = [d for d in dirs if (root / d).is_symlink()]
                for name in sorted([*files, *links]):
                    self._add_member(zf, root / name, base)

    def restore(self, backup: Path, source: Path) -> None:
        with _staging_area(source) as staging:
            tree = staging / "tree"
            extracted = tree / source.name
            guard = PathGuard(extracted)
            directory_modes: list[tuple[Path, int]] = []
            with zipfile.ZipFile(backup) as zf:
                for info in zf.infolist():
                    target = guard.validate(tree / info.filename)
                    _reject_linked_parents(target, tree)
                    mode = info.external_attr >> 16
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        if mode:
                            directory_modes.append((target, stat.S_IMODE(mode)))
                        continue
                    target.parent.mkdir(parents=True, exist_ok=True)
                    if stat.S_ISLNK(mode):
                        os.symlink(zf.read(info).decode("utf-8"), target)
                        continue
                    with zf.open(info) as src, target.open("wb") as dst:
                        shutil.copyfileobj(src, dst)
                    if mode:
                        os.chmod(target, stat.S_IMODE(mode))
            extracted.mkdir(parents=True, exist_ok=True)
            # Deepest first so read-only parents do not block their children.
            for directory, mode in reversed(directory_modes):
                os.chmod(directory, mode)
            _swap_into_place(extracted, source, staging)

    def _add_member(self, zf: zipfile.ZipFile, path: Path, base: Path) -> None:
        arcname = path.relative_to(base).as_posix()
        info = path.lstat()
        if not stat.S_ISLNK(info.st_mode):
            zf.write(path, arcname)
            return
        entry = zipfile.ZipInfo(arcname)
        entry.create_system = 3
        entry.external_attr = (info.st_mode & 0xFFFF) << 16
        zf.writestr(entry, os.readlink(path), compress_type=zipfile.ZIP_STORED)


@dataclass(frozen=True, slots=True)
class CopyStrategy:
    """Copies a tree verbatim, preserving symlinks."""

    @property
    def name(self) -> str:
        return "copy"

    @property
    def suffix(self) -> str:
        return FILE_SUFFIX

    def snapshot(self, source: Path, destination: Path) -> None:
        _ = shutil.copytree(source, destination, symlinks=True)

    def restore(self, backup: Path, source: Path) -> None:
        with _staging_area(source) as staging:
            copied = staging / "tree" / source.name
            _ = shutil.copytree(backup, copied, symlinks=True)
            _swap_into_place(copied, source, staging)


_KNOWN_STRATEGIES: Final[dict[str, BackupStrategy]] = {
    "archive": ArchiveStrategy(),
    "copy": CopyStrategy(),
}


def strategy_for(name: str) -> BackupStrategy:
    """Return the built-in directory strategy called ``name``.

    Raises:
        KeyError: If no strategy has that name.
    """

    return _KNOWN_STRATEGIES[name]


@dataclass(slots=True)
class BackupVault:
    """Directory of recoverable snapshots.

    The vault is owned by one batch at a time; no locking is performed.
    """

    directory: Path = DEFAULT_VAULT_DIR
    strategy: BackupStrategy = field(default_factory=ArchiveStrategy)
    clock: WallClock = SYSTEM_CLOCK
    logger: StructuredLogger = field(default_factory=lambda: get_logger(__name__))

    def __post_init__(self) -> None:
        self.directory = lexical_path(Path(self.directory).expanduser())

    @classmethod
    def open(
        cls,
        directory: str | os.PathLike[str] = DEFAULT_VAULT_DIR,
        *,
        retention: timedelta | None = DEFAULT_RETENTION,
        strategy: BackupStrategy | None = None,
        clock: WallClock = SYSTEM_CLOCK,
        logger: StructuredLogger | None = None,
    ) -> BackupVault:
        """Create the vault directory if needed and prune expired entries.

        Pass ``retention=None`` to skip pruning.
        """

        vault = cls(
            Path(directory),
            strategy=strategy if strategy is not None else ArchiveStrategy(),
            clock=clock,
            logger=logger if logger is not None else get_logger(__name__),
        )
        vault.directory.mkdir(parents=True, exist_ok=True)
        if retention is not None:
            _ = vault.prune_older_than(retention)
        return vault

    def create_backup(
        self, source_path: str | os.PathLike[str], kind: BackupKind | None = None
    ) -> BackupRecord:
        """Snapshot ``source_path`` into the vault.

        Args:
            source_path: The file or directory about to be changed.
            kind: What is expected at ``source_path``. Inferred when omitted.

        Raises:
            BackupCreationError: If the source is missing or of the wrong kind,
                the copy does not match the source, or any filesystem step
                fails. Nothing is left under the final backup name.
        """

        source = lexical_path(source_path)
        if kind is None:
            kind = BackupKind.DIRECTORY if source.is_dir() else BackupKind.FILE
        if kind is BackupKind.FILE and not source.is_file():
            msg = f"Cannot back up {source}: not a regular file"
            raise BackupCreationError(msg)
        if kind is BackupKind.DIRECTORY and not source.is_dir():
            msg = f"Cannot back up {source}: not a directory"
            raise BackupCreationError(msg)

        created_at = self.clock.utcnow()
        suffix = FILE_SUFFIX if kind is BackupKind.FILE else self.strategy.suffix
        strategy_name = "copy" if kind is BackupKind.FILE else self.strategy.name

        tmp_path: Path | None = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            backup_path = self._allocate_name(source.name, created_at, suffix)
            tmp_path = self.directory / f".{backup_path.name}.tmp"
            digest: str | None = None
            if kind is BackupKind.FILE:
                _ = shutil.copy2(source, tmp_path)
                digest = ChecksumStore.digest(source)
                if ChecksumStore.digest(tmp_path) != digest:
                    msg = f"Backup of {source} does not match the source"
                    raise BackupCreationError(msg)
            else:
                self.strategy.snapshot(source, tmp_path)
            stamp = created_at.timestamp()
            os.utime(tmp_path, (stamp, stamp), follow_symlinks=False)
            _ = tmp_path.replace(backup_path)
            tmp_path = None
        except BackupCreationError:
            raise
        except OSError as error:
            msg = f"Failed to back up {source}: {error}"
            raise BackupCreationError(msg) from error
        finally:
            if tmp_path is not None:
                _discard(tmp_path)

        record = BackupRecord(
            source_path=source,
            backup_path=backup_path,
            kind=kind,
            created_at=created_at,
            strategy=strategy_name,
            digest=digest,
        )
        self.logger.info(
            "Backup created.",
            event="backup.created",
            context={
                "source_path": source,
                "backup_path": backup_path,
                "kind": kind.value,
                "strategy": strategy_name,
            },
        )
        return record

    def restore(self, record: BackupRecord) -> None:
        """Put the snapshot in ``record`` back at its source path.

        Raises:
            RestoreFailedError: If the backup is missing, cannot be applied, or
                a restored file does not match the recorded digest.
        """

        if not record.backup_path.exists():
            msg = f"Backup {record.backup_path} for {record.source_path} is missing"
            raise RestoreFailedError(msg)

        try:
            if record.kind is BackupKind.FILE:
                self._restore_file(record)
            else:
                self._restore_directory(record)
        except RestoreFailedError:
            raise
        except (OSError, zipfile.BadZipFile) as error:
            msg = f"Failed to restore {record.source_path}: {error}"
            raise RestoreFailedError(msg) from error

        self.logger.info(
            "Backup restored.",
            event="backup.restored",
            context={
                "source_path": record.source_path,
                "backup_path": record.backup_path,
                "kind": record.kind.value,
            },
        )

    def list_backups(self) -> tuple[Path, ...]:
        """Return the visible vault entries sorted by name."""

        if not self.directory.is_dir():
            return ()
        return tuple(
            sorted(p for p in self.directory.iterdir() if not p.name.startswith("."))
        )

    def prune_older_than(self, max_age: timedelta) -> tuple[Path, ...]:
        """Delete vault entries whose mtime is older than ``max_age``.

        Entries that cannot be inspected or removed are logged and skipped.

        Returns:
            The entries that were removed.
        """

        if not self.directory.is_dir():
            return ()

        now = self.clock.utcnow()
        removed: list[Path] = []
        for entry in sorted(self.directory.iterdir()):
            try:
                modified = datetime.fromtimestamp(entry.lstat().st_mtime, tz=UTC)
                if now - modified <= max_age:
                    continue
                _remove_tree(entry)
            except OSError:
                self.logger.warning(
                    "Failed to prune backup.",
                    event="vault.prune_failed",
                    context={"path": entry},
                    exc_info=True,
                )
                continue
            removed.append(entry)

        if removed:
            self.logger.info(
                "Expired backups pruned.",
                event="vault.pruned",
                context={
                    "removed": len(removed),
                    "max_age_seconds": max_age.total_seconds(),
                },
            )
        return tuple(removed)

    def _allocate_name(self, basename: str, created_at: datetime, suffix: str) -> Path:
        stem = f"{basename}-{_timestamp_token(created_at)}"
        candidate = self.directory / f"{stem}{suffix}"
        while candidate.exists() or candidate.is_symlink():
            candidate = self.directory / f"{stem}-{uuid4().hex[:8]}{suffix}"
        return candidate

    def _restore_file(self, record: BackupRecord) -> None:
        target = record.source_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)

        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
        )
        os.close(fd)
        tmp_path = Path(tmp_name)
        try:
            _ = shutil.copyfile(record.backup_path, tmp_path)
            shutil.copymode(record.backup_path, tmp_path)
            os.replace(tmp_path, target)
        finally:
            _discard(tmp_path)

        expected = record.digest
        if expected is not None and ChecksumStore.digest(target) != expected:
            msg = f"Restored {target} does not match its backup digest"
            raise RestoreFailedError(msg)

    def _restore_directory(self, record: BackupRecord) -> None:
        if record.strategy == self.strategy.name:
            strategy = self.strategy
        else:
            try:
                strategy = strategy_for(record.strategy)
            except KeyError:
                msg = f"Unknown backup strategy {record.strategy!r}"
                raise RestoreFailedError(msg) from None
        record.source_path.parent.mkdir(parents=True, exist_ok=True)
        strategy.restore(record.backup_path, record.source_path)


def _timestamp_token(moment: datetime) -> str:
    utc = moment.astimezone(UTC)
    iso = f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


@contextlib.contextmanager
def _staging_area(source: Path) -> Iterator[Path]:
    source.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(
        tempfile.mkdtemp(
            dir=source.parent, prefix=f".{source.name}.", suffix=".restore"
        )
    )
    try:
        yield staging
    finally:
        _discard(staging)


def _swap_into_place(staged: Path, source: Path, staging: Path) -> None:
    displaced = staging / "previous"
    had_previous = source.exists() or source.is_symlink()
    if had_previous:
        os.replace(source, displaced)
    try:
        os.replace(staged, source)
    except OSError:
        if had_previous:
            os.replace(displaced, source)
        raise


def _reject_linked_parents(target: Path, top: Path) -> None:
    for candidate in (target, *target.parents):
        if candidate == top:
            return
        if candidate.is_symlink():
            msg = f"Archive member {target} would be written through a symlink"
            raise RestoreFailedError(msg)


def _remove_tree(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        _remove_tree(path)


__all__ = [
    "DEFAULT_RETENTION",
    "DEFAULT_VAULT_DIR",
    "ArchiveStrategy",
    "BackupKind",
    "BackupRecord",
    "BackupStrategy",
    "BackupVault",
    "CopyStrategy",
    "strategy_for",
]
