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

"""Transactional batches of file and directory operations.

A :class:`FileTransaction` is the per-batch context: it owns the path guard,
the digest store, the atomic writer and the ledger, and borrows a
:class:`~scaffoldtx.filesystem.BackupVault`. Each operation validates its
target, takes a backup before any destructive change and records itself in
the ledger. Leaving the ``with`` block through an exception rolls the whole
batch back and re-raises; leaving it normally commits.

Relative paths are taken relative to the transaction root, and every
resolved path must stay inside it.

Example usage::

    from scaffoldtx.filesystem import BackupVault
    from scaffoldtx.runtime import FileTransaction

    vault = BackupVault.open()
    with FileTransaction.begin(root="/proj", vault=vault) as txn:
        txn.create_directory("src")
        txn.write_file("src/app.py", "print('hi')\\n")

:func:`run_batch` drives a list of :class:`Target` entries through a
transaction with termination signals deferred, and reports the outcome as a
:class:`BatchResult` instead of raising.
"""

from __future__ import annotations

import contextlib
import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from types import TracebackType
from typing import Self, assert_never
from uuid import UUID, uuid4

from ..clock import SYSTEM_CLOCK, WallClock
from ..errors import LedgerClosedError
from ..filesystem import (
    AtomicWriter,
    BackupKind,
    BackupVault,
    ChecksumStore,
    PathGuard,
    sanitize_file_name,
    validate_content,
)
from .ledger import (
    CreateDir,
    CreateFile,
    LedgerPhase,
    OperationLedger,
    OverwriteDir,
    OverwriteFile,
    RecordedOperation,
    RollbackReport,
)
from .logging import StructuredLogger, get_logger
from .signals import ShutdownGuard


class TargetKind(StrEnum):
    """What a :class:`Target` asks the batch to produce."""

    FILE = "file"
    DIRECTORY = "directory"
    REPLACE_DIRECTORY = "replace_directory"


@dataclass(frozen=True, slots=True)
class Target:
    """One requested output of a batch.

    File targets carry their content; directory targets carry none.
    ``REPLACE_DIRECTORY`` backs up an existing directory and recreates it
    empty, so its previous contents come back on rollback.
    """

    kind: TargetKind
    path: str | os.PathLike[str]
    content: bytes | str | None = None

    def __post_init__(self) -> None:
        if self.kind is TargetKind.FILE and self.content is None:
            msg = f"File target {os.fspath(self.path)} requires content."
            raise ValueError(msg)
        if self.kind is not TargetKind.FILE and self.content is not None:
            msg = f"Directory target {os.fspath(self.path)} cannot carry content."
            raise ValueError(msg)


class RollbackStatus(StrEnum):
    """Whether and how completely a batch was rolled back."""

    NOT_NEEDED = "not_needed"
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Outcome of :func:`run_batch`.

    Attributes:
        batch_id: Identifier shared by every log record of the batch.
        operations: Ledger entries performed before the batch ended.
        error: The exception that aborted the batch, if any.
        failed_target: The path being processed when the batch aborted.
        report: The rollback report when a rollback ran.
    """

    batch_id: UUID
    operations: tuple[RecordedOperation, ...]
    error: Exception | None = None
    failed_target: Path | None = None
    report: RollbackReport | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def rollback_status(self) -> RollbackStatus:
        if self.report is None or self.report.attempted == 0:
            return RollbackStatus.NOT_NEEDED
        if self.report.succeeded:
            return RollbackStatus.COMPLETE
        return RollbackStatus.PARTIAL

    def describe(self) -> str:
        """Render a one-paragraph, human-readable summary."""

        if self.error is None:
            return (
                f"Batch {self.batch_id} completed: "
                f"{len(self.operations)} operation(s) applied."
            )

        where = f" at {self.failed_target}" if self.failed_target is not None else ""
        head = f"Batch {self.batch_id} failed{where}: {self.error}."
        match self.rollback_status:
            case RollbackStatus.NOT_NEEDED:
                tail = "No changes had been made; rollback not needed."
            case RollbackStatus.COMPLETE:
                assert self.report is not None
                tail = (
                    f"Rollback complete: {self.report.restored} operation(s) undone."
                )
            case RollbackStatus.PARTIAL:
                assert self.report is not None
                paths = ", ".join(str(p) for p in self.report.unrestored_paths)
                tail = (
                    f"Rollback partial: {self.report.restored} of "
                    f"{self.report.attempted} operation(s) undone; "
                    f"not restored: {paths}."
                )
            case _ as unreachable:  # pragma: no cover - exhaustiveness sentinel
                assert_never(unreachable)
        return f"{head} {tail}"


class FileTransaction:
    """Per-batch context for guarded, recoverable file operations.

    Not thread-safe: a batch is driven by one sequential actor.
    """

    def __init__(
        self,
        *,
        root: str | os.PathLike[str],
        vault: BackupVault,
        checksums: ChecksumStore | None = None,
        shutdown: ShutdownGuard | None = None,
        batch_id: UUID | None = None,
        clock: WallClock = SYSTEM_CLOCK,
        logger: StructuredLogger | None = None,
    ) -> None:
        super().__init__()
        self.batch_id = batch_id if batch_id is not None else uuid4()
        base_logger = logger if logger is not None else get_logger(__name__)
        self.logger = base_logger.bind(operation_id=str(self.batch_id))
        self.guard = PathGuard(Path(os.path.abspath(os.fspath(root))))
        self.vault = vault
        self.checksums = checksums if checksums is not None else ChecksumStore()
        self.writer = AtomicWriter(self.checksums, self.logger)
        self.ledger = OperationLedger(
            vault=vault,
            checksums=self.checksums,
            batch_id=self.batch_id,
            clock=clock,
            logger=self.logger,
        )
        self._shutdown = shutdown

    @classmethod
    def begin(
        cls,
        *,
        root: str | os.PathLike[str],
        vault: BackupVault,
        shutdown: ShutdownGuard | None = None,
        clock: WallClock = SYSTEM_CLOCK,
        logger: StructuredLogger | None = None,
    ) -> FileTransaction:
        """Start a new batch rooted at ``root``. Use as a context manager."""

        txn = cls(root=root, vault=vault, shutdown=shutdown, clock=clock, logger=logger)
        txn.logger.info(
            "Batch started.",
            event="batch.started",
            context={"root": txn.root, "vault": vault.directory},
        )
        return txn

    @property
    def root(self) -> Path:
        return self.guard.root

    @property
    def operations(self) -> tuple[RecordedOperation, ...]:
        return self.ledger.entries

    def resolve(self, path: str | os.PathLike[str]) -> Path:
        """Return the absolute path for ``path`` if it lies inside the root.

        Raises:
            PathTraversalError: If the path escapes the root.
        """

        return self.guard.validate(self.root / path)

    def write_file(
        self, path: str | os.PathLike[str], content: bytes | str
    ) -> RecordedOperation:
        """Create or overwrite a file.

        An existing file is checked against the digest this batch stored for
        it, backed up, recorded, and only then replaced. Missing parent
        directories are created and recorded so rollback removes them.
        Separators and NUL bytes are stripped from the final name component.
        """

        self._ensure_open()
        target = self.resolve(path)
        target = target.with_name(sanitize_file_name(target.name))

        if target.exists() or target.is_symlink():
            if target.is_dir():
                msg = f"Cannot write file over directory {target}"
                raise IsADirectoryError(msg)
            self.checksums.check_integrity(target)
            backup = self.vault.create_backup(target, BackupKind.FILE)
            entry = self.ledger.record(OverwriteFile(target_path=target, backup=backup))
            _ = self.writer.write(target, content)
            return entry

        self._ensure_parents(target)
        _ = self.writer.write(target, content)
        return self.ledger.record(CreateFile(target_path=target))

    def create_directory(
        self, path: str | os.PathLike[str]
    ) -> RecordedOperation | None:
        """Create a directory. Returns None when it already exists."""

        self._ensure_open()
        target = self.resolve(path)
        if target.is_dir():
            return None
        if target.exists() or target.is_symlink():
            msg = f"Cannot create directory over existing file {target}"
            raise FileExistsError(msg)
        self._ensure_parents(target)
        target.mkdir()
        return self.ledger.record(CreateDir(target_path=target))

    def replace_directory(self, path: str | os.PathLike[str]) -> RecordedOperation:
        """Back up an existing directory and recreate it empty.

        A missing directory is simply created.
        """

        self._ensure_open()
        target = self.resolve(path)
        if not target.is_dir() or target.is_symlink():
            entry = self.create_directory(target)
            assert entry is not None
            return entry

        backup = self.vault.create_backup(target, BackupKind.DIRECTORY)
        entry = self.ledger.record(OverwriteDir(target_path=target, backup=backup))
        shutil.rmtree(target)
        target.mkdir()
        self.checksums.forget(target)
        return entry

    def rollback(self) -> RollbackReport:
        """Undo everything this batch did. Never raises."""

        report = self.ledger.rollback()
        self.logger.info(
            "Batch rolled back.",
            event="batch.rolled_back",
            context={
                "attempted": report.attempted,
                "restored": report.restored,
                "failed": len(report.failures),
            },
        )
        return report

    def commit(self) -> tuple[RecordedOperation, ...]:
        """Close the ledger and return the operations performed."""

        self.ledger.close()
        self.logger.info(
            "Batch committed.",
            event="batch.committed",
            context={"operations": len(self.ledger)},
        )
        return self.ledger.entries

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.ledger.phase is not LedgerPhase.RECORDING:
            return
        if exc_val is not None:
            _ = self.rollback()
        else:
            _ = self.commit()

    def _ensure_open(self) -> None:
        if self._shutdown is not None:
            self._shutdown.check()
        if self.ledger.phase is not LedgerPhase.RECORDING:
            msg = f"Batch {self.batch_id} is {self.ledger.phase.value}"
            raise LedgerClosedError(msg)

    def _ensure_parents(self, target: Path) -> None:
        missing: list[Path] = []
        for parent in target.parents:
            if parent.is_dir():
                break
            missing.append(parent)
        for directory in reversed(missing):
            _ = self.guard.validate(directory)
            directory.mkdir()
            _ = self.ledger.record(CreateDir(target_path=directory))


def run_batch(
    targets: Iterable[Target],
    *,
    root: str | os.PathLike[str],
    vault: BackupVault,
    validate: bool = True,
    install_signal_handlers: bool = True,
    shutdown: ShutdownGuard | None = None,
    clock: WallClock = SYSTEM_CLOCK,
    logger: StructuredLogger | None = None,
) -> BatchResult:
    """Apply ``targets`` in order as one all-or-nothing batch.

    The first failure aborts the batch and triggers one best-effort rollback.
    The original exception is returned in :attr:`BatchResult.error` rather
    than raised. SIGINT/SIGTERM are deferred while the batch runs and turn
    into a :class:`~scaffoldtx.errors.BatchInterruptedError` before the next
    target, or before the commit when the signal arrived during the last one.
    The signal is not re-delivered after the previous handlers are restored;
    callers that should exit read it from ``BatchResult.error.signum``.

    Args:
        targets: Files and directories to produce, in order.
        root: The directory every target must stay inside.
        vault: Where pre-change backups are kept.
        validate: Check file contents by extension before writing.
        install_signal_handlers: Install the shutdown guard's handlers.
        shutdown: Guard to use; a fresh one is created when omitted.
        clock: Time source for ledger timestamps.
        logger: Base logger; bound to the batch id.
    """

    guard = shutdown if shutdown is not None else ShutdownGuard()
    txn = FileTransaction.begin(
        root=root, vault=vault, shutdown=guard, clock=clock, logger=logger
    )
    current: Path | None = None

    with contextlib.ExitStack() as stack:
        if install_signal_handlers:
            _ = stack.enter_context(guard)
        try:
            for target in targets:
                current = Path(target.path)
                current = txn.resolve(current)
                match target.kind:
                    case TargetKind.FILE:
                        assert target.content is not None
                        if validate:
                            validate_content(current.name, target.content)
                        _ = txn.write_file(current, target.content)
                    case TargetKind.DIRECTORY:
                        _ = txn.create_directory(current)
                    case TargetKind.REPLACE_DIRECTORY:
                        _ = txn.replace_directory(current)
                    case _ as unreachable:  # pragma: no cover
                        assert_never(unreachable)
            current = None
            # A signal during the last target still aborts the batch.
            guard.check()
        except Exception as error:
            txn.logger.error(
                "Batch failed.",
                event="batch.failed",
                context={"failed_target": current, "error": repr(error)},
            )
            report = txn.rollback()
            return BatchResult(
                batch_id=txn.batch_id,
                operations=txn.operations,
                error=error,
                failed_target=current,
                report=report,
            )

        operations = txn.commit()

    return BatchResult(batch_id=txn.batch_id, operations=operations)


__all__ = [
    "BatchResult",
    "FileTransaction",
    "RollbackStatus",
    "Target",
    "TargetKind",
    "run_batch",
]
