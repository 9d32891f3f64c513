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

"""Ordered ledger of file mutations with best-effort reverse rollback.

Every mutation a batch performs is appended to an :class:`OperationLedger`
before (overwrites) or right after (creations) it touches disk. Rolling back
walks the entries in strict reverse order and undoes each one in isolation:
a step that fails is captured in the :class:`RollbackReport` and the walk
continues with the next entry.

Usage::

    from scaffoldtx.runtime.ledger import CreateFile, OperationLedger

    ledger = OperationLedger(vault=vault)
    ledger.record(CreateFile(target_path=path))
    report = ledger.rollback()
    if not report.succeeded:
        print(report.unrestored_paths)
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, TypeAlias, assert_never
from uuid import UUID, uuid4

from ..clock import SYSTEM_CLOCK, WallClock
from ..errors import LedgerClosedError
from ..filesystem._checksums import ChecksumStore
from .logging import StructuredLogger, get_logger

if TYPE_CHECKING:
    from ..filesystem._vault import BackupRecord, BackupVault


@dataclass(frozen=True, slots=True)
class CreateFile:
    """A file that did not exist before the batch."""

    label: ClassVar[str] = "create_file"

    target_path: Path


@dataclass(frozen=True, slots=True)
class OverwriteFile:
    """An existing file replaced after a backup was taken."""

    label: ClassVar[str] = "overwrite_file"

    target_path: Path
    backup: BackupRecord


@dataclass(frozen=True, slots=True)
class CreateDir:
    """A directory that did not exist before the batch."""

    label: ClassVar[str] = "create_dir"

    target_path: Path


@dataclass(frozen=True, slots=True)
class OverwriteDir:
    """An existing directory replaced after a backup was taken."""

    label: ClassVar[str] = "overwrite_dir"

    target_path: Path
    backup: BackupRecord


Operation: TypeAlias = CreateFile | OverwriteFile | CreateDir | OverwriteDir


@dataclass(frozen=True, slots=True)
class RecordedOperation:
    """One ledger entry. ``sequence`` is 0-based and strictly increasing."""

    sequence: int
    operation: Operation
    recorded_at: datetime
    batch_id: UUID

    @property
    def target_path(self) -> Path:
        return self.operation.target_path


class LedgerPhase(StrEnum):
    """Lifecycle of a ledger: recording, then rolling back or closed."""

    RECORDING = "recording"
    ROLLING_BACK = "rolling_back"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class RollbackFailure:
    """A rollback step that could not be undone."""

    entry: RecordedOperation
    error: Exception


@dataclass(frozen=True, slots=True)
class RollbackReport:
    """Outcome of a rollback pass."""

    batch_id: UUID
    attempted: int
    restored: int
    failures: tuple[RollbackFailure, ...] = ()

    @property
    def succeeded(self) -> bool:
        """True when every attempted step was undone."""
        return not self.failures

    @property
    def unrestored_paths(self) -> tuple[Path, ...]:
        """Target paths whose rollback step failed, in rollback order."""
        return tuple(failure.entry.target_path for failure in self.failures)


@dataclass(slots=True)
class OperationLedger:
    """Append-only record of one batch's mutations.

    Entries can only be recorded in :attr:`LedgerPhase.RECORDING`. Calling
    :meth:`rollback` moves the ledger through ``ROLLING_BACK`` to ``CLOSED``;
    :meth:`close` ends a successful batch without undoing anything.

    After undoing a step the ledger keeps ``checksums`` in step with the disk:
    restored files are re-digested and deleted paths are forgotten.
    """

    vault: BackupVault
    checksums: ChecksumStore = field(default_factory=ChecksumStore)
    batch_id: UUID = field(default_factory=uuid4)
    clock: WallClock = SYSTEM_CLOCK
    logger: StructuredLogger = field(default_factory=lambda: get_logger(__name__))
    _entries: list[RecordedOperation] = field(init=False, default_factory=lambda: [])
    _phase: LedgerPhase = field(init=False, default=LedgerPhase.RECORDING)
    _report: RollbackReport | None = field(init=False, default=None)

    @property
    def phase(self) -> LedgerPhase:
        return self._phase

    @property
    def entries(self) -> tuple[RecordedOperation, ...]:
        return tuple(self._entries)

    def record(self, operation: Operation) -> RecordedOperation:
        """Append ``operation`` and return its ledger entry.

        Raises:
            LedgerClosedError: If the ledger is no longer recording.
        """

        if self._phase is not LedgerPhase.RECORDING:
            msg = f"Ledger for batch {self.batch_id} is {self._phase.value}"
            raise LedgerClosedError(msg)

        entry = RecordedOperation(
            sequence=len(self._entries),
            operation=operation,
            recorded_at=self.clock.utcnow(),
            batch_id=self.batch_id,
        )
        self._entries.append(entry)
        self.logger.info(
            "Operation recorded.",
            event="ledger.recorded",
            context={
                "sequence": entry.sequence,
                "operation": operation.label,
                "path": operation.target_path,
            },
        )
        return entry

    def close(self) -> None:
        """End a successful batch. Further recording raises."""

        if self._phase is LedgerPhase.RECORDING:
            self._phase = LedgerPhase.CLOSED
            self.logger.info(
                "Ledger closed.",
                event="ledger.closed",
                context={"operations": len(self._entries)},
            )

    def rollback(self) -> RollbackReport:
        """Undo every recorded operation, newest first.

        Never raises. Failed steps are collected in the returned report. A
        second call returns the first report without touching disk again; a
        ledger closed by :meth:`close` reports zero attempted steps.
        """

        if self._report is not None:
            return self._report
        if self._phase is LedgerPhase.CLOSED:
            self._report = RollbackReport(
                batch_id=self.batch_id, attempted=0, restored=0
            )
            return self._report

        self._phase = LedgerPhase.ROLLING_BACK
        self.logger.info(
            "Rollback started.",
            event="rollback.started",
            context={"operations": len(self._entries)},
        )

        restored = 0
        failures: list[RollbackFailure] = []
        for entry in reversed(self._entries):
            step_context = {
                "sequence": entry.sequence,
                "operation": entry.operation.label,
                "path": entry.target_path,
            }
            try:
                self._undo(entry.operation)
            except Exception as error:
                failures.append(RollbackFailure(entry=entry, error=error))
                self.logger.warning(
                    "Rollback step failed.",
                    event="rollback.step_failed",
                    context={**step_context, "error": repr(error)},
                    exc_info=True,
                )
                continue
            restored += 1
            self.logger.info(
                "Rollback step completed.",
                event="rollback.step_completed",
                context=step_context,
            )

        report = RollbackReport(
            batch_id=self.batch_id,
            attempted=len(self._entries),
            restored=restored,
            failures=tuple(failures),
        )
        self._report = report
        self._phase = LedgerPhase.CLOSED

        if report.succeeded:
            self.logger.info(
                "Rollback completed.",
                event="rollback.completed",
                context={"restored": restored},
            )
        else:
            self.logger.error(
                "Rollback incomplete.",
                event="rollback.partial",
                context={
                    "restored": restored,
                    "unrestored_paths": [str(p) for p in report.unrestored_paths],
                },
            )
        return report

    def _undo(self, operation: Operation) -> None:
        match operation:
            case CreateFile(target_path=path):
                if path.exists() or path.is_symlink():
                    path.unlink()
                self.checksums.forget(path)
            case CreateDir(target_path=path):
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                elif path.is_symlink():
                    path.unlink()
                self.checksums.forget(path)
            case OverwriteFile(target_path=path, backup=backup):
                self.vault.restore(backup)
                _ = self.checksums.remember(path)
            case OverwriteDir(target_path=path, backup=backup):
                self.vault.restore(backup)
                self.checksums.forget(path)
            case _ as unreachable:  # pragma: no cover - exhaustiveness sentinel
                assert_never(unreachable)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "CreateDir",
    "CreateFile",
    "LedgerPhase",
    "Operation",
    "OperationLedger",
    "OverwriteDir",
    "OverwriteFile",
    "RecordedOperation",
    "RollbackFailure",
    "RollbackReport",
]
