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

"""Runtime primitives for :mod:`scaffoldtx`.

The logging helpers load eagerly because the filesystem layer depends on
them. Ledger, transaction and signal types resolve on first attribute access
so that importing :mod:`scaffoldtx.filesystem` first does not cycle back into
them.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

from .logging import (
    StructuredLogger,
    configure_logging,
    get_logger,
    log_file_path,
    prune_log_files,
)

if TYPE_CHECKING:
    from .ledger import (
        CreateDir,
        CreateFile,
        LedgerPhase,
        Operation,
        OperationLedger,
        OverwriteDir,
        OverwriteFile,
        RecordedOperation,
        RollbackFailure,
        RollbackReport,
    )
    from .signals import ShutdownGuard
    from .transactions import (
        BatchResult,
        FileTransaction,
        RollbackStatus,
        Target,
        TargetKind,
        run_batch,
    )

_LAZY_EXPORTS = {
    "CreateDir": "ledger",
    "CreateFile": "ledger",
    "LedgerPhase": "ledger",
    "Operation": "ledger",
    "OperationLedger": "ledger",
    "OverwriteDir": "ledger",
    "OverwriteFile": "ledger",
    "RecordedOperation": "ledger",
    "RollbackFailure": "ledger",
    "RollbackReport": "ledger",
    "ShutdownGuard": "signals",
    "BatchResult": "transactions",
    "FileTransaction": "transactions",
    "RollbackStatus": "transactions",
    "Target": "transactions",
    "TargetKind": "transactions",
    "run_batch": "transactions",
}

__all__ = [
    "BatchResult",
    "CreateDir",
    "CreateFile",
    "FileTransaction",
    "LedgerPhase",
    "Operation",
    "OperationLedger",
    "OverwriteDir",
    "OverwriteFile",
    "RecordedOperation",
    "RollbackFailure",
    "RollbackReport",
    "RollbackStatus",
    "ShutdownGuard",
    "StructuredLogger",
    "Target",
    "TargetKind",
    "configure_logging",
    "get_logger",
    "log_file_path",
    "prune_log_files",
    "run_batch",
]


def __getattr__(name: str) -> object:
    """Resolve ledger, signal and transaction exports on first use."""

    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    value = getattr(import_module(f"{__name__}.{module_name}"), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted({*globals().keys(), *__all__})
