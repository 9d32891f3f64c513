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

"""Transactional file operations for project scaffolding."""

from __future__ import annotations

from . import errors, filesystem, runtime
from .config import ScaffoldConfig, load_config
from .errors import ScaffoldError
from .filesystem import BackupVault
from .runtime.transactions import (
    BatchResult,
    FileTransaction,
    RollbackStatus,
    Target,
    TargetKind,
    run_batch,
)

__version__ = "0.1.0"

__all__ = [
    "BackupVault",
    "BatchResult",
    "FileTransaction",
    "RollbackStatus",
    "ScaffoldConfig",
    "ScaffoldError",
    "Target",
    "TargetKind",
    "__version__",
    "errors",
    "filesystem",
    "load_config",
    "run_batch",
    "runtime",
]
