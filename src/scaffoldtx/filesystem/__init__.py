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

"""Filesystem primitives used by a scaffolding batch.

This package provides the leaf components every transactional batch is built
from:

- ``PathGuard``: lexical, segment-bounded root containment
- ``ChecksumStore``: per-batch sha256 digests of written files
- ``BackupVault``: recoverable snapshots with copy and archive strategies
- ``AtomicWriter``: temp-file-then-rename writes with read-back validation
- ``validate_content``: extension-based sanity checks for generated files

Example usage::

    from scaffoldtx.filesystem import AtomicWriter, PathGuard

    guard = PathGuard(root)
    AtomicWriter().write(guard.validate(root / "README.md"), "# Hello\\n")
"""

from __future__ import annotations

from ._checksums import HASH_ALGORITHM, ChecksumStore
from ._content import VALIDATORS, ContentValidator, validate_content
from ._guard import PathGuard, ensure_within_root, lexical_path, sanitize_file_name
from ._vault import (
    DEFAULT_RETENTION,
    DEFAULT_VAULT_DIR,
    ArchiveStrategy,
    BackupKind,
    BackupRecord,
    BackupStrategy,
    BackupVault,
    CopyStrategy,
    strategy_for,
)
from ._writer import DEFAULT_FILE_MODE, AtomicWriter

__all__ = [
    "DEFAULT_FILE_MODE",
    "DEFAULT_RETENTION",
    "DEFAULT_VAULT_DIR",
    "HASH_ALGORITHM",
    "VALIDATORS",
    "ArchiveStrategy",
    "AtomicWriter",
    "BackupKind",
    "BackupRecord",
    "BackupStrategy",
    "BackupVault",
    "ChecksumStore",
    "ContentValidator",
    "CopyStrategy",
    "PathGuard",
    "ensure_within_root",
    "lexical_path",
    "sanitize_file_name",
    "strategy_for",
    "validate_content",
]
