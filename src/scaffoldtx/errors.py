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

"""Base exception hierarchy for :mod:`scaffoldtx`."""

from __future__ import annotations


class ScaffoldError(Exception):
    """Base class for all scaffoldtx exceptions.

    Callers can catch every library-specific failure with a single handler
    while standard Python exceptions propagate normally. Generic filesystem
    failures that the library does not wrap surface as the built-in
    :class:`OSError`.

    Example:
        Catch any scaffoldtx error around a batch::

            try:
                with FileTransaction.begin(root=root, vault=vault) as txn:
                    txn.write_file("README.md", readme)
            except ScaffoldError as e:
                logger.error("Scaffold failed: %s", e)

    Note:
        Subclasses also inherit from a standard exception type (``OSError``,
        ``ValueError``, ``RuntimeError``, ``PermissionError``) so existing
        handlers for those keep working.
    """


class PathTraversalError(ScaffoldError, PermissionError):
    """Raised when a path resolves outside the allowed root.

    Containment is decided on whole path segments, so a root of
    ``/home/user`` never admits ``/home/userx``.
    """


class BackupCreationError(ScaffoldError, OSError):
    """Raised when a snapshot of a file or directory cannot be written.

    The destructive operation the backup was guarding must not proceed after
    this exception.
    """


class RestoreFailedError(ScaffoldError, OSError):
    """Raised when a snapshot cannot be restored over its source path.

    Common causes:
        - The backup entry was pruned or deleted from the vault
        - The restored bytes do not match the digest taken at backup time
        - The parent directory of the source is no longer writable

    Warning:
        After this exception the source path may be in an intermediate state.
        During rollback the failure is recorded in the report instead of
        being raised.
    """


class WriteError(ScaffoldError, OSError):
    """Raised when an atomic write cannot be committed.

    The target path is left untouched and no temporary file remains.
    """


class WriteValidationError(WriteError):
    """Raised when the read-back of a temporary file differs from the content."""


class IntegrityCheckError(ScaffoldError, ValueError):
    """Raised when a file no longer matches the digest recorded in this run.

    This indicates the file was modified by someone else after the batch
    wrote it, so its content can no longer be trusted for a backup.
    """


class ContentValidationError(ScaffoldError, ValueError):
    """Raised when generated content fails the check for its file type."""


class LedgerClosedError(ScaffoldError, RuntimeError):
    """Raised when recording into a ledger that has left the recording phase."""


class BatchInterruptedError(ScaffoldError, RuntimeError):
    """Raised when a termination signal arrives between two operations.

    Attributes:
        signum: The signal number that stopped the batch.
    """

    def __init__(self, signum: int) -> None:
        super().__init__(f"Batch interrupted by signal {signum}")
        self.signum = signum


class ConfigError(ScaffoldError, ValueError):
    """Raised when the scaffoldtx configuration is invalid."""


__all__ = [
    "BackupCreationError",
    "BatchInterruptedError",
    "ConfigError",
    "ContentValidationError",
    "IntegrityCheckError",
    "LedgerClosedError",
    "PathTraversalError",
    "RestoreFailedError",
    "ScaffoldError",
    "WriteError",
    "WriteValidationError",
]
