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

"""Temp-file-then-rename writes with read-back verification.

A write lands in a temporary file in the target's own directory (same
filesystem, so the final rename is atomic), is read back and compared with
the intended bytes, and only then replaces the target. Readers see either the
previous content or the complete new content, never a partial write.

No ``fsync`` ordering is attempted: a crash between the rename and the
kernel flushing the data is outside what this module guarantees.
"""

from __future__ import annotations

import contextlib
import os
import stat
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from ..errors import WriteError, WriteValidationError
from ..runtime.logging import StructuredLogger, get_logger
from ._checksums import ChecksumStore

__all__ = ["DEFAULT_FILE_MODE", "AtomicWriter"]

DEFAULT_FILE_MODE: Final = 0o644


@dataclass(slots=True)
class AtomicWriter:
    """Commits file contents atomically and records their digests."""

    checksums: ChecksumStore = field(default_factory=ChecksumStore)
    logger: StructuredLogger = field(default_factory=lambda: get_logger(__name__))

    def write(self, path: str | os.PathLike[str], content: bytes | str) -> Path:
        """Write ``content`` to ``path`` atomically.

        Args:
            path: Destination file. Its parent directory must exist.
            content: Bytes, or text encoded as UTF-8.

        Returns:
            The destination path.

        Raises:
            WriteValidationError: If the read-back differs from ``content``.
            WriteError: If any filesystem step fails. ``path`` is unchanged.
        """
        target = Path(path)
        data = content.encode("utf-8") if isinstance(content, str) else content
        mode = _target_mode(target)

        tmp_path: Path | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "wb") as handle:
                _ = handle.write(data)
            os.chmod(tmp_path, mode)

            if self._read_back(tmp_path) != data:
                msg = f"Read-back of temporary file for {target} does not match content"
                raise WriteValidationError(msg)
            self.logger.debug(
                "Write validated.",
                event="write.validated",
                context={"path": target, "bytes": len(data)},
            )

            os.replace(tmp_path, target)
            tmp_path = None
        except WriteError:
            self._log_failure(target)
            raise
        except OSError as error:
            self._log_failure(target)
            msg = f"Failed to write {target}: {error}"
            raise WriteError(msg) from error
        finally:
            if tmp_path is not None:
                _discard(tmp_path)

        digest = self.checksums.remember(target)
        self.logger.info(
            "File written.",
            event="write.committed",
            context={"path": target, "digest": digest},
        )
        return target

    @staticmethod
    def _read_back(path: Path) -> bytes:
        return path.read_bytes()

    def _log_failure(self, target: Path) -> None:
        self.logger.error(
            "Atomic write failed.",
            event="write.failed",
            context={"path": target},
            exc_info=True,
        )


def _target_mode(target: Path) -> int:
    try:
        return stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        return DEFAULT_FILE_MODE


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)
