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

"""Per-batch content digests used to detect tampering within one run."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from ..errors import IntegrityCheckError

__all__ = ["HASH_ALGORITHM", "ChecksumStore"]

HASH_ALGORITHM: Final = "sha256"
_CHUNK_SIZE: Final = 64 * 1024


@dataclass(slots=True)
class ChecksumStore:
    """In-memory ``path -> digest`` map for the duration of one batch.

    Digests are recomputed after every successful write or restore and are
    never persisted, so they only detect changes made later in the same run.
    Reading a file that cannot be opened raises :class:`OSError`; a failed
    read is never reported as a match.

    Thread-safety: not thread-safe. A batch is driven by a single actor.
    """

    _digests: dict[Path, str] = field(default_factory=lambda: {})

    @staticmethod
    def digest_bytes(data: bytes) -> str:
        """Return the hex digest of ``data``."""
        return hashlib.new(HASH_ALGORITHM, data).hexdigest()

    @staticmethod
    def digest(path: str | os.PathLike[str]) -> str:
        """Return the hex digest of the full contents of ``path``."""
        hasher = hashlib.new(HASH_ALGORITHM)
        with Path(path).open("rb") as handle:
            while chunk := handle.read(_CHUNK_SIZE):
                hasher.update(chunk)
        return hasher.hexdigest()

    def verify(self, path: str | os.PathLike[str], expected: str) -> bool:
        """Recompute the digest of ``path`` and compare it with ``expected``."""
        return self.digest(path) == expected

    def remember(self, path: str | os.PathLike[str]) -> str:
        """Compute, store and return the digest of ``path``."""
        key = Path(path)
        value = self.digest(key)
        self._digests[key] = value
        return value

    def expected(self, path: str | os.PathLike[str]) -> str | None:
        """Return the digest stored for ``path`` in this run, if any."""
        return self._digests.get(Path(path))

    def forget(self, path: str | os.PathLike[str]) -> None:
        """Drop the stored digest for ``path`` and everything beneath it."""
        key = Path(path)
        for stored in [p for p in self._digests if p == key or key in p.parents]:
            del self._digests[stored]

    def check_integrity(self, path: str | os.PathLike[str]) -> None:
        """Ensure ``path`` still matches the digest stored earlier in this run.

        Paths the store has not seen are accepted.

        Raises:
            IntegrityCheckError: If the current content differs.
        """
        expected = self.expected(path)
        if expected is None:
            return
        if not self.verify(path, expected):
            msg = f"Checksum mismatch for {os.fspath(path)}; file changed after write"
            raise IntegrityCheckError(msg)

    def __len__(self) -> int:
        return len(self._digests)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, os.PathLike)):
            return False
        return Path(path) in self._digests
