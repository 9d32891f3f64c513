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

"""Root containment checks for every path a batch touches.

Resolution is purely lexical: the input is joined to the current working
directory when relative and ``..``/``.`` segments are collapsed, but symlinks
are not followed. Containment compares whole path segments, so a root of
``/home/user`` admits ``/home/user/notes.txt`` but not ``/home/userx``.

Example usage::

    from scaffoldtx.filesystem import PathGuard

    guard = PathGuard("/sandbox/proj")
    target = guard.validate("/sandbox/proj/src/app.py")
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from ..errors import PathTraversalError

__all__ = [
    "PathGuard",
    "ensure_within_root",
    "lexical_path",
    "sanitize_file_name",
]


def lexical_path(path: str | os.PathLike[str]) -> Path:
    """Return the absolute, normalized form of ``path`` without touching disk."""

    return Path(os.path.abspath(os.fspath(path)))


def ensure_within_root(
    path: str | os.PathLike[str], root: str | os.PathLike[str]
) -> Path:
    """Resolve ``path`` and check it lies inside ``root``.

    Args:
        path: The path to check, absolute or relative to the working directory.
        root: The allowed root directory.

    Returns:
        The resolved absolute path.

    Raises:
        PathTraversalError: If the resolved path escapes ``root``.
    """

    root_path = lexical_path(root)
    candidate = lexical_path(path)
    try:
        _ = candidate.relative_to(root_path)
    except ValueError:
        msg = f"Path escapes root directory {root_path}: {os.fspath(path)}"
        raise PathTraversalError(msg) from None
    return candidate


@dataclass(frozen=True, slots=True)
class PathGuard:
    """Validates that paths stay inside one allowed root."""

    root: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", lexical_path(self.root))

    def validate(self, path: str | os.PathLike[str]) -> Path:
        """Return the resolved ``path`` or raise :class:`PathTraversalError`."""
        return ensure_within_root(path, self.root)

    def is_safe(self, path: str | os.PathLike[str]) -> bool:
        """Return True if ``path`` resolves inside the root."""
        try:
            _ = self.validate(path)
        except PathTraversalError:
            return False
        return True


def sanitize_file_name(name: str) -> str:
    """Strip path separators and NUL bytes from a single file name.

    Raises:
        PathTraversalError: If nothing usable remains, or the name is a
            relative directory reference (``.`` or ``..``).
    """

    cleaned = name.replace("/", "").replace("\\", "").replace("\0", "")
    if cleaned in {"", ".", ".."}:
        msg = f"Invalid file name: {name!r}"
        raise PathTraversalError(msg)
    return cleaned
