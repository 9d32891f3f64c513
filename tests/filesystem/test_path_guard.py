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

"""Tests for lexical root containment."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, strategies as st

from scaffoldtx.errors import PathTraversalError
from scaffoldtx.filesystem import (
    PathGuard,
    ensure_within_root,
    lexical_path,
    sanitize_file_name,
)


class TestPathGuard:
    """PathGuard admits paths inside the root and nothing else."""

    def test_accepts_nested_file(self, project_root: Path) -> None:
        guard = PathGuard(project_root)

        target = project_root / "sub" / "file"
        assert guard.validate(target) == target

    def test_accepts_root_itself(self, project_root: Path) -> None:
        assert PathGuard(project_root).validate(project_root) == project_root

    def test_rejects_parent_traversal(
        self, project_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(project_root)
        guard = PathGuard(project_root)

        with pytest.raises(PathTraversalError):
            guard.validate("../../etc/passwd")

    def test_rejects_sibling_sharing_prefix(self, project_root: Path) -> None:
        guard = PathGuard(project_root)

        with pytest.raises(PathTraversalError, match="escapes root"):
            guard.validate(str(project_root) + "-evil")

    def test_rejects_absolute_path_elsewhere(self, project_root: Path) -> None:
        assert not PathGuard(project_root).is_safe("/etc/passwd")

    def test_relative_paths_resolve_against_working_directory(
        self, project_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(project_root)

        assert PathGuard(project_root).validate("src/app.py") == (
            project_root / "src" / "app.py"
        )

    def test_collapses_dot_segments_inside_root(self, project_root: Path) -> None:
        candidate = project_root / "a" / ".." / "b" / "." / "c.txt"

        expected = project_root / "b" / "c.txt"
        assert ensure_within_root(candidate, project_root) == expected

    def test_dot_segments_cannot_escape(self, project_root: Path) -> None:
        candidate = project_root / "a" / ".." / ".." / "outside.txt"

        with pytest.raises(PathTraversalError):
            ensure_within_root(candidate, project_root)

    def test_root_is_normalized(self, project_root: Path) -> None:
        guard = PathGuard(project_root / "x" / "..")

        assert guard.root == project_root

    def test_traversal_error_is_permission_error(self, project_root: Path) -> None:
        with pytest.raises(PermissionError):
            PathGuard(project_root).validate(project_root.parent)

    def test_symlinks_are_not_followed(
        self, project_root: Path, tmp_path: Path
    ) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        link = project_root / "link"
        link.symlink_to(outside, target_is_directory=True)

        assert PathGuard(project_root).validate(link / "file") == link / "file"

    @given(
        st.lists(
            st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_-", min_size=1),
            min_size=1,
            max_size=5,
        )
    )
    def test_plain_segments_stay_inside(self, segments: list[str]) -> None:
        root = lexical_path("/sandbox/project")

        assert PathGuard(root).is_safe(root.joinpath(*segments))


class TestSanitizeFileName:
    def test_strips_separators_and_nul(self) -> None:
        assert sanitize_file_name("a/b\\c\0.txt") == "abc.txt"

    def test_plain_name_unchanged(self) -> None:
        assert sanitize_file_name("notes.txt") == "notes.txt"

    @pytest.mark.parametrize("name", ["", "/", "..", "../", ".", "\\"])
    def test_rejects_names_without_content(self, name: str) -> None:
        with pytest.raises(PathTraversalError):
            sanitize_file_name(name)
