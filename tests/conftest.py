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

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest

from scaffoldtx.clock import FakeClock
from scaffoldtx.filesystem import BackupVault


@pytest.fixture
def fake_clock() -> FakeClock:
    """Return a clock pinned to 2024-01-01 UTC."""

    return FakeClock()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Return an empty project directory."""

    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def vault(tmp_path: Path, fake_clock: FakeClock) -> BackupVault:
    """Return an empty vault outside the project root."""

    return BackupVault.open(tmp_path / "vault", retention=None, clock=fake_clock)


@pytest.fixture
def age_path(fake_clock: FakeClock) -> Callable[[Path, timedelta], None]:
    """Return a helper that backdates a path's mtime relative to the clock."""

    def backdate(path: Path, age: timedelta) -> None:
        stamp = (fake_clock.utcnow() - age).timestamp()
        os.utime(path, (stamp, stamp), follow_symlinks=False)

    return backdate
