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

import signal

import pytest

import scaffoldtx
from scaffoldtx import errors


@pytest.mark.parametrize(
    ("error_type", "builtin"),
    [
        (errors.PathTraversalError, PermissionError),
        (errors.BackupCreationError, OSError),
        (errors.RestoreFailedError, OSError),
        (errors.WriteError, OSError),
        (errors.WriteValidationError, OSError),
        (errors.IntegrityCheckError, ValueError),
        (errors.ContentValidationError, ValueError),
        (errors.LedgerClosedError, RuntimeError),
        (errors.BatchInterruptedError, RuntimeError),
        (errors.ConfigError, ValueError),
    ],
)
def test_errors_share_base_and_builtin(
    error_type: type[Exception], builtin: type[Exception]
) -> None:
    assert issubclass(error_type, errors.ScaffoldError)
    assert issubclass(error_type, builtin)


def test_write_validation_is_a_write_error() -> None:
    assert issubclass(errors.WriteValidationError, errors.WriteError)


def test_batch_interrupted_carries_signal_number() -> None:
    error = errors.BatchInterruptedError(signal.SIGTERM)

    assert error.signum == signal.SIGTERM
    assert str(error) == f"Batch interrupted by signal {int(signal.SIGTERM)}"


def test_package_exports() -> None:
    assert scaffoldtx.__version__ == "0.1.0"
    assert scaffoldtx.ScaffoldError is errors.ScaffoldError
    assert "FileTransaction" in dir(scaffoldtx.runtime)
    assert scaffoldtx.runtime.run_batch is scaffoldtx.run_batch
    with pytest.raises(AttributeError):
        _ = scaffoldtx.runtime.not_exported
