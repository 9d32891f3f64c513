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

"""Controllable wall-clock time for backup naming and pruning.

The vault stamps every backup with the current UTC time and prunes entries by
comparing their modification time against "now". Both read time through the
:class:`WallClock` protocol so tests can pin and advance it.

Example (production)::

    from scaffoldtx.clock import SYSTEM_CLOCK

    stamp = SYSTEM_CLOCK.utcnow()

Example (testing)::

    from scaffoldtx.clock import FakeClock

    clock = FakeClock()
    clock.advance(timedelta(days=8))
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Final, Protocol, runtime_checkable


@runtime_checkable
class WallClock(Protocol):
    """Protocol for wall-clock time measurement.

    Wall clocks provide the current UTC datetime. They are suitable for
    timestamps and age comparisons, not for measuring durations.
    """

    def utcnow(self) -> datetime:
        """Return current UTC datetime (timezone-aware)."""
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Production clock delegating to ``datetime.now(UTC)``."""

    def utcnow(self) -> datetime:
        """Return current UTC datetime."""
        return datetime.now(UTC)


SYSTEM_CLOCK: Final[WallClock] = SystemClock()
"""Default clock instance; tests inject :class:`FakeClock` instead."""


@dataclass
class FakeClock:
    """Controllable clock for deterministic tests.

    Time only moves when :meth:`advance` or :meth:`set` is called.

    Thread-safety:
        All operations are thread-safe.
    """

    _wall: datetime = field(default_factory=lambda: datetime(2024, 1, 1, tzinfo=UTC))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def utcnow(self) -> datetime:
        """Return current wall-clock time."""
        with self._lock:
            return self._wall

    def advance(self, delta: timedelta | float) -> datetime:
        """Move the clock forward.

        Args:
            delta: A timedelta or a number of seconds (must be non-negative).

        Returns:
            The new current time.

        Raises:
            ValueError: If delta is negative.
        """
        step = delta if isinstance(delta, timedelta) else timedelta(seconds=delta)
        if step < timedelta(0):
            msg = "Cannot advance time by a negative amount"
            raise ValueError(msg)
        with self._lock:
            self._wall += step
            return self._wall

    def set(self, value: datetime) -> None:
        """Set wall-clock time to an absolute value.

        Raises:
            ValueError: If value is not timezone-aware.
        """
        if value.tzinfo is None:
            msg = "Wall clock time must be timezone-aware"
            raise ValueError(msg)
        with self._lock:
            self._wall = value


__all__ = [
    "SYSTEM_CLOCK",
    "FakeClock",
    "SystemClock",
    "WallClock",
]
