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

"""Termination-signal handling for a running batch.

A batch must not be cut off between a destructive step and its ledger entry.
:class:`ShutdownGuard` replaces the SIGINT/SIGTERM handlers for the duration
of a batch and only records that a signal arrived; the transaction checks
the guard between operations and rolls back cleanly.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Callable
from types import FrameType, TracebackType
from typing import Self, TypeAlias

from ..errors import BatchInterruptedError
from .logging import StructuredLogger, get_logger

_Handler: TypeAlias = Callable[[int, FrameType | None], object] | int | None

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


class ShutdownGuard:
    """Records termination signals instead of dying mid-batch.

    Handlers are installed only from the main thread (the interpreter
    forbids anything else) and the previous handlers are put back by
    :meth:`restore`. The guard can also be tripped programmatically with
    :meth:`trigger`.

    Example::

        with ShutdownGuard() as guard:
            for step in steps:
                guard.check()
                step()
    """

    def __init__(
        self,
        *,
        signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS,
        logger: StructuredLogger | None = None,
    ) -> None:
        super().__init__()
        self._signals = signals
        self._logger = logger if logger is not None else get_logger(__name__)
        self._triggered = threading.Event()
        self._signum: int | None = None
        self._previous: dict[signal.Signals, _Handler] = {}

    def install(self) -> bool:
        """Install the handlers. Returns False when not on the main thread."""

        if threading.current_thread() is not threading.main_thread():
            self._logger.debug(
                "Signal handlers not installed off the main thread.",
                event="signals.skipped",
            )
            return False
        for sig in self._signals:
            if sig not in self._previous:
                self._previous[sig] = signal.signal(sig, self._handle_signal)
        return True

    def restore(self) -> None:
        """Put back the handlers that were active before :meth:`install`."""

        for sig, previous in self._previous.items():
            _ = signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def trigger(self, signum: int = signal.SIGTERM) -> None:
        """Record a termination request (for testing or programmatic control)."""

        if self._signum is None:
            self._signum = signum
        self._triggered.set()

    @property
    def triggered(self) -> bool:
        """True if a termination signal has been recorded."""
        return self._triggered.is_set()

    @property
    def signum(self) -> int | None:
        """The first signal recorded, if any."""
        return self._signum

    def check(self) -> None:
        """Raise :class:`BatchInterruptedError` if a signal has arrived."""

        if self._signum is not None and self._triggered.is_set():
            raise BatchInterruptedError(self._signum)

    def __enter__(self) -> Self:
        _ = self.install()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.restore()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        _ = frame
        self._logger.warning(
            "Termination signal received.",
            event="signals.received",
            context={"signum": signum},
        )
        self.trigger(signum)


__all__ = ["DEFAULT_SIGNALS", "ShutdownGuard"]
