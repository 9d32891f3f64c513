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

"""Structured logging helpers for :mod:`scaffoldtx`.

Every state transition of a batch is emitted as a record carrying an
``event`` name, the batch ``operation_id`` and a ``context`` mapping. The
JSON formatter renders these as ``{timestamp, level, operation_id, message,
event, context}`` objects, one per line.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from collections.abc import Mapping, MutableMapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, cast

if sys.version_info >= (3, 12):
    from typing import override
else:
    from typing_extensions import override

from ..clock import SYSTEM_CLOCK, WallClock

__all__ = [
    "LOG_FILE_PATTERN",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "log_file_path",
    "prune_log_files",
]

_LOG_LEVEL_ENV = "SCAFFOLDTX_LOG_LEVEL"
_LOG_FORMAT_ENV = "SCAFFOLDTX_LOG_FORMAT"
_LEVEL_NAMES = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}

LOG_FILE_PATTERN = "scaffold-*.log"

_logger = logging.getLogger(__name__)


class StructuredLogger(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter enforcing the scaffoldtx event schema.

    Each call must name an ``event``. Keyword ``context`` and any ``extra``
    keys are merged over the adapter's bound context.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        operation_id: str | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        base_context = dict(context) if context is not None else {}
        super().__init__(logger, base_context)
        self.operation_id = operation_id

    def bind(
        self, *, operation_id: str | None = None, **context: object
    ) -> StructuredLogger:
        """Return a new adapter with ``context`` merged into the baseline payload.

        ``operation_id`` replaces the bound id when given.
        """

        base_extra = cast(Mapping[str, object], self.extra)
        merged: dict[str, object] = {**dict(base_extra), **context}
        return type(self)(
            self.logger,
            operation_id=(
                operation_id if operation_id is not None else self.operation_id
            ),
            context=merged,
        )

    @override
    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra_obj = kwargs.setdefault("extra", {})
        if extra_obj is None:
            extra_obj = {}
            kwargs["extra"] = extra_obj
        if not isinstance(extra_obj, MutableMapping):
            raise TypeError(
                "Structured logs require a mutable mapping for extra context."
            )

        extra_mapping = cast(MutableMapping[str, object], extra_obj)
        context_payload: dict[str, object] = dict(
            cast(Mapping[str, object], self.extra)
        )

        inline_context = kwargs.pop("context", None)
        if inline_context is not None:
            if not isinstance(inline_context, Mapping):
                raise TypeError("context must be a mapping when provided.")
            context_payload.update(cast(Mapping[str, object], inline_context))

        for key in tuple(extra_mapping.keys()):
            if key == "event":
                continue
            context_payload[key] = extra_mapping.pop(key)

        event_obj = kwargs.pop("event", None)
        if event_obj is None:
            event_obj = extra_mapping.pop("event", None)
        if not isinstance(event_obj, str):
            raise TypeError("Structured logs require an 'event' field.")

        extra_mapping.clear()
        extra_mapping.update(
            {
                "event": event_obj,
                "operation_id": self.operation_id,
                "context": context_payload,
            }
        )
        return msg, kwargs


def get_logger(
    name: str,
    *,
    operation_id: str | None = None,
    context: Mapping[str, object] | None = None,
) -> StructuredLogger:
    """Return a :class:`StructuredLogger` scoped to ``name``."""

    return StructuredLogger(
        logging.getLogger(name), operation_id=operation_id, context=context
    )


def log_file_path(log_dir: Path, *, clock: WallClock = SYSTEM_CLOCK) -> Path:
    """Return the daily log file for ``clock``'s current date."""

    return log_dir / f"scaffold-{clock.utcnow().strftime('%Y-%m-%d')}.log"


def configure_logging(
    *,
    level: int | str | None = None,
    json_mode: bool | None = None,
    log_dir: Path | None = None,
    env: Mapping[str, str] | None = None,
    force: bool = False,
    clock: WallClock = SYSTEM_CLOCK,
) -> None:
    """Configure the root logger with sensible defaults.

    ``level`` and ``json_mode`` can be supplied directly or via the
    ``SCAFFOLDTX_LOG_LEVEL`` and ``SCAFFOLDTX_LOG_FORMAT`` environment
    variables (``json`` enables structured output on stderr, ``text`` keeps
    the plain formatter). When ``log_dir`` is given, records are additionally
    appended as JSON lines to ``<log_dir>/scaffold-YYYY-MM-DD.log``.

    Duplicate handlers are not installed when the host application already
    configured logging, unless ``force=True``.
    """

    env = env or os.environ

    resolved_level = _coerce_level(level or env.get(_LOG_LEVEL_ENV) or logging.INFO)

    if json_mode is None:
        format_value = env.get(_LOG_FORMAT_ENV)
        json_mode = format_value is not None and format_value.lower() == "json"

    root_logger = logging.getLogger()

    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    handlers: dict[str, dict[str, object]] = {
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "json" if json_mode else "text",
        }
    }
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(log_file_path(log_dir, clock=clock)),
            "encoding": "utf-8",
            "formatter": "json",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "text": {
                    "format": (
                        "%(asctime)s %(levelname)s %(name)s [%(operation_id)s] "
                        "%(event)s %(message)s %(context)s"
                    ),
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                    "defaults": {"event": "-", "operation_id": "-", "context": {}},
                },
                "json": {
                    "()": "scaffoldtx.runtime.logging._JsonFormatter",
                },
            },
            "handlers": handlers,
            "root": {
                "handlers": list(handlers),
                "level": resolved_level,
            },
        }
    )


def prune_log_files(
    log_dir: Path,
    max_age: timedelta,
    *,
    clock: WallClock = SYSTEM_CLOCK,
) -> tuple[Path, ...]:
    """Delete daily log files whose mtime is older than ``max_age``.

    Failures to stat or delete a file are logged and skipped.

    Returns:
        The paths that were removed.
    """

    if not log_dir.is_dir():
        return ()

    now = clock.utcnow()
    removed: list[Path] = []
    for log_file in sorted(log_dir.glob(LOG_FILE_PATTERN)):
        try:
            modified = datetime.fromtimestamp(log_file.stat().st_mtime, tz=UTC)
            if now - modified <= max_age:
                continue
            log_file.unlink()
        except OSError:
            _logger.warning(
                "Failed to prune log file %s", log_file, exc_info=True
            )
            continue
        removed.append(log_file)
    return tuple(removed)


class _JsonFormatter(logging.Formatter):
    """Formatter that renders structured records as compact JSON."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "operation_id": getattr(record, "operation_id", None),
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, separators=(",", ":"))


def _json_default(value: Any) -> Any:  # noqa: ANN401
    """Fallback serializer: paths and other values render as strings."""

    if isinstance(value, Path):
        return str(value)
    return repr(value)


def _coerce_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        try:
            return _LEVEL_NAMES[level.upper()]
        except KeyError:
            raise TypeError(f"Unknown log level: {level!r}") from None
    return logging.INFO
