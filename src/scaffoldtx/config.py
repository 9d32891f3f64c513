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

"""Configuration loading for scaffoldtx batches."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal, TypeAlias, cast

import yaml

from .clock import SYSTEM_CLOCK, WallClock
from .errors import ConfigError
from .filesystem import DEFAULT_VAULT_DIR, BackupVault, strategy_for
from .runtime.logging import configure_logging, prune_log_files

DEFAULT_CONFIG_PATH = Path("~/.config/scaffoldtx/config.toml")
DEFAULT_RETENTION_DAYS = 7

ENV_VAULT_DIR = "SCAFFOLDTX_VAULT_DIR"
ENV_RETENTION_DAYS = "SCAFFOLDTX_RETENTION_DAYS"
ENV_BACKUP_STRATEGY = "SCAFFOLDTX_BACKUP_STRATEGY"
ENV_LOG_DIR = "SCAFFOLDTX_LOG_DIR"
ENV_LOG_LEVEL = "SCAFFOLDTX_LOG_LEVEL"
ENV_LOG_FORMAT = "SCAFFOLDTX_LOG_FORMAT"

_ENV_FIELDS = {
    ENV_VAULT_DIR: "vault_dir",
    ENV_RETENTION_DAYS: "retention_days",
    ENV_BACKUP_STRATEGY: "backup_strategy",
    ENV_LOG_DIR: "log_dir",
    ENV_LOG_LEVEL: "log_level",
    ENV_LOG_FORMAT: "log_format",
}
_STRATEGIES = frozenset({"archive", "copy"})
_LOG_FORMATS = frozenset({"text", "json"})
_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})

BackupStrategyName: TypeAlias = Literal["archive", "copy"]
LogFormat: TypeAlias = Literal["text", "json"]


@dataclass(frozen=True, slots=True)
class ScaffoldConfig:
    """Resolved scaffoldtx configuration."""

    vault_dir: Path = DEFAULT_VAULT_DIR
    retention_days: int = DEFAULT_RETENTION_DAYS
    backup_strategy: BackupStrategyName = "archive"
    log_dir: Path | None = None
    log_level: str = "INFO"
    log_format: LogFormat = "text"

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    def open_vault(self, *, clock: WallClock = SYSTEM_CLOCK) -> BackupVault:
        """Open the configured vault, pruning entries past the retention window."""

        return BackupVault.open(
            self.vault_dir,
            retention=self.retention,
            strategy=strategy_for(self.backup_strategy),
            clock=clock,
        )

    def apply_logging(
        self, *, force: bool = False, clock: WallClock = SYSTEM_CLOCK
    ) -> None:
        """Configure logging and prune daily log files past the retention window."""

        configure_logging(
            level=self.log_level,
            json_mode=self.log_format == "json",
            log_dir=self.log_dir,
            force=force,
            clock=clock,
        )
        if self.log_dir is not None:
            _ = prune_log_files(self.log_dir, self.retention, clock=clock)


def load_config(
    path: Path | Mapping[str, Any] | None = None,
    overrides: Mapping[str, object] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ScaffoldConfig:
    """Load and validate the scaffoldtx configuration.

    Parameters
    ----------
    path:
        TOML or YAML file. ``None`` falls back to
        ``~/.config/scaffoldtx/config.toml``, which may be absent. Tests may
        pass an in-memory mapping to skip filesystem I/O.
    overrides:
        Highest-precedence values keyed by ``ScaffoldConfig`` field name.
        ``None`` values are ignored.
    env:
        Optional environment mapping. Defaults to :data:`os.environ`.

    Returns
    -------
    ScaffoldConfig
        The resolved configuration object.
    """

    env_map = os.environ if env is None else env

    if isinstance(path, Mapping):
        config: dict[str, object] = dict(path)
    else:
        config_path = path if path is not None else DEFAULT_CONFIG_PATH.expanduser()
        config = _load_config_file(config_path)

    for env_name, field_name in _ENV_FIELDS.items():
        if env_name in env_map:
            config[field_name] = env_map[env_name]

    if overrides is not None:
        for key, value in overrides.items():
            if value is not None:
                config[key] = value

    return _build_config(config)


def _load_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        if path == DEFAULT_CONFIG_PATH.expanduser():
            return {}
        msg = f"Configuration file not found: {path}"
        raise FileNotFoundError(msg)

    suffix = path.suffix.lower()
    data: object
    try:
        if suffix == ".toml" or not suffix:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        elif suffix in {".yaml", ".yml"}:
            with path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
        else:
            msg = f"Unsupported configuration format: {path.suffix}"
            raise ConfigError(msg)
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as error:
        msg = f"Failed to parse configuration file {path}: {error}"
        raise ConfigError(msg) from error

    if not isinstance(data, MutableMapping):
        msg = "Configuration file must contain a mapping at the root."
        raise ConfigError(msg)

    mapping = cast(MutableMapping[object, object], data)
    section = mapping.get("scaffoldtx", mapping)
    if not isinstance(section, Mapping):
        msg = "The [scaffoldtx] section must be a mapping."
        raise ConfigError(msg)

    typed_data: dict[str, object] = {}
    for key, value in cast(Mapping[object, object], section).items():
        if not isinstance(key, str):
            msg = f"Configuration keys must be strings (got {key!r})."
            raise ConfigError(msg)
        typed_data[key] = value
    return typed_data


def _build_config(config: Mapping[str, object]) -> ScaffoldConfig:
    unknown = sorted(set(config) - set(ScaffoldConfig.__dataclass_fields__))
    if unknown:
        msg = f"Unknown configuration keys: {', '.join(unknown)}"
        raise ConfigError(msg)

    vault_dir = _coerce_path(config.get("vault_dir"), "vault_dir") or DEFAULT_VAULT_DIR
    return ScaffoldConfig(
        vault_dir=vault_dir.expanduser(),
        retention_days=_coerce_retention(config.get("retention_days")),
        backup_strategy=cast(
            BackupStrategyName,
            _coerce_choice(
                config.get("backup_strategy"), "backup_strategy", _STRATEGIES, "archive"
            ),
        ),
        log_dir=_coerce_path(config.get("log_dir"), "log_dir"),
        log_level=_coerce_choice(
            config.get("log_level"), "log_level", _LOG_LEVELS, "INFO", upper=True
        ),
        log_format=cast(
            LogFormat,
            _coerce_choice(
                config.get("log_format"), "log_format", _LOG_FORMATS, "text"
            ),
        ),
    )


def _coerce_path(value: object, field_name: str) -> Path | None:
    if value is None or value == "":
        return None
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    msg = f"{field_name} must be a path-like value."
    raise ConfigError(msg)


def _coerce_retention(value: object) -> int:
    if value is None:
        return DEFAULT_RETENTION_DAYS
    if isinstance(value, bool):
        msg = "retention_days must be an integer."
        raise ConfigError(msg)
    if isinstance(value, int):
        days = value
    elif isinstance(value, str):
        try:
            days = int(value.strip())
        except ValueError as exc:
            msg = f"retention_days must be an integer: {value!r}"
            raise ConfigError(msg) from exc
    else:
        msg = "retention_days must be an integer."
        raise ConfigError(msg)

    if days < 0:
        msg = f"retention_days must be non-negative: {days}"
        raise ConfigError(msg)
    return days


def _coerce_choice(
    value: object,
    field_name: str,
    choices: frozenset[str],
    default: str,
    *,
    upper: bool = False,
) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        msg = f"{field_name} must be a string."
        raise ConfigError(msg)
    normalised = value.strip().upper() if upper else value.strip().lower()
    if normalised not in choices:
        options = ", ".join(sorted(choices))
        msg = f"{field_name} must be one of {options} (got {value!r})."
        raise ConfigError(msg)
    return normalised


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ConfigError",
    "ScaffoldConfig",
    "load_config",
]
