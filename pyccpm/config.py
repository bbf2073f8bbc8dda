"""Configuration loading for pyccpm.

Settings come from three layers, later layers winning:

1. Built-in defaults
2. ``<home>/config.json`` (camelCase keys)
3. Environment variables (``CCPM_HOME``, ``CCPM_CLAUDE_DIR``,
   ``CCPM_CONFLICT_STRATEGY``, ``CCPM_MAX_WORKERS``)

There is no module-level config object; callers build a :class:`Config`
with :func:`load_config` and pass it to the components that need it.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .exceptions import ConfigError
from .models import ConflictStrategy
from .utils import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RETRY_DELAY,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"
STATE_FILE_NAME = "state.json"
REGISTRY_FILE_NAME = "registry.json"


@dataclass
class Config:
    """Resolved runtime configuration."""

    home_dir: Path = field(default_factory=lambda: Path.home() / ".ccpm")
    """Tool home holding state, registry and lock files"""

    target_dir: Path = field(default_factory=lambda: Path.home() / ".claude")
    """Target tree artifacts are deployed into"""

    conflict_strategy: ConflictStrategy = ConflictStrategy.PROMPT
    max_workers: int = DEFAULT_MAX_WORKERS
    type_based_extensions: tuple[str, ...] = (".md",)
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    state_write_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY

    @property
    def state_file(self) -> Path:
        return self.home_dir / STATE_FILE_NAME

    @property
    def registry_file(self) -> Path:
        return self.home_dir / REGISTRY_FILE_NAME

    @property
    def locks_dir(self) -> Path:
        return self.home_dir / "locks"

    @property
    def config_file(self) -> Path:
        return self.home_dir / CONFIG_FILE_NAME


def load_config(
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Config:
    """Build a Config from defaults, the config file and the environment.

    Args:
        config_path: Explicit config file. Defaults to ``<home>/config.json``.
        env: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Resolved Config

    Raises:
        ConfigError: If the config file is unreadable or a value is invalid
    """
    if env is None:
        env = os.environ

    config = Config()
    if env.get("CCPM_HOME"):
        config.home_dir = Path(env["CCPM_HOME"]).expanduser()

    path = config_path or config.config_file
    if path.exists():
        _apply_file(config, path)
    else:
        logger.debug(f"No config file at {path}, using defaults")

    if env.get("CCPM_CLAUDE_DIR"):
        config.target_dir = Path(env["CCPM_CLAUDE_DIR"]).expanduser()
    if env.get("CCPM_CONFLICT_STRATEGY"):
        config.conflict_strategy = _parse_strategy(env["CCPM_CONFLICT_STRATEGY"])
    if env.get("CCPM_MAX_WORKERS"):
        config.max_workers = _parse_positive_int(
            env["CCPM_MAX_WORKERS"], "CCPM_MAX_WORKERS"
        )

    return config


def _apply_file(config: Config, path: Path) -> None:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    logger.debug(f"Loaded config file {path}")

    if "targetDir" in data:
        config.target_dir = Path(data["targetDir"]).expanduser()
    if "conflictStrategy" in data:
        config.conflict_strategy = _parse_strategy(data["conflictStrategy"])
    if "maxWorkers" in data:
        config.max_workers = _parse_positive_int(data["maxWorkers"], "maxWorkers")
    if "typeBasedExtensions" in data:
        config.type_based_extensions = _parse_extensions(data["typeBasedExtensions"])
    if "lockTimeout" in data:
        config.lock_timeout = _parse_positive_float(data["lockTimeout"], "lockTimeout")
    if "stateWriteRetries" in data:
        config.state_write_retries = _parse_positive_int(
            data["stateWriteRetries"], "stateWriteRetries"
        )


def _parse_strategy(value: Any) -> ConflictStrategy:
    try:
        return ConflictStrategy(str(value).lower())
    except ValueError as e:
        choices = ", ".join(s.value for s in ConflictStrategy)
        raise ConfigError(
            f"Invalid conflict strategy '{value}' (expected one of: {choices})"
        ) from e


def _parse_positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if number < 1:
        raise ConfigError(f"{name} must be at least 1, got {number}")
    return number


def _parse_positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be a number, got {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _parse_extensions(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list) or not value:
        raise ConfigError("typeBasedExtensions must be a non-empty list")
    extensions = []
    for item in value:
        item = str(item).strip().lower()
        extensions.append(item if item.startswith(".") else f".{item}")
    return tuple(extensions)
