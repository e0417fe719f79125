"""Runner settings stored in updatekit.yaml.

Example::

    database: .updatekit/state.db
    sources:
      - mysite.updates
    available_modules:
      - media_crop
    log_level: INFO
    step_limit: null

Relative ``database`` paths resolve against the settings file's directory.
``UPDATEKIT_DB`` in the environment overrides ``database``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from updatekit.engine.errors import SettingsError

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "updatekit.yaml"
DATABASE_ENV_VAR = "UPDATEKIT_DB"
DEFAULT_DATABASE = Path(".updatekit") / "state.db"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    """Resolved runner settings."""

    database: Path = DEFAULT_DATABASE
    sources: list[str] = field(default_factory=list)
    available_modules: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    step_limit: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path) -> Settings:
        database = data.get("database", str(DEFAULT_DATABASE))
        if not isinstance(database, str) or not database.strip():
            raise SettingsError("'database' must be a non-empty path string")

        sources = _string_list(data, "sources")
        available = _string_list(data, "available_modules")

        log_level = str(data.get("log_level", "INFO")).upper()
        if log_level not in LOG_LEVELS:
            raise SettingsError(f"Unknown log_level '{log_level}'. Valid levels: {', '.join(LOG_LEVELS)}")

        step_limit = data.get("step_limit")
        if step_limit is not None and (
            isinstance(step_limit, bool) or not isinstance(step_limit, int) or step_limit < 0
        ):
            raise SettingsError(f"'step_limit' must be a non-negative integer, got {step_limit!r}")

        return cls(
            database=_resolve(Path(database.strip()), base_dir),
            sources=sources,
            available_modules=available,
            log_level=log_level,
            step_limit=step_limit,
        )


def _string_list(data: dict[str, Any], key: str) -> list[str]:
    value = data.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise SettingsError(f"'{key}' must be a list of strings")
    return [item.strip() for item in value if item.strip()]


def _resolve(path: Path, base_dir: Path) -> Path:
    return path if path.is_absolute() else base_dir / path


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from *path* (default: ./updatekit.yaml).

    A missing file yields defaults relative to the working directory.

    Raises:
        SettingsError: If the file is not valid YAML or has invalid values
    """
    settings_path = path if path is not None else Path.cwd() / SETTINGS_FILENAME
    base_dir = settings_path.parent

    data: Any = {}
    if settings_path.exists():
        yaml = YAML(typ="safe")
        try:
            with settings_path.open("r", encoding="utf-8") as handle:
                data = yaml.load(handle) or {}
        except YAMLError as exc:
            raise SettingsError(f"Invalid YAML in {settings_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SettingsError(f"{settings_path} must contain a mapping at the top level")
    elif path is not None:
        raise SettingsError(f"Settings file not found: {settings_path}")
    else:
        logger.debug("No %s found; using defaults", SETTINGS_FILENAME)

    settings = Settings.from_dict(data, base_dir)

    env_database = os.environ.get(DATABASE_ENV_VAR, "").strip()
    if env_database:
        settings.database = Path(env_database)
    return settings


def save_settings(path: Path, settings: Settings) -> None:
    """Write *settings* to *path*, preserving unrelated keys already there."""
    yaml = YAML()
    yaml.preserve_quotes = True

    data: Any = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.load(handle) or {}
    if not isinstance(data, dict):
        data = {}

    data["database"] = str(settings.database)
    data["sources"] = list(settings.sources)
    data["available_modules"] = list(settings.available_modules)
    data["log_level"] = settings.log_level
    data["step_limit"] = settings.step_limit

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.dump(data, handle)
