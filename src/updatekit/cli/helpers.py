"""Shared CLI plumbing: console, logging setup and runner construction."""

from __future__ import annotations

import importlib
import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from updatekit.collaborators import ConfigModuleManager, SqliteConfigStore, SqliteEntityStore
from updatekit.engine import MigrationRunner, SettingsError, SqliteStore, StepRegistry, default_registry
from updatekit.settings import Settings, load_settings

console = Console()
error_console = Console(stderr=True)


def configure_logging(level: str, verbose: bool = False) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level, logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def resolve_settings(config: Path | None, db: Path | None) -> Settings:
    settings = load_settings(config)
    if db is not None:
        settings.database = db
    return settings


def import_sources(sources: list[str]) -> None:
    """Import step source modules so their decorators register steps."""
    for source in sources:
        try:
            importlib.import_module(source)
        except ImportError as exc:
            raise SettingsError(f"Cannot import step source '{source}': {exc}") from exc


def build_runner(settings: Settings, registry: StepRegistry | None = None) -> MigrationRunner:
    """Wire the SQLite stores and collaborators into a runner."""
    import_sources(settings.sources)
    config = SqliteConfigStore(settings.database)
    return MigrationRunner(
        registry if registry is not None else default_registry,
        SqliteStore(settings.database),
        config=config,
        entities=SqliteEntityStore(settings.database),
        modules=ConfigModuleManager(config, available=settings.available_modules),
    )
