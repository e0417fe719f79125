"""Write a starter updatekit.yaml in the current directory."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from updatekit.cli.helpers import console
from updatekit.settings import SETTINGS_FILENAME, Settings, save_settings


def init(
    source: Optional[List[str]] = typer.Option(
        None, "--source", help="Python module registering update steps (repeatable)"
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing settings file"),
) -> None:
    """Create updatekit.yaml with default settings."""
    path = Path.cwd() / SETTINGS_FILENAME
    if path.exists() and not force:
        console.print(f"[yellow]{SETTINGS_FILENAME} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    save_settings(path, Settings(sources=list(source or [])))
    console.print(f"[green]Wrote {path}[/green]")
