"""Show per-module watermarks, pending steps and in-flight progress."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from updatekit.cli.helpers import build_runner, configure_logging, console, print_json, resolve_settings
from updatekit.engine import PersistenceError, RegistrationError, SettingsError


def status(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to updatekit.yaml"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database (overrides settings)"),
    json_output: bool = typer.Option(False, "--json", help="Output status as JSON"),
) -> None:
    """Show what has been applied and what is pending."""
    try:
        settings = resolve_settings(config, db)
        configure_logging(settings.log_level)
        modules = build_runner(settings).status()
    except (RegistrationError, SettingsError, PersistenceError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc

    if json_output:
        print_json([module.to_dict() for module in modules])
        return

    table = Table(title="Update status")
    table.add_column("Module", style="bold")
    table.add_column("Applied", justify="right")
    table.add_column("Pending")
    table.add_column("In flight")
    for module in modules:
        table.add_row(
            module.module,
            str(module.watermark),
            ", ".join(str(version) for version in module.pending) or "-",
            ", ".join(f"{version} ({fraction:.0%})" for version, fraction in module.in_flight.items()) or "-",
        )
    console.print(table)
