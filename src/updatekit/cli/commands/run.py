"""Run pending update steps.

Usage:
    run-migrations                      # Apply everything pending
    run-migrations --module media       # Only the media module's steps
    run-migrations --step-limit 50      # Stop after 50 step invocations

Exit codes: 0 when no step failed, 1 when a step failed or was blocked by a
failed dependency, 2 on a configuration error such as cyclic dependencies.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from updatekit.cli.helpers import build_runner, configure_logging, console, print_json, resolve_settings
from updatekit.engine import PersistenceError, RegistrationError, SettingsError, StepResult, StepStatus

EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_CONFIG_ERROR = 2

_STATUS_STYLES = {
    StepStatus.COMPLETED: ("green", "done"),
    StepStatus.IN_PROGRESS: ("cyan", "in progress"),
    StepStatus.FAILED: ("red", "FAILED"),
    StepStatus.BLOCKED: ("yellow", "blocked"),
}


def exit_code_for(results: list[StepResult]) -> int:
    """Worst status across all attempted steps."""
    if any(result.status in (StepStatus.FAILED, StepStatus.BLOCKED) for result in results):
        return EXIT_STEP_FAILED
    return EXIT_OK


def _print_result(result: StepResult) -> None:
    style, label = _STATUS_STYLES[result.status]
    line = f"[{style}]{label:>11}[/{style}]  {result.label}"
    if result.description:
        line += f"  [dim]{escape(result.description)}[/dim]"
    if result.status is StepStatus.IN_PROGRESS:
        line += f"  ({result.fraction_complete:.0%})"
    console.print(line)
    if result.error:
        console.print(f"             [{style}]{escape(result.error)}[/{style}]")


def run(
    module: Optional[str] = typer.Option(None, "--module", help="Only run steps of this module"),
    step_limit: Optional[int] = typer.Option(
        None, "--step-limit", min=0, help="Maximum number of step invocations in this run"
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to updatekit.yaml"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database (overrides settings)"),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Apply pending update steps in dependency order."""
    try:
        settings = resolve_settings(config, db)
        configure_logging(settings.log_level, verbose)
        runner = build_runner(settings)
        limit = step_limit if step_limit is not None else settings.step_limit
        results = runner.run_all(module=module, step_limit=limit)
    except (RegistrationError, SettingsError) as exc:
        if json_output:
            print_json({"error": str(exc), "exit_code": EXIT_CONFIG_ERROR})
        else:
            console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc
    except PersistenceError as exc:
        if json_output:
            print_json({"error": str(exc), "exit_code": EXIT_STEP_FAILED})
        else:
            console.print(f"[red]State store error:[/red] {escape(str(exc))}")
        raise typer.Exit(EXIT_STEP_FAILED) from exc

    code = exit_code_for(results)
    remaining = len(runner.pending(module))

    if json_output:
        print_json(
            {
                "results": [result.to_dict() for result in results],
                "remaining": remaining,
                "exit_code": code,
            }
        )
        raise typer.Exit(code)

    if not results and not remaining:
        console.print("[green]No pending update steps.[/green]")
    for result in results:
        _print_result(result)
    if remaining:
        console.print(f"[dim]{remaining} step(s) still pending.[/dim]")
    raise typer.Exit(code)
