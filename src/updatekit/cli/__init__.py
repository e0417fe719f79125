"""updatekit command-line interface.

``updatekit`` groups the run/status/init commands; ``run-migrations`` is the
single-command entry point used by deployment tooling.
"""

from __future__ import annotations

import typer

from .commands import init, run, status

app = typer.Typer(
    name="updatekit",
    help="Apply versioned, resumable update steps",
    add_completion=False,
    no_args_is_help=True,
)
app.command("run")(run)
app.command("status")(status)
app.command("init")(init)

run_migrations_app = typer.Typer(add_completion=False)
run_migrations_app.command()(run)


def main() -> None:
    app()


def run_migrations_main() -> None:
    run_migrations_app()


__all__ = ["app", "run_migrations_app", "main", "run_migrations_main"]
