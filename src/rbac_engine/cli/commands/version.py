"""`rbac-engine version` command."""

from __future__ import annotations

import typer

from rbac_engine.version import __version__


def register(app: typer.Typer) -> None:
    @app.command(name="version", help="Print the installed version.")
    def version() -> None:
        typer.echo(__version__)
