"""`rbac-engine bootstrap` command."""

from __future__ import annotations

import typer

from ..common import engine_from_context, finish


def register(app: typer.Typer) -> None:
    @app.command(name="bootstrap", help="Create system roles and the functional role ladder per environment.")
    def bootstrap(
        ctx: typer.Context,
        environments: list[str] | None = typer.Argument(None, help="Environments to set up (default: all)."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.bootstrap(environments or None)
        finish(result)
