"""`rbac-engine provision` command."""

from __future__ import annotations

import typer

from ..common import engine_from_context, finish


def register(app: typer.Typer) -> None:
    @app.command(name="provision", help="Provision a schema with its database roles, grants and ownership.")
    def provision(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code: DEV, TST, UAT, PPE or PRD."),
        database: str = typer.Argument(..., help="Logical database name (without environment suffix)."),
        schema: str = typer.Argument(..., help="Schema name."),
        comment: str | None = typer.Option(None, "--comment", help="Schema comment."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.provision(environment, database, schema, comment)
        finish(result)
