"""`rbac-engine audit` command."""

from __future__ import annotations

import typer

from ..common import engine_from_context, finish


def register(app: typer.Typer) -> None:
    @app.command(
        name="audit",
        help="Audit a database (or one schema) against the expected role hierarchy. Exits 2 when non-compliant.",
    )
    def audit(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        database: str = typer.Argument(..., help="Logical database name."),
        schema: str | None = typer.Option(None, "--schema", help="Audit only this schema."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            report = engine.audit(environment, database, schema)
        finish(report)
