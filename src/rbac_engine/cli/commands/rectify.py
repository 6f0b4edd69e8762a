"""`rbac-engine rectify` command."""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError

from rbac_engine.models.results import ComplianceReport
from rbac_engine.naming import normalize

from ..common import EXIT_ERROR, engine_from_context, finish


def _load_report(path: Path, environment: str, database: str) -> ComplianceReport:
    try:
        report = ComplianceReport.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        typer.echo(f"error: cannot read report {path}: {exc}", err=True)
        raise typer.Exit(code=EXIT_ERROR) from exc

    if (report.environment, report.database) != (normalize(environment), normalize(database)):
        typer.echo(
            f"error: report is for {report.environment}/{report.database}, "
            f"not {normalize(environment)}/{normalize(database)}",
            err=True,
        )
        raise typer.Exit(code=EXIT_ERROR)
    return report


def register(app: typer.Typer) -> None:
    @app.command(
        name="rectify",
        help="Correct audit failures. Runs a fresh audit unless --report is given; dry run unless --apply.",
    )
    def rectify(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        database: str = typer.Argument(..., help="Logical database name."),
        schema: str | None = typer.Option(None, "--schema", help="Rectify only this schema."),
        report_path: Path | None = typer.Option(
            None,
            "--report",
            exists=True,
            dir_okay=False,
            readable=True,
            help="Saved JSON audit report to rectify from.",
        ),
        apply: bool = typer.Option(False, "--apply", help="Execute the corrective actions."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            if report_path is not None:
                report = _load_report(report_path, environment, database)
            else:
                report = engine.audit(environment, database, schema)
            result = engine.rectify(report, dry_run=not apply)
        finish(result)
