"""Root ``rbac-engine`` CLI app."""

from __future__ import annotations

import typer

from .commands import register_all

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Provision, audit and rectify the role hierarchy of a data platform.",
)


@app.callback()
def _main(
    ctx: typer.Context,
    platform_url: str | None = typer.Option(
        None,
        "--platform-url",
        help="Platform URL (sqlite:// for the sandbox, snowflake:// for a live account).",
    ),
    log_format: str | None = typer.Option(None, "--log-format", help="Log output format: text or ndjson."),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ...)."),
) -> None:
    overrides = {
        key: value
        for key, value in (
            ("platform_url", platform_url),
            ("log_format", log_format),
            ("log_level", log_level),
        )
        if value is not None
    }
    ctx.obj = {"overrides": overrides}
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


register_all(app)


def main() -> None:
    app()


__all__ = ["app", "main"]
