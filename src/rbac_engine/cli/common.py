"""Shared helpers for CLI command modules."""

from __future__ import annotations

import json
from typing import Any

import typer
from pydantic import BaseModel, ValidationError

from rbac_engine.engine import RbacEngine
from rbac_engine.settings import Settings, get_settings

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NON_COMPLIANT = 2

# Result statuses that map to a non-zero exit code.
_FAILED_STATUSES = {"ERROR", "CANCELLED", "PARTIAL"}


def settings_from_context(ctx: typer.Context) -> Settings:
    overrides: dict[str, Any] = dict((ctx.obj or {}).get("overrides") or {})
    try:
        return Settings(**overrides) if overrides else get_settings()
    except ValidationError as exc:
        typer.echo(f"error: invalid settings: {exc}", err=True)
        raise typer.Exit(code=EXIT_ERROR) from exc


def engine_from_context(ctx: typer.Context) -> RbacEngine:
    return RbacEngine.from_settings(settings_from_context(ctx))


def echo_result(result: BaseModel) -> None:
    typer.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))


def finish(result: BaseModel) -> None:
    """Print ``result`` and exit with the code its status maps to."""

    echo_result(result)
    status = getattr(result, "status", None)
    if status in _FAILED_STATUSES:
        raise typer.Exit(code=EXIT_ERROR)
    if status == "NON_COMPLIANT":
        raise typer.Exit(code=EXIT_NON_COMPLIANT)


__all__ = [
    "EXIT_ERROR",
    "EXIT_NON_COMPLIANT",
    "EXIT_OK",
    "echo_result",
    "engine_from_context",
    "finish",
    "settings_from_context",
]
