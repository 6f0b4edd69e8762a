"""Root ``rbac-engine`` command registration."""

from __future__ import annotations

import typer

from . import audit, bootstrap, provision, rectify, roles, version


def register_all(app: typer.Typer) -> None:
    for module in (
        audit,
        bootstrap,
        provision,
        rectify,
        roles,
        version,
    ):
        module.register(app)
