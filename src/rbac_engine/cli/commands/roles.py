"""`rbac-engine roles` commands: access roles, service roles and principal grants."""

from __future__ import annotations

import typer

from ..common import engine_from_context, finish


def register(app: typer.Typer) -> None:
    roles_app = typer.Typer(help="Manage access roles, service wrapper roles and principal grants.")

    @roles_app.command("create-access", help="Create a domain access role.")
    def create_access(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Business domain."),
        comment: str | None = typer.Option(None, "--comment", help="Role comment."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.create_access_role(environment, domain, comment)
        finish(result)

    @roles_app.command("link-schema", help="Grant a schema's database role to a domain access role.")
    def link_schema(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Business domain."),
        database: str = typer.Argument(..., help="Logical database name."),
        schema: str = typer.Argument(..., help="Schema name."),
        access_level: str = typer.Option("READ", "--access-level", help="READ, or WRITE (DEV only)."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.link_schema_to_access_role(environment, domain, database, schema, access_level)
        finish(result)

    @roles_app.command("create-service", help="Create a service wrapper role for service accounts.")
    def create_service(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Business domain."),
        capability: str = typer.Argument(..., help="Capability level, e.g. ANALYST."),
        comment: str | None = typer.Option(None, "--comment", help="Role comment."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.create_service_role(environment, domain, capability, comment)
        finish(result)

    @roles_app.command("add-service-access", help="Add another domain's access role to a service role.")
    def add_service_access(
        ctx: typer.Context,
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Service role's domain."),
        capability: str = typer.Argument(..., help="Service role's capability level."),
        additional_domain: str = typer.Argument(..., help="Domain whose access role is added."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.add_access_to_service_role(environment, domain, capability, additional_domain)
        finish(result)

    @roles_app.command("grant-user", help="Grant a human user a domain access role and optional functional role.")
    def grant_user(
        ctx: typer.Context,
        user: str = typer.Argument(..., help="User name."),
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Business domain."),
        capability: str | None = typer.Option(None, "--capability", help="Functional role to grant as well."),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.grant_user_access(user, environment, domain, capability)
        finish(result)

    @roles_app.command("grant-service-account", help="Grant a service account its service wrapper role.")
    def grant_service_account(
        ctx: typer.Context,
        user: str = typer.Argument(..., help="Service account name."),
        environment: str = typer.Argument(..., help="Environment code."),
        domain: str = typer.Argument(..., help="Business domain."),
        capability: str = typer.Argument(..., help="Capability level."),
        set_default: bool = typer.Option(
            True,
            "--set-default/--no-set-default",
            help="Make the service role the account's default role.",
        ),
    ) -> None:
        with engine_from_context(ctx) as engine:
            result = engine.grant_service_account(user, environment, domain, capability, set_default)
        finish(result)

    app.add_typer(roles_app, name="roles")
