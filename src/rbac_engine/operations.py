"""Typed privilege-management operations and their statement rendering.

The core builds lists of these frozen values; they are turned into platform
statement text only by :func:`render`, at the execution boundary. The sandbox
platform interprets the values directly and never parses SQL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

from rbac_engine.exceptions import InvalidIdentifier
from rbac_engine.models.enums import ObjectClass
from rbac_engine.naming import validate_identifier

_PRIVILEGE_RE = re.compile(r"^[A-Z][A-Z ]*[A-Z]$")
_ARGUMENT_TYPE_RE = re.compile(r"^[A-Z][A-Z0-9_]*( [A-Z][A-Z0-9_]*)*$")


class TargetKind(str, Enum):
    DATABASE = "DATABASE"
    SCHEMA = "SCHEMA"
    ALL = "ALL"
    FUTURE = "FUTURE"
    OBJECT = "OBJECT"


class GranteeKind(str, Enum):
    ROLE = "ROLE"
    DATABASE_ROLE = "DATABASE ROLE"
    USER = "USER"


@dataclass(frozen=True)
class GrantTarget:
    kind: TargetKind
    database: str
    schema: str | None = None
    object_class: ObjectClass | None = None
    object_name: str | None = None
    # Argument types of a function or procedure target.
    arguments: tuple[str, ...] | None = None

    @classmethod
    def on_database(cls, database: str) -> "GrantTarget":
        return cls(TargetKind.DATABASE, database)

    @classmethod
    def on_schema(cls, database: str, schema: str) -> "GrantTarget":
        return cls(TargetKind.SCHEMA, database, schema)

    @classmethod
    def all_in_schema(cls, database: str, schema: str, object_class: ObjectClass) -> "GrantTarget":
        return cls(TargetKind.ALL, database, schema, object_class)

    @classmethod
    def future_in_schema(cls, database: str, schema: str, object_class: ObjectClass) -> "GrantTarget":
        return cls(TargetKind.FUTURE, database, schema, object_class)

    @classmethod
    def on_object(
        cls,
        database: str,
        schema: str,
        object_class: ObjectClass,
        object_name: str,
        arguments: tuple[str, ...] | None = None,
    ) -> "GrantTarget":
        if object_class.is_routine and arguments is None:
            arguments = ()
        return cls(TargetKind.OBJECT, database, schema, object_class, object_name, arguments)


@dataclass(frozen=True)
class Grantee:
    name: str
    kind: GranteeKind = GranteeKind.ROLE
    database: str | None = None

    @classmethod
    def role(cls, name: str) -> "Grantee":
        return cls(name, GranteeKind.ROLE)

    @classmethod
    def database_role(cls, database: str, name: str) -> "Grantee":
        return cls(name, GranteeKind.DATABASE_ROLE, database)

    @classmethod
    def user(cls, name: str) -> "Grantee":
        return cls(name, GranteeKind.USER)


@dataclass(frozen=True)
class CreateDatabase:
    name: str
    comment: str | None = None


@dataclass(frozen=True)
class CreateSchema:
    database: str
    schema: str
    managed_access: bool = True
    comment: str | None = None


@dataclass(frozen=True)
class EnableManagedAccess:
    database: str
    schema: str


@dataclass(frozen=True)
class CreateRole:
    name: str
    comment: str | None = None


@dataclass(frozen=True)
class CreateDatabaseRole:
    database: str
    name: str
    comment: str | None = None


@dataclass(frozen=True)
class GrantPrivileges:
    privileges: tuple[str, ...]
    target: GrantTarget
    grantee: Grantee


@dataclass(frozen=True)
class GrantOwnership:
    target: GrantTarget
    role: str
    copy_current_grants: bool = True


@dataclass(frozen=True)
class GrantRole:
    """Grant ``role`` (an account role, or a database role when ``role_database`` is set)."""

    role: str
    grantee: Grantee
    role_database: str | None = None


@dataclass(frozen=True)
class RevokeRole:
    role: str
    grantee: Grantee
    role_database: str | None = None


@dataclass(frozen=True)
class SetDefaultRole:
    user: str
    role: str


Operation = Union[
    CreateDatabase,
    CreateSchema,
    EnableManagedAccess,
    CreateRole,
    CreateDatabaseRole,
    GrantPrivileges,
    GrantOwnership,
    GrantRole,
    RevokeRole,
    SetDefaultRole,
]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _ident(*parts: str | None) -> str:
    return ".".join(validate_identifier(p) for p in parts if p is not None)


def _literal(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "''") + "'"


def _comment(text: str | None) -> str:
    return f" COMMENT = {_literal(text)}" if text else ""


def _privileges(privileges: tuple[str, ...]) -> str:
    if not privileges:
        raise ValueError("at least one privilege is required")
    for privilege in privileges:
        if not _PRIVILEGE_RE.match(privilege):
            raise ValueError(f"Invalid privilege: {privilege!r}")
    return ", ".join(privileges)


def _arguments(arguments: tuple[str, ...] | None) -> str:
    if arguments is None:
        return ""
    for argument in arguments:
        if not _ARGUMENT_TYPE_RE.match(argument):
            raise InvalidIdentifier(f"Invalid argument type: {argument!r}", identifier=argument)
    return "(" + ", ".join(arguments) + ")"


def _target(target: GrantTarget) -> str:
    if target.kind is TargetKind.DATABASE:
        return f"DATABASE {_ident(target.database)}"
    if target.kind is TargetKind.SCHEMA:
        return f"SCHEMA {_ident(target.database, target.schema)}"
    if target.object_class is None:
        raise ValueError(f"{target.kind.value} targets need an object class")
    if target.kind is TargetKind.OBJECT:
        return (
            f"{target.object_class.value} "
            f"{_ident(target.database, target.schema, target.object_name)}{_arguments(target.arguments)}"
        )
    return (
        f"{target.kind.value} {target.object_class.plural} IN SCHEMA "
        f"{_ident(target.database, target.schema)}"
    )


def _grantee(grantee: Grantee) -> str:
    if grantee.kind is GranteeKind.DATABASE_ROLE:
        return f"DATABASE ROLE {_ident(grantee.database, grantee.name)}"
    return f"{grantee.kind.value} {_ident(grantee.name)}"


def render(op: Operation) -> str:
    """Render ``op`` as a Snowflake statement."""

    if isinstance(op, CreateDatabase):
        return f"CREATE DATABASE IF NOT EXISTS {_ident(op.name)}{_comment(op.comment)}"
    if isinstance(op, CreateSchema):
        managed = " WITH MANAGED ACCESS" if op.managed_access else ""
        return (
            f"CREATE SCHEMA IF NOT EXISTS {_ident(op.database, op.schema)}"
            f"{managed}{_comment(op.comment)}"
        )
    if isinstance(op, EnableManagedAccess):
        return f"ALTER SCHEMA {_ident(op.database, op.schema)} ENABLE MANAGED ACCESS"
    if isinstance(op, CreateRole):
        return f"CREATE ROLE IF NOT EXISTS {_ident(op.name)}{_comment(op.comment)}"
    if isinstance(op, CreateDatabaseRole):
        return (
            f"CREATE DATABASE ROLE IF NOT EXISTS {_ident(op.database, op.name)}"
            f"{_comment(op.comment)}"
        )
    if isinstance(op, GrantPrivileges):
        return (
            f"GRANT {_privileges(op.privileges)} ON {_target(op.target)} "
            f"TO {_grantee(op.grantee)}"
        )
    if isinstance(op, GrantOwnership):
        copy = (
            " COPY CURRENT GRANTS"
            if op.copy_current_grants and op.target.kind is not TargetKind.FUTURE
            else ""
        )
        return f"GRANT OWNERSHIP ON {_target(op.target)} TO ROLE {_ident(op.role)}{copy}"
    if isinstance(op, GrantRole):
        if op.role_database is not None:
            role = f"DATABASE ROLE {_ident(op.role_database, op.role)}"
        else:
            role = f"ROLE {_ident(op.role)}"
        return f"GRANT {role} TO {_grantee(op.grantee)}"
    if isinstance(op, RevokeRole):
        if op.role_database is not None:
            role = f"DATABASE ROLE {_ident(op.role_database, op.role)}"
        else:
            role = f"ROLE {_ident(op.role)}"
        return f"REVOKE {role} FROM {_grantee(op.grantee)}"
    if isinstance(op, SetDefaultRole):
        return f"ALTER USER {_ident(op.user)} SET DEFAULT_ROLE = {_ident(op.role)}"
    raise TypeError(f"Unsupported operation: {type(op).__name__}")


__all__ = [
    "CreateDatabase",
    "CreateDatabaseRole",
    "CreateRole",
    "CreateSchema",
    "EnableManagedAccess",
    "GrantOwnership",
    "GrantPrivileges",
    "GrantRole",
    "GrantTarget",
    "Grantee",
    "GranteeKind",
    "Operation",
    "RevokeRole",
    "SetDefaultRole",
    "TargetKind",
    "render",
]
