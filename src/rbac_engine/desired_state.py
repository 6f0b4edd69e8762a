"""Desired-state model for one (environment, database, schema) container.

``build_desired_state`` is the single source of "what should exist". The
provisioner turns it into operations and the auditor diffs live state against
it, so both always agree on names, privilege sets and owners.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from rbac_engine.models.enums import AccessLevel, CapabilityLevel, Environment, ObjectClass
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme, database_name, normalize, validate_identifier

# Privileges held by the READ database role, per object class.
READ_PRIVILEGES: dict[ObjectClass, tuple[str, ...]] = {
    ObjectClass.TABLE: ("SELECT",),
    ObjectClass.VIEW: ("SELECT",),
    ObjectClass.MATERIALIZED_VIEW: ("SELECT",),
    ObjectClass.DYNAMIC_TABLE: ("SELECT",),
    ObjectClass.EXTERNAL_TABLE: ("SELECT",),
    ObjectClass.STREAM: ("SELECT",),
    ObjectClass.FUNCTION: ("USAGE",),
    ObjectClass.PROCEDURE: ("USAGE",),
    ObjectClass.SEQUENCE: ("USAGE",),
    ObjectClass.FILE_FORMAT: ("USAGE",),
    ObjectClass.STAGE: ("READ",),
}

# WRITE is the READ set plus these, DEV only.
WRITE_EXTRA_PRIVILEGES: dict[ObjectClass, tuple[str, ...]] = {
    ObjectClass.TABLE: ("INSERT", "UPDATE", "DELETE", "TRUNCATE", "REFERENCES"),
    ObjectClass.VIEW: ("INSERT", "UPDATE", "DELETE"),
    ObjectClass.STAGE: ("WRITE",),
}

OWNERSHIP_CLASSES: tuple[ObjectClass, ...] = (
    ObjectClass.TABLE,
    ObjectClass.VIEW,
    ObjectClass.MATERIALIZED_VIEW,
    ObjectClass.DYNAMIC_TABLE,
    ObjectClass.EXTERNAL_TABLE,
    ObjectClass.FUNCTION,
    ObjectClass.PROCEDURE,
    ObjectClass.SEQUENCE,
    ObjectClass.STAGE,
    ObjectClass.FILE_FORMAT,
    ObjectClass.STREAM,
    ObjectClass.TASK,
    ObjectClass.PIPE,
)

CREATE_CLASSES: tuple[ObjectClass, ...] = OWNERSHIP_CLASSES + (ObjectClass.TAG,)


class GrantScope(str, Enum):
    SCHEMA = "SCHEMA"
    CURRENT = "CURRENT"
    FUTURE = "FUTURE"


@dataclass(frozen=True)
class GrantEdge:
    """``privileges`` granted to ``grantee`` on the schema itself, or on current/future objects of one class."""

    grantee: str
    access_level: AccessLevel
    scope: GrantScope
    privileges: tuple[str, ...]
    object_class: ObjectClass | None = None


@dataclass(frozen=True)
class DatabaseRoleSpec:
    name: str
    access_level: AccessLevel
    comment: str


@dataclass(frozen=True)
class ResourceContainer:
    environment: Environment
    database: str
    schema: str
    physical_database: str
    object_owner: str
    managed_access: bool = True

    @property
    def qualified_name(self) -> str:
        return f"{self.physical_database}.{self.schema}"


@dataclass(frozen=True)
class DesiredState:
    container: ResourceContainer
    database_roles: tuple[DatabaseRoleSpec, ...]
    grants: tuple[GrantEdge, ...]
    ownership_classes: tuple[ObjectClass, ...]
    future_owner: str
    create_privileges: tuple[str, ...]
    create_grantee: str
    deployment_usage: bool
    end_user_role: str
    functional_roles: tuple[str, ...]
    system_admin_role: str

    @property
    def environment(self) -> Environment:
        return self.container.environment

    @property
    def read_role(self) -> DatabaseRoleSpec:
        return next(r for r in self.database_roles if r.access_level is AccessLevel.READ)

    @property
    def write_role(self) -> DatabaseRoleSpec | None:
        return next((r for r in self.database_roles if r.access_level is AccessLevel.WRITE), None)

    def grants_for(self, role_name: str, scope: GrantScope | None = None) -> tuple[GrantEdge, ...]:
        return tuple(
            edge
            for edge in self.grants
            if edge.grantee == role_name and (scope is None or edge.scope is scope)
        )


def privileges_for(access_level: AccessLevel) -> dict[ObjectClass, tuple[str, ...]]:
    """Per-class privilege set for a database role of ``access_level``."""

    if access_level is AccessLevel.READ:
        return dict(READ_PRIVILEGES)
    merged: dict[ObjectClass, tuple[str, ...]] = {}
    for object_class, privileges in READ_PRIVILEGES.items():
        merged[object_class] = privileges + WRITE_EXTRA_PRIVILEGES.get(object_class, ())
    return merged


def _grant_edges(role: DatabaseRoleSpec) -> list[GrantEdge]:
    edges = [GrantEdge(role.name, role.access_level, GrantScope.SCHEMA, ("USAGE",))]
    for object_class, privileges in privileges_for(role.access_level).items():
        for scope in (GrantScope.CURRENT, GrantScope.FUTURE):
            edges.append(GrantEdge(role.name, role.access_level, scope, privileges, object_class))
    return edges


def build_desired_state(
    environment: Environment | str,
    database: str,
    schema: str,
    naming: NamingScheme = DEFAULT_NAMING,
) -> DesiredState:
    """Compute the full target graph for one schema.

    Pure in its inputs: equal arguments always yield equal values, which is what
    lets provisioning and auditing share it.
    """

    env = Environment.parse(environment)
    logical_db = validate_identifier(normalize(database))
    schema_name = validate_identifier(normalize(schema))
    physical_db = database_name(env, logical_db)

    developer = naming.functional_role(env, CapabilityLevel.DEVELOPER)
    object_owner = developer if env.is_dev else naming.deployment_role

    levels = (AccessLevel.READ, AccessLevel.WRITE) if env.is_dev else (AccessLevel.READ,)
    roles = tuple(
        DatabaseRoleSpec(
            name=naming.database_role(env, logical_db, schema_name, level),
            access_level=level,
            comment=f"Database role: {level.value} access on {physical_db}.{schema_name}",
        )
        for level in levels
    )

    grants: list[GrantEdge] = []
    for role in roles:
        grants.extend(_grant_edges(role))

    return DesiredState(
        container=ResourceContainer(
            environment=env,
            database=logical_db,
            schema=schema_name,
            physical_database=physical_db,
            object_owner=object_owner,
        ),
        database_roles=roles,
        grants=tuple(grants),
        ownership_classes=OWNERSHIP_CLASSES,
        future_owner=object_owner,
        create_privileges=tuple(f"CREATE {cls.value}" for cls in CREATE_CLASSES),
        create_grantee=object_owner,
        deployment_usage=not env.is_dev,
        end_user_role=naming.functional_role(env, CapabilityLevel.END_USER),
        functional_roles=tuple(naming.functional_role(env, cap) for cap in CapabilityLevel.ladder()),
        system_admin_role=naming.system_admin_role,
    )


__all__ = [
    "CREATE_CLASSES",
    "OWNERSHIP_CLASSES",
    "READ_PRIVILEGES",
    "WRITE_EXTRA_PRIVILEGES",
    "DatabaseRoleSpec",
    "DesiredState",
    "GrantEdge",
    "GrantScope",
    "ResourceContainer",
    "build_desired_state",
    "privileges_for",
]
