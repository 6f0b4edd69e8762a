"""SQLAlchemy Core schema for the sandbox catalog.

Optional identifier parts (schema of a database-level grant, database of an
account role) are stored as ``''`` rather than NULL so the unique constraints
collapse repeated grants.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Index, MetaData, String, Table, Text, UniqueConstraint

metadata = MetaData()

NAME = String(255)
KIND = String(32)

databases = Table(
    "databases",
    metadata,
    Column("name", NAME, primary_key=True),
    Column("comment", Text, nullable=True),
)

schemas = Table(
    "schemas",
    metadata,
    Column("database", NAME, primary_key=True),
    Column("name", NAME, primary_key=True),
    Column("managed_access", Boolean, nullable=False, default=False),
    Column("comment", Text, nullable=True),
)

account_roles = Table(
    "account_roles",
    metadata,
    Column("name", NAME, primary_key=True),
    Column("comment", Text, nullable=True),
)

database_roles = Table(
    "database_roles",
    metadata,
    Column("database", NAME, primary_key=True),
    Column("name", NAME, primary_key=True),
    Column("comment", Text, nullable=True),
)

users = Table(
    "users",
    metadata,
    Column("name", NAME, primary_key=True),
    Column("type", KIND, nullable=False),
    Column("default_role", NAME, nullable=True),
)

objects = Table(
    "objects",
    metadata,
    Column("database", NAME, primary_key=True),
    Column("schema", NAME, primary_key=True),
    Column("name", NAME, primary_key=True),
    Column("object_class", KIND, primary_key=True),
    Column("owner", NAME, nullable=True),
    # Comma-separated argument types; NULL for anything but functions and procedures.
    Column("arguments", Text, nullable=True),
)

# Grants on the database or schema container itself (USAGE, CREATE <class>).
container_grants = Table(
    "container_grants",
    metadata,
    Column("database", NAME, nullable=False),
    Column("schema", NAME, nullable=False, default=""),
    Column("privilege", KIND, nullable=False),
    Column("grantee", NAME, nullable=False),
    Column("grantee_kind", KIND, nullable=False),
    Column("grantee_database", NAME, nullable=False, default=""),
    UniqueConstraint(
        "database", "schema", "privilege", "grantee", "grantee_kind", "grantee_database",
        name="ux_container_grants",
    ),
)

object_grants = Table(
    "object_grants",
    metadata,
    Column("database", NAME, nullable=False),
    Column("schema", NAME, nullable=False),
    Column("object_name", NAME, nullable=False),
    Column("object_class", KIND, nullable=False),
    Column("privilege", KIND, nullable=False),
    Column("grantee", NAME, nullable=False),
    Column("grantee_kind", KIND, nullable=False),
    Column("grantee_database", NAME, nullable=False, default=""),
    UniqueConstraint(
        "database", "schema", "object_name", "object_class", "privilege",
        "grantee", "grantee_kind", "grantee_database",
        name="ux_object_grants",
    ),
    Index("ix_object_grants_schema", "database", "schema"),
)

future_grants = Table(
    "future_grants",
    metadata,
    Column("database", NAME, nullable=False),
    Column("schema", NAME, nullable=False),
    Column("object_class", KIND, nullable=False),
    Column("privilege", KIND, nullable=False),
    Column("grantee", NAME, nullable=False),
    Column("grantee_kind", KIND, nullable=False),
    Column("grantee_database", NAME, nullable=False, default=""),
    UniqueConstraint(
        "database", "schema", "object_class", "privilege",
        "grantee", "grantee_kind", "grantee_database",
        name="ux_future_grants",
    ),
)

role_grants = Table(
    "role_grants",
    metadata,
    Column("role", NAME, nullable=False),
    Column("role_database", NAME, nullable=False, default=""),
    Column("grantee", NAME, nullable=False),
    Column("grantee_kind", KIND, nullable=False),
    Column("grantee_database", NAME, nullable=False, default=""),
    UniqueConstraint(
        "role", "role_database", "grantee", "grantee_kind", "grantee_database",
        name="ux_role_grants",
    ),
    Index("ix_role_grants_grantee", "grantee", "grantee_kind"),
)

__all__ = [
    "account_roles",
    "container_grants",
    "database_roles",
    "databases",
    "future_grants",
    "metadata",
    "object_grants",
    "objects",
    "role_grants",
    "schemas",
    "users",
]
