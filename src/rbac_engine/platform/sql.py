"""Live platform access through a SQLAlchemy engine (``snowflake://`` URLs).

Operations are rendered to statement text and sent with ``exec_driver_sql``
so comment text is never parsed for bind parameters. Catalog reads use
``SHOW`` commands and the per-database ``INFORMATION_SCHEMA`` views; every
identifier interpolated into them has already passed ``validate_identifier``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, URL, make_url
from sqlalchemy.exc import DBAPIError

from rbac_engine.exceptions import PlatformOperationFailed
from rbac_engine.models.enums import ObjectClass, PrincipalType
from rbac_engine.naming import validate_identifier
from rbac_engine.operations import GranteeKind, Operation, render
from rbac_engine.platform.base import (
    OWNERSHIP,
    CatalogQuery,
    FutureGrant,
    ObjectGrant,
    ObjectInfo,
    RoleGrant,
    SchemaInfo,
    UserInfo,
)

_TABLE_TYPES: dict[str, ObjectClass] = {
    "BASE TABLE": ObjectClass.TABLE,
    "VIEW": ObjectClass.VIEW,
    "MATERIALIZED VIEW": ObjectClass.MATERIALIZED_VIEW,
    "EXTERNAL TABLE": ObjectClass.EXTERNAL_TABLE,
}

# (information_schema view, name column, owner column, object class)
_INFORMATION_SCHEMA_OBJECTS: tuple[tuple[str, str, str, ObjectClass], ...] = (
    ("SEQUENCES", "SEQUENCE_NAME", "SEQUENCE_OWNER", ObjectClass.SEQUENCE),
    ("STAGES", "STAGE_NAME", "STAGE_OWNER", ObjectClass.STAGE),
    ("FILE_FORMATS", "FILE_FORMAT_NAME", "FILE_FORMAT_OWNER", ObjectClass.FILE_FORMAT),
    ("PIPES", "PIPE_NAME", "PIPE_OWNER", ObjectClass.PIPE),
)

# (information_schema view, name column, owner column, object class) for routines
_INFORMATION_SCHEMA_ROUTINES: tuple[tuple[str, str, str, ObjectClass], ...] = (
    ("FUNCTIONS", "FUNCTION_NAME", "FUNCTION_OWNER", ObjectClass.FUNCTION),
    ("PROCEDURES", "PROCEDURE_NAME", "PROCEDURE_OWNER", ObjectClass.PROCEDURE),
)

_SHOW_OBJECTS: tuple[tuple[str, ObjectClass], ...] = (
    ("STREAMS", ObjectClass.STREAM),
    ("TASKS", ObjectClass.TASK),
)

_SKIPPED_SCHEMAS = {"INFORMATION_SCHEMA"}


def _unqualified(name: str) -> str:
    return name.rsplit(".", 1)[-1].strip('"')


def argument_types(signature: str | None) -> tuple[str, ...]:
    """``(A NUMBER, B VARCHAR)`` from ``ARGUMENT_SIGNATURE`` becomes ``("NUMBER", "VARCHAR")``."""

    inner = (signature or "").strip().removeprefix("(").removesuffix(")").strip()
    if not inner:
        return ()
    return tuple(" ".join(part.split()[1:]).upper() for part in inner.split(","))


def _grantee_kind(value: Any) -> GranteeKind:
    text = str(value or "ROLE").upper().replace("_", " ")
    if text == "DATABASE ROLE":
        return GranteeKind.DATABASE_ROLE
    if text == "USER":
        return GranteeKind.USER
    return GranteeKind.ROLE


def _lower_keys(row: Any) -> dict[str, Any]:
    return {str(key).lower(): value for key, value in dict(row).items()}


def build_platform_engine(
    url: str | URL,
    *,
    echo: bool = False,
    statement_timeout_seconds: int | None = None,
) -> Engine:
    engine = create_engine(make_url(url), echo=echo, pool_pre_ping=True)

    if statement_timeout_seconds:
        timeout = int(statement_timeout_seconds)

        @event.listens_for(engine, "connect")
        def _session_timeout(dbapi_conn, _):
            cur = dbapi_conn.cursor()
            try:
                cur.execute(f"ALTER SESSION SET STATEMENT_TIMEOUT_IN_SECONDS = {timeout}")
            finally:
                cur.close()

    return engine


class SqlPlatform:
    """Platform implementation for a live account reached through SQLAlchemy."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    def execute(self, op: Operation) -> None:
        statement = render(op)
        try:
            with self._engine.connect() as conn:
                conn.exec_driver_sql(statement)
                conn.commit()
        except DBAPIError as exc:
            raise PlatformOperationFailed(str(exc.orig or exc), statement=statement) from exc
        return None

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def _fetch(self, statement: str) -> list[dict[str, Any]]:
        try:
            with self._engine.connect() as conn:
                return [_lower_keys(row) for row in conn.exec_driver_sql(statement).mappings()]
        except DBAPIError as exc:
            raise PlatformOperationFailed(str(exc.orig or exc), statement=statement) from exc

    def _query(
        self,
        loader: Callable[[], Iterable[Any]],
        *,
        key: Callable[[Any], object] | None = None,
    ) -> CatalogQuery:
        return CatalogQuery(loader, key=key)

    def database_exists(self, database: str) -> bool:
        db = validate_identifier(database)
        rows = self._fetch(f"SHOW DATABASES LIKE '{db}'")
        return any(row.get("name") == db for row in rows)

    def schemas(self, database: str) -> CatalogQuery[SchemaInfo]:
        db = validate_identifier(database)

        def load() -> list[SchemaInfo]:
            rows = self._fetch(f"SELECT SCHEMA_NAME, IS_MANAGED_ACCESS FROM {db}.INFORMATION_SCHEMA.SCHEMATA")
            return [
                SchemaInfo(row["schema_name"], str(row["is_managed_access"]).upper() == "YES")
                for row in rows
                if row["schema_name"] not in _SKIPPED_SCHEMAS
            ]

        return self._query(load)

    def database_roles(self, database: str) -> CatalogQuery[str]:
        db = validate_identifier(database)
        return self._query(lambda: [row["name"] for row in self._fetch(f"SHOW DATABASE ROLES IN DATABASE {db}")])

    def account_roles(self) -> CatalogQuery[str]:
        return self._query(lambda: [row["name"] for row in self._fetch("SHOW ROLES")])

    def objects(self, database: str, schema: str) -> CatalogQuery[ObjectInfo]:
        db = validate_identifier(database)
        sch = validate_identifier(schema)

        def load() -> list[ObjectInfo]:
            found: list[ObjectInfo] = []
            rows = self._fetch(
                "SELECT TABLE_NAME, TABLE_TYPE, TABLE_OWNER, IS_DYNAMIC "
                f"FROM {db}.INFORMATION_SCHEMA.TABLES WHERE TABLE_SCHEMA = '{sch}'"
            )
            for row in rows:
                if str(row.get("is_dynamic") or "").upper() == "YES":
                    object_class = ObjectClass.DYNAMIC_TABLE
                else:
                    object_class = _TABLE_TYPES.get(str(row["table_type"]).upper())
                if object_class is not None:
                    found.append(ObjectInfo(row["table_name"], object_class, row["table_owner"]))

            for view, name_col, owner_col, object_class in _INFORMATION_SCHEMA_OBJECTS:
                rows = self._fetch(
                    f"SELECT {name_col}, {owner_col} FROM {db}.INFORMATION_SCHEMA.{view} "
                    f"WHERE {name_col.replace('_NAME', '_SCHEMA')} = '{sch}'"
                )
                found.extend(
                    ObjectInfo(row[name_col.lower()], object_class, row[owner_col.lower()]) for row in rows
                )

            for view, name_col, owner_col, object_class in _INFORMATION_SCHEMA_ROUTINES:
                rows = self._fetch(
                    f"SELECT {name_col}, {owner_col}, ARGUMENT_SIGNATURE FROM {db}.INFORMATION_SCHEMA.{view} "
                    f"WHERE {name_col.replace('_NAME', '_SCHEMA')} = '{sch}'"
                )
                found.extend(
                    ObjectInfo(
                        row[name_col.lower()],
                        object_class,
                        row[owner_col.lower()],
                        argument_types(row["argument_signature"]),
                    )
                    for row in rows
                )

            for keyword, object_class in _SHOW_OBJECTS:
                rows = self._fetch(f"SHOW {keyword} IN SCHEMA {db}.{sch}")
                found.extend(ObjectInfo(row["name"], object_class, row.get("owner")) for row in rows)
            return found

        return self._query(load, key=lambda o: (o.object_class.value, o.name))

    def object_grants(self, database: str, schema: str) -> CatalogQuery[ObjectGrant]:
        db = validate_identifier(database)
        sch = validate_identifier(schema)

        def load() -> list[ObjectGrant]:
            db_roles = set(self.database_roles(db))
            rows = self._fetch(
                "SELECT GRANTEE, OBJECT_NAME, OBJECT_TYPE, PRIVILEGE_TYPE "
                f"FROM {db}.INFORMATION_SCHEMA.OBJECT_PRIVILEGES WHERE OBJECT_SCHEMA = '{sch}'"
            )
            grants: list[ObjectGrant] = []
            for row in rows:
                if row["privilege_type"] == OWNERSHIP or row["object_type"] == "SCHEMA":
                    continue
                grantee = _unqualified(row["grantee"])
                grants.append(
                    ObjectGrant(
                        row["object_name"],
                        ObjectClass.from_keyword(row["object_type"]),
                        row["privilege_type"],
                        grantee,
                        GranteeKind.DATABASE_ROLE if grantee in db_roles else GranteeKind.ROLE,
                    )
                )
            return grants

        return self._query(load, key=lambda g: (g.object_class.value, g.object_name, g.privilege, g.grantee))

    def future_grants(self, database: str, schema: str) -> CatalogQuery[FutureGrant]:
        db = validate_identifier(database)
        sch = validate_identifier(schema)

        def load() -> list[FutureGrant]:
            rows = self._fetch(f"SHOW FUTURE GRANTS IN SCHEMA {db}.{sch}")
            return [
                FutureGrant(
                    ObjectClass.from_keyword(row["grant_on"]),
                    row["privilege"],
                    _unqualified(row["grantee_name"]),
                    _grantee_kind(row.get("grant_to")),
                )
                for row in rows
            ]

        return self._query(load, key=lambda g: (g.object_class.value, g.privilege, g.grantee))

    def grants_of_role(self, role: str, *, database: str | None = None) -> CatalogQuery[RoleGrant]:
        name = validate_identifier(role)
        if database is not None:
            statement = f"SHOW GRANTS OF DATABASE ROLE {validate_identifier(database)}.{name}"
        else:
            statement = f"SHOW GRANTS OF ROLE {name}"

        def load() -> list[RoleGrant]:
            return [
                RoleGrant(name, database, _unqualified(row["grantee_name"]), _grantee_kind(row.get("granted_to")))
                for row in self._fetch(statement)
            ]

        return self._query(load, key=lambda g: (g.grantee_kind.value, g.grantee))

    def grants_to_user(self, user: str) -> CatalogQuery[RoleGrant]:
        name = validate_identifier(user)

        def load() -> list[RoleGrant]:
            # Database roles cannot be granted to users, so every row is an account role.
            return [
                RoleGrant(_unqualified(row["role"]), None, name, GranteeKind.USER)
                for row in self._fetch(f"SHOW GRANTS TO USER {name}")
            ]

        return self._query(load, key=lambda g: g.role)

    def users(self) -> CatalogQuery[UserInfo]:
        def load() -> list[UserInfo]:
            found: list[UserInfo] = []
            for row in self._fetch("SHOW USERS"):
                raw_type = str(row.get("type") or "").upper()
                principal_type = PrincipalType(raw_type) if raw_type in PrincipalType.__members__ else PrincipalType.PERSON
                found.append(UserInfo(row["name"], principal_type, row.get("default_role") or None))
            return found

        return self._query(load, key=lambda u: u.name)


__all__ = ["SqlPlatform", "argument_types", "build_platform_engine"]
