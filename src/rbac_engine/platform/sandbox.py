"""Sandbox platform: the typed operations interpreted against SQLAlchemy Core tables.

The catalog lives in a SQLite database (in-memory for tests, a file under
``data_dir`` for local runs). Operations follow the managed platform's rules:
create-if-absent DDL, idempotent grants, ``ALL`` grants expanding to the
objects that exist right now, ``FUTURE`` grants applied when objects are
created later, and a single future-ownership grantee per object class.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

from sqlalchemy import and_, create_engine, delete, event, insert, select, update
from sqlalchemy.engine import Connection, Engine, URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool, StaticPool

from rbac_engine.exceptions import PlatformOperationFailed
from rbac_engine.models.enums import ObjectClass, PrincipalType
from rbac_engine.operations import (
    CreateDatabase,
    CreateDatabaseRole,
    CreateRole,
    CreateSchema,
    EnableManagedAccess,
    GrantOwnership,
    GrantPrivileges,
    GrantRole,
    Grantee,
    GranteeKind,
    Operation,
    RevokeRole,
    SetDefaultRole,
    TargetKind,
    render,
)
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
from rbac_engine.platform.catalog_schema import (
    account_roles,
    container_grants,
    database_roles,
    databases,
    future_grants,
    metadata,
    object_grants,
    objects,
    role_grants,
    schemas,
    users,
)


def _is_sqlite_memory(url: URL) -> bool:
    db = (url.database or "").strip()
    if not db or db == ":memory:":
        return True
    if db.startswith("file:") and (url.query or {}).get("mode") == "memory":
        return True
    return False


def _ensure_sqlite_parent_dir(url: URL) -> None:
    db = (url.database or "").strip()
    if not db or db == ":memory:" or db.startswith("file:"):
        return

    path = Path(db)
    if not path.is_absolute():
        path = (Path.cwd() / path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)


def build_sandbox_engine(url: str | URL = "sqlite://", *, echo: bool = False) -> Engine:
    sa_url = make_url(url)
    if sa_url.get_backend_name() != "sqlite":
        raise ValueError("The sandbox platform only supports sqlite:// URLs.")
    _ensure_sqlite_parent_dir(sa_url)

    engine = create_engine(
        sa_url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if _is_sqlite_memory(sa_url) else NullPool,
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            cur.execute("PRAGMA busy_timeout=30000")
        finally:
            cur.close()

    return engine


def _fail(message: str) -> PlatformOperationFailed:
    return PlatformOperationFailed(message)


def _split_arguments(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    return tuple(value.split(",")) if value else ()


def _insert_if_absent(conn: Connection, table, values: dict[str, Any]) -> bool:
    condition = and_(*(table.c[column] == value for column, value in values.items()))
    if conn.execute(select(table).where(condition).limit(1)).first() is not None:
        return False
    conn.execute(insert(table).values(**values))
    return True


class SandboxPlatform:
    """In-process platform backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        metadata.create_all(engine)
        self._handlers: dict[type, Callable[[Connection, Any], bool]] = {
            CreateDatabase: self._create_database,
            CreateSchema: self._create_schema,
            EnableManagedAccess: self._enable_managed_access,
            CreateRole: self._create_role,
            CreateDatabaseRole: self._create_database_role,
            GrantPrivileges: self._grant_privileges,
            GrantOwnership: self._grant_ownership,
            GrantRole: self._grant_role,
            RevokeRole: self._revoke_role,
            SetDefaultRole: self._set_default_role,
        }

    @classmethod
    def from_url(cls, url: str | URL = "sqlite://", *, echo: bool = False) -> "SandboxPlatform":
        return cls(build_sandbox_engine(url, echo=echo))

    @property
    def engine(self) -> Engine:
        return self._engine

    def close(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def execute(self, op: Operation) -> bool:
        handler = self._handlers.get(type(op))
        if handler is None:
            raise TypeError(f"Unsupported operation: {type(op).__name__}")
        try:
            with self._engine.begin() as conn:
                return handler(conn, op)
        except PlatformOperationFailed as exc:
            if exc.statement is None:
                exc.statement = render(op)
            raise
        except SQLAlchemyError as exc:
            raise PlatformOperationFailed(str(exc), statement=render(op)) from exc

    def _create_database(self, conn: Connection, op: CreateDatabase) -> bool:
        created = _insert_if_absent(conn, databases, {"name": op.name})
        if created:
            self._set_comment(conn, databases, {"name": op.name}, op.comment)
        return created

    def _create_schema(self, conn: Connection, op: CreateSchema) -> bool:
        self._require_database(conn, op.database)
        key = {"database": op.database, "name": op.schema}
        if self._exists(conn, schemas, key):
            return False
        conn.execute(insert(schemas).values(**key, managed_access=op.managed_access, comment=op.comment))
        return True

    def _enable_managed_access(self, conn: Connection, op: EnableManagedAccess) -> bool:
        row = self._require_schema(conn, op.database, op.schema)
        if row["managed_access"]:
            return False
        conn.execute(
            update(schemas)
            .where(schemas.c.database == op.database, schemas.c.name == op.schema)
            .values(managed_access=True)
        )
        return True

    def _create_role(self, conn: Connection, op: CreateRole) -> bool:
        created = _insert_if_absent(conn, account_roles, {"name": op.name})
        if created:
            self._set_comment(conn, account_roles, {"name": op.name}, op.comment)
        return created

    def _create_database_role(self, conn: Connection, op: CreateDatabaseRole) -> bool:
        self._require_database(conn, op.database)
        key = {"database": op.database, "name": op.name}
        created = _insert_if_absent(conn, database_roles, key)
        if created:
            self._set_comment(conn, database_roles, key, op.comment)
        return created

    def _grant_privileges(self, conn: Connection, op: GrantPrivileges) -> bool:
        target = op.target
        if op.grantee.kind is GranteeKind.USER:
            raise _fail("Privileges can only be granted to roles.")
        grantee = self._grantee_columns(conn, op.grantee)
        if op.grantee.kind is GranteeKind.DATABASE_ROLE and op.grantee.database != target.database:
            raise _fail(
                f"Database role '{op.grantee.database}.{op.grantee.name}' can only be granted "
                f"privileges on objects in database '{op.grantee.database}'."
            )

        rows: list[tuple[Any, dict[str, Any]]] = []
        if target.kind is TargetKind.DATABASE:
            self._require_database(conn, target.database)
            for privilege in op.privileges:
                rows.append((container_grants, {"database": target.database, "schema": "", "privilege": privilege}))
        elif target.kind is TargetKind.SCHEMA:
            self._require_schema(conn, target.database, target.schema)
            for privilege in op.privileges:
                rows.append(
                    (container_grants, {"database": target.database, "schema": target.schema, "privilege": privilege})
                )
        elif target.kind is TargetKind.FUTURE:
            self._require_schema(conn, target.database, target.schema)
            for privilege in op.privileges:
                rows.append(
                    (
                        future_grants,
                        {
                            "database": target.database,
                            "schema": target.schema,
                            "object_class": target.object_class.value,
                            "privilege": privilege,
                        },
                    )
                )
        else:
            if target.kind is TargetKind.ALL:
                self._require_schema(conn, target.database, target.schema)
                names = conn.execute(
                    select(objects.c.name).where(
                        objects.c.database == target.database,
                        objects.c.schema == target.schema,
                        objects.c.object_class == target.object_class.value,
                    )
                ).scalars().all()
            else:
                self._require_object(conn, target.database, target.schema, target.object_name, target.object_class)
                names = [target.object_name]
            for name in names:
                for privilege in op.privileges:
                    rows.append(
                        (
                            object_grants,
                            {
                                "database": target.database,
                                "schema": target.schema,
                                "object_name": name,
                                "object_class": target.object_class.value,
                                "privilege": privilege,
                            },
                        )
                    )

        changed = False
        for table, values in rows:
            changed = _insert_if_absent(conn, table, {**values, **grantee}) or changed
        return changed

    def _grant_ownership(self, conn: Connection, op: GrantOwnership) -> bool:
        target = op.target
        self._require_account_role(conn, op.role)

        if target.kind is TargetKind.FUTURE:
            self._require_schema(conn, target.database, target.schema)
            scope = and_(
                future_grants.c.database == target.database,
                future_grants.c.schema == target.schema,
                future_grants.c.object_class == target.object_class.value,
                future_grants.c.privilege == OWNERSHIP,
            )
            current = conn.execute(select(future_grants.c.grantee, future_grants.c.grantee_kind).where(scope)).all()
            if [(row.grantee, row.grantee_kind) for row in current] == [(op.role, GranteeKind.ROLE.value)]:
                return False
            conn.execute(delete(future_grants).where(scope))
            conn.execute(
                insert(future_grants).values(
                    database=target.database,
                    schema=target.schema,
                    object_class=target.object_class.value,
                    privilege=OWNERSHIP,
                    grantee=op.role,
                    grantee_kind=GranteeKind.ROLE.value,
                    grantee_database="",
                )
            )
            return True

        if target.kind is TargetKind.ALL:
            self._require_schema(conn, target.database, target.schema)
            names = conn.execute(
                select(objects.c.name).where(
                    objects.c.database == target.database,
                    objects.c.schema == target.schema,
                    objects.c.object_class == target.object_class.value,
                )
            ).scalars().all()
        elif target.kind is TargetKind.OBJECT:
            self._require_object(conn, target.database, target.schema, target.object_name, target.object_class)
            names = [target.object_name]
        else:
            raise _fail(f"Ownership transfer on {target.kind.value} targets is not supported.")

        changed = False
        for name in names:
            changed = self._transfer(conn, target.database, target.schema, name, target.object_class, op) or changed
        return changed

    def _transfer(
        self,
        conn: Connection,
        database: str,
        schema: str,
        name: str,
        object_class: ObjectClass,
        op: GrantOwnership,
    ) -> bool:
        where = (
            objects.c.database == database,
            objects.c.schema == schema,
            objects.c.name == name,
            objects.c.object_class == object_class.value,
        )
        owner = conn.execute(select(objects.c.owner).where(*where)).scalar_one()
        if owner == op.role:
            return False
        conn.execute(update(objects).where(*where).values(owner=op.role))
        if not op.copy_current_grants:
            conn.execute(
                delete(object_grants).where(
                    object_grants.c.database == database,
                    object_grants.c.schema == schema,
                    object_grants.c.object_name == name,
                    object_grants.c.object_class == object_class.value,
                )
            )
        return True

    def _grant_role(self, conn: Connection, op: GrantRole) -> bool:
        if op.role_database is not None:
            self._require_database_role(conn, op.role_database, op.role)
            if op.grantee.kind is GranteeKind.USER:
                raise _fail("Database roles cannot be granted to users.")
            if op.grantee.kind is GranteeKind.DATABASE_ROLE and op.grantee.database != op.role_database:
                raise _fail("Database roles can only be granted to database roles in the same database.")
        else:
            self._require_account_role(conn, op.role)
            if op.grantee.kind is GranteeKind.DATABASE_ROLE:
                raise _fail("Account roles cannot be granted to database roles.")
        grantee = self._grantee_columns(conn, op.grantee)

        if op.grantee.kind is not GranteeKind.USER and self._reaches(
            conn, (op.grantee.name, op.grantee.database or ""), (op.role, op.role_database or "")
        ):
            raise _fail(f"Granting '{op.role}' to '{op.grantee.name}' would create a cycle in the role hierarchy.")

        return _insert_if_absent(
            conn, role_grants, {"role": op.role, "role_database": op.role_database or "", **grantee}
        )

    def _revoke_role(self, conn: Connection, op: RevokeRole) -> bool:
        if op.role_database is not None:
            self._require_database_role(conn, op.role_database, op.role)
        else:
            self._require_account_role(conn, op.role)
        grantee = self._grantee_columns(conn, op.grantee)
        result = conn.execute(
            delete(role_grants).where(
                role_grants.c.role == op.role,
                role_grants.c.role_database == (op.role_database or ""),
                *(role_grants.c[column] == value for column, value in grantee.items()),
            )
        )
        return result.rowcount > 0

    def _set_default_role(self, conn: Connection, op: SetDefaultRole) -> bool:
        row = self._require_user(conn, op.user)
        self._require_account_role(conn, op.role)
        if row["default_role"] == op.role:
            return False
        conn.execute(update(users).where(users.c.name == op.user).values(default_role=op.role))
        return True

    # ------------------------------------------------------------------
    # Out-of-band changes (objects, users and manual drift)
    # ------------------------------------------------------------------

    def create_user(self, name: str, principal_type: PrincipalType | str = PrincipalType.PERSON) -> None:
        with self._engine.begin() as conn:
            _insert_if_absent(conn, users, {"name": name, "type": PrincipalType(principal_type).value})

    def create_object(
        self,
        database: str,
        schema: str,
        name: str,
        object_class: ObjectClass | str = ObjectClass.TABLE,
        *,
        owner: str | None = None,
        arguments: Iterable[str] | None = None,
    ) -> ObjectInfo:
        """Create an object the way a session role would, applying the schema's future grants.

        Functions and procedures take their ``arguments`` types; overloads are not modelled.
        """

        object_class = ObjectClass(object_class)
        signature = tuple(arguments or ()) if object_class.is_routine else None
        with self._engine.begin() as conn:
            self._require_schema(conn, database, schema)
            if self._exists(
                conn, objects, {"database": database, "schema": schema, "name": name, "object_class": object_class.value}
            ):
                raise _fail(f"Object '{database}.{schema}.{name}' already exists.")

            rules = conn.execute(
                select(future_grants).where(
                    future_grants.c.database == database,
                    future_grants.c.schema == schema,
                    future_grants.c.object_class == object_class.value,
                )
            ).mappings().all()
            resolved_owner = next((rule["grantee"] for rule in rules if rule["privilege"] == OWNERSHIP), owner)

            conn.execute(
                insert(objects).values(
                    database=database,
                    schema=schema,
                    name=name,
                    object_class=object_class.value,
                    owner=resolved_owner,
                    arguments=None if signature is None else ",".join(signature),
                )
            )
            for rule in rules:
                if rule["privilege"] == OWNERSHIP:
                    continue
                _insert_if_absent(
                    conn,
                    object_grants,
                    {
                        "database": database,
                        "schema": schema,
                        "object_name": name,
                        "object_class": object_class.value,
                        "privilege": rule["privilege"],
                        "grantee": rule["grantee"],
                        "grantee_kind": rule["grantee_kind"],
                        "grantee_database": rule["grantee_database"],
                    },
                )
        return ObjectInfo(name, object_class, resolved_owner, signature)

    def set_managed_access(self, database: str, schema: str, enabled: bool) -> None:
        with self._engine.begin() as conn:
            self._require_schema(conn, database, schema)
            conn.execute(
                update(schemas)
                .where(schemas.c.database == database, schemas.c.name == schema)
                .values(managed_access=enabled)
            )

    def revoke_future_grant(
        self, database: str, schema: str, object_class: ObjectClass | str, privilege: str, grantee: str
    ) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                delete(future_grants).where(
                    future_grants.c.database == database,
                    future_grants.c.schema == schema,
                    future_grants.c.object_class == ObjectClass(object_class).value,
                    future_grants.c.privilege == privilege,
                    future_grants.c.grantee == grantee,
                )
            )
        return result.rowcount

    def revoke_role(self, role: str, grantee: str, *, role_database: str | None = None) -> int:
        with self._engine.begin() as conn:
            result = conn.execute(
                delete(role_grants).where(
                    role_grants.c.role == role,
                    role_grants.c.role_database == (role_database or ""),
                    role_grants.c.grantee == grantee,
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def _query(self, stmt, mapper: Callable[[Any], Any], *, key: Callable[[Any], object] | None = None) -> CatalogQuery:
        def load() -> list[Any]:
            with self._engine.connect() as conn:
                return [mapper(row) for row in conn.execute(stmt).mappings()]

        return CatalogQuery(load, key=key)

    def database_exists(self, database: str) -> bool:
        with self._engine.connect() as conn:
            return self._exists(conn, databases, {"name": database})

    def schemas(self, database: str) -> CatalogQuery[SchemaInfo]:
        stmt = select(schemas.c.name, schemas.c.managed_access).where(schemas.c.database == database)
        return self._query(stmt, lambda r: SchemaInfo(r["name"], bool(r["managed_access"])))

    def database_roles(self, database: str) -> CatalogQuery[str]:
        stmt = select(database_roles.c.name).where(database_roles.c.database == database)
        return self._query(stmt, lambda r: r["name"])

    def account_roles(self) -> CatalogQuery[str]:
        return self._query(select(account_roles.c.name), lambda r: r["name"])

    def objects(self, database: str, schema: str) -> CatalogQuery[ObjectInfo]:
        stmt = select(objects).where(objects.c.database == database, objects.c.schema == schema)
        return self._query(
            stmt,
            lambda r: ObjectInfo(
                r["name"], ObjectClass(r["object_class"]), r["owner"], _split_arguments(r["arguments"])
            ),
            key=lambda o: (o.object_class.value, o.name),
        )

    def object_grants(self, database: str, schema: str) -> CatalogQuery[ObjectGrant]:
        stmt = select(object_grants).where(object_grants.c.database == database, object_grants.c.schema == schema)
        return self._query(
            stmt,
            lambda r: ObjectGrant(
                r["object_name"],
                ObjectClass(r["object_class"]),
                r["privilege"],
                r["grantee"],
                GranteeKind(r["grantee_kind"]),
            ),
            key=lambda g: (g.object_class.value, g.object_name, g.privilege, g.grantee),
        )

    def future_grants(self, database: str, schema: str) -> CatalogQuery[FutureGrant]:
        stmt = select(future_grants).where(future_grants.c.database == database, future_grants.c.schema == schema)
        return self._query(
            stmt,
            lambda r: FutureGrant(
                ObjectClass(r["object_class"]), r["privilege"], r["grantee"], GranteeKind(r["grantee_kind"])
            ),
            key=lambda g: (g.object_class.value, g.privilege, g.grantee),
        )

    def grants_of_role(self, role: str, *, database: str | None = None) -> CatalogQuery[RoleGrant]:
        stmt = select(role_grants).where(role_grants.c.role == role, role_grants.c.role_database == (database or ""))
        return self._query(
            stmt,
            lambda r: RoleGrant(
                r["role"], r["role_database"] or None, r["grantee"], GranteeKind(r["grantee_kind"])
            ),
            key=lambda g: (g.grantee_kind.value, g.grantee),
        )

    def grants_to_user(self, user: str) -> CatalogQuery[RoleGrant]:
        stmt = select(role_grants).where(
            role_grants.c.grantee == user,
            role_grants.c.grantee_kind == GranteeKind.USER.value,
            role_grants.c.role_database == "",
        )
        return self._query(
            stmt,
            lambda r: RoleGrant(r["role"], None, r["grantee"], GranteeKind.USER),
            key=lambda g: g.role,
        )

    def users(self) -> CatalogQuery[UserInfo]:
        return self._query(
            select(users),
            lambda r: UserInfo(r["name"], PrincipalType(r["type"]), r["default_role"]),
            key=lambda u: u.name,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def _exists(conn: Connection, table, key: dict[str, Any]) -> bool:
        condition = and_(*(table.c[column] == value for column, value in key.items()))
        return conn.execute(select(table).where(condition).limit(1)).first() is not None

    @staticmethod
    def _set_comment(conn: Connection, table, key: dict[str, Any], comment: str | None) -> None:
        if comment:
            condition = and_(*(table.c[column] == value for column, value in key.items()))
            conn.execute(update(table).where(condition).values(comment=comment))

    def _require_database(self, conn: Connection, database: str) -> None:
        if not self._exists(conn, databases, {"name": database}):
            raise _fail(f"Database '{database}' does not exist or not authorized.")

    def _require_schema(self, conn: Connection, database: str, schema: str | None):
        self._require_database(conn, database)
        row = conn.execute(
            select(schemas).where(schemas.c.database == database, schemas.c.name == schema)
        ).mappings().first()
        if row is None:
            raise _fail(f"Schema '{database}.{schema}' does not exist or not authorized.")
        return row

    def _require_object(
        self, conn: Connection, database: str, schema: str | None, name: str | None, object_class: ObjectClass
    ) -> None:
        self._require_schema(conn, database, schema)
        key = {"database": database, "schema": schema, "name": name, "object_class": object_class.value}
        if not self._exists(conn, objects, key):
            raise _fail(f"{object_class.value.title()} '{database}.{schema}.{name}' does not exist or not authorized.")

    def _require_account_role(self, conn: Connection, role: str) -> None:
        if not self._exists(conn, account_roles, {"name": role}):
            raise _fail(f"Role '{role}' does not exist or not authorized.")

    def _require_database_role(self, conn: Connection, database: str | None, role: str) -> None:
        if not self._exists(conn, database_roles, {"database": database, "name": role}):
            raise _fail(f"Database role '{database}.{role}' does not exist or not authorized.")

    def _require_user(self, conn: Connection, user: str):
        row = conn.execute(select(users).where(users.c.name == user)).mappings().first()
        if row is None:
            raise _fail(f"User '{user}' does not exist or not authorized.")
        return row

    def _grantee_columns(self, conn: Connection, grantee: Grantee) -> dict[str, str]:
        if grantee.kind is GranteeKind.ROLE:
            self._require_account_role(conn, grantee.name)
        elif grantee.kind is GranteeKind.DATABASE_ROLE:
            self._require_database_role(conn, grantee.database, grantee.name)
        else:
            self._require_user(conn, grantee.name)
        return {
            "grantee": grantee.name,
            "grantee_kind": grantee.kind.value,
            "grantee_database": grantee.database or "",
        }

    @staticmethod
    def _reaches(conn: Connection, start: tuple[str, str], goal: tuple[str, str]) -> bool:
        """True when ``goal`` is ``start`` or already holds ``start`` through role grants."""

        seen: set[tuple[str, str]] = set()
        frontier = [start]
        while frontier:
            node = frontier.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            rows = conn.execute(
                select(role_grants.c.grantee, role_grants.c.grantee_kind, role_grants.c.grantee_database).where(
                    role_grants.c.role == node[0], role_grants.c.role_database == node[1]
                )
            ).all()
            frontier.extend(
                (row.grantee, row.grantee_database) for row in rows if row.grantee_kind != GranteeKind.USER.value
            )
        return False


__all__ = ["OWNERSHIP", "SandboxPlatform", "build_sandbox_engine"]
