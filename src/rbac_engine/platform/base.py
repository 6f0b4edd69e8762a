"""Platform boundary: typed operations in, catalog rows out.

The engine core only talks to a :class:`Platform`. Catalog reads return
:class:`CatalogQuery` values, lazy sequences that run their query on each
iteration and always yield rows in a stable order.
"""

from __future__ import annotations

from typing import Callable, Generic, Iterable, Iterator, NamedTuple, Protocol, TypeVar

from rbac_engine.models.enums import ObjectClass, PrincipalType
from rbac_engine.operations import GranteeKind, Operation

T = TypeVar("T")

# Privilege name that future-grant rows use for future ownership.
OWNERSHIP = "OWNERSHIP"


class CatalogQuery(Generic[T]):
    """Lazy, finite, restartable view over one catalog query.

    Nothing is fetched until iteration starts. Every iteration re-runs the
    loader, and rows are sorted so a fixed catalog snapshot always iterates the
    same way.
    """

    def __init__(self, loader: Callable[[], Iterable[T]], *, key: Callable[[T], object] | None = None) -> None:
        self._loader = loader
        self._key = key

    def __iter__(self) -> Iterator[T]:
        rows = list(self._loader())
        rows.sort(key=self._key)  # type: ignore[arg-type]
        return iter(rows)

    def all(self) -> list[T]:
        return list(self)

    def first(self) -> T | None:
        return next(iter(self), None)

    def exists(self) -> bool:
        return self.first() is not None

    def where(self, predicate: Callable[[T], bool]) -> "CatalogQuery[T]":
        return CatalogQuery(lambda: (row for row in self._loader() if predicate(row)), key=self._key)


class SchemaInfo(NamedTuple):
    name: str
    managed_access: bool


class ObjectInfo(NamedTuple):
    """A schema object. ``arguments`` holds a routine's argument types and is None otherwise."""

    name: str
    object_class: ObjectClass
    owner: str | None
    arguments: tuple[str, ...] | None = None


class ObjectGrant(NamedTuple):
    """A privilege held by ``grantee`` on one existing object."""

    object_name: str
    object_class: ObjectClass
    privilege: str
    grantee: str
    grantee_kind: GranteeKind


class FutureGrant(NamedTuple):
    """A future-grant rule in a schema. ``privilege`` is ``OWNERSHIP`` for future ownership."""

    object_class: ObjectClass
    privilege: str
    grantee: str
    grantee_kind: GranteeKind


class RoleGrant(NamedTuple):
    """``role`` (a database role when ``role_database`` is set) is granted to ``grantee``."""

    role: str
    role_database: str | None
    grantee: str
    grantee_kind: GranteeKind


class UserInfo(NamedTuple):
    name: str
    type: PrincipalType
    default_role: str | None = None


class Platform(Protocol):
    """What the engine needs from the managed data platform."""

    def execute(self, op: Operation) -> bool | None:
        """Apply ``op``. Returns True/False when the platform can tell whether state changed, else None."""

    def database_exists(self, database: str) -> bool: ...

    def schemas(self, database: str) -> CatalogQuery[SchemaInfo]: ...

    def database_roles(self, database: str) -> CatalogQuery[str]: ...

    def account_roles(self) -> CatalogQuery[str]: ...

    def objects(self, database: str, schema: str) -> CatalogQuery[ObjectInfo]: ...

    def object_grants(self, database: str, schema: str) -> CatalogQuery[ObjectGrant]: ...

    def future_grants(self, database: str, schema: str) -> CatalogQuery[FutureGrant]: ...

    def grants_of_role(self, role: str, *, database: str | None = None) -> CatalogQuery[RoleGrant]:
        """Holders of ``role``; pass ``database`` to look up a database role."""

    def grants_to_user(self, user: str) -> CatalogQuery[RoleGrant]:
        """Account roles granted directly to ``user``."""

    def users(self) -> CatalogQuery[UserInfo]: ...

    def close(self) -> None: ...


__all__ = [
    "OWNERSHIP",
    "CatalogQuery",
    "FutureGrant",
    "ObjectGrant",
    "ObjectInfo",
    "Platform",
    "RoleGrant",
    "SchemaInfo",
    "UserInfo",
]
