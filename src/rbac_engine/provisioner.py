"""Idempotent provisioning of one schema's role, grant and ownership graph.

Steps run in a fixed order and each is safe to repeat:

1. ``create_database``     create-if-absent
2. ``create_schema``       create-if-absent with managed access; an existing unmanaged schema is a conflict
3. ``create_roles``        environment role ladder, then READ (and, in DEV, WRITE) database roles
4. ``grant_privileges``    current + future privileges per object class, READ role linked to END_USER
5. ``transfer_ownership``  existing objects to the object owner, copying current grants
6. ``future_ownership``    future objects owned by the object owner
7. ``grant_create``        CREATE privileges to the developer role (DEV) or the deployment role

A failure or cancellation stops the run; completed steps are returned and
nothing is rolled back.

The ``*_ops`` functions are the primitives; the rectifier reuses them with a
narrower scope.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from rbac_engine.bootstrap import environment_role_ops
from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.desired_state import (
    DatabaseRoleSpec,
    DesiredState,
    GrantScope,
    build_desired_state,
)
from rbac_engine.exceptions import OperationCancelled, PlatformOperationFailed, RbacEngineError, SchemaConflict
from rbac_engine.models.enums import ObjectClass
from rbac_engine.models.results import NON_DEV_WRITE_ROLE, DatabaseRoles, ErrorInfo, ProvisionResult, StepResult
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme
from rbac_engine.operations import (
    CreateDatabase,
    CreateDatabaseRole,
    CreateSchema,
    EnableManagedAccess,
    Grantee,
    GrantOwnership,
    GrantPrivileges,
    GrantRole,
    GrantTarget,
    Operation,
)
from rbac_engine.platform.base import ObjectInfo, Platform
from rbac_engine.runner import OperationRunner

STEP_NAMES: tuple[str, ...] = (
    "create_database",
    "create_schema",
    "create_roles",
    "grant_privileges",
    "transfer_ownership",
    "future_ownership",
    "grant_create",
)


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def database_ops(state: DesiredState) -> list[Operation]:
    env = state.environment.value
    return [CreateDatabase(state.container.physical_database, comment=f"Database for {env} environment")]


def schema_ops(state: DesiredState, comment: str | None = None) -> list[Operation]:
    container = state.container
    return [CreateSchema(container.physical_database, container.schema, managed_access=True, comment=comment)]


def managed_access_ops(state: DesiredState) -> list[Operation]:
    return [EnableManagedAccess(state.container.physical_database, state.container.schema)]


def database_role_ops(state: DesiredState, roles: Iterable[DatabaseRoleSpec] | None = None) -> list[Operation]:
    db = state.container.physical_database
    roles = state.database_roles if roles is None else roles
    return [CreateDatabaseRole(db, role.name, comment=role.comment) for role in roles]


def privilege_ops(
    state: DesiredState,
    roles: Iterable[DatabaseRoleSpec] | None = None,
    *,
    scopes: Iterable[GrantScope] | None = None,
) -> list[Operation]:
    """Grants for ``roles`` (all database roles by default), limited to ``scopes`` if given."""

    container = state.container
    db, schema = container.physical_database, container.schema
    wanted_scopes = set(scopes) if scopes is not None else set(GrantScope)
    roles = state.database_roles if roles is None else roles

    ops: list[Operation] = []
    for role in roles:
        grantee = Grantee.database_role(db, role.name)
        for edge in state.grants_for(role.name):
            if edge.scope not in wanted_scopes:
                continue
            if edge.scope is GrantScope.SCHEMA:
                target = GrantTarget.on_schema(db, schema)
            elif edge.scope is GrantScope.CURRENT:
                target = GrantTarget.all_in_schema(db, schema, edge.object_class)
            else:
                target = GrantTarget.future_in_schema(db, schema, edge.object_class)
            ops.append(GrantPrivileges(edge.privileges, target, grantee))
    return ops


def read_linkage_ops(state: DesiredState) -> list[Operation]:
    """READ database role granted to the environment's END_USER functional role."""

    return [
        GrantRole(
            state.read_role.name,
            Grantee.role(state.end_user_role),
            role_database=state.container.physical_database,
        )
    ]


def ownership_ops(state: DesiredState, objects: Iterable[ObjectInfo] | None = None) -> list[Operation]:
    """Ownership of existing objects to the object owner, copying current grants.

    Without ``objects`` every ownership class is transferred with an ``ALL``
    target; otherwise only the listed objects are.
    """

    container = state.container
    db, schema, owner = container.physical_database, container.schema, container.object_owner
    if objects is None:
        return [
            GrantOwnership(GrantTarget.all_in_schema(db, schema, cls), owner, copy_current_grants=True)
            for cls in state.ownership_classes
        ]
    return [
        GrantOwnership(
            GrantTarget.on_object(db, schema, obj.object_class, obj.name, obj.arguments),
            owner,
            copy_current_grants=True,
        )
        for obj in objects
    ]


def future_ownership_ops(state: DesiredState, classes: Iterable[ObjectClass] | None = None) -> list[Operation]:
    container = state.container
    classes = state.ownership_classes if classes is None else classes
    return [
        GrantOwnership(
            GrantTarget.future_in_schema(container.physical_database, container.schema, cls),
            state.future_owner,
            copy_current_grants=False,
        )
        for cls in classes
    ]


def create_privilege_ops(state: DesiredState) -> list[Operation]:
    container = state.container
    db, schema = container.physical_database, container.schema
    grantee = Grantee.role(state.create_grantee)

    ops: list[Operation] = []
    if state.deployment_usage:
        ops.append(GrantPrivileges(("USAGE",), GrantTarget.on_database(db), grantee))
        ops.append(GrantPrivileges(("USAGE",), GrantTarget.on_schema(db, schema), grantee))
    ops.extend(
        GrantPrivileges((privilege,), GrantTarget.on_schema(db, schema), grantee)
        for privilege in state.create_privileges
    )
    return ops


# ---------------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------------


class Provisioner:
    """Apply the desired state of one schema to a platform."""

    def __init__(
        self,
        platform: Platform,
        *,
        naming: NamingScheme = DEFAULT_NAMING,
        events: EventLogger | None = None,
    ) -> None:
        self._platform = platform
        self._naming = naming
        self._events = (events or get_event_logger()).child("provision")

    def provision(
        self,
        environment: str,
        database: str,
        schema: str,
        comment: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ProvisionResult:
        try:
            state = build_desired_state(environment, database, schema, self._naming)
        except RbacEngineError as exc:
            self._events.emit("rejected", message=exc.message, level=logging.WARNING, code=exc.code)
            return ProvisionResult(
                status="ERROR",
                environment=str(environment),
                database=str(database),
                schema=str(schema),
                error=ErrorInfo.from_exception(exc),
            )

        container = state.container
        write_role = state.write_role
        result = ProvisionResult(
            status="SUCCESS",
            environment=state.environment.value,
            database=container.physical_database,
            schema=container.schema,
            database_roles=DatabaseRoles(
                read=state.read_role.name,
                write=write_role.name if write_role is not None else NON_DEV_WRITE_ROLE,
            ),
            object_owner=container.object_owner,
        )
        self._events.emit(
            "started",
            message=f"Provisioning {container.qualified_name}",
            environment=state.environment.value,
            database=container.physical_database,
            schema=container.schema,
        )

        runner = OperationRunner(self._platform, self._events, cancel_event=cancel_event)
        for name, inputs, build in self._plan(state, comment):
            step, error = self._run_step(runner, name, inputs, build)
            result.steps.append(step)
            if error is not None:
                result.status = "CANCELLED" if step.status == "CANCELLED" else "ERROR"
                result.error = error
                break

        self._events.emit(
            "completed",
            message=f"Provisioning {container.qualified_name}: {result.status}",
            level=logging.INFO if result.status == "SUCCESS" else logging.WARNING,
            status=result.status,
            steps=len(result.steps),
        )
        return result

    # ------------------------------------------------------------------

    def _plan(
        self, state: DesiredState, comment: str | None
    ) -> list[tuple[str, dict[str, object], Callable[[], list[Operation]]]]:
        container = state.container
        db, schema = container.physical_database, container.schema

        def roles() -> list[Operation]:
            return environment_role_ops(state.environment, self._naming) + database_role_ops(state)

        def privileges() -> list[Operation]:
            return privilege_ops(state) + read_linkage_ops(state)

        return [
            ("create_database", {"database": db}, lambda: database_ops(state)),
            ("create_schema", {"database": db, "schema": schema, "comment": comment}, lambda: self._schema_step(state, comment)),
            ("create_roles", {"database_roles": [r.name for r in state.database_roles]}, roles),
            ("grant_privileges", {"database_roles": [r.name for r in state.database_roles]}, privileges),
            ("transfer_ownership", {"object_owner": container.object_owner}, lambda: ownership_ops(state)),
            ("future_ownership", {"object_owner": state.future_owner}, lambda: future_ownership_ops(state)),
            ("grant_create", {"grantee": state.create_grantee}, lambda: create_privilege_ops(state)),
        ]

    def _schema_step(self, state: DesiredState, comment: str | None) -> list[Operation]:
        container = state.container
        existing = next(
            (s for s in self._platform.schemas(container.physical_database) if s.name == container.schema),
            None,
        )
        if existing is not None and not existing.managed_access:
            raise SchemaConflict(
                f"Schema {container.qualified_name} exists without MANAGED ACCESS",
                database=container.physical_database,
                schema=container.schema,
            )
        return schema_ops(state, comment)

    def _run_step(
        self,
        runner: OperationRunner,
        name: str,
        inputs: dict[str, object],
        build: Callable[[], list[Operation]],
    ) -> tuple[StepResult, ErrorInfo | None]:
        start = len(runner.executed)
        error: RbacEngineError | None = None
        try:
            for op in build():
                runner.run(op)
        except RbacEngineError as exc:
            error = exc
        except SQLAlchemyError as exc:
            error = PlatformOperationFailed(str(exc))

        executions = runner.executed[start:]
        statements = [execution.statement for execution in executions]

        if error is not None:
            status = "CANCELLED" if isinstance(error, OperationCancelled) else "FAILED"
            info = ErrorInfo.from_exception(error, step=name)
            if isinstance(error, PlatformOperationFailed) and error.statement:
                info.details.setdefault("statement", error.statement)
            self._events.emit(
                "step",
                message=f"{name}: {error.message}",
                level=logging.WARNING,
                step=name,
                status=status,
                code=error.code,
            )
            step = StepResult(name=name, status=status, inputs=inputs, statements=statements, message=error.message)
            return step, info

        unchanged = bool(executions) and all(execution.changed is False for execution in executions)
        status = "UNCHANGED" if unchanged else "SUCCESS"
        self._events.emit("step", message=f"{name}: {status}", step=name, status=status, operations=len(statements))
        return StepResult(name=name, status=status, inputs=inputs, statements=statements), None


def provision(
    platform: Platform,
    environment: str,
    database: str,
    schema: str,
    comment: str | None = None,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
    events: EventLogger | None = None,
    cancel_event: threading.Event | None = None,
) -> ProvisionResult:
    return Provisioner(platform, naming=naming, events=events).provision(
        environment, database, schema, comment, cancel_event=cancel_event
    )


__all__ = [
    "STEP_NAMES",
    "Provisioner",
    "create_privilege_ops",
    "database_ops",
    "database_role_ops",
    "future_ownership_ops",
    "managed_access_ops",
    "ownership_ops",
    "privilege_ops",
    "provision",
    "read_linkage_ops",
    "schema_ops",
]
