"""Account-level system roles and the per-environment functional role ladder."""

from __future__ import annotations

import threading
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.exceptions import PlatformOperationFailed, RbacEngineError
from rbac_engine.models.enums import CapabilityLevel, Environment
from rbac_engine.models.results import BootstrapResult, ErrorInfo
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme
from rbac_engine.operations import CreateRole, Grantee, GrantRole, Operation
from rbac_engine.platform.base import Platform
from rbac_engine.runner import OperationRunner

# (role, parent) pairs: each system role is granted to its parent.
SYSTEM_HIERARCHY: tuple[tuple[str, str], ...] = (
    ("SECURITY_ADMIN", "ACCOUNT_ADMIN"),
    ("USER_ADMIN", "SECURITY_ADMIN"),
    ("SYSTEM_ADMIN", "ACCOUNT_ADMIN"),
)


def system_role_ops(naming: NamingScheme = DEFAULT_NAMING) -> list[Operation]:
    def name_of(role: str) -> str:
        # SYSTEM_ADMIN's name is configurable
        return naming.system_admin_role if role == "SYSTEM_ADMIN" else naming.system_role(role)

    names = [name_of(role) for role in ("ACCOUNT_ADMIN", "SECURITY_ADMIN", "USER_ADMIN", "SYSTEM_ADMIN")]
    names.append(naming.deployment_role)

    ops: list[Operation] = [CreateRole(name, comment="System role") for name in names]
    for role, parent in SYSTEM_HIERARCHY:
        ops.append(GrantRole(name_of(role), Grantee.role(name_of(parent))))
    ops.append(GrantRole(naming.deployment_role, Grantee.role(naming.system_admin_role)))
    return ops


def environment_role_ops(environment: Environment | str, naming: NamingScheme = DEFAULT_NAMING) -> list[Operation]:
    """Functional ladder for one environment, each tier granted to the next, DBADMIN to the system admin.

    Also ensures the system admin and deployment roles exist, since the ladder
    and object ownership outside DEV hang off them.
    """

    env = Environment.parse(environment)
    ladder = [naming.functional_role(env, cap) for cap in CapabilityLevel.ladder()]

    ops: list[Operation] = [
        CreateRole(naming.system_admin_role, comment="System role"),
        CreateRole(naming.deployment_role, comment="System role"),
    ]
    for cap, name in zip(CapabilityLevel.ladder(), ladder):
        ops.append(CreateRole(name, comment=f"Functional role: {cap.value} in {env.value}"))
    for lower, higher in zip(ladder, ladder[1:]):
        ops.append(GrantRole(lower, Grantee.role(higher)))
    ops.append(GrantRole(ladder[-1], Grantee.role(naming.system_admin_role)))
    return ops


def bootstrap(
    platform: Platform,
    environments: Iterable[Environment | str] | None = None,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
    events: EventLogger | None = None,
    cancel_event: threading.Event | None = None,
) -> BootstrapResult:
    """Create the system roles and, for each environment, its functional ladder."""

    events = events or get_event_logger()
    try:
        envs = [Environment.parse(env) for env in (environments or list(Environment))]
    except RbacEngineError as exc:
        return BootstrapResult(status="ERROR", error=ErrorInfo.from_exception(exc))

    runner = OperationRunner(platform, events, cancel_event=cancel_event)
    roles: list[str] = []
    try:
        for op in system_role_ops(naming):
            runner.run(op)
            if isinstance(op, CreateRole):
                roles.append(op.name)
        for env in envs:
            for op in environment_role_ops(env, naming):
                runner.run(op)
                if isinstance(op, CreateRole) and op.name not in roles:
                    roles.append(op.name)
    except RbacEngineError as exc:
        error = exc
    except SQLAlchemyError as exc:
        error = PlatformOperationFailed(str(exc))
    else:
        error = None

    statements = [execution.statement for execution in runner.executed]
    if error is not None:
        events.emit("bootstrap.failed", message=error.message, code=error.code)
        return BootstrapResult(
            status="ERROR",
            environments=[env.value for env in envs],
            roles=roles,
            statements=statements,
            error=ErrorInfo.from_exception(error),
        )

    events.emit("bootstrap.completed", environments=[env.value for env in envs], roles=len(roles))
    return BootstrapResult(
        status="SUCCESS",
        environments=[env.value for env in envs],
        roles=roles,
        statements=statements,
    )


__all__ = ["SYSTEM_HIERARCHY", "bootstrap", "environment_role_ops", "system_role_ops"]
