"""Access roles, service wrapper roles and principal assignment.

Access roles (``SRA_<ENV>_<DOMAIN>_ACCESS``) bundle database roles for a
business domain. Human users receive functional and access roles directly;
service accounts only ever receive a service wrapper role
(``SRW_<ENV>_<DOMAIN>_<CAP>``) that combines one functional role with one or
more access roles.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.exceptions import (
    InvalidAccessLevel,
    PlatformOperationFailed,
    PrincipalTypeMismatch,
    RbacEngineError,
    RoleNotFound,
)
from rbac_engine.models.enums import AccessLevel, CapabilityLevel, Environment, PrincipalType
from rbac_engine.models.results import ErrorInfo, RoleOperationResult
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme, normalize, validate_identifier
from rbac_engine.operations import CreateRole, Grantee, GrantRole, Operation, SetDefaultRole
from rbac_engine.platform.base import Platform, UserInfo
from rbac_engine.runner import OperationRunner

DEFAULT_ACCESS_COMMENT = "Access role for domain data"
DEFAULT_SERVICE_COMMENT = "Service wrapper role"


class RoleManager:
    def __init__(
        self,
        platform: Platform,
        *,
        naming: NamingScheme = DEFAULT_NAMING,
        events: EventLogger | None = None,
    ) -> None:
        self._platform = platform
        self._naming = naming
        self._events = (events or get_event_logger()).child("roles")

    # ------------------------------------------------------------------
    # Access roles
    # ------------------------------------------------------------------

    def create_access_role(
        self,
        environment: str,
        domain: str,
        comment: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        def build(result: RoleOperationResult) -> list[Operation]:
            role = self._naming.access_role(environment, validate_identifier(normalize(domain)))
            admin = self._naming.system_admin_role
            result.role, result.grantee = role, admin
            self._require_role(admin)
            return [
                CreateRole(role, comment=comment or DEFAULT_ACCESS_COMMENT),
                GrantRole(role, Grantee.role(admin)),
            ]

        return self._run("create_access_role", build, cancel_event)

    def link_schema_to_access_role(
        self,
        environment: str,
        domain: str,
        database: str,
        schema: str,
        access_level: str = "READ",
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        """Grant a schema's database role to a domain's access role."""

        def build(result: RoleOperationResult) -> list[Operation]:
            env = Environment.parse(environment)
            level = AccessLevel.parse(access_level)
            if level is AccessLevel.WRITE and not env.is_dev:
                raise InvalidAccessLevel(
                    "WRITE access is only available in DEV environment. Use READ for non-DEV.",
                    environment=env.value,
                )
            logical_db = validate_identifier(normalize(database))
            schema_name = validate_identifier(normalize(schema))
            physical_db = self._naming.database_name(env, logical_db)
            access_role = self._naming.access_role(env, validate_identifier(normalize(domain)))
            db_role = self._naming.database_role(env, logical_db, schema_name, level)
            result.role, result.grantee = f"{physical_db}.{db_role}", access_role

            self._require_role(access_role)
            if not self._platform.database_exists(physical_db) or db_role not in set(
                self._platform.database_roles(physical_db)
            ):
                raise RoleNotFound(
                    f"Database role {physical_db}.{db_role} does not exist. Provision the schema first.",
                    role=db_role,
                    database=physical_db,
                )
            return [GrantRole(db_role, Grantee.role(access_role), role_database=physical_db)]

        return self._run("link_schema_to_access_role", build, cancel_event)

    # ------------------------------------------------------------------
    # Service wrapper roles
    # ------------------------------------------------------------------

    def create_service_role(
        self,
        environment: str,
        domain: str,
        capability: str,
        comment: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        def build(result: RoleOperationResult) -> list[Operation]:
            env = Environment.parse(environment)
            cap = CapabilityLevel.parse(capability)
            domain_name = validate_identifier(normalize(domain))
            service_role = self._naming.service_role(env, domain_name, cap)
            access_role = self._naming.access_role(env, domain_name)
            functional_role = self._naming.functional_role(env, cap)
            admin = self._naming.system_admin_role
            result.role, result.grantee = service_role, admin

            self._require_role(
                access_role, hint="Access role does not exist. Create it first with create_access_role."
            )
            self._require_role(functional_role)
            self._require_role(admin)
            return [
                CreateRole(service_role, comment=comment or DEFAULT_SERVICE_COMMENT),
                GrantRole(functional_role, Grantee.role(service_role)),
                GrantRole(access_role, Grantee.role(service_role)),
                GrantRole(service_role, Grantee.role(admin)),
            ]

        return self._run("create_service_role", build, cancel_event)

    def add_access_to_service_role(
        self,
        environment: str,
        domain: str,
        capability: str,
        additional_domain: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        def build(result: RoleOperationResult) -> list[Operation]:
            env = Environment.parse(environment)
            service_role = self._naming.service_role(env, validate_identifier(normalize(domain)), capability)
            access_role = self._naming.access_role(env, validate_identifier(normalize(additional_domain)))
            result.role, result.grantee = access_role, service_role

            self._require_role(service_role, hint="Service role does not exist.")
            self._require_role(access_role, hint="Additional access role does not exist.")
            return [GrantRole(access_role, Grantee.role(service_role))]

        return self._run("add_access_to_service_role", build, cancel_event)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def grant_user_access(
        self,
        user: str,
        environment: str,
        domain: str,
        capability: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        """Grant a human user the domain's access role and, optionally, a functional role."""

        user = normalize(user)

        def build(result: RoleOperationResult) -> list[Operation]:
            env = Environment.parse(environment)
            access_role = self._naming.access_role(env, validate_identifier(normalize(domain)))
            result.role, result.grantee = access_role, user

            principal = self._user(user)
            if principal.type is not PrincipalType.PERSON:
                raise PrincipalTypeMismatch(
                    "User is a service account. Functional and access roles can only be granted to PERSON "
                    "accounts; use grant_service_account with a service wrapper role instead.",
                    user=user,
                    principal_type=principal.type.value,
                )

            ops: list[Operation] = []
            if capability is not None:
                functional_role = self._naming.functional_role(env, capability)
                self._require_role(functional_role)
                ops.append(GrantRole(functional_role, Grantee.user(user)))
            self._require_role(access_role)
            ops.append(GrantRole(access_role, Grantee.user(user)))
            return ops

        return self._run("grant_user_access", build, cancel_event)

    def grant_service_account(
        self,
        user: str,
        environment: str,
        domain: str,
        capability: str,
        set_default: bool = True,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RoleOperationResult:
        user = normalize(user)

        def build(result: RoleOperationResult) -> list[Operation]:
            env = Environment.parse(environment)
            service_role = self._naming.service_role(env, validate_identifier(normalize(domain)), capability)
            result.role, result.grantee = service_role, user

            principal = self._user(user)
            if not principal.type.is_service:
                raise PrincipalTypeMismatch(
                    "User is not a service account. Service wrapper roles can only be granted to SERVICE "
                    "or LEGACY_SERVICE accounts.",
                    user=user,
                    principal_type=principal.type.value,
                )
            self._require_role(
                service_role, hint="Service role does not exist. Create it first with create_service_role."
            )

            ops: list[Operation] = [GrantRole(service_role, Grantee.user(user))]
            if set_default:
                ops.append(SetDefaultRole(user, service_role))
            return ops

        return self._run("grant_service_account", build, cancel_event)

    # ------------------------------------------------------------------

    def _require_role(self, role: str, *, hint: str | None = None) -> None:
        if role not in set(self._platform.account_roles()):
            raise RoleNotFound(hint or f"Role {role} does not exist", role=role)

    def _user(self, name: str) -> UserInfo:
        user = self._platform.users().where(lambda info: info.name == name).first()
        if user is None:
            raise RoleNotFound(f"User {name} does not exist", user=name)
        return user

    def _run(
        self,
        operation: str,
        build: Callable[[RoleOperationResult], list[Operation]],
        cancel_event: threading.Event | None,
    ) -> RoleOperationResult:
        result = RoleOperationResult(status="SUCCESS", operation=operation)
        runner = OperationRunner(self._platform, self._events, cancel_event=cancel_event)
        try:
            runner.run_all(build(result))
        except RbacEngineError as exc:
            error = exc
        except SQLAlchemyError as exc:
            error = PlatformOperationFailed(str(exc))
        else:
            error = None

        result.statements = [execution.statement for execution in runner.executed]
        if error is not None:
            result.status = "ERROR"
            result.message = error.message
            result.error = ErrorInfo.from_exception(error)
            self._events.emit(
                operation,
                message=error.message,
                level=logging.WARNING,
                code=error.code,
                role=result.role,
                grantee=result.grantee,
            )
            return result

        result.message = f"{operation} completed"
        self._events.emit(operation, message=result.message, role=result.role, grantee=result.grantee)
        return result


__all__ = ["RoleManager"]
