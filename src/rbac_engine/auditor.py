"""Compliance auditing: live catalog state diffed against the desired state.

Checks run per schema in a fixed order and never mutate anything. Each check
is addressable by id through :func:`run_checks`, so callers can re-run just
the checks they care about.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import cached_property
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.desired_state import DesiredState, GrantScope, build_desired_state
from rbac_engine.exceptions import DatabaseNotFound, InvalidIdentifier, PlatformOperationFailed, RbacEngineError
from rbac_engine.models.enums import AccessLevel, CapabilityLevel, Environment, RoleKind
from rbac_engine.models.results import ComplianceFinding, ComplianceReport, ErrorInfo, SchemaReport
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme, database_name, normalize, validate_identifier
from rbac_engine.operations import GranteeKind
from rbac_engine.platform.base import OWNERSHIP, FutureGrant, ObjectGrant, ObjectInfo, Platform, SchemaInfo

SCHEMA_EXISTS = "SCHEMA_EXISTS"
SCHEMA_IDENTIFIER = "SCHEMA_IDENTIFIER"
MANAGED_ACCESS = "MANAGED_ACCESS"
READ_DATABASE_ROLE = "READ_DATABASE_ROLE"
WRITE_DATABASE_ROLE = "WRITE_DATABASE_ROLE"
OBJECT_OWNERSHIP = "OBJECT_OWNERSHIP"
FUTURE_OWNERSHIP_GRANT = "FUTURE_OWNERSHIP_GRANT"
FUTURE_GRANTS = "FUTURE_GRANTS"
READ_ROLE_GRANT = "READ_ROLE_GRANT"
ROLE_EXISTS = "ROLE_EXISTS"
PRINCIPAL_ASSIGNMENT = "PRINCIPAL_ASSIGNMENT"

SCHEMA_CHECKS: tuple[str, ...] = (
    MANAGED_ACCESS,
    READ_DATABASE_ROLE,
    WRITE_DATABASE_ROLE,
    OBJECT_OWNERSHIP,
    FUTURE_OWNERSHIP_GRANT,
    FUTURE_GRANTS,
    READ_ROLE_GRANT,
)

# Schemas the platform creates on its own; skipped when auditing a whole database.
SYSTEM_SCHEMAS = frozenset({"INFORMATION_SCHEMA", "PUBLIC"})


class SchemaSnapshot:
    """Catalog reads for one schema, each fetched at most once."""

    def __init__(self, platform: Platform, state: DesiredState) -> None:
        self.platform = platform
        self.state = state
        self.database = state.container.physical_database
        self.schema = state.container.schema

    @cached_property
    def schema_info(self) -> SchemaInfo | None:
        return next((s for s in self.platform.schemas(self.database) if s.name == self.schema), None)

    @cached_property
    def database_roles(self) -> frozenset[str]:
        return frozenset(self.platform.database_roles(self.database))

    @cached_property
    def objects(self) -> list[ObjectInfo]:
        return self.platform.objects(self.database, self.schema).all()

    @cached_property
    def object_grants(self) -> list[ObjectGrant]:
        return self.platform.object_grants(self.database, self.schema).all()

    @cached_property
    def future_grants(self) -> list[FutureGrant]:
        return self.platform.future_grants(self.database, self.schema).all()


def _is_identifier(name: str) -> bool:
    try:
        validate_identifier(name)
    except InvalidIdentifier:
        return False
    return True


def _finding(
    check_id: str,
    scope: str,
    passed: bool,
    *,
    expected: object = None,
    actual: object = None,
    message: str = "",
    warning: bool = False,
) -> ComplianceFinding:
    if passed:
        status = "PASS"
    else:
        status = "WARNING" if warning else "FAIL"
    return ComplianceFinding(
        check_id=check_id, scope=scope, status=status, expected=expected, actual=actual, message=message
    )


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def _check_managed_access(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    managed = bool(snap.schema_info and snap.schema_info.managed_access)
    return [
        _finding(
            MANAGED_ACCESS,
            snap.state.container.qualified_name,
            managed,
            expected=True,
            actual=managed,
            message="" if managed else "Schema is not configured with MANAGED ACCESS",
        )
    ]


def _check_read_role(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    name = snap.state.read_role.name
    exists = name in snap.database_roles
    return [
        _finding(
            READ_DATABASE_ROLE,
            name,
            exists,
            expected=name,
            actual=name if exists else None,
            message="" if exists else "READ database role does not exist",
        )
    ]


def _check_write_role(snap: SchemaSnapshot, naming: NamingScheme) -> list[ComplianceFinding]:
    container = snap.state.container
    name = naming.database_role(container.environment, container.database, container.schema, AccessLevel.WRITE)
    exists = name in snap.database_roles

    if container.environment.is_dev:
        return [
            _finding(
                WRITE_DATABASE_ROLE,
                name,
                exists,
                expected=name,
                actual=name if exists else None,
                message="" if exists else "WRITE database role does not exist",
            )
        ]
    return [
        _finding(
            WRITE_DATABASE_ROLE,
            name,
            not exists,
            expected=None,
            actual=name if exists else None,
            message="WRITE database role exists in a non-DEV environment" if exists else "",
            warning=True,
        )
    ]


def _check_object_ownership(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    state = snap.state
    owner = state.container.object_owner
    classes = set(state.ownership_classes)
    owned = [obj for obj in snap.objects if obj.object_class in classes]

    findings = [
        _finding(
            OBJECT_OWNERSHIP,
            f"{snap.database}.{snap.schema}.{obj.name}",
            False,
            expected=owner,
            actual=obj.owner,
            message=f"{obj.object_class.value} {obj.name} is owned by {obj.owner}, expected {owner}",
        )
        for obj in owned
        if obj.owner != owner
    ]
    if findings:
        return findings
    return [
        _finding(
            OBJECT_OWNERSHIP,
            state.container.qualified_name,
            True,
            expected=owner,
            actual=owner,
            message=f"{len(owned)} object(s) owned by {owner}",
        )
    ]


def _check_future_ownership(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    owner = snap.state.future_owner
    configured = {
        grant.object_class
        for grant in snap.future_grants
        if grant.privilege == OWNERSHIP and grant.grantee == owner and grant.grantee_kind is GranteeKind.ROLE
    }
    missing = [cls.value for cls in snap.state.ownership_classes if cls not in configured]
    return [
        _finding(
            FUTURE_OWNERSHIP_GRANT,
            snap.state.container.qualified_name,
            not missing,
            expected=owner,
            actual=missing or owner,
            message=f"Future ownership grants not configured for {owner}: {', '.join(missing)}" if missing else "",
        )
    ]


def _check_future_grants(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    """Expected future grants per existing database role, plus current/future parity.

    A privilege a role holds on current objects of a class without the matching
    future grant is a WARNING when it is outside the desired set (a manual
    grant), since restating the desired grants cannot clear it.
    """

    findings: list[ComplianceFinding] = []
    for role in snap.state.database_roles:
        if role.name not in snap.database_roles:
            continue
        held_future = {
            (grant.object_class, grant.privilege)
            for grant in snap.future_grants
            if grant.grantee == role.name and grant.grantee_kind is GranteeKind.DATABASE_ROLE
        }
        expected_future = {
            (edge.object_class, privilege)
            for edge in snap.state.grants_for(role.name, GrantScope.FUTURE)
            for privilege in edge.privileges
        }
        held_current = {
            (grant.object_class, grant.privilege)
            for grant in snap.object_grants
            if grant.grantee == role.name and grant.grantee_kind is GranteeKind.DATABASE_ROLE
        }

        missing = sorted(f"{priv} ON FUTURE {cls.plural}" for cls, priv in expected_future - held_future)
        unmatched = sorted(f"{priv} ON {cls.plural}" for cls, priv in held_current - held_future)

        if missing:
            findings.append(
                _finding(
                    FUTURE_GRANTS,
                    role.name,
                    False,
                    expected=len(expected_future),
                    actual=missing,
                    message=f"{len(missing)} expected future grant(s) missing",
                )
            )
        elif unmatched:
            findings.append(
                _finding(
                    FUTURE_GRANTS,
                    role.name,
                    False,
                    expected=[],
                    actual=unmatched,
                    message="Current privileges without a matching future grant",
                    warning=True,
                )
            )
        else:
            findings.append(_finding(FUTURE_GRANTS, role.name, True, expected=len(expected_future)))
    return findings


def _check_read_role_grant(snap: SchemaSnapshot) -> list[ComplianceFinding]:
    state = snap.state
    read_role = state.read_role.name
    if read_role not in snap.database_roles:
        return []
    reached = _reaches_role(snap.platform, read_role, snap.database, state.end_user_role)
    return [
        _finding(
            READ_ROLE_GRANT,
            read_role,
            reached,
            expected=state.end_user_role,
            actual=state.end_user_role if reached else None,
            message="" if reached else "READ database role not granted to END_USER functional role",
        )
    ]


def _reaches_role(platform: Platform, role: str, database: str, target: str) -> bool:
    """Breadth-first walk over role grants from a database role to an account role."""

    seen: set[tuple[str, str | None]] = set()
    frontier: list[tuple[str, str | None]] = [(role, database)]
    while frontier:
        next_frontier: list[tuple[str, str | None]] = []
        for name, db in frontier:
            if (name, db) in seen:
                continue
            seen.add((name, db))
            for grant in platform.grants_of_role(name, database=db):
                if grant.grantee_kind is GranteeKind.USER:
                    continue
                if grant.grantee_kind is GranteeKind.ROLE:
                    if grant.grantee == target:
                        return True
                    next_frontier.append((grant.grantee, None))
                else:
                    next_frontier.append((grant.grantee, db))
        frontier = next_frontier
    return False


def run_checks(
    platform: Platform,
    state: DesiredState,
    check_ids: Iterable[str] = SCHEMA_CHECKS,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
) -> list[ComplianceFinding]:
    """Run the requested schema checks, in canonical order, against one snapshot."""

    checks: dict[str, Callable[[SchemaSnapshot], list[ComplianceFinding]]] = {
        MANAGED_ACCESS: _check_managed_access,
        READ_DATABASE_ROLE: _check_read_role,
        WRITE_DATABASE_ROLE: lambda snap: _check_write_role(snap, naming),
        OBJECT_OWNERSHIP: _check_object_ownership,
        FUTURE_OWNERSHIP_GRANT: _check_future_ownership,
        FUTURE_GRANTS: _check_future_grants,
        READ_ROLE_GRANT: _check_read_role_grant,
    }
    wanted = set(check_ids)
    unknown = wanted - set(checks)
    if unknown:
        raise ValueError(f"Unknown check id(s): {', '.join(sorted(unknown))}")

    snap = SchemaSnapshot(platform, state)
    findings: list[ComplianceFinding] = []
    for check_id in SCHEMA_CHECKS:
        if check_id in wanted:
            findings.extend(checks[check_id](snap))
    return findings


def check_role_hierarchy(
    platform: Platform,
    environment: Environment | str,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
) -> list[ComplianceFinding]:
    """One ROLE_EXISTS finding per functional role of the environment's ladder."""

    env = Environment.parse(environment)
    existing = set(platform.account_roles())
    findings: list[ComplianceFinding] = []
    for role in (naming.functional_role(env, cap) for cap in CapabilityLevel.ladder()):
        exists = role in existing
        findings.append(
            _finding(
                ROLE_EXISTS,
                role,
                exists,
                expected=role,
                actual=role if exists else None,
                message="" if exists else "Functional role does not exist",
            )
        )
    return findings


def check_principal_assignments(
    platform: Platform,
    environment: Environment | str,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
) -> list[ComplianceFinding]:
    """One PRINCIPAL_ASSIGNMENT finding per environment role held directly by a user.

    People may hold functional and access roles; service accounts may hold only
    service wrapper roles. Roles outside those three kinds are not governed here.
    """

    env = Environment.parse(environment)
    governed = {
        kind: f"{naming.prefix_for(kind)}_{env.value}_"
        for kind in (RoleKind.FUNCTIONAL, RoleKind.ACCESS, RoleKind.SERVICE_WRAPPER)
    }
    findings: list[ComplianceFinding] = []
    for user in platform.users():
        if not _is_identifier(user.name):
            findings.append(
                _finding(
                    PRINCIPAL_ASSIGNMENT,
                    user.name,
                    False,
                    expected="unquoted upper-case identifier",
                    actual=user.name,
                    message=f"User {user.name!r} cannot be checked: not an unquoted identifier",
                    warning=True,
                )
            )
            continue
        allowed = {RoleKind.SERVICE_WRAPPER} if user.type.is_service else {RoleKind.FUNCTIONAL, RoleKind.ACCESS}
        for grant in platform.grants_to_user(user.name):
            kind = next((k for k, prefix in governed.items() if grant.role.startswith(prefix)), None)
            if kind is None:
                continue
            ok = kind in allowed
            findings.append(
                _finding(
                    PRINCIPAL_ASSIGNMENT,
                    f"{user.name}/{grant.role}",
                    ok,
                    expected=sorted(k.value for k in allowed),
                    actual={"principal_type": user.type.value, "role_kind": kind.value},
                    message=""
                    if ok
                    else f"{kind.value} role {grant.role} is granted to {user.type.value} user {user.name}",
                )
            )
    return findings


def principal_scope(scope: str) -> tuple[str, str]:
    """Split a PRINCIPAL_ASSIGNMENT scope into ``(user, role)``."""

    user, _, role = scope.partition("/")
    return user, role


def summarize(findings: Iterable[ComplianceFinding]) -> int:
    """Issue count: FAIL findings only; WARNINGs are informational."""

    return sum(1 for finding in findings if finding.status == "FAIL")


class Auditor:
    def __init__(
        self,
        platform: Platform,
        *,
        naming: NamingScheme = DEFAULT_NAMING,
        events: EventLogger | None = None,
    ) -> None:
        self._platform = platform
        self._naming = naming
        self._events = (events or get_event_logger()).child("audit")

    def audit(self, environment: str, database: str, schema: str | None = None) -> ComplianceReport:
        timestamp = datetime.now(timezone.utc)
        try:
            env = Environment.parse(environment)
            logical_db = normalize(database)
            physical_db = database_name(env, logical_db)
        except RbacEngineError as exc:
            return ComplianceReport(
                status="ERROR",
                environment=str(environment),
                database=str(database),
                timestamp=timestamp,
                error=ErrorInfo.from_exception(exc),
            )

        report = ComplianceReport(
            status="COMPLIANT",
            environment=env.value,
            database=logical_db,
            physical_database=physical_db,
            timestamp=timestamp,
        )
        try:
            if not self._platform.database_exists(physical_db):
                raise DatabaseNotFound(f"Database {physical_db} does not exist", database=physical_db)
            report.schema_results = [
                self._audit_schema(env, logical_db, physical_db, name)
                for name in self._schema_names(physical_db, schema)
            ]
            report.role_hierarchy = check_role_hierarchy(self._platform, env, naming=self._naming)
            report.principal_assignments = check_principal_assignments(self._platform, env, naming=self._naming)
        except RbacEngineError as exc:
            return self._error_report(report, exc)
        except SQLAlchemyError as exc:
            return self._error_report(report, PlatformOperationFailed(str(exc)))

        report.schemas_checked = len(report.schema_results)
        report.total_issues = (
            sum(r.issues for r in report.schema_results)
            + summarize(report.role_hierarchy)
            + summarize(report.principal_assignments)
        )
        report.status = "COMPLIANT" if report.total_issues == 0 else "NON_COMPLIANT"
        self._events.emit(
            "completed",
            message=f"Audit of {physical_db}: {report.status}",
            status=report.status,
            schemas_checked=report.schemas_checked,
            total_issues=report.total_issues,
        )
        return report

    def _schema_names(self, physical_db: str, schema: str | None) -> list[str]:
        # Catalog names are used verbatim; only caller input is normalized.
        catalog = [s.name for s in self._platform.schemas(physical_db)]
        if schema is not None:
            return [schema if schema in catalog else normalize(schema)]
        return [name for name in catalog if name not in SYSTEM_SCHEMAS]

    def _audit_schema(self, env: Environment, logical_db: str, physical_db: str, schema: str) -> SchemaReport:
        if not _is_identifier(schema):
            findings = [
                _finding(
                    SCHEMA_IDENTIFIER,
                    f"{physical_db}.{schema}",
                    False,
                    expected="unquoted upper-case identifier",
                    actual=schema,
                    message=f"Schema {physical_db}.{schema!r} cannot be managed: not an unquoted identifier",
                    warning=True,
                )
            ]
        elif not any(s.name == schema for s in self._platform.schemas(physical_db)):
            findings = [
                _finding(
                    SCHEMA_EXISTS,
                    f"{physical_db}.{schema}",
                    False,
                    expected=schema,
                    actual=None,
                    message=f"Schema {physical_db}.{schema} does not exist",
                )
            ]
        else:
            state = build_desired_state(env, logical_db, schema, self._naming)
            findings = run_checks(self._platform, state, naming=self._naming)

        for finding in findings:
            if finding.status != "PASS":
                self._events.emit(
                    "finding",
                    message=finding.message or finding.check_id,
                    level=logging.WARNING if finding.status == "FAIL" else logging.INFO,
                    check_id=finding.check_id,
                    scope=finding.scope,
                    status=finding.status,
                )

        issues = summarize(findings)
        return SchemaReport(
            schema=schema,
            status="COMPLIANT" if issues == 0 else "NON_COMPLIANT",
            issues=issues,
            findings=findings,
        )

    def _error_report(self, report: ComplianceReport, exc: RbacEngineError) -> ComplianceReport:
        self._events.emit("failed", message=exc.message, level=logging.WARNING, code=exc.code)
        report.status = "ERROR"
        report.schema_results = []
        report.role_hierarchy = []
        report.principal_assignments = []
        report.error = ErrorInfo.from_exception(exc)
        return report


def audit(
    platform: Platform,
    environment: str,
    database: str,
    schema: str | None = None,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
    events: EventLogger | None = None,
) -> ComplianceReport:
    return Auditor(platform, naming=naming, events=events).audit(environment, database, schema)


__all__ = [
    "FUTURE_GRANTS",
    "FUTURE_OWNERSHIP_GRANT",
    "MANAGED_ACCESS",
    "OBJECT_OWNERSHIP",
    "PRINCIPAL_ASSIGNMENT",
    "READ_DATABASE_ROLE",
    "READ_ROLE_GRANT",
    "ROLE_EXISTS",
    "SCHEMA_CHECKS",
    "SCHEMA_EXISTS",
    "SCHEMA_IDENTIFIER",
    "WRITE_DATABASE_ROLE",
    "Auditor",
    "SchemaSnapshot",
    "audit",
    "check_principal_assignments",
    "check_role_hierarchy",
    "principal_scope",
    "run_checks",
    "summarize",
]
