"""Remediation of audit FAIL findings through the provisioning primitives.

Each FAIL finding with a corrective action maps to one action built from the
same ``*_ops`` primitives the provisioner uses, narrowed to the offending
element. WARNING findings and missing schemas are reported as skipped. After
applying, only the affected checks are re-run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from rbac_engine.auditor import (
    FUTURE_GRANTS,
    FUTURE_OWNERSHIP_GRANT,
    MANAGED_ACCESS,
    OBJECT_OWNERSHIP,
    PRINCIPAL_ASSIGNMENT,
    READ_DATABASE_ROLE,
    READ_ROLE_GRANT,
    ROLE_EXISTS,
    WRITE_DATABASE_ROLE,
    check_principal_assignments,
    check_role_hierarchy,
    principal_scope,
    run_checks,
)
from rbac_engine.bootstrap import environment_role_ops
from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.desired_state import DesiredState, GrantScope, build_desired_state
from rbac_engine.exceptions import OperationCancelled, PlatformOperationFailed, RbacEngineError
from rbac_engine.models.enums import Environment, ObjectClass
from rbac_engine.models.results import (
    BeforeAfter,
    ComplianceFinding,
    ComplianceReport,
    ErrorInfo,
    RectificationAction,
    RectificationResult,
)
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme
from rbac_engine.operations import Grantee, Operation, RevokeRole, render
from rbac_engine.platform.base import Platform
from rbac_engine.provisioner import (
    database_role_ops,
    future_ownership_ops,
    managed_access_ops,
    ownership_ops,
    privilege_ops,
    read_linkage_ops,
)
from rbac_engine.runner import OperationRunner

ACTION_NAMES: dict[str, str] = {
    MANAGED_ACCESS: "ENABLE_MANAGED_ACCESS",
    READ_DATABASE_ROLE: "CREATE_READ_DATABASE_ROLE",
    WRITE_DATABASE_ROLE: "CREATE_WRITE_DATABASE_ROLE",
    OBJECT_OWNERSHIP: "TRANSFER_EXISTING_OWNERSHIP",
    FUTURE_OWNERSHIP_GRANT: "CONFIGURE_FUTURE_OWNERSHIP",
    FUTURE_GRANTS: "GRANT_FUTURE_PRIVILEGES",
    READ_ROLE_GRANT: "GRANT_READ_ROLE_TO_END_USER",
    ROLE_EXISTS: "CREATE_FUNCTIONAL_ROLES",
    PRINCIPAL_ASSIGNMENT: "REVOKE_ROLE_FROM_PRINCIPAL",
}


@dataclass
class _Planned:
    action: RectificationAction
    finding: ComplianceFinding
    ops: list[Operation] = field(default_factory=list)
    state: DesiredState | None = None
    # Set when the action could not be planned; it is reported FAILED and never run.
    error: RbacEngineError | None = None


class Rectifier:
    """Turn a :class:`ComplianceReport` into corrective platform operations."""

    def __init__(
        self,
        platform: Platform,
        *,
        naming: NamingScheme = DEFAULT_NAMING,
        events: EventLogger | None = None,
    ) -> None:
        self._platform = platform
        self._naming = naming
        self._events = (events or get_event_logger()).child("rectify")

    def rectify(
        self,
        report: ComplianceReport,
        dry_run: bool = True,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RectificationResult:
        result = RectificationResult(
            status="DRY_RUN" if dry_run else "SUCCESS",
            dry_run=dry_run,
            environment=report.environment,
            database=report.physical_database or report.database,
        )
        if report.status == "ERROR":
            result.status = "ERROR"
            result.error = report.error
            return result

        try:
            planned, skipped = self._plan(report)
        except RbacEngineError as exc:
            return self._failed(result, exc)
        except SQLAlchemyError as exc:
            return self._failed(result, PlatformOperationFailed(str(exc)))

        result.skipped = skipped
        result.actions_planned = [item.action for item in planned]
        unplannable = next((item.error for item in planned if item.error is not None), None)
        if unplannable is not None:
            result.error = ErrorInfo.from_exception(unplannable)
        self._events.emit(
            "planned",
            message=f"{len(planned)} corrective action(s) planned",
            actions=len(planned),
            skipped=len(skipped),
            dry_run=dry_run,
        )
        if dry_run:
            return result

        runner = OperationRunner(self._platform, self._events, cancel_event=cancel_event)
        attempted: list[_Planned] = []
        for item in planned:
            applied, error = self._apply(runner, item)
            attempted.append(item)
            result.actions_applied.append(applied)
            if isinstance(error, OperationCancelled):
                result.status = "CANCELLED"
                result.error = ErrorInfo.from_exception(error)
                break
            if error is not None:
                result.status = "PARTIAL"
                result.error = result.error or ErrorInfo.from_exception(error)

        try:
            result.before_after = self._recheck(report, attempted)
        except RbacEngineError as exc:
            return self._failed(result, exc)
        except SQLAlchemyError as exc:
            return self._failed(result, PlatformOperationFailed(str(exc)))

        self._events.emit(
            "completed",
            message=f"Rectification of {result.database}: {result.status}",
            level=logging.INFO if result.status == "SUCCESS" else logging.WARNING,
            status=result.status,
            applied=sum(1 for action in result.actions_applied if action.status == "APPLIED"),
        )
        return result

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(self, report: ComplianceReport) -> tuple[list[_Planned], list[ComplianceFinding]]:
        env = Environment.parse(report.environment)
        planned: list[_Planned] = []
        skipped: list[ComplianceFinding] = []

        # Database roles hang off the functional ladder, so the ladder goes first.
        missing_roles = [f for f in report.role_hierarchy if f.status == "FAIL"]
        skipped.extend(f for f in report.role_hierarchy if f.status == "WARNING")
        if missing_roles:
            ops = environment_role_ops(env, self._naming)
            for finding in missing_roles:
                planned.append(self._planned(finding, None, ops))
                ops = []

        for schema_report in report.schema_results:
            schema = schema_report.schema_name
            for finding in schema_report.findings:
                if finding.status == "PASS":
                    continue
                if finding.status == "WARNING" or finding.check_id not in ACTION_NAMES:
                    skipped.append(finding)
                    continue
                planned.append(self._plan_finding(env, report.database, schema, finding))

        skipped.extend(f for f in report.principal_assignments if f.status == "WARNING")
        for finding in report.principal_assignments:
            if finding.status == "FAIL":
                planned.append(self._plan_finding(env, report.database, None, finding))
        return planned, skipped

    def _plan_finding(
        self, env: Environment, database: str | None, schema: str | None, finding: ComplianceFinding
    ) -> _Planned:
        """Plan one schema or principal finding; a failure is confined to its own action."""

        state: DesiredState | None = None
        try:
            if schema is None:
                return self._planned(finding, None, self._principal_ops(finding))
            state = build_desired_state(env, database or "", schema, self._naming)
            return self._planned(finding, state, self._ops_for(finding, state), schema=schema)
        except RbacEngineError as exc:
            error = exc
        except SQLAlchemyError as exc:
            error = PlatformOperationFailed(str(exc))

        action = RectificationAction(
            action=ACTION_NAMES[finding.check_id],
            check_id=finding.check_id,
            schema=schema,
            scope=finding.scope,
            status="FAILED",
            message=error.message,
        )
        self._events.emit(
            "unplannable",
            message=f"{action.action} {action.scope}: {error.message}",
            level=logging.WARNING,
            check_id=finding.check_id,
            scope=finding.scope,
            code=error.code,
        )
        return _Planned(action=action, finding=finding, state=state, error=error)

    def _planned(
        self,
        finding: ComplianceFinding,
        state: DesiredState | None,
        ops: list[Operation],
        *,
        schema: str | None = None,
    ) -> _Planned:
        action = RectificationAction(
            action=ACTION_NAMES[finding.check_id],
            check_id=finding.check_id,
            schema=schema,
            scope=finding.scope,
            statements=[render(op) for op in ops],
        )
        return _Planned(action=action, finding=finding, ops=ops, state=state)

    def _principal_ops(self, finding: ComplianceFinding) -> list[Operation]:
        user, role = principal_scope(finding.scope)
        return [RevokeRole(role, Grantee.user(user))]

    def _ops_for(self, finding: ComplianceFinding, state: DesiredState) -> list[Operation]:
        check_id = finding.check_id
        if check_id == MANAGED_ACCESS:
            return managed_access_ops(state)
        if check_id == READ_DATABASE_ROLE:
            roles = [state.read_role]
            return database_role_ops(state, roles) + privilege_ops(state, roles) + read_linkage_ops(state)
        if check_id == WRITE_DATABASE_ROLE:
            roles = [state.write_role] if state.write_role is not None else []
            if not roles:
                return []
            return database_role_ops(state, roles) + privilege_ops(state, roles)
        if check_id == OBJECT_OWNERSHIP:
            container = state.container
            name = finding.scope.rsplit(".", 1)[-1]
            offending = [
                obj
                for obj in self._platform.objects(container.physical_database, container.schema)
                if obj.name == name and obj.object_class in state.ownership_classes
                and obj.owner != container.object_owner
            ]
            return ownership_ops(state, offending)
        if check_id == FUTURE_OWNERSHIP_GRANT:
            classes = [ObjectClass(value) for value in finding.actual] if isinstance(finding.actual, list) else None
            return future_ownership_ops(state, classes)
        if check_id == FUTURE_GRANTS:
            roles = [role for role in state.database_roles if role.name == finding.scope]
            if not roles:
                return []
            return privilege_ops(state, roles, scopes=[GrantScope.FUTURE])
        if check_id == READ_ROLE_GRANT:
            return read_linkage_ops(state)
        raise ValueError(f"No corrective action for {check_id}")

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------

    def _apply(self, runner: OperationRunner, item: _Planned) -> tuple[RectificationAction, RbacEngineError | None]:
        if item.error is not None:
            return item.action, item.error

        start = len(runner.executed)
        error: RbacEngineError | None = None
        try:
            runner.run_all(item.ops)
        except RbacEngineError as exc:
            error = exc
        except SQLAlchemyError as exc:
            error = PlatformOperationFailed(str(exc))

        applied = item.action.model_copy(
            update={
                "statements": [execution.statement for execution in runner.executed[start:]],
                "status": "APPLIED" if error is None else "FAILED",
                "message": error.message if error is not None else None,
            }
        )
        self._events.emit(
            "action",
            message=f"{applied.action} {applied.scope}: {applied.status}",
            level=logging.INFO if error is None else logging.WARNING,
            action=applied.action,
            check_id=applied.check_id,
            scope=applied.scope,
            status=applied.status,
        )
        return applied, error

    def _recheck(self, report: ComplianceReport, attempted: Iterable[_Planned]) -> list[BeforeAfter]:
        attempted = list(attempted)
        after: dict[tuple[str | None, str, str], str] = {}

        account_checks = {
            ROLE_EXISTS: check_role_hierarchy,
            PRINCIPAL_ASSIGNMENT: check_principal_assignments,
        }
        for check_id, check in account_checks.items():
            if any(item.finding.check_id == check_id for item in attempted):
                for finding in check(self._platform, report.environment, naming=self._naming):
                    after[(None, finding.check_id, finding.scope)] = finding.status

        by_schema: dict[str, tuple[DesiredState, set[str]]] = {}
        for item in attempted:
            if item.state is None:
                continue
            state, check_ids = by_schema.setdefault(item.state.container.schema, (item.state, set()))
            check_ids.add(item.finding.check_id)
        for schema, (state, check_ids) in by_schema.items():
            for finding in run_checks(self._platform, state, check_ids, naming=self._naming):
                after[(schema, finding.check_id, finding.scope)] = finding.status

        pairs: list[BeforeAfter] = []
        for item in attempted:
            if item.finding.check_id in account_checks:
                # A revoked assignment drops out of the re-check entirely.
                status: str | None = after.get((None, item.finding.check_id, item.finding.scope), "PASS")
            elif item.state is None:
                # No desired state to re-check against.
                status = None
            else:
                # A failing scope that no longer shows up was resolved.
                key = (item.state.container.schema, item.finding.check_id, item.finding.scope)
                status = after.get(key, "PASS")
            pairs.append(
                BeforeAfter(
                    check_id=item.finding.check_id,
                    scope=item.finding.scope,
                    before=item.finding.status,
                    after=status,
                )
            )
        return pairs

    def _failed(self, result: RectificationResult, exc: RbacEngineError) -> RectificationResult:
        self._events.emit("failed", message=exc.message, level=logging.WARNING, code=exc.code)
        result.status = "ERROR"
        result.error = ErrorInfo.from_exception(exc)
        return result


def rectify(
    platform: Platform,
    report: ComplianceReport,
    dry_run: bool = True,
    *,
    naming: NamingScheme = DEFAULT_NAMING,
    events: EventLogger | None = None,
    cancel_event: threading.Event | None = None,
) -> RectificationResult:
    return Rectifier(platform, naming=naming, events=events).rectify(report, dry_run, cancel_event=cancel_event)


__all__ = ["ACTION_NAMES", "Rectifier", "rectify"]
