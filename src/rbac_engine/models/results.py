"""Pydantic result payloads returned by every public engine operation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from rbac_engine.exceptions import RbacEngineError

NON_DEV_WRITE_ROLE = "N/A - Non-DEV environment"

StepStatusLiteral = Literal["SUCCESS", "UNCHANGED", "FAILED", "CANCELLED"]
ProvisionStatusLiteral = Literal["SUCCESS", "ERROR", "CANCELLED"]
FindingStatusLiteral = Literal["PASS", "FAIL", "WARNING"]
ReportStatusLiteral = Literal["COMPLIANT", "NON_COMPLIANT", "ERROR"]


class ErrorInfo(BaseModel):
    """Machine-readable error payload; ``step`` names the failing step, if any."""

    code: str
    message: str
    step: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_exception(cls, exc: RbacEngineError, *, step: str | None = None) -> "ErrorInfo":
        details: dict[str, Any] = {}
        for key, value in exc.details.items():
            details[key] = value if value is None or isinstance(value, (str, int, float, bool)) else str(value)
        return cls(code=exc.code, message=exc.message, step=step, details=details)


class StepResult(BaseModel):
    """One provisioning step: its inputs, the statements it issued, and its outcome."""

    name: str
    status: StepStatusLiteral
    inputs: dict[str, Any] = Field(default_factory=dict)
    statements: list[str] = Field(default_factory=list)
    message: str | None = None

    model_config = ConfigDict(extra="forbid")


class DatabaseRoles(BaseModel):
    read: str
    write: str = NON_DEV_WRITE_ROLE

    model_config = ConfigDict(extra="forbid")


class ProvisionResult(BaseModel):
    status: ProvisionStatusLiteral
    environment: str | None = None
    database: str | None = None
    schema_name: str | None = Field(default=None, alias="schema")
    database_roles: DatabaseRoles | None = None
    object_owner: str | None = None
    steps: list[StepResult] = Field(default_factory=list)
    error: ErrorInfo | None = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @property
    def ok(self) -> bool:
        return self.status == "SUCCESS"


class ComplianceFinding(BaseModel):
    """One check's outcome with expected versus actual state."""

    check_id: str
    scope: str
    status: FindingStatusLiteral
    expected: Any = None
    actual: Any = None
    message: str = ""

    model_config = ConfigDict(extra="forbid")


class SchemaReport(BaseModel):
    schema_name: str = Field(alias="schema")
    status: Literal["COMPLIANT", "NON_COMPLIANT"]
    issues: int = 0
    findings: list[ComplianceFinding] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ComplianceReport(BaseModel):
    """Audit outcome for one database (one or all of its schemas)."""

    status: ReportStatusLiteral
    environment: str | None = None
    database: str | None = None
    physical_database: str | None = None
    schemas_checked: int = 0
    total_issues: int = 0
    schema_results: list[SchemaReport] = Field(default_factory=list)
    role_hierarchy: list[ComplianceFinding] = Field(default_factory=list)
    principal_assignments: list[ComplianceFinding] = Field(default_factory=list)
    timestamp: datetime
    error: ErrorInfo | None = None

    model_config = ConfigDict(extra="forbid")

    def failures(self) -> list[tuple[str | None, ComplianceFinding]]:
        """FAIL findings paired with their schema (``None`` for environment-level ones)."""

        failed: list[tuple[str | None, ComplianceFinding]] = []
        for schema_report in self.schema_results:
            failed.extend((schema_report.schema_name, f) for f in schema_report.findings if f.status == "FAIL")
        failed.extend((None, f) for f in self.role_hierarchy if f.status == "FAIL")
        failed.extend((None, f) for f in self.principal_assignments if f.status == "FAIL")
        return failed


class RectificationAction(BaseModel):
    action: str
    check_id: str
    schema_name: str | None = Field(default=None, alias="schema")
    scope: str
    statements: list[str] = Field(default_factory=list)
    status: Literal["PLANNED", "APPLIED", "FAILED", "SKIPPED"] = "PLANNED"
    message: str | None = None

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class BeforeAfter(BaseModel):
    check_id: str
    scope: str
    before: FindingStatusLiteral
    after: FindingStatusLiteral | None = None

    model_config = ConfigDict(extra="forbid")


class RectificationResult(BaseModel):
    status: Literal["SUCCESS", "PARTIAL", "ERROR", "CANCELLED", "DRY_RUN"]
    dry_run: bool
    environment: str | None = None
    database: str | None = None
    actions_planned: list[RectificationAction] = Field(default_factory=list)
    actions_applied: list[RectificationAction] = Field(default_factory=list)
    skipped: list[ComplianceFinding] = Field(default_factory=list)
    before_after: list[BeforeAfter] = Field(default_factory=list)
    error: ErrorInfo | None = None

    model_config = ConfigDict(extra="forbid")


class RoleOperationResult(BaseModel):
    """Outcome of an access/service/principal role operation."""

    status: Literal["SUCCESS", "ERROR"]
    operation: str
    role: str | None = None
    grantee: str | None = None
    statements: list[str] = Field(default_factory=list)
    message: str | None = None
    error: ErrorInfo | None = None

    model_config = ConfigDict(extra="forbid")


class BootstrapResult(BaseModel):
    status: Literal["SUCCESS", "ERROR"]
    environments: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)
    statements: list[str] = Field(default_factory=list)
    error: ErrorInfo | None = None

    model_config = ConfigDict(extra="forbid")


__all__ = [
    "NON_DEV_WRITE_ROLE",
    "BeforeAfter",
    "BootstrapResult",
    "ComplianceFinding",
    "ComplianceReport",
    "DatabaseRoles",
    "ErrorInfo",
    "ProvisionResult",
    "RectificationAction",
    "RectificationResult",
    "RoleOperationResult",
    "SchemaReport",
    "StepResult",
]
