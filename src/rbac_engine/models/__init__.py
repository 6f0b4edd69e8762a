"""Typed values and result payloads for the engine."""

from __future__ import annotations

from rbac_engine.models.enums import (
    AccessLevel,
    CapabilityLevel,
    Environment,
    ObjectClass,
    PrincipalType,
    RoleKind,
)
from rbac_engine.models.results import (
    NON_DEV_WRITE_ROLE,
    BeforeAfter,
    BootstrapResult,
    ComplianceFinding,
    ComplianceReport,
    DatabaseRoles,
    ErrorInfo,
    ProvisionResult,
    RectificationAction,
    RectificationResult,
    RoleOperationResult,
    SchemaReport,
    StepResult,
)

__all__ = [
    "NON_DEV_WRITE_ROLE",
    "AccessLevel",
    "BeforeAfter",
    "BootstrapResult",
    "CapabilityLevel",
    "ComplianceFinding",
    "ComplianceReport",
    "DatabaseRoles",
    "Environment",
    "ErrorInfo",
    "ObjectClass",
    "PrincipalType",
    "ProvisionResult",
    "RectificationAction",
    "RectificationResult",
    "RoleKind",
    "RoleOperationResult",
    "SchemaReport",
    "StepResult",
]
