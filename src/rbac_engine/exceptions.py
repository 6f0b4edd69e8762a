"""Engine error hierarchy."""

from __future__ import annotations


class RbacEngineError(Exception):
    """Base class for engine-specific exceptions.

    ``code`` is the machine-readable identifier surfaced to callers in
    result payloads (``ErrorInfo.code``).
    """

    code = "RBAC_ENGINE_ERROR"

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidEnvironment(RbacEngineError):
    """Raised when an environment code is outside DEV/TST/UAT/PPE/PRD."""

    code = "INVALID_ENVIRONMENT"


class InvalidCapability(RbacEngineError):
    """Raised when a capability level is not one of the known tiers."""

    code = "INVALID_CAPABILITY"


class InvalidAccessLevel(RbacEngineError):
    """Raised for an unknown access level or WRITE outside DEV."""

    code = "INVALID_ACCESS_LEVEL"


class InvalidIdentifier(RbacEngineError):
    """Raised when a name cannot be rendered as an unquoted identifier."""

    code = "INVALID_IDENTIFIER"


class SchemaConflict(RbacEngineError):
    """Raised when an existing schema was created without managed access."""

    code = "SCHEMA_CONFLICT"


class RoleNotFound(RbacEngineError):
    """Raised when a dependent operation references a role or user that does not exist."""

    code = "ROLE_NOT_FOUND"


class PrincipalTypeMismatch(RbacEngineError):
    """Raised when a human-only role is granted to a service user, or vice versa."""

    code = "PRINCIPAL_TYPE_MISMATCH"


class DatabaseNotFound(RbacEngineError):
    """Raised when an audit targets a database that does not exist."""

    code = "DATABASE_NOT_FOUND"


class PlatformOperationFailed(RbacEngineError):
    """Wraps an error raised by the managed platform, message kept verbatim."""

    code = "PLATFORM_OPERATION_FAILED"

    def __init__(self, message: str, *, statement: str | None = None, **details: object) -> None:
        super().__init__(message, **details)
        self.statement = statement


class OperationCancelled(RbacEngineError):
    """Raised inside the engine when the caller's cancel event is set."""

    code = "CANCELLED"


__all__ = [
    "DatabaseNotFound",
    "InvalidAccessLevel",
    "InvalidCapability",
    "InvalidEnvironment",
    "InvalidIdentifier",
    "OperationCancelled",
    "PlatformOperationFailed",
    "PrincipalTypeMismatch",
    "RbacEngineError",
    "RoleNotFound",
    "SchemaConflict",
]
