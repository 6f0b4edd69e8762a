"""Fixed enumerations shared by every engine component."""

from __future__ import annotations

from enum import Enum

from rbac_engine.exceptions import InvalidAccessLevel, InvalidCapability, InvalidEnvironment


class Environment(str, Enum):
    """Lifecycle environments, in promotion order."""

    DEV = "DEV"
    TST = "TST"
    UAT = "UAT"
    PPE = "PPE"
    PRD = "PRD"

    @classmethod
    def parse(cls, value: "Environment | str | None") -> "Environment":
        if isinstance(value, cls):
            return value
        normalized = ("" if value is None else str(value)).strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise InvalidEnvironment(
                f"Invalid environment. Must be one of: {allowed}",
                environment_provided=value,
            ) from None

    @property
    def is_dev(self) -> bool:
        return self is Environment.DEV


class CapabilityLevel(str, Enum):
    """Functional capability tiers, lowest first. Used for naming only."""

    END_USER = "END_USER"
    ANALYST = "ANALYST"
    DEVELOPER = "DEVELOPER"
    TEAM_LEADER = "TEAM_LEADER"
    DATA_SCIENTIST = "DATA_SCIENTIST"
    DBADMIN = "DBADMIN"

    @classmethod
    def parse(cls, value: "CapabilityLevel | str | None") -> "CapabilityLevel":
        if isinstance(value, cls):
            return value
        normalized = ("" if value is None else str(value)).strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise InvalidCapability(
                f"Invalid capability level. Must be one of: {allowed}",
                capability_provided=value,
            ) from None

    @classmethod
    def ladder(cls) -> tuple["CapabilityLevel", ...]:
        return tuple(cls)


class RoleKind(str, Enum):
    SYSTEM = "System"
    FUNCTIONAL = "Functional"
    ACCESS = "Access"
    DATABASE = "Database"
    SERVICE_WRAPPER = "ServiceWrapper"


class AccessLevel(str, Enum):
    READ = "READ"
    WRITE = "WRITE"

    @classmethod
    def parse(cls, value: "AccessLevel | str | None") -> "AccessLevel":
        if isinstance(value, cls):
            return value
        normalized = ("" if value is None else str(value)).strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidAccessLevel(
                "Invalid access level. Must be READ or WRITE",
                access_level_provided=value,
            ) from None


class PrincipalType(str, Enum):
    """User types as reported by the platform's user catalog."""

    PERSON = "PERSON"
    SERVICE = "SERVICE"
    LEGACY_SERVICE = "LEGACY_SERVICE"

    @property
    def is_service(self) -> bool:
        return self in (PrincipalType.SERVICE, PrincipalType.LEGACY_SERVICE)


class ObjectClass(str, Enum):
    """Schema object classes the engine grants on. Values are the singular SQL keyword."""

    TABLE = "TABLE"
    VIEW = "VIEW"
    MATERIALIZED_VIEW = "MATERIALIZED VIEW"
    DYNAMIC_TABLE = "DYNAMIC TABLE"
    EXTERNAL_TABLE = "EXTERNAL TABLE"
    STREAM = "STREAM"
    FUNCTION = "FUNCTION"
    PROCEDURE = "PROCEDURE"
    SEQUENCE = "SEQUENCE"
    FILE_FORMAT = "FILE FORMAT"
    STAGE = "STAGE"
    TASK = "TASK"
    PIPE = "PIPE"
    TAG = "TAG"

    @property
    def plural(self) -> str:
        return f"{self.value}S"

    @property
    def is_routine(self) -> bool:
        """Functions and procedures are addressed by name plus argument types."""
        return self in (ObjectClass.FUNCTION, ObjectClass.PROCEDURE)

    @classmethod
    def from_keyword(cls, keyword: str) -> "ObjectClass":
        """Resolve ``TABLES``, ``BASE TABLE``, ``file_format`` and similar spellings."""

        text = " ".join(str(keyword).replace("_", " ").upper().split())
        if text == "BASE TABLE":
            return cls.TABLE
        for member in cls:
            if text in (member.value, member.plural):
                return member
        raise ValueError(f"Unknown object class: {keyword!r}")


__all__ = [
    "AccessLevel",
    "CapabilityLevel",
    "Environment",
    "ObjectClass",
    "PrincipalType",
    "RoleKind",
]
