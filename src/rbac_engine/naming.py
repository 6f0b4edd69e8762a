"""Canonical role and resource names.

Every name the engine creates, grants to, or audits is produced here from
``(kind, environment, domain, capability, resource)``. The prefixes come from
an injected :class:`NamingScheme`, so one deployment can provision and audit
with the same values without relying on module-level constants.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple

from rbac_engine.exceptions import InvalidIdentifier
from rbac_engine.models.enums import AccessLevel, CapabilityLevel, Environment, RoleKind

_IDENTIFIER_RE = re.compile(r"^[A-Z_][A-Z0-9_$]*$")
MAX_IDENTIFIER_LENGTH = 255


def normalize(value: str) -> str:
    return str(value).strip().upper()


class SchemaRef(NamedTuple):
    """Logical (database, schema) pair, before the environment suffix is applied."""

    database: str
    schema: str


@dataclass(frozen=True)
class NamingScheme:
    system_prefix: str = "SRS"
    functional_prefix: str = "SRF"
    access_prefix: str = "SRA"
    database_role_prefix: str = "SRD"
    service_prefix: str = "SRW"
    deployment_role_name: str = "DEVOPS"
    system_admin_role_name: str = "SYSTEM_ADMIN"

    def __post_init__(self) -> None:
        prefixes = [
            self.system_prefix,
            self.functional_prefix,
            self.access_prefix,
            self.database_role_prefix,
            self.service_prefix,
        ]
        normalized = [normalize(p) for p in prefixes]
        if any(not p for p in normalized):
            raise ValueError("naming prefixes must be non-empty")
        if len(set(normalized)) != len(normalized):
            raise ValueError("naming prefixes must be distinct per role kind")

    def prefix_for(self, kind: RoleKind) -> str:
        return normalize(
            {
                RoleKind.SYSTEM: self.system_prefix,
                RoleKind.FUNCTIONAL: self.functional_prefix,
                RoleKind.ACCESS: self.access_prefix,
                RoleKind.DATABASE: self.database_role_prefix,
                RoleKind.SERVICE_WRAPPER: self.service_prefix,
            }[kind]
        )

    # Convenience wrappers -------------------------------------------------

    def database_name(self, environment: Environment | str, database: str) -> str:
        return database_name(environment, database)

    def functional_role(self, environment: Environment | str, capability: CapabilityLevel | str) -> str:
        return derive(RoleKind.FUNCTIONAL, environment, capability=capability, scheme=self)

    def access_role(self, environment: Environment | str, domain: str) -> str:
        return derive(RoleKind.ACCESS, environment, domain=domain, scheme=self)

    def service_role(
        self, environment: Environment | str, domain: str, capability: CapabilityLevel | str
    ) -> str:
        return derive(
            RoleKind.SERVICE_WRAPPER, environment, domain=domain, capability=capability, scheme=self
        )

    def database_role(
        self,
        environment: Environment | str,
        database: str,
        schema: str,
        access_level: AccessLevel | str = AccessLevel.READ,
    ) -> str:
        return derive(
            RoleKind.DATABASE,
            environment,
            resource=SchemaRef(database, schema),
            access_level=access_level,
            scheme=self,
        )

    def system_role(self, name: str) -> str:
        return derive(RoleKind.SYSTEM, None, resource=name, scheme=self)

    @property
    def deployment_role(self) -> str:
        return self.system_role(self.deployment_role_name)

    @property
    def system_admin_role(self) -> str:
        return self.system_role(self.system_admin_role_name)


DEFAULT_NAMING = NamingScheme()


def database_name(environment: Environment | str, database: str) -> str:
    """Physical database name: ``<DATABASE>_<ENVIRONMENT>``."""

    env = Environment.parse(environment)
    return f"{normalize(database)}_{env.value}"


def derive(
    kind: RoleKind | str,
    environment: Environment | str | None,
    domain: str | None = None,
    capability: CapabilityLevel | str | None = None,
    resource: SchemaRef | tuple[str, str] | str | None = None,
    *,
    access_level: AccessLevel | str = AccessLevel.READ,
    scheme: NamingScheme = DEFAULT_NAMING,
) -> str:
    """Return the canonical identifier for a role.

    - Database:        ``<prefix>_<DATABASE>_<ENVIRONMENT>_<SCHEMA>_<READ|WRITE>``
    - Access:          ``<prefix>_<ENVIRONMENT>_<DOMAIN>_ACCESS``
    - Functional:      ``<prefix>_<ENVIRONMENT>_<CAPABILITY>``
    - ServiceWrapper:  ``<prefix>_<ENVIRONMENT>_<DOMAIN>_<CAPABILITY>``
    - System:          ``<prefix>_<NAME>`` (``resource`` is the name; environment unused)

    Raises ``InvalidEnvironment`` / ``InvalidCapability`` for values outside the
    fixed enumerations. A missing part required by ``kind`` is a caller bug and
    raises ``ValueError``.
    """

    role_kind = RoleKind(kind)
    prefix = scheme.prefix_for(role_kind)

    if role_kind is RoleKind.SYSTEM:
        if environment is not None:
            Environment.parse(environment)
        if not isinstance(resource, str) or not resource.strip():
            raise ValueError("system roles need the role name as resource")
        return f"{prefix}_{normalize(resource)}"

    env = Environment.parse(environment)

    if role_kind is RoleKind.FUNCTIONAL:
        cap = CapabilityLevel.parse(capability)
        return f"{prefix}_{env.value}_{cap.value}"

    if role_kind is RoleKind.ACCESS:
        return f"{prefix}_{env.value}_{_require(domain, 'domain')}_ACCESS"

    if role_kind is RoleKind.SERVICE_WRAPPER:
        cap = CapabilityLevel.parse(capability)
        return f"{prefix}_{env.value}_{_require(domain, 'domain')}_{cap.value}"

    # RoleKind.DATABASE
    if isinstance(resource, str) or resource is None or len(resource) != 2:
        raise ValueError("database roles need a (database, schema) resource")
    ref = SchemaRef(*resource)
    level = AccessLevel.parse(access_level)
    return (
        f"{prefix}_{_require(ref.database, 'database')}_{env.value}_"
        f"{_require(ref.schema, 'schema')}_{level.value}"
    )


def _require(value: str | None, label: str) -> str:
    text = normalize(value) if value is not None else ""
    if not text:
        raise ValueError(f"{label} is required for this role kind")
    return text


def validate_identifier(name: str) -> str:
    """Check ``name`` renders as an unquoted platform identifier."""

    text = str(name)
    if not text or len(text) > MAX_IDENTIFIER_LENGTH or not _IDENTIFIER_RE.match(text):
        raise InvalidIdentifier(f"Invalid identifier: {name!r}", identifier=name)
    return text


__all__ = [
    "DEFAULT_NAMING",
    "NamingScheme",
    "SchemaRef",
    "database_name",
    "derive",
    "normalize",
    "validate_identifier",
]
