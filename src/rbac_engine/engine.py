"""Engine facade wiring settings, logging and the platform into each operation."""

from __future__ import annotations

import threading
from typing import Iterable

from rbac_engine.auditor import Auditor
from rbac_engine.bootstrap import bootstrap
from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import configure_logging, get_event_logger
from rbac_engine.models.results import (
    BootstrapResult,
    ComplianceReport,
    ProvisionResult,
    RectificationResult,
    RoleOperationResult,
)
from rbac_engine.naming import NamingScheme
from rbac_engine.platform import Platform, connect
from rbac_engine.provisioner import Provisioner
from rbac_engine.rectifier import Rectifier
from rbac_engine.roles import RoleManager
from rbac_engine.settings import Settings, get_settings


class RbacEngine:
    """Single entry point for provisioning, auditing, rectification and role management.

    Every method returns a result model; engine errors are reported through the
    result's ``status`` and ``error`` fields.
    """

    def __init__(
        self,
        platform: Platform,
        *,
        naming: NamingScheme | None = None,
        events: EventLogger | None = None,
    ) -> None:
        self.platform = platform
        self.naming = naming or NamingScheme()
        self.events = events or get_event_logger()
        self.roles = RoleManager(platform, naming=self.naming, events=self.events)

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, configure: bool = True) -> "RbacEngine":
        settings = settings or get_settings()
        events = (
            configure_logging(log_format=settings.log_format, log_level=settings.log_level)
            if configure
            else get_event_logger()
        )
        return cls(connect(settings), naming=settings.naming_scheme(), events=events)

    def close(self) -> None:
        self.platform.close()

    def __enter__(self) -> "RbacEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------

    def provision(
        self,
        environment: str,
        database: str,
        schema: str,
        comment: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> ProvisionResult:
        provisioner = Provisioner(self.platform, naming=self.naming, events=self.events)
        return provisioner.provision(environment, database, schema, comment, cancel_event=cancel_event)

    def audit(self, environment: str, database: str, schema: str | None = None) -> ComplianceReport:
        return Auditor(self.platform, naming=self.naming, events=self.events).audit(environment, database, schema)

    def rectify(
        self,
        report: ComplianceReport,
        dry_run: bool = True,
        *,
        cancel_event: threading.Event | None = None,
    ) -> RectificationResult:
        rectifier = Rectifier(self.platform, naming=self.naming, events=self.events)
        return rectifier.rectify(report, dry_run, cancel_event=cancel_event)

    def audit_and_rectify(
        self,
        environment: str,
        database: str,
        schema: str | None = None,
        *,
        dry_run: bool = True,
        cancel_event: threading.Event | None = None,
    ) -> RectificationResult:
        return self.rectify(self.audit(environment, database, schema), dry_run, cancel_event=cancel_event)

    def bootstrap(
        self,
        environments: Iterable[str] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BootstrapResult:
        return bootstrap(
            self.platform,
            environments,
            naming=self.naming,
            events=self.events,
            cancel_event=cancel_event,
        )

    # Role management passthroughs ----------------------------------------

    def create_access_role(self, environment: str, domain: str, comment: str | None = None) -> RoleOperationResult:
        return self.roles.create_access_role(environment, domain, comment)

    def link_schema_to_access_role(
        self, environment: str, domain: str, database: str, schema: str, access_level: str = "READ"
    ) -> RoleOperationResult:
        return self.roles.link_schema_to_access_role(environment, domain, database, schema, access_level)

    def create_service_role(
        self, environment: str, domain: str, capability: str, comment: str | None = None
    ) -> RoleOperationResult:
        return self.roles.create_service_role(environment, domain, capability, comment)

    def add_access_to_service_role(
        self, environment: str, domain: str, capability: str, additional_domain: str
    ) -> RoleOperationResult:
        return self.roles.add_access_to_service_role(environment, domain, capability, additional_domain)

    def grant_user_access(
        self, user: str, environment: str, domain: str, capability: str | None = None
    ) -> RoleOperationResult:
        return self.roles.grant_user_access(user, environment, domain, capability)

    def grant_service_account(
        self, user: str, environment: str, domain: str, capability: str, set_default: bool = True
    ) -> RoleOperationResult:
        return self.roles.grant_service_account(user, environment, domain, capability, set_default)


__all__ = ["RbacEngine"]
