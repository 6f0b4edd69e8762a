"""Shared pytest fixtures: an in-memory sandbox platform and engine components."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from rbac_engine.auditor import Auditor
from rbac_engine.common.events import EventLogger
from rbac_engine.common.logging import get_event_logger
from rbac_engine.models.results import ProvisionResult
from rbac_engine.platform.sandbox import SandboxPlatform
from rbac_engine.provisioner import Provisioner
from rbac_engine.rectifier import Rectifier
from rbac_engine.roles import RoleManager


@pytest.fixture()
def sandbox() -> Iterator[SandboxPlatform]:
    """Fresh in-memory sandbox per test."""

    platform = SandboxPlatform.from_url("sqlite://")
    try:
        yield platform
    finally:
        platform.close()


@pytest.fixture()
def events() -> EventLogger:
    return get_event_logger()


@pytest.fixture()
def provisioner(sandbox: SandboxPlatform, events: EventLogger) -> Provisioner:
    return Provisioner(sandbox, events=events)


@pytest.fixture()
def auditor(sandbox: SandboxPlatform, events: EventLogger) -> Auditor:
    return Auditor(sandbox, events=events)


@pytest.fixture()
def rectifier(sandbox: SandboxPlatform, events: EventLogger) -> Rectifier:
    return Rectifier(sandbox, events=events)


@pytest.fixture()
def role_manager(sandbox: SandboxPlatform, events: EventLogger) -> RoleManager:
    return RoleManager(sandbox, events=events)


@pytest.fixture()
def hr_dev(provisioner: Provisioner) -> ProvisionResult:
    """HR.EMPLOYEES provisioned in DEV."""

    result = provisioner.provision("DEV", "HR", "EMPLOYEES")
    assert result.status == "SUCCESS", result.error
    return result
