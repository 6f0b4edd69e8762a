from __future__ import annotations

import threading

from rbac_engine.bootstrap import bootstrap
from rbac_engine.models.enums import CapabilityLevel
from rbac_engine.naming import DEFAULT_NAMING
from rbac_engine.operations import GranteeKind
from rbac_engine.platform.sandbox import SandboxPlatform


def _holders(sandbox: SandboxPlatform, role: str) -> set[str]:
    return {g.grantee for g in sandbox.grants_of_role(role) if g.grantee_kind is GranteeKind.ROLE}


def test_bootstrap_creates_system_roles_and_ladders(sandbox: SandboxPlatform) -> None:
    result = bootstrap(sandbox, ["DEV", "PRD"])

    assert result.status == "SUCCESS"
    assert result.environments == ["DEV", "PRD"]
    roles = set(sandbox.account_roles())
    assert {"SRS_ACCOUNT_ADMIN", "SRS_SECURITY_ADMIN", "SRS_USER_ADMIN", "SRS_SYSTEM_ADMIN", "SRS_DEVOPS"} <= roles
    for env in ("DEV", "PRD"):
        ladder = [DEFAULT_NAMING.functional_role(env, cap) for cap in CapabilityLevel.ladder()]
        assert set(ladder) <= roles
        for lower, higher in zip(ladder, ladder[1:]):
            assert higher in _holders(sandbox, lower)
        assert "SRS_SYSTEM_ADMIN" in _holders(sandbox, ladder[-1])
    assert not any(role.startswith("SRF_TST_") for role in roles)


def test_system_hierarchy(sandbox: SandboxPlatform) -> None:
    bootstrap(sandbox, ["DEV"])

    assert _holders(sandbox, "SRS_SECURITY_ADMIN") == {"SRS_ACCOUNT_ADMIN"}
    assert _holders(sandbox, "SRS_USER_ADMIN") == {"SRS_SECURITY_ADMIN"}
    assert _holders(sandbox, "SRS_SYSTEM_ADMIN") == {"SRS_ACCOUNT_ADMIN"}
    assert _holders(sandbox, "SRS_DEVOPS") == {"SRS_SYSTEM_ADMIN"}


def test_bootstrap_defaults_to_every_environment_and_is_idempotent(sandbox: SandboxPlatform) -> None:
    first = bootstrap(sandbox)
    roles = sandbox.account_roles().all()
    second = bootstrap(sandbox)

    assert first.status == second.status == "SUCCESS"
    assert first.environments == ["DEV", "TST", "UAT", "PPE", "PRD"]
    assert sandbox.account_roles().all() == roles
    assert len(roles) == 5 + 5 * 6


def test_bootstrap_rejects_unknown_environment(sandbox: SandboxPlatform) -> None:
    result = bootstrap(sandbox, ["DEV", "QA"])

    assert result.status == "ERROR"
    assert result.error.code == "INVALID_ENVIRONMENT"
    assert sandbox.account_roles().all() == []


def test_bootstrap_honours_cancellation(sandbox: SandboxPlatform) -> None:
    cancel = threading.Event()
    cancel.set()

    result = bootstrap(sandbox, ["DEV"], cancel_event=cancel)

    assert result.status == "ERROR"
    assert result.error.code == "CANCELLED"
    assert result.statements == []
