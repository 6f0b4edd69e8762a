from __future__ import annotations

import threading

from rbac_engine.desired_state import build_desired_state
from rbac_engine.exceptions import PlatformOperationFailed
from rbac_engine.models.enums import ObjectClass
from rbac_engine.models.results import NON_DEV_WRITE_ROLE, ProvisionResult
from rbac_engine.operations import CreateDatabase, CreateDatabaseRole, CreateSchema, GrantOwnership, GranteeKind
from rbac_engine.platform.sandbox import OWNERSHIP, SandboxPlatform, build_sandbox_engine
from rbac_engine.provisioner import (
    STEP_NAMES,
    Provisioner,
    database_role_ops,
    future_ownership_ops,
    ownership_ops,
    privilege_ops,
)


class FailingOwnershipSandbox(SandboxPlatform):
    def execute(self, op):
        if isinstance(op, GrantOwnership):
            raise PlatformOperationFailed("Insufficient privileges to operate on schema 'EMPLOYEES'")
        return super().execute(op)


class CancelAfterFirstDatabaseRole(SandboxPlatform):
    def __init__(self, engine, cancel_event: threading.Event) -> None:
        super().__init__(engine)
        self.cancel_event = cancel_event

    def execute(self, op):
        changed = super().execute(op)
        if isinstance(op, CreateDatabaseRole):
            self.cancel_event.set()
        return changed


def _catalog(sandbox: SandboxPlatform) -> tuple:
    return (
        sandbox.account_roles().all(),
        sandbox.database_roles("HR_DEV").all(),
        sandbox.object_grants("HR_DEV", "EMPLOYEES").all(),
        sandbox.future_grants("HR_DEV", "EMPLOYEES").all(),
        sandbox.grants_of_role("SRD_HR_DEV_EMPLOYEES_READ", database="HR_DEV").all(),
    )


def test_fresh_dev_provision(hr_dev: ProvisionResult, sandbox: SandboxPlatform) -> None:
    assert hr_dev.environment == "DEV"
    assert hr_dev.database == "HR_DEV"
    assert hr_dev.schema_name == "EMPLOYEES"
    assert hr_dev.database_roles.read == "SRD_HR_DEV_EMPLOYEES_READ"
    assert hr_dev.database_roles.write == "SRD_HR_DEV_EMPLOYEES_WRITE"
    assert hr_dev.object_owner == "SRF_DEV_DEVELOPER"
    assert [step.name for step in hr_dev.steps] == list(STEP_NAMES)
    assert hr_dev.error is None

    assert sandbox.schemas("HR_DEV").first().managed_access is True
    assert set(sandbox.database_roles("HR_DEV")) == {"SRD_HR_DEV_EMPLOYEES_READ", "SRD_HR_DEV_EMPLOYEES_WRITE"}
    future_owners = {
        g.object_class: g.grantee for g in sandbox.future_grants("HR_DEV", "EMPLOYEES") if g.privilege == OWNERSHIP
    }
    assert future_owners[ObjectClass.TABLE] == "SRF_DEV_DEVELOPER"
    linkage = sandbox.grants_of_role("SRD_HR_DEV_EMPLOYEES_READ", database="HR_DEV").all()
    assert [(g.grantee, g.grantee_kind) for g in linkage] == [("SRF_DEV_END_USER", GranteeKind.ROLE)]


def test_result_serializes_schema_alias(hr_dev: ProvisionResult) -> None:
    payload = hr_dev.model_dump(mode="json", by_alias=True)
    assert payload["schema"] == "EMPLOYEES"
    assert payload["database_roles"] == {
        "read": "SRD_HR_DEV_EMPLOYEES_READ",
        "write": "SRD_HR_DEV_EMPLOYEES_WRITE",
    }


def test_non_dev_provision_is_read_only(provisioner: Provisioner, sandbox: SandboxPlatform) -> None:
    result = provisioner.provision("PRD", "HR", "EMPLOYEES")

    assert result.status == "SUCCESS"
    assert result.database == "HR_PRD"
    assert result.database_roles.read == "SRD_HR_PRD_EMPLOYEES_READ"
    assert result.database_roles.write == NON_DEV_WRITE_ROLE == "N/A - Non-DEV environment"
    assert result.object_owner == "SRS_DEVOPS"
    assert sandbox.database_roles("HR_PRD").all() == ["SRD_HR_PRD_EMPLOYEES_READ"]

    grant_create = next(step for step in result.steps if step.name == "grant_create")
    assert "GRANT USAGE ON DATABASE HR_PRD TO ROLE SRS_DEVOPS" in grant_create.statements
    assert "GRANT CREATE TABLE ON SCHEMA HR_PRD.EMPLOYEES TO ROLE SRS_DEVOPS" in grant_create.statements


def test_invalid_environment_fails_before_any_step(provisioner: Provisioner, sandbox: SandboxPlatform) -> None:
    result = provisioner.provision("QA", "HR", "EMPLOYEES")

    assert result.status == "ERROR"
    assert result.error is not None
    assert result.error.code == "INVALID_ENVIRONMENT"
    assert result.steps == []
    assert sandbox.account_roles().all() == []


def test_invalid_identifier_is_rejected(provisioner: Provisioner) -> None:
    result = provisioner.provision("DEV", "HR", "EMPLOYEES; DROP")

    assert result.status == "ERROR"
    assert result.error.code == "INVALID_IDENTIFIER"


def test_second_run_changes_nothing(provisioner: Provisioner, sandbox: SandboxPlatform, hr_dev: ProvisionResult) -> None:
    before = _catalog(sandbox)

    again = provisioner.provision("DEV", "HR", "EMPLOYEES")

    assert again.status == "SUCCESS"
    assert [step.status for step in again.steps] == ["UNCHANGED"] * len(STEP_NAMES)
    assert _catalog(sandbox) == before


def test_existing_objects_are_transferred_with_grants(provisioner: Provisioner, sandbox: SandboxPlatform) -> None:
    sandbox.execute(CreateDatabase("HR_DEV"))
    sandbox.execute(CreateSchema("HR_DEV", "EMPLOYEES", managed_access=True))
    sandbox.create_object("HR_DEV", "EMPLOYEES", "PEOPLE", owner="LEGACY_LOADER")

    result = provisioner.provision("DEV", "HR", "EMPLOYEES")

    assert result.status == "SUCCESS"
    assert sandbox.objects("HR_DEV", "EMPLOYEES").first().owner == "SRF_DEV_DEVELOPER"
    read_grants = {
        g.privilege
        for g in sandbox.object_grants("HR_DEV", "EMPLOYEES")
        if g.grantee == "SRD_HR_DEV_EMPLOYEES_READ" and g.object_name == "PEOPLE"
    }
    assert read_grants == {"SELECT"}


def test_unmanaged_schema_is_a_conflict(provisioner: Provisioner, sandbox: SandboxPlatform) -> None:
    sandbox.execute(CreateDatabase("HR_DEV"))
    sandbox.execute(CreateSchema("HR_DEV", "EMPLOYEES", managed_access=False))

    result = provisioner.provision("DEV", "HR", "EMPLOYEES")

    assert result.status == "ERROR"
    assert result.error.code == "SCHEMA_CONFLICT"
    assert result.error.step == "create_schema"
    assert [(s.name, s.status) for s in result.steps] == [
        ("create_database", "UNCHANGED"),
        ("create_schema", "FAILED"),
    ]
    assert sandbox.database_roles("HR_DEV").all() == []


def test_failure_mid_sequence_keeps_completed_steps() -> None:
    sandbox = FailingOwnershipSandbox.from_url("sqlite://")
    try:
        result = Provisioner(sandbox).provision("DEV", "HR", "EMPLOYEES")

        assert result.status == "ERROR"
        assert result.error.code == "PLATFORM_OPERATION_FAILED"
        assert result.error.step == "transfer_ownership"
        assert "Insufficient privileges" in result.error.message
        assert [s.status for s in result.steps] == ["SUCCESS", "SUCCESS", "SUCCESS", "SUCCESS", "FAILED"]
        # Nothing is rolled back.
        assert set(sandbox.database_roles("HR_DEV")) == {"SRD_HR_DEV_EMPLOYEES_READ", "SRD_HR_DEV_EMPLOYEES_WRITE"}
    finally:
        sandbox.close()


def test_cancel_before_start(provisioner: Provisioner, sandbox: SandboxPlatform) -> None:
    cancel = threading.Event()
    cancel.set()

    result = provisioner.provision("DEV", "HR", "EMPLOYEES", cancel_event=cancel)

    assert result.status == "CANCELLED"
    assert result.error.code == "CANCELLED"
    assert [(s.name, s.status) for s in result.steps] == [("create_database", "CANCELLED")]
    assert not sandbox.database_exists("HR_DEV")


def test_cancel_mid_step() -> None:
    cancel = threading.Event()
    sandbox = CancelAfterFirstDatabaseRole(build_sandbox_engine("sqlite://"), cancel)
    try:
        result = Provisioner(sandbox).provision("DEV", "HR", "EMPLOYEES", cancel_event=cancel)

        assert result.status == "CANCELLED"
        assert [s.status for s in result.steps] == ["SUCCESS", "SUCCESS", "CANCELLED"]
        assert result.error.step == "create_roles"
        assert sandbox.database_roles("HR_DEV").all() == ["SRD_HR_DEV_EMPLOYEES_READ"]
    finally:
        sandbox.close()


def test_explicit_empty_selection_builds_nothing() -> None:
    state = build_desired_state("DEV", "HR", "EMPLOYEES")

    assert database_role_ops(state, []) == []
    assert privilege_ops(state, []) == []
    assert future_ownership_ops(state, []) == []
    assert ownership_ops(state, []) == []

    assert [op.name for op in database_role_ops(state)] == [role.name for role in state.database_roles]
    assert len(future_ownership_ops(state)) == len(state.ownership_classes)
