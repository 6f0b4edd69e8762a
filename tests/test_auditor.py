from __future__ import annotations

from rbac_engine.auditor import (
    FUTURE_GRANTS,
    MANAGED_ACCESS,
    OBJECT_OWNERSHIP,
    PRINCIPAL_ASSIGNMENT,
    READ_ROLE_GRANT,
    ROLE_EXISTS,
    SCHEMA_CHECKS,
    SCHEMA_EXISTS,
    SCHEMA_IDENTIFIER,
    WRITE_DATABASE_ROLE,
    Auditor,
)
from rbac_engine.models.enums import ObjectClass, PrincipalType
from rbac_engine.models.results import ComplianceReport, ProvisionResult
from rbac_engine.operations import (
    CreateDatabase,
    CreateDatabaseRole,
    CreateRole,
    CreateSchema,
    Grantee,
    GrantOwnership,
    GrantPrivileges,
    GrantRole,
    GrantTarget,
)
from rbac_engine.platform.sandbox import SandboxPlatform
from rbac_engine.provisioner import Provisioner


def _non_passing(report: ComplianceReport) -> list[tuple[str, str, str]]:
    findings = [f for schema in report.schema_results for f in schema.findings] + report.role_hierarchy
    return [(f.check_id, f.scope, f.status) for f in findings if f.status != "PASS"]


def test_provisioned_schema_is_compliant(hr_dev: ProvisionResult, auditor: Auditor) -> None:
    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert report.status == "COMPLIANT"
    assert report.total_issues == 0
    assert report.schemas_checked == 1
    assert report.physical_database == "HR_DEV"
    assert report.timestamp.tzinfo is not None
    checks = [f.check_id for f in report.schema_results[0].findings]
    assert list(dict.fromkeys(checks)) == list(SCHEMA_CHECKS)
    assert [f.scope for f in report.role_hierarchy] == [
        "SRF_DEV_END_USER",
        "SRF_DEV_ANALYST",
        "SRF_DEV_DEVELOPER",
        "SRF_DEV_TEAM_LEADER",
        "SRF_DEV_DATA_SCIENTIST",
        "SRF_DEV_DBADMIN",
    ]
    assert all(f.check_id == ROLE_EXISTS and f.status == "PASS" for f in report.role_hierarchy)


def test_non_dev_provisioned_schema_is_compliant(provisioner: Provisioner, auditor: Auditor) -> None:
    provisioner.provision("UAT", "HR", "EMPLOYEES")

    report = auditor.audit("UAT", "HR", "EMPLOYEES")

    assert report.status == "COMPLIANT"
    assert _non_passing(report) == []


def test_objects_created_after_provisioning_stay_compliant(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.create_object("HR_DEV", "EMPLOYEES", "PEOPLE")
    sandbox.create_object("HR_DEV", "EMPLOYEES", "V_PEOPLE", ObjectClass.VIEW)
    sandbox.create_object("HR_DEV", "EMPLOYEES", "LOAD_STAGE", ObjectClass.STAGE)

    report = auditor.audit("DEV", "HR")

    assert report.status == "COMPLIANT"
    assert report.total_issues == 0


def test_ownership_drift_is_itemized_per_object(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.create_object("HR_DEV", "EMPLOYEES", "PEOPLE")
    sandbox.create_object("HR_DEV", "EMPLOYEES", "SALARIES")
    sandbox.execute(CreateRole("ROGUE"))
    sandbox.execute(
        GrantOwnership(GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.TABLE, "SALARIES"), "ROGUE")
    )

    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert report.status == "NON_COMPLIANT"
    assert report.total_issues == 1
    assert _non_passing(report) == [(OBJECT_OWNERSHIP, "HR_DEV.EMPLOYEES.SALARIES", "FAIL")]
    failure = report.failures()[0][1]
    assert failure.expected == "SRF_DEV_DEVELOPER"
    assert failure.actual == "ROGUE"


def test_write_role_outside_dev_is_a_warning(
    provisioner: Provisioner, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    provisioner.provision("PRD", "HR", "EMPLOYEES")
    sandbox.execute(CreateDatabaseRole("HR_PRD", "SRD_HR_PRD_EMPLOYEES_WRITE"))

    report = auditor.audit("PRD", "HR", "EMPLOYEES")

    assert report.status == "COMPLIANT"
    assert report.total_issues == 0
    assert (WRITE_DATABASE_ROLE, "SRD_HR_PRD_EMPLOYEES_WRITE", "WARNING") in _non_passing(report)


def test_unmanaged_schema_fails_managed_access(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.set_managed_access("HR_DEV", "EMPLOYEES", False)

    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert _non_passing(report) == [(MANAGED_ACCESS, "HR_DEV.EMPLOYEES", "FAIL")]


def test_missing_future_grant_fails_for_that_role(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.revoke_future_grant("HR_DEV", "EMPLOYEES", ObjectClass.VIEW, "SELECT", "SRD_HR_DEV_EMPLOYEES_READ")

    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert _non_passing(report) == [(FUTURE_GRANTS, "SRD_HR_DEV_EMPLOYEES_READ", "FAIL")]
    assert report.failures()[0][1].actual == ["SELECT ON FUTURE VIEWS"]


def test_manual_current_grant_without_future_counterpart_warns(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.create_object("HR_DEV", "EMPLOYEES", "PEOPLE")
    sandbox.execute(
        GrantPrivileges(
            ("INSERT",),
            GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.TABLE, "PEOPLE"),
            Grantee.database_role("HR_DEV", "SRD_HR_DEV_EMPLOYEES_READ"),
        )
    )

    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert report.status == "COMPLIANT"
    assert _non_passing(report) == [(FUTURE_GRANTS, "SRD_HR_DEV_EMPLOYEES_READ", "WARNING")]


def test_read_role_linkage_is_checked_transitively(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.revoke_role("SRD_HR_DEV_EMPLOYEES_READ", "SRF_DEV_END_USER", role_database="HR_DEV")

    report = auditor.audit("DEV", "HR", "EMPLOYEES")

    assert _non_passing(report) == [(READ_ROLE_GRANT, "SRD_HR_DEV_EMPLOYEES_READ", "FAIL")]


def test_missing_functional_role_is_flagged(sandbox: SandboxPlatform, auditor: Auditor) -> None:
    sandbox.execute(CreateDatabase("HR_TST"))

    report = auditor.audit("TST", "HR")

    assert report.status == "NON_COMPLIANT"
    assert report.schemas_checked == 0
    assert report.total_issues == 6
    assert {f.status for f in report.role_hierarchy} == {"FAIL"}


def test_missing_database_is_a_terminal_error(auditor: Auditor) -> None:
    report = auditor.audit("DEV", "NOPE")

    assert report.status == "ERROR"
    assert report.error.code == "DATABASE_NOT_FOUND"
    assert report.schema_results == []


def test_missing_schema_is_reported(hr_dev: ProvisionResult, auditor: Auditor) -> None:
    report = auditor.audit("DEV", "HR", "PAYROLL")

    assert report.status == "NON_COMPLIANT"
    assert _non_passing(report) == [(SCHEMA_EXISTS, "HR_DEV.PAYROLL", "FAIL")]


def test_invalid_environment(auditor: Auditor) -> None:
    report = auditor.audit("QA", "HR")

    assert report.status == "ERROR"
    assert report.error.code == "INVALID_ENVIRONMENT"


def test_database_audit_covers_every_schema(
    hr_dev: ProvisionResult, provisioner: Provisioner, auditor: Auditor
) -> None:
    provisioner.provision("DEV", "HR", "PAYROLL")

    report = auditor.audit("DEV", "HR")

    assert report.schemas_checked == 2
    assert [r.schema_name for r in report.schema_results] == ["EMPLOYEES", "PAYROLL"]


def test_audit_never_mutates(hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor) -> None:
    sandbox.set_managed_access("HR_DEV", "EMPLOYEES", False)
    before = (sandbox.account_roles().all(), sandbox.future_grants("HR_DEV", "EMPLOYEES").all())

    auditor.audit("DEV", "HR", "EMPLOYEES")
    auditor.audit("DEV", "HR")

    assert (sandbox.account_roles().all(), sandbox.future_grants("HR_DEV", "EMPLOYEES").all()) == before
    assert sandbox.schemas("HR_DEV").first().managed_access is False


def test_unmanageable_schema_names_do_not_sink_database_audit(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.execute(CreateSchema("HR_DEV", "RAW-DATA", managed_access=False))
    sandbox.execute(CreateSchema("HR_DEV", "Staging", managed_access=False))

    report = auditor.audit("DEV", "HR")

    assert report.status == "COMPLIANT"
    assert report.schemas_checked == 3
    by_schema = {s.schema_name: s for s in report.schema_results}
    assert set(by_schema) == {"EMPLOYEES", "RAW-DATA", "Staging"}
    for name in ("RAW-DATA", "Staging"):
        assert [(f.check_id, f.scope, f.status) for f in by_schema[name].findings] == [
            (SCHEMA_IDENTIFIER, f"HR_DEV.{name}", "WARNING")
        ]
    assert all(f.status == "PASS" for f in by_schema["EMPLOYEES"].findings)


def test_mixed_case_schema_is_not_audited_as_upper_case(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    sandbox.execute(CreateSchema("HR_DEV", "Staging"))

    report = auditor.audit("DEV", "HR", "Staging")

    assert report.status == "COMPLIANT"
    assert [f.check_id for f in report.schema_results[0].findings] == [SCHEMA_IDENTIFIER]
    assert not any(f.check_id == SCHEMA_EXISTS for f in report.schema_results[0].findings)


def test_principal_assignments_follow_principal_type(
    hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor
) -> None:
    for role in ("SRA_DEV_HR_ACCESS", "SRW_DEV_HR_DEVELOPER", "SRF_TST_ANALYST", "SRS_SYSTEM_ADMIN"):
        sandbox.execute(CreateRole(role))
    sandbox.create_user("ALICE", PrincipalType.PERSON)
    sandbox.create_user("SVC_ETL", PrincipalType.SERVICE)
    for role, user in [
        ("SRF_DEV_DEVELOPER", "ALICE"),
        ("SRA_DEV_HR_ACCESS", "ALICE"),
        ("SRW_DEV_HR_DEVELOPER", "ALICE"),
        ("SRF_TST_ANALYST", "ALICE"),
        ("SRS_SYSTEM_ADMIN", "ALICE"),
        ("SRW_DEV_HR_DEVELOPER", "SVC_ETL"),
        ("SRA_DEV_HR_ACCESS", "SVC_ETL"),
    ]:
        sandbox.execute(GrantRole(role, Grantee.user(user)))

    report = auditor.audit("DEV", "HR")

    # Other environments' roles and system roles are not governed by a DEV audit.
    assert [(f.check_id, f.scope, f.status) for f in report.principal_assignments] == [
        (PRINCIPAL_ASSIGNMENT, "ALICE/SRA_DEV_HR_ACCESS", "PASS"),
        (PRINCIPAL_ASSIGNMENT, "ALICE/SRF_DEV_DEVELOPER", "PASS"),
        (PRINCIPAL_ASSIGNMENT, "ALICE/SRW_DEV_HR_DEVELOPER", "FAIL"),
        (PRINCIPAL_ASSIGNMENT, "SVC_ETL/SRA_DEV_HR_ACCESS", "FAIL"),
        (PRINCIPAL_ASSIGNMENT, "SVC_ETL/SRW_DEV_HR_DEVELOPER", "PASS"),
    ]
    assert report.status == "NON_COMPLIANT"
    assert report.total_issues == 2
    service_failure = report.principal_assignments[3]
    assert service_failure.expected == ["ServiceWrapper"]
    assert service_failure.actual == {"principal_type": "SERVICE", "role_kind": "Access"}
    assert [f.scope for _, f in report.failures()] == ["ALICE/SRW_DEV_HR_DEVELOPER", "SVC_ETL/SRA_DEV_HR_ACCESS"]


def test_unaddressable_user_is_a_warning(hr_dev: ProvisionResult, sandbox: SandboxPlatform, auditor: Auditor) -> None:
    sandbox.create_user("etl@corp", PrincipalType.LEGACY_SERVICE)

    report = auditor.audit("DEV", "HR")

    assert report.status == "COMPLIANT"
    assert [(f.scope, f.status) for f in report.principal_assignments] == [("etl@corp", "WARNING")]
