from __future__ import annotations

import pytest

from rbac_engine.exceptions import InvalidIdentifier
from rbac_engine.models.enums import ObjectClass
from rbac_engine.operations import (
    CreateDatabaseRole,
    CreateSchema,
    Grantee,
    GrantOwnership,
    GrantPrivileges,
    GrantRole,
    GrantTarget,
    RevokeRole,
    SetDefaultRole,
    render,
)


def test_render_schema_with_managed_access_and_comment() -> None:
    op = CreateSchema("HR_DEV", "EMPLOYEES", managed_access=True, comment="People's data")
    assert render(op) == (
        "CREATE SCHEMA IF NOT EXISTS HR_DEV.EMPLOYEES WITH MANAGED ACCESS COMMENT = 'People''s data'"
    )


def test_render_database_role() -> None:
    assert render(CreateDatabaseRole("HR_DEV", "SRD_HR_DEV_EMPLOYEES_READ")) == (
        "CREATE DATABASE ROLE IF NOT EXISTS HR_DEV.SRD_HR_DEV_EMPLOYEES_READ"
    )


def test_render_future_grant_to_database_role() -> None:
    op = GrantPrivileges(
        ("SELECT",),
        GrantTarget.future_in_schema("HR_DEV", "EMPLOYEES", ObjectClass.MATERIALIZED_VIEW),
        Grantee.database_role("HR_DEV", "SRD_HR_DEV_EMPLOYEES_READ"),
    )
    assert render(op) == (
        "GRANT SELECT ON FUTURE MATERIALIZED VIEWS IN SCHEMA HR_DEV.EMPLOYEES "
        "TO DATABASE ROLE HR_DEV.SRD_HR_DEV_EMPLOYEES_READ"
    )


def test_render_ownership_copy_grants_only_for_existing_objects() -> None:
    current = GrantOwnership(GrantTarget.all_in_schema("HR_DEV", "EMPLOYEES", ObjectClass.TABLE), "SRF_DEV_DEVELOPER")
    future = GrantOwnership(
        GrantTarget.future_in_schema("HR_DEV", "EMPLOYEES", ObjectClass.TABLE), "SRF_DEV_DEVELOPER"
    )

    assert render(current) == (
        "GRANT OWNERSHIP ON ALL TABLES IN SCHEMA HR_DEV.EMPLOYEES TO ROLE SRF_DEV_DEVELOPER COPY CURRENT GRANTS"
    )
    assert render(future) == "GRANT OWNERSHIP ON FUTURE TABLES IN SCHEMA HR_DEV.EMPLOYEES TO ROLE SRF_DEV_DEVELOPER"


def test_render_role_grants() -> None:
    assert render(GrantRole("SRF_DEV_END_USER", Grantee.role("SRF_DEV_ANALYST"))) == (
        "GRANT ROLE SRF_DEV_END_USER TO ROLE SRF_DEV_ANALYST"
    )
    assert render(
        GrantRole("SRD_HR_DEV_EMPLOYEES_READ", Grantee.role("SRF_DEV_END_USER"), role_database="HR_DEV")
    ) == "GRANT DATABASE ROLE HR_DEV.SRD_HR_DEV_EMPLOYEES_READ TO ROLE SRF_DEV_END_USER"
    assert render(SetDefaultRole("SVC_ETL", "SRW_DEV_HR_DEVELOPER")) == (
        "ALTER USER SVC_ETL SET DEFAULT_ROLE = SRW_DEV_HR_DEVELOPER"
    )
    assert render(RevokeRole("SRW_DEV_HR_DEVELOPER", Grantee.user("ALICE"))) == (
        "REVOKE ROLE SRW_DEV_HR_DEVELOPER FROM USER ALICE"
    )


def test_render_rejects_unsafe_identifiers() -> None:
    with pytest.raises(InvalidIdentifier):
        render(GrantRole("SRF_DEV_END_USER", Grantee.user("bob; DROP DATABASE X")))


def test_render_rejects_unsafe_privileges() -> None:
    op = GrantPrivileges(("SELECT; --",), GrantTarget.on_schema("HR_DEV", "EMPLOYEES"), Grantee.role("R"))
    with pytest.raises(ValueError):
        render(op)


def test_render_routine_targets_carry_argument_types() -> None:
    function = GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.FUNCTION, "MASK_SSN", ("VARCHAR", "NUMBER"))
    procedure = GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.PROCEDURE, "REFRESH_HEADCOUNT")
    table = GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.TABLE, "SALARIES")

    assert render(GrantOwnership(function, "SRF_DEV_DEVELOPER")) == (
        "GRANT OWNERSHIP ON FUNCTION HR_DEV.EMPLOYEES.MASK_SSN(VARCHAR, NUMBER) "
        "TO ROLE SRF_DEV_DEVELOPER COPY CURRENT GRANTS"
    )
    assert render(GrantOwnership(procedure, "SRF_DEV_DEVELOPER", copy_current_grants=False)) == (
        "GRANT OWNERSHIP ON PROCEDURE HR_DEV.EMPLOYEES.REFRESH_HEADCOUNT() TO ROLE SRF_DEV_DEVELOPER"
    )
    assert render(GrantOwnership(table, "SRF_DEV_DEVELOPER", copy_current_grants=False)) == (
        "GRANT OWNERSHIP ON TABLE HR_DEV.EMPLOYEES.SALARIES TO ROLE SRF_DEV_DEVELOPER"
    )


def test_render_rejects_unsafe_argument_types() -> None:
    target = GrantTarget.on_object("HR_DEV", "EMPLOYEES", ObjectClass.FUNCTION, "F", ("NUMBER); DROP TABLE X",))
    with pytest.raises(InvalidIdentifier):
        render(GrantOwnership(target, "SRF_DEV_DEVELOPER"))
