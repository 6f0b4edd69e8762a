from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from rbac_engine.cli.app import app
from rbac_engine.models.enums import PrincipalType
from rbac_engine.platform.sandbox import SandboxPlatform
from rbac_engine.version import __version__

runner = CliRunner()


@pytest.fixture()
def sandbox_url(tmp_path: Path) -> str:
    return f"sqlite:///{(tmp_path / 'sandbox.sqlite').as_posix()}"


def _invoke(url: str, *args: str):
    # Quiet logs so the JSON result is the only output.
    return runner.invoke(app, ["--platform-url", url, "--log-level", "CRITICAL", *args])


def _json(result) -> dict:
    return json.loads(result.stdout)


def test_version() -> None:
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_provision_then_audit(sandbox_url: str) -> None:
    provisioned = _invoke(sandbox_url, "provision", "dev", "hr", "employees")
    assert provisioned.exit_code == 0, provisioned.output
    payload = _json(provisioned)
    assert payload["status"] == "SUCCESS"
    assert payload["database"] == "HR_DEV"
    assert payload["schema"] == "EMPLOYEES"

    audited = _invoke(sandbox_url, "audit", "DEV", "HR")
    assert audited.exit_code == 0, audited.output
    report = _json(audited)
    assert report["status"] == "COMPLIANT"
    assert [s["schema"] for s in report["schema_results"]] == ["EMPLOYEES"]


def test_invalid_environment_exits_with_error(sandbox_url: str) -> None:
    result = _invoke(sandbox_url, "provision", "QA", "HR", "EMPLOYEES")

    assert result.exit_code == 1
    payload = _json(result)
    assert payload["status"] == "ERROR"
    assert payload["error"]["code"] == "INVALID_ENVIRONMENT"


def test_drift_is_reported_and_rectified(sandbox_url: str) -> None:
    assert _invoke(sandbox_url, "provision", "DEV", "HR", "EMPLOYEES").exit_code == 0
    platform = SandboxPlatform.from_url(sandbox_url)
    try:
        platform.set_managed_access("HR_DEV", "EMPLOYEES", False)
    finally:
        platform.close()

    audited = _invoke(sandbox_url, "audit", "DEV", "HR", "--schema", "EMPLOYEES")
    assert audited.exit_code == 2
    assert _json(audited)["total_issues"] == 1

    planned = _invoke(sandbox_url, "rectify", "DEV", "HR")
    assert planned.exit_code == 0
    plan = _json(planned)
    assert plan["status"] == "DRY_RUN"
    assert [a["action"] for a in plan["actions_planned"]] == ["ENABLE_MANAGED_ACCESS"]
    assert _invoke(sandbox_url, "audit", "DEV", "HR").exit_code == 2

    applied = _invoke(sandbox_url, "rectify", "DEV", "HR", "--apply")
    assert applied.exit_code == 0, applied.output
    assert _json(applied)["status"] == "SUCCESS"
    assert _invoke(sandbox_url, "audit", "DEV", "HR").exit_code == 0


def test_rectify_from_saved_report(sandbox_url: str, tmp_path: Path) -> None:
    assert _invoke(sandbox_url, "provision", "DEV", "HR", "EMPLOYEES").exit_code == 0
    platform = SandboxPlatform.from_url(sandbox_url)
    try:
        platform.set_managed_access("HR_DEV", "EMPLOYEES", False)
    finally:
        platform.close()
    report_path = tmp_path / "report.json"
    report_path.write_text(_invoke(sandbox_url, "audit", "DEV", "HR").stdout, encoding="utf-8")

    applied = _invoke(sandbox_url, "rectify", "DEV", "HR", "--report", str(report_path), "--apply")
    assert applied.exit_code == 0, applied.output
    assert _json(applied)["before_after"] == [
        {"check_id": "MANAGED_ACCESS", "scope": "HR_DEV.EMPLOYEES", "before": "FAIL", "after": "PASS"}
    ]

    mismatched = _invoke(sandbox_url, "rectify", "PRD", "HR", "--report", str(report_path))
    assert mismatched.exit_code == 1


def test_bootstrap_and_role_commands(sandbox_url: str) -> None:
    bootstrapped = _invoke(sandbox_url, "bootstrap", "DEV")
    assert bootstrapped.exit_code == 0, bootstrapped.output
    assert _json(bootstrapped)["environments"] == ["DEV"]

    created = _invoke(sandbox_url, "roles", "create-access", "DEV", "HR")
    assert created.exit_code == 0, created.output
    assert _json(created)["role"] == "SRA_DEV_HR_ACCESS"

    assert _invoke(sandbox_url, "roles", "create-service", "DEV", "HR", "DEVELOPER").exit_code == 0

    platform = SandboxPlatform.from_url(sandbox_url)
    try:
        platform.create_user("SVC_ETL", PrincipalType.SERVICE)
    finally:
        platform.close()

    denied = _invoke(sandbox_url, "roles", "grant-user", "SVC_ETL", "DEV", "HR")
    assert denied.exit_code == 1
    assert _json(denied)["error"]["code"] == "PRINCIPAL_TYPE_MISMATCH"

    granted = _invoke(sandbox_url, "roles", "grant-service-account", "SVC_ETL", "DEV", "HR", "DEVELOPER")
    assert granted.exit_code == 0, granted.output
    assert _json(granted)["statements"][-1] == "ALTER USER SVC_ETL SET DEFAULT_ROLE = SRW_DEV_HR_DEVELOPER"


def test_write_link_outside_dev_is_rejected(sandbox_url: str) -> None:
    result = _invoke(sandbox_url, "roles", "link-schema", "PRD", "HR", "HR", "EMPLOYEES", "--access-level", "WRITE")

    assert result.exit_code == 1
    assert _json(result)["error"]["code"] == "INVALID_ACCESS_LEVEL"


def test_unknown_log_level_exits_with_settings_error(sandbox_url: str) -> None:
    result = runner.invoke(
        app, ["--platform-url", sandbox_url, "--log-level", "LOUD", "provision", "DEV", "HR", "EMPLOYEES"]
    )

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "invalid settings" in result.output
    assert "RBAC_LOG_LEVEL must be one of" in result.output
    assert not Path(sandbox_url.removeprefix("sqlite:///")).exists()
