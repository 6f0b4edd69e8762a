"""Settings for rbac_engine using pydantic-settings.

Loaded from (in precedence order):
init kwargs > env vars (``RBAC_*``) > .env file > settings.toml > defaults.
"""

from __future__ import annotations

import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rbac_engine.naming import NamingScheme

ALLOWED_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from ``settings.toml`` if present.

    Accepts either top-level keys or a nested ``[rbac_engine]`` table.
    """

    path = Path("settings.toml")
    if not path.exists():
        return {}

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return {}

    nested = data.get("rbac_engine")
    if isinstance(nested, dict):
        return nested
    return data


class Settings(BaseSettings):
    """Runtime settings for the engine.

    Defaults target a local SQLite sandbox so the CLI works without a live
    platform account.
    """

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- Platform ----------------------------------------------------------
    platform_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL. snowflake:// for a live account; sqlite:// for the sandbox.",
    )
    platform_echo: bool = False
    operation_timeout_seconds: int | None = Field(
        default=300,
        description="Per-statement timeout applied to each platform session. None or <= 0 disables it.",
    )

    # ---- Logging -----------------------------------------------------------
    log_format: Literal["text", "ndjson"] = "text"
    log_level: str = "INFO"

    # ---- Runtime filesystem -----------------------------------------------
    data_dir: Path = Field(default=Path("data"))

    # ---- Naming ------------------------------------------------------------
    system_prefix: str = "SRS"
    functional_prefix: str = "SRF"
    access_prefix: str = "SRA"
    database_role_prefix: str = "SRD"
    service_prefix: str = "SRW"
    deployment_role_name: str = "DEVOPS"
    system_admin_role_name: str = "SYSTEM_ADMIN"

    @field_validator("log_level", mode="before")
    @classmethod
    def _v_log_level(cls, v: Any) -> str:
        normalized = ("" if v is None else str(v).strip()).upper() or "INFO"
        if normalized not in ALLOWED_LOG_LEVELS:
            allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
            raise ValueError(f"RBAC_LOG_LEVEL must be one of: {allowed}.")
        return normalized

    @field_validator("log_format", mode="before")
    @classmethod
    def _v_log_format(cls, v: Any) -> str:
        return ("" if v is None else str(v).strip()).lower() or "text"

    @field_validator(
        "system_prefix",
        "functional_prefix",
        "access_prefix",
        "database_role_prefix",
        "service_prefix",
        "deployment_role_name",
        "system_admin_role_name",
    )
    @classmethod
    def _v_name_part(cls, v: str) -> str:
        text = v.strip().upper()
        if not text:
            raise ValueError("naming values must be non-empty")
        return text

    @model_validator(mode="after")
    def _finalize(self) -> "Settings":
        self.data_dir = self.data_dir.expanduser().resolve()
        if not self.platform_url:
            sandbox_path = (self.data_dir / "sandbox.sqlite").resolve()
            self.platform_url = f"sqlite:///{sandbox_path.as_posix()}"
        if self.operation_timeout_seconds is not None and self.operation_timeout_seconds <= 0:
            self.operation_timeout_seconds = None
        return self

    def naming_scheme(self) -> NamingScheme:
        return NamingScheme(
            system_prefix=self.system_prefix,
            functional_prefix=self.functional_prefix,
            access_prefix=self.access_prefix,
            database_role_prefix=self.database_role_prefix,
            service_prefix=self.service_prefix,
            deployment_role_name=self.deployment_role_name,
            system_admin_role_name=self.system_admin_role_name,
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):  # type: ignore[override]
        toml_source = lambda: _toml_settings_source()
        # Precedence: init > env vars > .env > TOML > defaults
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            toml_source,
            file_secret_settings,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["ALLOWED_LOG_LEVELS", "Settings", "get_settings", "reload_settings"]
