"""Platform implementations and the URL-based factory."""

from __future__ import annotations

from sqlalchemy.engine import make_url

from rbac_engine.platform.base import (
    CatalogQuery,
    FutureGrant,
    ObjectGrant,
    ObjectInfo,
    Platform,
    RoleGrant,
    SchemaInfo,
    UserInfo,
)
from rbac_engine.platform.sandbox import SandboxPlatform
from rbac_engine.platform.sql import SqlPlatform, build_platform_engine
from rbac_engine.settings import Settings, get_settings


def connect(settings: Settings | None = None) -> Platform:
    """Build the platform for ``settings.platform_url``: sqlite is the sandbox, anything else is live."""

    settings = settings or get_settings()
    url = make_url(settings.platform_url)
    if url.get_backend_name() == "sqlite":
        return SandboxPlatform.from_url(url, echo=settings.platform_echo)
    return SqlPlatform(
        build_platform_engine(
            url,
            echo=settings.platform_echo,
            statement_timeout_seconds=settings.operation_timeout_seconds,
        )
    )


__all__ = [
    "CatalogQuery",
    "FutureGrant",
    "ObjectGrant",
    "ObjectInfo",
    "Platform",
    "RoleGrant",
    "SandboxPlatform",
    "SchemaInfo",
    "SqlPlatform",
    "UserInfo",
    "connect",
]
