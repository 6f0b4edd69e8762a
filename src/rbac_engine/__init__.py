"""Role-hierarchy provisioning and compliance reconciliation for a multi-environment data platform."""

from rbac_engine.engine import RbacEngine
from rbac_engine.naming import DEFAULT_NAMING, NamingScheme, derive
from rbac_engine.version import __version__

__all__ = ["DEFAULT_NAMING", "NamingScheme", "RbacEngine", "__version__", "derive"]
