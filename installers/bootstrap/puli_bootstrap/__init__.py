"""Bootstrap installer that fetches, verifies and installs puli.phar."""

from .catalog import VersionCatalog, fetch_catalog, version_compare
from .errors import (
    CatalogError,
    ConfigError,
    InstallerError,
    SelectionError,
    TransportError,
    ValidationError,
)
from .resolver import SelectionPolicy, select_version
from .service import InstallOrchestrator, InstallResult, InstallStatus, install
from .transport import ProxySettings, SecureTransport
from .truststore import TrustConfig, resolve_trust
from .validator import validate_artifact

__all__ = [
    "CatalogError",
    "ConfigError",
    "InstallOrchestrator",
    "InstallResult",
    "InstallStatus",
    "InstallerError",
    "ProxySettings",
    "SecureTransport",
    "SelectionError",
    "SelectionPolicy",
    "TransportError",
    "TrustConfig",
    "ValidationError",
    "VersionCatalog",
    "fetch_catalog",
    "install",
    "resolve_trust",
    "select_version",
    "validate_artifact",
    "version_compare",
]
