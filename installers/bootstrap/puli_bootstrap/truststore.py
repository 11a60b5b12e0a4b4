"""CA trust-anchor discovery and the bundled fallback certificate file."""

from __future__ import annotations

import os
import ssl
from dataclasses import dataclass
from pathlib import Path

import certifi
from cryptography import x509

from puli_core.config import InstallerEnvironment, MissingHomeError, home_directory
from puli_core.logging_setup import get_logger

from .errors import ConfigError, capture_errors

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None


logger = get_logger("truststore")

CA_BUNDLE_PATHS = (
    "/etc/pki/tls/certs/ca-bundle.crt",  # Fedora, RHEL, CentOS
    "/etc/ssl/certs/ca-certificates.crt",  # Debian, Ubuntu, Gentoo, Arch Linux
    "/etc/ssl/ca-bundle.pem",  # SUSE, openSUSE
    "/usr/local/share/certs/ca-root-nss.crt",  # FreeBSD
    "/usr/ssl/certs/ca-bundle.crt",  # Cygwin
    "/opt/local/share/curl/curl-ca-bundle.crt",  # OS X macports
    "/usr/local/share/curl/curl-ca-bundle.crt",  # default cURL bundle path
    "/usr/share/ssl/certs/ca-bundle.crt",  # really old RedHat
    "/etc/ssl/cert.pem",  # OpenBSD
)

FALLBACK_CA_FILENAME = "cacert.pem"

# Applies to TLS 1.2 and below; TLS 1.3 suites are not affected by set_ciphers().
TLS12_CIPHERS = ":".join(
    (
        "ECDHE-RSA-AES128-GCM-SHA256",
        "ECDHE-ECDSA-AES128-GCM-SHA256",
        "ECDHE-RSA-AES256-GCM-SHA384",
        "ECDHE-ECDSA-AES256-GCM-SHA384",
        "DHE-RSA-AES128-GCM-SHA256",
        "kEDH+AESGCM",
        "ECDHE-RSA-AES128-SHA256",
        "ECDHE-ECDSA-AES128-SHA256",
        "ECDHE-RSA-AES256-SHA384",
        "ECDHE-ECDSA-AES256-SHA384",
        "DHE-RSA-AES128-SHA256",
        "DHE-RSA-AES256-SHA256",
        "AES128-GCM-SHA256",
        "AES256-GCM-SHA384",
        "HIGH",
        "!aNULL",
        "!eNULL",
        "!EXPORT",
        "!DES",
        "!3DES",
        "!RC4",
        "!MD5",
        "!PSK",
    )
)


@dataclass(frozen=True)
class TrustConfig:
    tls_enabled: bool
    ca_path: Path | None = None
    ca_is_directory: bool = False

    def create_ssl_context(self) -> ssl.SSLContext:
        if not self.tls_enabled:
            return ssl._create_unverified_context()

        if self.ca_path is None:
            context = ssl.create_default_context()
        elif self.ca_is_directory:
            context = ssl.create_default_context(capath=str(self.ca_path))
        else:
            context = ssl.create_default_context(cafile=str(self.ca_path))

        context.verify_mode = ssl.CERT_REQUIRED
        context.check_hostname = True
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.options |= ssl.OP_NO_COMPRESSION
        context.set_ciphers(TLS12_CIPHERS)
        return context


def is_valid_ca_content(contents: bytes) -> bool:
    """True when ``contents`` holds at least one PEM certificate.

    OpenSSL only loads PEM from a cafile, so DER input is rejected here.
    """
    if b"-----BEGIN CERTIFICATE-----" not in contents:
        return False
    try:
        return bool(x509.load_pem_x509_certificates(contents))
    except ValueError:
        return False


def _readable_ca_file(path: Path) -> bool:
    try:
        if not path.is_file():
            return False
        return is_valid_ca_content(path.read_bytes())
    except OSError:
        return False


def _non_empty_dir(path: Path) -> bool:
    try:
        return path.is_dir() and any(path.iterdir())
    except OSError:
        return False


def detect_system_ca(env: InstallerEnvironment) -> TrustConfig | None:
    if env.ssl_cert_file and _readable_ca_file(Path(env.ssl_cert_file)):
        return TrustConfig(tls_enabled=True, ca_path=Path(env.ssl_cert_file))

    openssl_cafile = ssl.get_default_verify_paths().cafile
    if openssl_cafile and _readable_ca_file(Path(openssl_cafile)):
        return TrustConfig(tls_enabled=True, ca_path=Path(openssl_cafile))

    for candidate in CA_BUNDLE_PATHS:
        if _readable_ca_file(Path(candidate)):
            return TrustConfig(tls_enabled=True, ca_path=Path(candidate))

    for candidate in CA_BUNDLE_PATHS:
        directory = Path(candidate).parent
        if _non_empty_dir(directory):
            return TrustConfig(tls_enabled=True, ca_path=directory, ca_is_directory=True)

    return None


def install_default_ca_file(target: Path) -> Path:
    """Write the certifi Mozilla bundle to ``target`` under an exclusive lock."""
    with capture_errors(OSError) as captured:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("ab") as fh:
            if fcntl is not None:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                fh.seek(0)
                fh.truncate()
                fh.write(certifi.contents().encode("ascii"))
                fh.flush()
            finally:
                if fcntl is not None:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        os.chmod(target, 0o644)

    if captured.failed:
        raise ConfigError(f"Unable to write bundled cacert.pem to {target}: " + "; ".join(captured.messages))

    logger.info("installed bundled CA file at %s", target, extra={"event": "ca_fallback_written"})
    return target


def resolve_trust(
    explicit_ca_path: Path | None = None,
    *,
    tls_enabled: bool = True,
    env: InstallerEnvironment | None = None,
) -> TrustConfig:
    if not tls_enabled:
        return TrustConfig(tls_enabled=False)

    env = env or InstallerEnvironment.from_environ()

    if explicit_ca_path is not None:
        if explicit_ca_path.is_dir():
            if not os.access(explicit_ca_path, os.R_OK | os.X_OK):
                raise ConfigError(f"The configured cafile ({explicit_ca_path}) was not valid.")
            return TrustConfig(tls_enabled=True, ca_path=explicit_ca_path, ca_is_directory=True)
        try:
            contents = explicit_ca_path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"The configured cafile ({explicit_ca_path}) was not valid.") from exc
        if not is_valid_ca_content(contents):
            raise ConfigError(f"The configured cafile ({explicit_ca_path}) could not be read.")
        return TrustConfig(tls_enabled=True, ca_path=explicit_ca_path)

    detected = detect_system_ca(env)
    if detected is not None:
        logger.info("using system CA source %s", detected.ca_path)
        return detected

    try:
        target = home_directory(env) / FALLBACK_CA_FILENAME
    except MissingHomeError as exc:
        raise ConfigError(str(exc)) from exc

    return TrustConfig(tls_enabled=True, ca_path=install_default_ca_file(target))
