"""Installer options, consumed environment variables and download endpoints."""

from __future__ import annotations

import os
import platform
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping


VERSION_API_URL = "{scheme}://puli.io/download/versions.json"
PHAR_DOWNLOAD_URL = "{scheme}://puli.io/download/{version}/puli.phar"

DEFAULT_FILENAME = "puli.phar"
USER_AGENT = "Puli Installer"

STABILITY_STABLE = "stable"
STABILITY_UNSTABLE = "unstable"

_RELEASE_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+(-(alpha|beta)[0-9]+)*")


class MissingHomeError(RuntimeError):
    """Raised when no home directory can be derived from the environment."""


@dataclass
class InstallOptions:
    install_dir: Path | None = None
    filename: str = DEFAULT_FILENAME
    version: str | None = None
    stability: str = STABILITY_UNSTABLE
    cafile: Path | None = None
    disable_tls: bool = False
    quiet: bool = False
    force: bool = False

    @property
    def scheme(self) -> str:
        return "http" if self.disable_tls else "https"

    def target_dir(self) -> Path:
        if self.install_dir is not None and self.install_dir.is_dir():
            return self.install_dir.resolve()
        return Path.cwd()

    def target_path(self) -> Path:
        return self.target_dir() / self.filename

    def versions_url(self) -> str:
        return VERSION_API_URL.format(scheme=self.scheme)

    def download_url(self, version: str) -> str:
        return PHAR_DOWNLOAD_URL.format(scheme=self.scheme, version=version)


@dataclass(frozen=True)
class InstallerEnvironment:
    """Snapshot of the environment variables the installer reads."""

    puli_home: str | None = None
    home: str | None = None
    appdata: str | None = None
    http_proxy: str | None = None
    ssl_cert_file: str | None = None
    http_proxy_request_fulluri: str | None = None
    https_proxy_request_fulluri: str | None = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "InstallerEnvironment":
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(name)
            return value if value else None

        return cls(
            puli_home=_get("PULI_HOME"),
            home=_get("HOME"),
            appdata=_get("APPDATA"),
            # Some systems only export the lowercase variant.
            http_proxy=_get("http_proxy") or _get("HTTP_PROXY"),
            ssl_cert_file=_get("SSL_CERT_FILE"),
            http_proxy_request_fulluri=env.get("HTTP_PROXY_REQUEST_FULLURI"),
            https_proxy_request_fulluri=env.get("HTTPS_PROXY_REQUEST_FULLURI"),
        )


def home_directory(env: InstallerEnvironment) -> Path:
    if env.puli_home:
        return Path(env.puli_home)

    if platform.system() == "Windows":
        if not env.appdata:
            raise MissingHomeError(
                "The APPDATA or PULI_HOME environment variable must be set for puli to install correctly"
            )
        return Path(env.appdata) / "Puli"

    if not env.home:
        raise MissingHomeError(
            "The HOME or PULI_HOME environment variable must be set for puli to install correctly"
        )
    return Path(env.home.rstrip("/") or "/") / ".puli"


def is_release_version(version: str) -> bool:
    return _RELEASE_PATTERN.fullmatch(version) is not None


def validate_options(options: InstallOptions) -> list[str]:
    problems: list[str] = []

    if options.install_dir is not None and not options.install_dir.is_dir():
        problems.append(f"The defined install dir ({options.install_dir}) does not exist.")

    if options.version is not None and not is_release_version(options.version):
        problems.append(f"The defined install version ({options.version}) does not match release pattern.")

    if options.cafile is not None and (not options.cafile.exists() or not os.access(options.cafile, os.R_OK)):
        problems.append(
            f"The defined Certificate Authority (CA) cert file ({options.cafile}) does not exist or is not readable."
        )

    if not options.filename or Path(options.filename).name != options.filename:
        problems.append(f"The defined filename ({options.filename}) must be a plain file name.")

    return problems
