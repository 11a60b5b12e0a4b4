"""Install pipeline shared by the CLI: catalog, selection, download, validation."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from puli_core.config import InstallerEnvironment, InstallOptions, validate_options
from puli_core.logging_setup import get_logger

from .catalog import Fetcher, VersionCatalog, fetch_catalog
from .errors import CatalogError, ConfigError, SelectionError, TransportError, ValidationError, capture_errors
from .resolver import SelectionPolicy, select_version
from .transport import SecureTransport
from .truststore import resolve_trust
from .validator import validate_artifact


logger = get_logger("service")

ProgressCallback = Callable[[str], None]
Validator = Callable[[Path], object]

MAX_ATTEMPTS = 3
EXECUTABLE_MODE = 0o755


class InstallStatus(str, Enum):
    SUCCESS = "success"
    INVALID_OPTIONS = "invalid_options"
    CATALOG_UNAVAILABLE = "catalog_unavailable"
    NO_MATCHING_VERSION = "no_matching_version"
    DOWNLOAD_FAILED = "download_failed"
    CORRUPT_DOWNLOAD = "corrupt_download"

    @property
    def exit_code(self) -> int:
        return 0 if self is InstallStatus.SUCCESS else 1


class InstallPhase(str, Enum):
    RESOLVING_CATALOG = "resolving_catalog"
    SELECTING_VERSION = "selecting_version"
    DOWNLOADING = "downloading"
    VALIDATING = "validating"
    FINALIZED = "finalized"


@dataclass
class DownloadAttempt:
    url: str
    payload: bytes | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.payload is not None and not self.errors


@dataclass(frozen=True)
class InstallResult:
    status: InstallStatus
    phase: InstallPhase
    version: str | None = None
    path: Path | None = None
    messages: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is InstallStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return self.status.exit_code


def _write_file(dest: Path, payload: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp, dest)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def download_file(transport: Fetcher, url: str, dest: Path) -> DownloadAttempt:
    attempt = DownloadAttempt(url=url)
    try:
        payload = transport.fetch(url)
    except TransportError as exc:
        attempt.errors.append(str(exc))
        return attempt

    with capture_errors(OSError) as captured:
        _write_file(dest, payload)

    if captured.failed:
        attempt.errors.append(f"Could not create file {dest}: " + "; ".join(captured.messages))
        return attempt

    attempt.payload = payload
    return attempt


def remove_stale(path: Path) -> list[str]:
    with capture_errors(OSError) as captured:
        if path.is_file() or path.is_symlink():
            path.unlink()
            logger.info("removed previous file at %s", path)
    return captured.messages if captured.failed else []


class InstallOrchestrator:
    def __init__(
        self,
        options: InstallOptions,
        transport: Fetcher | None = None,
        env: InstallerEnvironment | None = None,
        progress: ProgressCallback | None = None,
        validator: Validator = validate_artifact,
    ) -> None:
        self.options = options
        self.env = env or InstallerEnvironment.from_environ()
        self._transport = transport
        self._progress = progress or (lambda _msg: None)
        self.validator = validator
        self.phase = InstallPhase.RESOLVING_CATALOG

    def _report(self, message: str) -> None:
        if not self.options.quiet:
            self._progress(message)

    def _enter(self, phase: InstallPhase) -> None:
        logger.debug("phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def _fail(self, status: InstallStatus, *messages: str, version: str | None = None) -> InstallResult:
        logger.error("install failed during %s: %s", self.phase.value, status.value)
        return InstallResult(status=status, phase=self.phase, version=version, messages=tuple(messages))

    def _build_transport(self) -> Fetcher:
        if self._transport is None:
            options = self.options
            self._transport = SecureTransport(
                trust_resolver=lambda: resolve_trust(
                    options.cafile,
                    tls_enabled=not options.disable_tls,
                    env=self.env,
                ),
                env=self.env,
            )
        return self._transport

    def run(self) -> InstallResult:
        problems = validate_options(self.options)
        if problems:
            if not self.options.force:
                return self._fail(InstallStatus.INVALID_OPTIONS, *problems)
            logger.warning("installing despite invalid options: %s", "; ".join(problems))

        try:
            transport = self._build_transport()
            return self._install(transport)
        except ConfigError as exc:
            return self._fail(InstallStatus.INVALID_OPTIONS, str(exc))

    def _install(self, transport: Fetcher) -> InstallResult:
        self._enter(InstallPhase.RESOLVING_CATALOG)
        catalog = self._resolve_catalog(transport)
        if catalog is None:
            return self._fail(InstallStatus.CATALOG_UNAVAILABLE, "The download failed repeatedly, aborting.")
        if not len(catalog):
            return self._fail(InstallStatus.CATALOG_UNAVAILABLE, "No versions are available for download, aborting.")

        self._enter(InstallPhase.SELECTING_VERSION)
        policy = SelectionPolicy.from_options(self.options.version, self.options.stability)
        try:
            version = select_version(policy, catalog)
        except SelectionError as exc:
            return self._fail(InstallStatus.NO_MATCHING_VERSION, f"{exc}, aborting.")

        logger.info("selected version %s (%s)", version, policy.kind.value)
        return self._download_and_validate(transport, version)

    def _resolve_catalog(self, transport: Fetcher) -> VersionCatalog | None:
        url = self.options.versions_url()
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return fetch_catalog(transport, url)
            except CatalogError as exc:
                logger.warning("catalog attempt %d/%d failed: %s", attempt, MAX_ATTEMPTS, exc)
        return None

    def _download_and_validate(self, transport: Fetcher, version: str) -> InstallResult:
        target = self.options.target_path()
        url = self.options.download_url(version)

        for attempt in range(1, MAX_ATTEMPTS + 1):
            self._enter(InstallPhase.DOWNLOADING)
            self._report("Downloading...")

            download = DownloadAttempt(url=url, errors=remove_stale(target))
            if download.errors:
                logger.warning("download attempt %d/%d failed: %s", attempt, MAX_ATTEMPTS, "; ".join(download.errors))
                continue

            download = download_file(transport, url, target)
            if not download.ok:
                logger.warning("download attempt %d/%d failed: %s", attempt, MAX_ATTEMPTS, "; ".join(download.errors))
                continue

            self._enter(InstallPhase.VALIDATING)
            try:
                self.validator(target)
            except ValidationError as exc:
                target.unlink(missing_ok=True)
                if attempt == MAX_ATTEMPTS:
                    return self._fail(
                        InstallStatus.CORRUPT_DOWNLOAD,
                        f"The download is corrupt ({exc}), aborting.",
                        version=version,
                    )
                logger.warning("download attempt %d/%d is corrupt: %s", attempt, MAX_ATTEMPTS, exc)
                self._report("The download is corrupt, retrying...")
                continue
            except Exception:
                target.unlink(missing_ok=True)
                raise

            return self._finalize(target, version)

        return self._fail(InstallStatus.DOWNLOAD_FAILED, "The download failed repeatedly, aborting.", version=version)

    def _finalize(self, target: Path, version: str) -> InstallResult:
        try:
            os.chmod(target, EXECUTABLE_MODE)
        except OSError:
            target.unlink(missing_ok=True)
            raise
        self._enter(InstallPhase.FINALIZED)
        logger.info("installed %s to %s", version, target, extra={"event": "installed"})
        return InstallResult(
            status=InstallStatus.SUCCESS,
            phase=self.phase,
            version=version,
            path=target,
            messages=(f"Puli successfully installed to: {target}", f"Use it: php {target}"),
        )


def install(
    options: InstallOptions,
    progress: ProgressCallback | None = None,
    env: InstallerEnvironment | None = None,
) -> InstallResult:
    return InstallOrchestrator(options, env=env, progress=progress).run()
