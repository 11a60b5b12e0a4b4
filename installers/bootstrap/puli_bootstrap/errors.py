"""Installer error taxonomy and scoped capture of low-level I/O diagnostics."""

from __future__ import annotations

import warnings
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Iterator


class InstallerError(Exception):
    """Base class for errors raised by the acquisition pipeline."""


class ConfigError(InstallerError):
    """Invalid or unreadable trust/proxy configuration. Never retried."""


class CatalogError(InstallerError):
    """The version manifest is unreachable or malformed."""


class SelectionError(InstallerError):
    NOT_FOUND = "not_found"

    def __init__(self, message: str, reason: str = NOT_FOUND) -> None:
        super().__init__(message)
        self.reason = reason


class TransportError(InstallerError):
    def __init__(self, reason: str, details: Iterable[str] = ()) -> None:
        self.reason = reason
        self.details = tuple(details)
        super().__init__(reason)

    def __str__(self) -> str:
        if not self.details:
            return self.reason
        return f"{self.reason}: " + "; ".join(self.details)


class ValidationError(InstallerError):
    """Downloaded bytes are not a well-formed archive."""


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        if exc.filename:
            return f"{exc.strerror}: {exc.filename}"
        return exc.strerror
    text = str(exc)
    return text or exc.__class__.__name__


@dataclass
class CapturedErrors:
    messages: list[str] = field(default_factory=list)
    failed: bool = False

    def record(self, exc: BaseException) -> None:
        self.failed = True
        self.messages.append(describe_error(exc))


@contextmanager
def capture_errors(*handled: type[BaseException]) -> Iterator[CapturedErrors]:
    """Collect warnings and the ``handled`` exception types raised in the block.

    A handled exception ends the block early; it is recorded instead of
    propagating and sets ``failed``, so the caller must check it.
    """
    captured = CapturedErrors()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            yield captured
        except handled as exc:
            captured.record(exc)
        finally:
            captured.messages.extend(str(w.message) for w in caught)
