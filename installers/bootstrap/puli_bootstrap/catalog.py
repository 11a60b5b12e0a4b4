"""Remote version manifest parsing and PHP-compatible version ordering."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Iterator, Protocol

from puli_core.logging_setup import get_logger

from .errors import CatalogError, TransportError


logger = get_logger("catalog")

# Ordering of the special version forms understood by PHP's version_compare().
_SPECIAL_FORMS = (
    ("dev", 0),
    ("alpha", 1),
    ("a", 1),
    ("beta", 2),
    ("b", 2),
    ("RC", 3),
    ("rc", 3),
    ("#", 4),
    ("pl", 5),
    ("p", 5),
)
_NUMBER_ORDER = 4
_MISSING = (_NUMBER_ORDER, -1)

_SEPARATORS = re.compile(r"[-_+]")
_BOUNDARY = re.compile(r"(?<=[0-9])(?=[^0-9.])|(?<=[^0-9.])(?=[0-9])")


class Fetcher(Protocol):
    def fetch(self, url: str) -> bytes: ...


def _form_order(part: str) -> int:
    for name, order in _SPECIAL_FORMS:
        if part.startswith(name):
            return order
    return -1


def _parts(version: str) -> list[tuple[int, int]]:
    canonical = _BOUNDARY.sub(".", _SEPARATORS.sub(".", version))
    out: list[tuple[int, int]] = []
    for part in canonical.split("."):
        if not part:
            continue
        if part.isascii() and part.isdigit():
            out.append((_NUMBER_ORDER, int(part)))
        else:
            out.append((_form_order(part), 0))
    return out


def version_compare(left: str, right: str) -> int:
    """Compare two version strings the way PHP's version_compare() does."""
    a = _parts(left)
    b = _parts(right)
    size = max(len(a), len(b))
    a += [_MISSING] * (size - len(a))
    b += [_MISSING] * (size - len(b))
    for x, y in zip(a, b):
        if x != y:
            return -1 if x < y else 1
    return 0


version_key = cmp_to_key(version_compare)


@dataclass(frozen=True)
class VersionCatalog:
    versions: tuple[str, ...]

    @classmethod
    def from_versions(cls, versions: list[str]) -> "VersionCatalog":
        return cls(versions=tuple(sorted(versions, key=version_key)))

    @classmethod
    def from_json(cls, payload: bytes) -> "VersionCatalog":
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CatalogError(f"The version manifest is not valid JSON: {exc}") from exc

        if not isinstance(data, list):
            raise CatalogError("The version manifest is not a list of versions.")
        if not all(isinstance(item, str) for item in data):
            raise CatalogError("The version manifest contains non-string entries.")
        return cls.from_versions(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self.versions)

    def __len__(self) -> int:
        return len(self.versions)

    def __contains__(self, version: object) -> bool:
        return version in self.versions

    @property
    def latest(self) -> str:
        if not self.versions:
            raise CatalogError("The version catalog is empty.")
        return self.versions[-1]


def fetch_catalog(transport: Fetcher, url: str) -> VersionCatalog:
    try:
        payload = transport.fetch(url)
    except TransportError as exc:
        raise CatalogError(str(exc)) from exc

    catalog = VersionCatalog.from_json(payload)
    logger.info("fetched %d versions from %s", len(catalog), url)
    return catalog
