"""Version selection policies over the release catalog."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from .catalog import VersionCatalog
from .errors import SelectionError


_STABLE_PATTERN = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+")


class PolicyKind(str, Enum):
    EXPLICIT = "explicit"
    MOST_RECENT_STABLE = "most_recent_stable"
    MOST_RECENT_ANY = "most_recent_any"


@dataclass(frozen=True)
class SelectionPolicy:
    kind: PolicyKind
    version: str | None = None

    @classmethod
    def explicit(cls, version: str) -> "SelectionPolicy":
        return cls(kind=PolicyKind.EXPLICIT, version=version)

    @classmethod
    def most_recent_stable(cls) -> "SelectionPolicy":
        return cls(kind=PolicyKind.MOST_RECENT_STABLE)

    @classmethod
    def most_recent_any(cls) -> "SelectionPolicy":
        return cls(kind=PolicyKind.MOST_RECENT_ANY)

    @classmethod
    def from_options(cls, version: str | None, stability: str) -> "SelectionPolicy":
        if version:
            return cls.explicit(version)
        if stability == "stable":
            return cls.most_recent_stable()
        return cls.most_recent_any()


def is_stable(version: str) -> bool:
    return _STABLE_PATTERN.fullmatch(version) is not None


def latest_stable(catalog: VersionCatalog) -> str | None:
    for version in reversed(catalog.versions):
        if is_stable(version):
            return version
    return None


def select_version(policy: SelectionPolicy, catalog: VersionCatalog) -> str:
    if policy.kind is PolicyKind.EXPLICIT:
        if policy.version not in catalog:
            raise SelectionError(f"Could not find version: {policy.version}")
        return policy.version

    if policy.kind is PolicyKind.MOST_RECENT_STABLE:
        version = latest_stable(catalog)
        if version is None:
            raise SelectionError("Could not find any stable version")
        return version

    return catalog.latest
