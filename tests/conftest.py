from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT / "installers" / "bootstrap", ROOT / "packages" / "core", ROOT / "tests"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from phar_factory import build_phar  # noqa: E402
from puli_core.logging_setup import reset_logging  # noqa: E402


@pytest.fixture
def phar_bytes() -> bytes:
    return build_phar()


@pytest.fixture(autouse=True)
def _isolated_logging():
    yield
    reset_logging()
