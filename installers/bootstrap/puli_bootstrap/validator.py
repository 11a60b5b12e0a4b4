"""Archive well-formedness checks for downloaded artifacts."""

from __future__ import annotations

import shutil
from pathlib import Path

from puli_core.logging_setup import get_logger

from .errors import ValidationError
from .phar import PHAR_EXTENSION, PharArchive, PharFormatError, has_phar_extension


logger = get_logger("validator")


def validation_path(path: Path) -> Path:
    """Path the PHAR reader will accept for ``path``.

    The reader only opens files whose name carries the ``.phar`` extension,
    so other names are validated through a ``<name>.tmp.phar`` sibling.
    """
    if has_phar_extension(path):
        return path
    return path.with_name(path.name + ".tmp" + PHAR_EXTENSION)


def validate_artifact(path: Path, *, require_signature: bool = True) -> PharArchive:
    """Raise ValidationError unless ``path`` is a loadable PHAR archive.

    The candidate file itself is never modified. Errors other than a
    malformed archive propagate unchanged.
    """
    candidate = validation_path(path)
    try:
        if candidate != path:
            shutil.copyfile(path, candidate)
        archive = PharArchive.open(candidate, require_signature=require_signature)
    except PharFormatError as exc:
        raise ValidationError(str(exc)) from exc
    finally:
        if candidate != path:
            candidate.unlink(missing_ok=True)

    logger.info(
        "validated %s: %d entries, signature %s",
        path,
        len(archive.entries),
        archive.signature_type or "none",
    )
    return archive
