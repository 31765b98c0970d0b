"""Discovery of e2e spec files on disk."""

from __future__ import annotations

import glob
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def locate_specs(pattern: str, *, root: Path) -> list[Path]:
    """Return the sorted spec files matching ``pattern`` under ``root``.

    Patterns use ``**`` for recursive matches and are taken relative to ``root``
    unless absolute. A missing root yields an empty list.
    """
    if not root.exists():
        logger.debug("Spec root %s does not exist; no specs located.", root)
        return []
    full_pattern = pattern if Path(pattern).is_absolute() else str(root / pattern)
    matches = sorted(Path(match) for match in glob.glob(full_pattern, recursive=True))
    specs = [path for path in matches if path.is_file()]
    logger.debug("Located %d spec file(s) with %s", len(specs), full_pattern)
    return specs


__all__ = ["locate_specs"]
