"""Workspace root detection.

A workspace root is the top-level directory of a multi-package project. It is
recognised by marker files: workspace manifests, build-orchestrator configs,
lockfiles, and the version-control directory.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

WORKSPACE_INDICATORS: tuple[str, ...] = (
    # Workspace / project-management manifests
    "pnpm-workspace.yaml",
    "rush.json",
    "lerna.json",
    "pants.toml",
    # Monorepo build orchestrators
    "turbo.json",
    "nx.json",
    # Lockfiles
    "pnpm-lock.yaml",
    "uv.lock",
    "poetry.lock",
    # Version control
    ".git",
)


def _has_indicator(directory: Path, indicators: Iterable[str]) -> bool:
    for indicator in indicators:
        try:
            if (directory / indicator).exists():
                return True
        except OSError:
            # Unreadable level: treat as "no indicator here".
            return False
    return False


def find_workspace_root(
    start_path: str | os.PathLike[str],
    indicators: Iterable[str] = WORKSPACE_INDICATORS,
) -> Path:
    """Walk upward from *start_path* and return the first directory holding an indicator.

    Returns *start_path* unchanged when no indicator is found before the
    filesystem root.
    """
    start = Path(start_path)
    markers = tuple(indicators)
    current = start.absolute()

    while True:
        if _has_indicator(current, markers):
            if current != start.absolute():
                logger.debug("Workspace root for %s detected at %s", start, current)
            return current
        parent = current.parent
        if parent == current:
            break
        current = parent

    return start
