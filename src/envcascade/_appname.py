"""Default app name discovery from ``pyproject.toml``."""

from __future__ import annotations

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[-_.\s]+")


def dotted_title(name: str) -> str:
    """``my-service`` -> ``My.Service``."""
    parts = [p for p in _SEPARATORS.split(name.strip()) if p]
    return ".".join(p[:1].upper() + p[1:] for p in parts)


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def discover_app_name(root_path: str | os.PathLike[str], default: str) -> str:
    """Return the app name declared by the project at *root_path*.

    Lookup order:

    1. ``[tool.envcascade] app-name`` (used as written)
    2. ``[project] name`` in dotted title case
    3. *default*
    """
    pyproject = Path(root_path) / "pyproject.toml"
    try:
        with pyproject.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return default
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Could not read %s: %s", pyproject, exc)
        return default

    tool_name = _table(_table(data, "tool"), "envcascade").get("app-name")
    if isinstance(tool_name, str) and tool_name.strip():
        return tool_name.strip()

    project_name = _table(data, "project").get("name")
    if isinstance(project_name, str) and project_name.strip():
        return dotted_title(project_name)

    return default
