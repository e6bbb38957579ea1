"""Reading ``.env``-style files with python-dotenv.

Two entry points:

* ``read_key`` scans a file for a single key (used for the access token).
* ``read_env_file`` loads every binding of a file, expanding ``${VAR}``
  references and reporting malformed lines instead of failing.

Neither function ever raises for I/O or parse problems; a missing or
unreadable file is reported through the return value.
"""

from __future__ import annotations

import io
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from dotenv.parser import parse_stream
from dotenv.variables import parse_variables

logger = logging.getLogger(__name__)


@dataclass
class EnvFileContent:
    """Parsed content of one env file.

    Attributes:
        path: File that was read.
        exists: Whether the file was present on disk.
        variables: Bindings in file order (expanded when requested).
        errors: ``(line_number, message)`` pairs for skipped lines, or a single
            ``(None, message)`` when the whole file could not be read.
    """

    path: Path
    exists: bool
    variables: dict[str, str] = field(default_factory=dict)
    errors: list[tuple[int | None, str]] = field(default_factory=list)

    @property
    def readable(self) -> bool:
        return self.exists and not any(line is None for line, _ in self.errors)


def _read_text(path: Path) -> tuple[str, tuple[int, str] | None] | None:
    """Decode *path* as UTF-8, replacing undecodable bytes.

    Returns ``None`` for a missing file, otherwise the text and the line and
    message of the first decoding problem, if any.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    try:
        return raw.decode("utf-8"), None
    except UnicodeDecodeError as exc:
        line = raw[: exc.start].count(b"\n") + 1
        return raw.decode("utf-8", errors="replace"), (line, f"invalid UTF-8 replaced: {exc.reason}")


def read_key(path: str | os.PathLike[str], key: str) -> str | None:
    """Return the first non-empty value bound to *key* in *path*, or ``None``.

    Blank lines and ``#`` comments are ignored. A surrounding pair of matching
    quotes is removed and whitespace trimmed; an empty result counts as absent
    and scanning continues. Unreadable files count as absent.
    """
    file_path = Path(path)
    try:
        loaded = _read_text(file_path)
    except OSError as exc:
        logger.debug("Skipping unreadable env file %s: %s", file_path, exc)
        return None
    if loaded is None:
        return None
    text, _ = loaded

    for binding in parse_stream(io.StringIO(text)):
        if binding.error:
            value = _literal_value(binding.original.string, key)
            if value:
                return value
            continue
        if binding.key != key or binding.value is None:
            continue
        # python-dotenv has already removed one layer of matching quotes.
        value = binding.value.strip()
        if value:
            return value
    return None


def _literal_value(line: str, key: str) -> str | None:
    """Value of a ``KEY=...`` line python-dotenv rejected, taken as written.

    Covers an unmatched quote such as ``KEY="abc``; a matched pair is still removed.
    """
    match = re.match(rf"\s*(?:export\s+)?{re.escape(key)}\s*=\s*(.*)$", line.strip())
    if match is None:
        return None
    value = match.group(1).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1].strip()
    return value or None


def file_exists(path: str | os.PathLike[str]) -> bool:
    try:
        return Path(path).is_file()
    except OSError:
        return False


def _expand(value: str, context: Mapping[str, str]) -> str:
    return "".join(atom.resolve(context) for atom in parse_variables(value))


def read_env_file(
    path: str | os.PathLike[str],
    *,
    context: Mapping[str, str] | None = None,
    expand: bool = True,
) -> EnvFileContent:
    """Load all bindings from *path*.

    ``${VAR}`` and ``${VAR:-default}`` references are expanded against
    *context* (variables loaded so far) plus the bindings that precede them in
    this file. Lines python-dotenv cannot parse are recorded in ``errors`` and
    skipped.
    """
    file_path = Path(path)
    result = EnvFileContent(path=file_path, exists=False)

    try:
        loaded = _read_text(file_path)
    except OSError as exc:
        result.exists = True
        result.errors.append((None, str(exc)))
        logger.warning("Failed to read env file %s: %s", file_path, exc)
        return result
    if loaded is None:
        return result

    text, decode_error = loaded
    result.exists = True
    if decode_error is not None:
        result.errors.append(decode_error)
        logger.warning("Invalid UTF-8 in %s at line %d", file_path, decode_error[0])
    scope: dict[str, str] = dict(context or {})

    for binding in parse_stream(io.StringIO(text)):
        if binding.error:
            snippet = binding.original.string.strip()
            result.errors.append((binding.original.line, f"could not parse statement: {snippet}"))
            logger.warning(
                "Skipping malformed line %d in %s", binding.original.line, file_path
            )
            continue
        if binding.key is None:
            continue
        if binding.value is None:
            # ``KEY`` without ``=`` declares nothing.
            continue

        value = _expand(binding.value, scope) if expand else binding.value
        result.variables[binding.key] = value
        scope[binding.key] = value

    return result
