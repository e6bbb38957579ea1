"""Access-token discovery.

Precedence, highest first:

1. ``ENVCASCADE_SERVICE_TOKEN`` in the process environment
2. ``.env.local`` in the base directory
3. ``.env`` in the base directory
4. ``.env.local`` at the workspace root (only if it differs from the base directory)
5. ``.env`` at the workspace root

The first source holding a non-empty value wins. Token values are never
logged; only origin, path and length.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NamedTuple

from ._dotenv import file_exists, read_key
from ._models import TokenSource, TokenSourceDiagnostic
from ._repository import EnvironmentRepository, OsEnvironmentRepository
from ._types import Secret, TokenOrigin
from ._workspace import find_workspace_root

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "ENVCASCADE_SERVICE_TOKEN"
MIN_TOKEN_LENGTH = 10


class _FileSource(NamedTuple):
    origin: TokenOrigin
    path: Path


class TokenResolver:
    """Finds the secrets-service token in the fixed precedence chain."""

    def __init__(
        self,
        repository: EnvironmentRepository | None = None,
        *,
        env_var: str = TOKEN_ENV_VAR,
    ) -> None:
        self._repository = repository or OsEnvironmentRepository()
        self.env_var = env_var

    # -- chain -------------------------------------------------------------

    def _file_sources(
        self,
        root_path: str | os.PathLike[str] | None,
        base_dir: str | os.PathLike[str] | None,
    ) -> list[_FileSource]:
        current = Path(base_dir) if base_dir is not None else self._repository.cwd()
        workspace = Path(root_path) if root_path is not None else find_workspace_root(current)

        sources = [
            _FileSource(TokenOrigin.local_env_local, current / ".env.local"),
            _FileSource(TokenOrigin.local_env, current / ".env"),
        ]
        if workspace.absolute() != current.absolute():
            sources.append(_FileSource(TokenOrigin.root_env_local, workspace / ".env.local"))
            sources.append(_FileSource(TokenOrigin.root_env, workspace / ".env"))
        return sources

    def _from_process_env(self) -> TokenSource | None:
        value = (self._repository.get_env(self.env_var) or "").strip()
        if not value:
            return None
        return TokenSource(origin=TokenOrigin.process_env, token=Secret(value))

    def load(
        self,
        root_path: str | os.PathLike[str] | None = None,
        *,
        base_dir: str | os.PathLike[str] | None = None,
    ) -> TokenSource | None:
        """Return the highest-precedence token, or ``None`` when no source has one.

        Args:
            root_path: Workspace root override. Auto-detected from *base_dir*
                when omitted.
            base_dir: Directory treated as "local". Defaults to the repository's
                working directory.
        """
        found = self._from_process_env()
        if found is not None:
            return found

        for source in self._file_sources(root_path, base_dir):
            value = read_key(source.path, self.env_var)
            if value:
                return TokenSource(origin=source.origin, token=Secret(value), path=str(source.path))

        return None

    # -- validation --------------------------------------------------------

    @staticmethod
    def validate_token_format(token: str | None) -> bool:
        """Non-empty, at least ``MIN_TOKEN_LENGTH`` characters, no whitespace."""
        if not token or not isinstance(token, str):
            return False
        if len(token) < MIN_TOKEN_LENGTH:
            return False
        return not any(ch.isspace() for ch in token)

    def get_validated_token(
        self,
        root_path: str | os.PathLike[str] | None = None,
        *,
        base_dir: str | os.PathLike[str] | None = None,
    ) -> TokenSource | None:
        source = self.load(root_path, base_dir=base_dir)
        if source is None:
            logger.debug("No %s found in any source", self.env_var)
            return None

        if not self.validate_token_format(source.token.secret_value):
            logger.warning("Invalid token format from source: %s", source.origin.value)
            return None

        logger.debug("Token loaded: %s", source.describe())
        return source

    # -- diagnostics -------------------------------------------------------

    def get_diagnostics(
        self,
        root_path: str | os.PathLike[str] | None = None,
        *,
        base_dir: str | os.PathLike[str] | None = None,
    ) -> list[TokenSourceDiagnostic]:
        """Report every source in the chain without exposing token content."""
        active = self.load(root_path, base_dir=base_dir)
        active_origin = active.origin if active is not None else None

        diagnostics = [
            TokenSourceDiagnostic(
                origin=TokenOrigin.process_env,
                exists=True,
                has_token=self._from_process_env() is not None,
                is_active=active_origin is TokenOrigin.process_env,
            )
        ]
        for source in self._file_sources(root_path, base_dir):
            diagnostics.append(
                TokenSourceDiagnostic(
                    origin=source.origin,
                    path=str(source.path),
                    exists=file_exists(source.path),
                    has_token=read_key(source.path, self.env_var) is not None,
                    is_active=active_origin is source.origin,
                )
            )
        return diagnostics
