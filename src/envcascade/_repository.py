"""Process environment protocol, the live implementation, and an in-memory one for tests."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable


@runtime_checkable
class EnvironmentRepository(Protocol):
    """Abstraction over the process state the resolver reads.

    Implementations expose the environment variables and the working
    directory, so resolution can be exercised without touching
    ``os.environ`` or ``os.getcwd()``.
    """

    def get_env(self, key: str) -> str | None:
        ...

    def environ(self) -> Mapping[str, str]:
        ...

    def cwd(self) -> Path:
        ...


class OsEnvironmentRepository:
    """Reads from ``os.environ`` and ``os.getcwd()``."""

    def get_env(self, key: str) -> str | None:
        return os.environ.get(key)

    def environ(self) -> Mapping[str, str]:
        return dict(os.environ)

    def cwd(self) -> Path:
        return Path(os.getcwd())


class FakeEnvironmentRepository:
    """Dict-backed environment repository for tests.

    >>> repo = FakeEnvironmentRepository(env={"DEBUG": "1"}, cwd="/srv/app")
    >>> repo.get_env("DEBUG")
    '1'
    """

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> None:
        self._env: dict[str, str] = dict(env or {})
        self._cwd = Path(cwd) if cwd is not None else Path(os.getcwd())

    # -- Protocol methods ---------------------------------------------------

    def get_env(self, key: str) -> str | None:
        return self._env.get(key)

    def environ(self) -> Mapping[str, str]:
        return dict(self._env)

    def cwd(self) -> Path:
        return self._cwd

    # -- Mutation helpers for test setup ------------------------------------

    def set_env(self, key: str, value: str) -> None:
        self._env[key] = value

    def unset_env(self, key: str) -> None:
        self._env.pop(key, None)

    def chdir(self, path: str | os.PathLike[str]) -> None:
        self._cwd = Path(path)
