"""Test utilities: a scriptable secrets SDK and a ``config()`` source override."""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

from ._reader import ConfigSource, get_source, set_source
from ._sdk import SDKFactory, SecretsSDK


class FakeSecretsSDK:
    """In-memory ``SecretsSDK`` that records calls.

    ``secrets`` maps ``(app_name, environment)`` to the raw payload ``get``
    returns (a mapping or a list of key/value pairs). Queue exceptions or
    payloads with ``fail_init`` / ``fail_get`` / ``queue_get`` to script a
    sequence of responses; queued items are consumed before ``secrets``.

    >>> sdk = FakeSecretsSDK({("app", "dev"): {"A": "1"}})
    >>> sdk.fail_get(TimeoutError("timed out"))
    """

    def __init__(
        self,
        secrets: Mapping[tuple[str, str], Any] | None = None,
        *,
        token: str | None = None,
        delay: float = 0.0,
    ) -> None:
        self.secrets: dict[tuple[str, str], Any] = dict(secrets or {})
        self.token = token
        self.delay = delay
        self.init_calls = 0
        self.get_calls: list[tuple[str, str]] = []
        self.closed = False
        self._init_script: deque[BaseException] = deque()
        self._get_script: deque[Any] = deque()

    # -- scripting ----------------------------------------------------------

    def fail_init(self, exc: BaseException, times: int = 1) -> None:
        self._init_script.extend([exc] * times)

    def fail_get(self, exc: BaseException, times: int = 1) -> None:
        self._get_script.extend([exc] * times)

    def queue_get(self, payload: Any) -> None:
        self._get_script.append(payload)

    # -- SecretsSDK ---------------------------------------------------------

    async def init(self) -> None:
        self.init_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._init_script:
            raise self._init_script.popleft()

    async def get(self, app_name: str, environment: str) -> Any:
        self.get_calls.append((app_name, environment))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._get_script:
            item = self._get_script.popleft()
            if isinstance(item, BaseException):
                raise item
            return item
        if (app_name, environment) not in self.secrets:
            raise LookupError(f"404 Not Found: app {app_name!r}")
        return self.secrets[(app_name, environment)]

    async def aclose(self) -> None:
        self.closed = True


def fake_sdk_factory(sdk: FakeSecretsSDK) -> SDKFactory:
    """Factory that always hands out *sdk*, recording the token it was given."""

    def _factory(token: str) -> SecretsSDK:
        sdk.token = token
        sdk.closed = False
        return sdk

    return _factory


@contextmanager
def override_config(source: ConfigSource | None = None, **variables: str) -> Iterator[ConfigSource]:
    """Temporarily replace the source read by ``config()`` and ``AppConfig.load()``.

    Usage::

        with override_config(DEBUG="true", DB_PORT="5433"):
            assert config("DEBUG", cast=bool) is True
    """
    previous = get_source()
    active: ConfigSource = source if source is not None else dict(variables)
    set_source(active)
    try:
        yield active
    finally:
        set_source(previous)
