"""Boundary to the remote secrets service.

The service is reached only through an ``init`` / ``get`` call pair on an SDK
handle. Its ``get`` response comes in one of two shapes, modelled here as a
tagged union and normalized by ``normalize_secrets``:

* a mapping of ``{name: value}``
* a list of ``{"key": ..., "value": ...}`` pairs (dicts or objects)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Literal, Protocol, Sequence, Union, runtime_checkable

import httpx

from ._types import SecretsPayloadError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# SDK protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class SecretsSDK(Protocol):
    """Async handle on the secrets service, bound to one access token."""

    async def init(self) -> None:
        ...

    async def get(self, app_name: str, environment: str) -> Any:
        ...


SDKFactory = Callable[[str], SecretsSDK]


# ---------------------------------------------------------------------------
# Payload union
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MappingPayload:
    kind: Literal["mapping"]
    items: Mapping[Any, Any]

    def to_secrets(self) -> dict[str, str]:
        secrets: dict[str, str] = {}
        for key, value in self.items.items():
            if isinstance(key, str) and key and isinstance(value, str):
                secrets[key] = value
        return secrets


@dataclass(frozen=True)
class PairListPayload:
    kind: Literal["pairs"]
    items: Sequence[Any]

    @staticmethod
    def _field(item: Any, name: str) -> Any:
        if isinstance(item, Mapping):
            return item.get(name)
        return getattr(item, name, None)

    def to_secrets(self) -> dict[str, str]:
        secrets: dict[str, str] = {}
        dropped = 0
        for item in self.items:
            if item is None:
                dropped += 1
                continue
            key = self._field(item, "key")
            value = self._field(item, "value")
            if not isinstance(key, str) or not key or not isinstance(value, str):
                dropped += 1
                continue
            secrets[key] = value
        if dropped:
            logger.debug("Discarded %d malformed secret entries", dropped)
        return secrets


SecretsPayload = Union[MappingPayload, PairListPayload]


def parse_payload(raw: Any) -> SecretsPayload:
    """Tag a raw ``get`` response with its shape.

    Raises:
        SecretsPayloadError: The response is neither a mapping nor a list.
    """
    if isinstance(raw, Mapping):
        return MappingPayload(kind="mapping", items=raw)
    if isinstance(raw, (list, tuple)):
        return PairListPayload(kind="pairs", items=raw)
    if raw is None:
        return MappingPayload(kind="mapping", items={})
    raise SecretsPayloadError(f"Unsupported secrets payload type: {type(raw).__name__}")


def normalize_secrets(raw: Any) -> dict[str, str]:
    """Return a flat ``{name: value}`` map of the string-valued secrets in *raw*."""
    return parse_payload(raw).to_secrets()


# ---------------------------------------------------------------------------
# HTTP SDK
# ---------------------------------------------------------------------------


class SecretsServiceHTTPError(Exception):
    """Non-success HTTP response from the secrets service."""

    def __init__(self, status_code: int, reason: str, retry_after: str | None = None) -> None:
        self.status_code = status_code
        self.retry_after = retry_after
        message = f"HTTP {status_code} {reason}"
        if retry_after is not None:
            message += f" (retry-after: {retry_after})"
        super().__init__(message)


class HttpSecretsSDK:
    """Default SDK talking to the secrets service over HTTPS.

    Endpoints::

        GET {base_url}/v1/auth/verify
        GET {base_url}/v1/secrets?app=<app>&environment=<env>

    Both use ``Authorization: Bearer <token>``.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def __repr__(self) -> str:
        return f"HttpSecretsSDK(base_url={self._base_url!r})"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        raise SecretsServiceHTTPError(
            response.status_code,
            response.reason_phrase,
            retry_after=response.headers.get("Retry-After"),
        )

    async def init(self) -> None:
        response = await self._http().get("/v1/auth/verify")
        self._raise_for_status(response)

    async def get(self, app_name: str, environment: str) -> Any:
        response = await self._http().get(
            "/v1/secrets",
            params={"app": app_name, "environment": environment},
        )
        if response.status_code == 404:
            detail = response.text or ""
            target = "environment" if "environment" in detail.lower() else "app"
            raise SecretsServiceHTTPError(404, f"Not Found ({target})")
        self._raise_for_status(response)
        body = response.json()
        if isinstance(body, Mapping) and "secrets" in body:
            return body["secrets"]
        return body

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def http_sdk_factory(base_url: str, *, timeout: float = 10.0) -> SDKFactory:
    """Build an ``SDKFactory`` producing ``HttpSecretsSDK`` handles."""

    def _factory(token: str) -> SecretsSDK:
        return HttpSecretsSDK(token, base_url=base_url, timeout=timeout)

    return _factory
