"""Async client for the remote secrets service.

``SecretsClient`` owns one SDK handle per ``initialize`` call. Initialization
failures raise ``SecretsClientError``; ``get_secrets`` never raises and
reports failures through ``SecretsFetchResult`` instead.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from ._cache import SecretsCache
from ._errors import SecretsClientError, format_error_for_logging, map_exception, redact
from ._models import SecretsFetchResult, TokenSource
from ._monitoring import OperationMonitor
from ._sdk import SDKFactory, SecretsSDK, normalize_secrets
from ._token import TokenResolver
from ._types import ErrorCode, SecretsOrigin

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


async def _close_sdk(sdk: SecretsSDK | None) -> None:
    closer = getattr(sdk, "aclose", None)
    if closer is None:
        return
    try:
        await closer()
    except Exception as exc:
        logger.debug("Ignoring error while closing secrets SDK: %s", redact(str(exc)))


class SecretsClient:
    """Fetches secrets for one app/environment pair.

    Args:
        token_resolver: Locates the service token.
        cache: Shared secrets cache. ``None`` disables caching.
        sdk_factory: Builds an SDK handle from a token. ``None`` means no
            secrets service is configured; ``initialize`` then fails with
            ``SDK_ERROR``.
        timeout: Seconds allowed for each SDK call.
        secrets_ttl: TTL for cache entries this client writes. ``None`` uses
            the cache default.
        monitor: Receives operation timings.
    """

    def __init__(
        self,
        *,
        token_resolver: TokenResolver | None = None,
        cache: SecretsCache | None = None,
        sdk_factory: SDKFactory | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        secrets_ttl: float | None = None,
        monitor: OperationMonitor | None = None,
    ) -> None:
        self._token_resolver = token_resolver or TokenResolver()
        self._cache = cache
        self._sdk_factory = sdk_factory
        self.timeout = timeout
        self._secrets_ttl = secrets_ttl
        self.monitor = monitor if monitor is not None else OperationMonitor()

        self._sdk: SecretsSDK | None = None
        self._token_source: TokenSource | None = None
        self._app_name: str | None = None
        self._environment: str | None = None
        self._initialized = False

    # -- properties ---------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def token_source(self) -> TokenSource | None:
        return self._token_source

    @property
    def app_name(self) -> str | None:
        return self._app_name

    @property
    def environment(self) -> str | None:
        return self._environment

    # -- lifecycle ----------------------------------------------------------

    async def initialize(
        self,
        app_name: str,
        environment: str,
        root_path: str | os.PathLike[str] | None = None,
        *,
        base_dir: str | os.PathLike[str] | None = None,
    ) -> bool:
        """Locate the token and open an SDK session.

        Raises:
            SecretsClientError: No valid token, blank app/environment, or the
                SDK ``init`` call failed or timed out.
        """
        await self.close()
        self._token_source = None

        with self.monitor.track("token-loading") as op:
            token_source = await asyncio.to_thread(
                self._token_resolver.get_validated_token, root_path, base_dir=base_dir
            )
            op.set_token_source(token_source)
            if token_source is None:
                op.fail(ErrorCode.TOKEN_NOT_FOUND)

        if token_source is None:
            error = SecretsClientError(
                ErrorCode.TOKEN_NOT_FOUND,
                f"No valid {self._token_resolver.env_var} found in the process "
                "environment or .env files",
            )
            self._log_failure(error, "token loading")
            raise error

        self._token_source = token_source
        app = (app_name or "").strip()
        env = (environment or "").strip()
        if not app or not env:
            raise SecretsClientError(
                ErrorCode.SDK_ERROR,
                "App name and environment are required",
                details={"app_name": app_name, "environment": environment},
                token_source=token_source,
            )

        if self._sdk_factory is None:
            raise SecretsClientError(
                ErrorCode.SDK_ERROR,
                "No secrets service is configured",
                token_source=token_source,
            )

        sdk: SecretsSDK | None = None
        with self.monitor.track("sdk-initialization") as op:
            op.set_token_source(token_source)
            try:
                sdk = self._sdk_factory(token_source.token.secret_value)
                # Held before init so close() can release it if init is cancelled.
                self._sdk = sdk
                await asyncio.wait_for(sdk.init(), timeout=self.timeout)
            except Exception as exc:
                error = map_exception(
                    exc,
                    "SDK initialization",
                    token_source=token_source,
                    app_name=app,
                    environment=env,
                )
                op.fail(error.code, error.retryable)
                self._sdk = None
                await _close_sdk(sdk)
                self._log_failure(error, "SDK initialization")
                raise error from exc

        self._app_name = app
        self._environment = env
        self._initialized = True
        logger.debug("Secrets client initialized for %s:%s", app, env)
        return True

    async def close(self) -> None:
        """Release the SDK handle. The shared cache is left untouched."""
        sdk, self._sdk = self._sdk, None
        self._initialized = False
        await _close_sdk(sdk)

    # -- fetching -----------------------------------------------------------

    async def get_secrets(self) -> SecretsFetchResult:
        if not self._initialized or self._sdk is None or self._token_source is None:
            return SecretsFetchResult(
                success=False,
                error="Secrets client is not initialized",
                token_source=self._token_source,
            )

        app, env, source = self._app_name or "", self._environment or "", self._token_source

        if self._cache is not None:
            cached = self._cache.get(app, env, source)
            if cached is not None:
                with self.monitor.track("secret-retrieval") as op:
                    op.set_cache_hit()
                    op.set_token_source(source)
                    op.set_variable_count(len(cached))
                return SecretsFetchResult(
                    success=True,
                    secrets=cached,
                    origin=SecretsOrigin.cache,
                    token_source=source,
                )

        with self.monitor.track("secret-retrieval") as op:
            op.set_token_source(source)
            try:
                raw = await asyncio.wait_for(self._sdk.get(app, env), timeout=self.timeout)
                secrets = normalize_secrets(raw)
            except Exception as exc:
                error = map_exception(
                    exc,
                    "secret retrieval",
                    token_source=source,
                    app_name=app,
                    environment=env,
                )
                op.fail(error.code, error.retryable)
                self._log_failure(error, "secret retrieval")
                return SecretsFetchResult(
                    success=False,
                    error=error.message,
                    error_code=error.code,
                    retryable=error.retryable,
                    details=dict(error.details),
                    token_source=source,
                )
            op.set_variable_count(len(secrets))

        if self._cache is not None:
            self._cache.set(app, env, secrets, source, ttl=self._secrets_ttl)

        logger.debug("Fetched %d secrets for %s:%s", len(secrets), app, env)
        return SecretsFetchResult(
            success=True,
            secrets=secrets,
            origin=SecretsOrigin.sdk,
            token_source=source,
        )

    async def test_connection(self) -> bool:
        if not self._initialized:
            return False
        result = await self.get_secrets()
        return result.success

    # -- diagnostics --------------------------------------------------------

    def get_diagnostics(self) -> dict[str, Any]:
        source = self._token_source
        return {
            "initialized": self._initialized,
            "has_token": source is not None,
            "token_source": source.describe() if source is not None else None,
            "app_name": self._app_name,
            "environment": self._environment,
            "timeout": self.timeout,
        }

    @staticmethod
    def _log_failure(error: SecretsClientError, operation: str) -> None:
        payload = format_error_for_logging(error, operation=operation)
        logger.warning(
            "%s failed (%s): %s",
            operation,
            error.code.value,
            payload["message"],
            extra={"envcascade_error": payload},
        )
