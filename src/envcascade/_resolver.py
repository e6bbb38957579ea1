"""The top-level resolution pipeline.

``ConfigResolver.resolve`` produces one authoritative ``ConfigResult`` from
every source, highest precedence first:

1. Non-empty process environment variables
2. Secrets from the remote secrets service
3. ``.env.local`` > ``.env.<environment>`` > ``.env`` in the project directory
4. The same three files at the workspace root (only when it differs)

Remote failures never abort resolution; they are classified, recorded in the
diagnostics, and resolution continues with local sources.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import weakref
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, ConfigDict, Field

from ._appname import discover_app_name
from ._cache import SecretsCache
from ._client import DEFAULT_TIMEOUT, SecretsClient
from ._dotenv import read_env_file
from ._errors import ErrorClassifier, SecretsClientError, fallback_strategy_for
from ._models import (
    CacheInfo,
    ClassifiedError,
    ConfigResult,
    DiagnosticInfo,
    Diagnostics,
    FileLoadError,
    RemoteStatus,
    RetryPolicy,
    SecretsFetchResult,
    TokenSourceDiagnostic,
    ValidationReport,
)
from ._monitoring import OperationMonitor
from ._report import get_diagnostic_info, validate_config
from ._repository import EnvironmentRepository, OsEnvironmentRepository
from ._sdk import SDKFactory, http_sdk_factory
from ._settings import ResolverSettings
from ._token import TokenResolver
from ._types import ErrorCode, FallbackStrategy
from ._workspace import find_workspace_root

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "development"
ENVIRONMENT_VARIABLES = ("ENVIRONMENT", "APP_ENV")
DEFAULT_RESULT_TTL = 5 * 60.0

REMOTE_SOURCE = "secrets-service"
PROCESS_ENV_SOURCE = "process-environment"

ResultKey = tuple[str, str, str]


class ResolveOptions(BaseModel):
    """Per-call options for ``ConfigResolver.resolve``.

    Attributes:
        app_name: App in the secrets service. Discovered from
            ``pyproject.toml`` when omitted.
        environment: Defaults to ``ENVIRONMENT`` / ``APP_ENV`` or
            ``"development"``.
        root_path: Project directory. Defaults to the working directory.
        force_reload: Bypass the result cache.
        enable_remote: Consult the secrets service.
        fallback_to_local: Load local ``.env`` files even when the remote
            fetch succeeded.
        cache_ttl: Result-cache TTL in seconds for this call.
        deadline: Upper bound in seconds for the whole remote step.
        retry_transient: Retry network and rate-limit failures with
            exponential backoff, within *deadline*.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    app_name: str | None = None
    environment: str | None = None
    root_path: Path | None = None
    force_reload: bool = False
    enable_remote: bool = True
    fallback_to_local: bool = True
    cache_ttl: float | None = Field(default=None, ge=0)
    deadline: float | None = Field(default=None, gt=0)
    retry_transient: bool = False


class _RemoteOutcome(BaseModel):
    status: RemoteStatus
    secrets: dict[str, str] = Field(default_factory=dict)
    classified_error: ClassifiedError | None = None
    token_diagnostics: list[TokenSourceDiagnostic] = Field(default_factory=list)


class _LocalOutcome(BaseModel):
    variables: dict[str, str] = Field(default_factory=dict)
    loaded_files: list[str] = Field(default_factory=list)
    file_errors: list[FileLoadError] = Field(default_factory=list)


class _CachedResult:
    __slots__ = ("result", "created_at", "ttl")

    def __init__(self, result: ConfigResult, created_at: float, ttl: float) -> None:
        self.result = result
        self.created_at = created_at
        self.ttl = ttl


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ConfigResolver:
    """Merges remote secrets, local env files and the process environment.

    Construct directly for full control, or with ``create_resolver()`` to
    wire defaults from ``ENVCASCADE_*`` settings. Call ``close()`` (or use it
    as a context manager) to wipe the secrets cache it owns.
    """

    def __init__(
        self,
        *,
        repository: EnvironmentRepository | None = None,
        token_resolver: TokenResolver | None = None,
        cache: SecretsCache | None = None,
        sdk_factory: SDKFactory | None = None,
        classifier: ErrorClassifier | None = None,
        monitor: OperationMonitor | None = None,
        default_app_name: str = "App",
        request_timeout: float = DEFAULT_TIMEOUT,
        secrets_ttl: float | None = None,
        result_ttl: float = DEFAULT_RESULT_TTL,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        owns_cache: bool | None = None,
    ) -> None:
        self._repository = repository or OsEnvironmentRepository()
        self._token_resolver = token_resolver or TokenResolver(self._repository)
        self._owns_cache = cache is None if owns_cache is None else owns_cache
        self._cache = cache if cache is not None else SecretsCache()
        self._sdk_factory = sdk_factory
        self._classifier = classifier or ErrorClassifier()
        self.monitor = monitor if monitor is not None else OperationMonitor()
        self.default_app_name = default_app_name
        self.request_timeout = request_timeout
        self.secrets_ttl = secrets_ttl
        self.result_ttl = result_ttl
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock

        self._results: dict[ResultKey, _CachedResult] = {}
        self._results_lock = threading.Lock()
        self._key_locks: weakref.WeakKeyDictionary[
            asyncio.AbstractEventLoop, dict[ResultKey, _KeyLock]
        ] = weakref.WeakKeyDictionary()
        self._key_locks_guard = threading.Lock()
        self._closed = False

    # -- context managers ---------------------------------------------------

    def __enter__(self) -> "ConfigResolver":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    async def __aenter__(self) -> "ConfigResolver":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def cache(self) -> SecretsCache:
        return self._cache

    # -- option defaults ----------------------------------------------------

    def _default_environment(self) -> str:
        for name in ENVIRONMENT_VARIABLES:
            value = (self._repository.get_env(name) or "").strip()
            if value:
                return value
        return DEFAULT_ENVIRONMENT

    async def _effective(self, opts: ResolveOptions) -> tuple[str, str, Path]:
        root = Path(opts.root_path) if opts.root_path else self._repository.cwd()
        app_name = (opts.app_name or "").strip()
        if not app_name:
            app_name = await asyncio.to_thread(discover_app_name, root, self.default_app_name)
        environment = (opts.environment or "").strip() or self._default_environment()
        return app_name, environment, root

    # -- result cache -------------------------------------------------------

    @asynccontextmanager
    async def _key_lock(self, key: ResultKey) -> AsyncIterator[None]:
        """Serialize resolutions of *key*; the lock is dropped once nobody holds or awaits it."""
        loop = asyncio.get_running_loop()
        with self._key_locks_guard:
            locks = self._key_locks.get(loop)
            if locks is None:
                locks = {}
                self._key_locks[loop] = locks
            slot = locks.get(key)
            if slot is None:
                slot = _KeyLock()
                locks[key] = slot
            slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            with self._key_locks_guard:
                slot.users -= 1
                if slot.users == 0 and locks.get(key) is slot:
                    del locks[key]

    def _cached_result(self, key: ResultKey) -> ConfigResult | None:
        with self._results_lock:
            cached = self._results.get(key)
            if cached is None:
                return None
            age = self._clock() - cached.created_at
            if age >= cached.ttl:
                del self._results[key]
                return None
            result = cached.result.model_copy(deep=True)
        result.diagnostics.cache_info = CacheInfo(cached=True, age=age, ttl=cached.ttl)
        logger.debug("Returning cached configuration for %s:%s (age %.0fs)", key[0], key[1], age)
        return result

    def _store_result(self, key: ResultKey, result: ConfigResult, ttl: float) -> None:
        if ttl <= 0:
            return
        with self._results_lock:
            self._results[key] = _CachedResult(result.model_copy(deep=True), self._clock(), ttl)

    # -- public API ---------------------------------------------------------

    async def resolve(self, options: ResolveOptions | None = None, **overrides: Any) -> ConfigResult:
        """Resolve configuration. Never raises for missing or broken sources.

        Keyword *overrides* are merged into *options*, e.g.
        ``await resolver.resolve(environment="staging", force_reload=True)``.
        """
        if self._closed:
            raise RuntimeError("ConfigResolver is closed")

        base = options or ResolveOptions()
        opts = ResolveOptions.model_validate({**base.model_dump(), **overrides}) if overrides else base

        app_name, environment, root = await self._effective(opts)
        key: ResultKey = (app_name, environment, str(root.absolute()))
        ttl = opts.cache_ttl if opts.cache_ttl is not None else self.result_ttl

        async with self._key_lock(key):
            if not opts.force_reload:
                cached = self._cached_result(key)
                if cached is not None:
                    return cached

            with self.monitor.track("resolve") as op:
                result = await self._resolve_uncached(opts, app_name, environment, root, ttl)
                op.set_variable_count(result.total_variables)
                op.set_token_source(result.remote_status.token_source)
                classified = result.diagnostics.classified_error
                if classified is not None:
                    op.record.error_code = classified.code
                    op.record.retryable = classified.retryable

            self._store_result(key, result, ttl)
            return result

    def resolve_sync(self, options: ResolveOptions | None = None, **overrides: Any) -> ConfigResult:
        """Blocking ``resolve`` on a fresh event loop. Not usable inside a running loop."""
        return asyncio.run(self.resolve(options, **overrides))

    async def _resolve_uncached(
        self,
        opts: ResolveOptions,
        app_name: str,
        environment: str,
        root: Path,
        ttl: float,
    ) -> ConfigResult:
        variables: dict[str, str] = {}
        loading_order: list[str] = []

        if opts.enable_remote:
            remote = await self._remote_step(opts, app_name, environment, root)
        else:
            remote = _RemoteOutcome(status=RemoteStatus())

        if remote.status.success:
            variables.update(remote.secrets)
            loading_order.append(REMOTE_SOURCE)

        local = _LocalOutcome()
        if opts.fallback_to_local or not remote.status.success:
            local = await asyncio.to_thread(self._load_local, root, environment, variables)
            for name, value in local.variables.items():
                variables.setdefault(name, value)
            loading_order.extend(local.loaded_files)

        overridden = 0
        for name, value in self._repository.environ().items():
            if value:
                variables[name] = value
                overridden += 1
        if overridden:
            loading_order.append(PROCESS_ENV_SOURCE)

        result = ConfigResult(
            app_name=app_name,
            environment=environment,
            variables=variables,
            loaded_files=local.loaded_files,
            total_variables=len(variables),
            remote_status=remote.status,
            diagnostics=Diagnostics(
                token_source_diagnostics=remote.token_diagnostics,
                loading_order=loading_order,
                cache_info=CacheInfo(cached=False, age=0.0, ttl=ttl),
                classified_error=remote.classified_error,
                file_errors=local.file_errors,
            ),
        )
        logger.info(
            "Resolved %d variables for %s:%s (secrets service: %s, files: %d)",
            result.total_variables,
            app_name,
            environment,
            "active" if remote.status.success else "fallback",
            len(local.loaded_files),
        )
        self.monitor.log_configuration_diagnostics(result)
        return result

    # -- remote step --------------------------------------------------------

    def _new_client(self) -> SecretsClient:
        return SecretsClient(
            token_resolver=self._token_resolver,
            cache=self._cache,
            sdk_factory=self._sdk_factory,
            timeout=self.request_timeout,
            secrets_ttl=self.secrets_ttl,
            monitor=self.monitor,
        )

    async def _remote_step(
        self,
        opts: ResolveOptions,
        app_name: str,
        environment: str,
        root: Path,
    ) -> _RemoteOutcome:
        token_diagnostics = await asyncio.to_thread(
            self._token_resolver.get_diagnostics, base_dir=root
        )
        client = self._new_client()
        try:
            try:
                fetched, error = await asyncio.wait_for(
                    self._fetch_with_retry(client, opts, app_name, environment, root),
                    timeout=opts.deadline,
                )
            except TimeoutError:
                fetched = None
                error = SecretsClientError(
                    ErrorCode.NETWORK_ERROR,
                    f"Secrets service did not respond within the {opts.deadline}s deadline",
                    retryable=True,
                    token_source=client.token_source,
                )
        finally:
            await client.close()

        if error is None and fetched is not None:
            return _RemoteOutcome(
                status=RemoteStatus(
                    available=True,
                    success=True,
                    variable_count=len(fetched.secrets),
                    token_source=fetched.token_source,
                    origin=fetched.origin,
                ),
                secrets=fetched.secrets,
                token_diagnostics=token_diagnostics,
            )

        classified = self._classifier.classify(
            error, token_source=error.token_source, operation="secrets resolution"
        )
        logger.warning("%s", classified.log_message)
        self.monitor.log_fallback_usage(
            classified.fallback_strategy,
            error.message,
            token_source=error.token_source,
            error=error,
        )
        return _RemoteOutcome(
            status=RemoteStatus(
                available=error.code is not ErrorCode.TOKEN_NOT_FOUND,
                success=False,
                error=error.message,
                token_source=error.token_source,
                fallback_strategy=classified.fallback_strategy,
            ),
            classified_error=classified,
            token_diagnostics=token_diagnostics,
        )

    async def _fetch_with_retry(
        self,
        client: SecretsClient,
        opts: ResolveOptions,
        app_name: str,
        environment: str,
        root: Path,
    ) -> tuple[SecretsFetchResult | None, SecretsClientError | None]:
        attempt = 1
        while True:
            try:
                if not client.initialized:
                    await client.initialize(app_name, environment, base_dir=root)
                fetched = await client.get_secrets()
                if fetched.success:
                    return fetched, None
                error = SecretsClientError(
                    fetched.error_code or ErrorCode.SDK_ERROR,
                    fetched.error or "Secret retrieval failed",
                    details={**fetched.details, "app_name": app_name, "environment": environment},
                    retryable=fetched.retryable,
                    token_source=fetched.token_source,
                )
            except SecretsClientError as exc:
                error = exc

            retry = (
                opts.retry_transient
                and fallback_strategy_for(error.code, error.retryable)
                is FallbackStrategy.RETRY_WITH_BACKOFF
                and attempt < self.retry_policy.max_attempts
            )
            if not retry:
                return None, error

            delay = self.retry_policy.delay_for(attempt)
            logger.info(
                "Retrying secrets fetch in %.1fs (attempt %d of %d, %s)",
                delay,
                attempt + 1,
                self.retry_policy.max_attempts,
                error.code.value,
            )
            await asyncio.sleep(delay)
            attempt += 1

    # -- local step ---------------------------------------------------------

    @staticmethod
    def _env_file_names(environment: str) -> list[str]:
        names = [".env", f".env.{environment}", ".env.local"]
        return list(dict.fromkeys(names))

    def _load_local(
        self,
        root: Path,
        environment: str,
        already_present: dict[str, str],
    ) -> _LocalOutcome:
        outcome = _LocalOutcome()
        process_env = {k: v for k, v in self._repository.environ().items() if v}

        directories = [root]
        workspace = find_workspace_root(root)
        if workspace.absolute() != root.absolute():
            directories.insert(0, workspace)

        for directory in directories:
            for name in self._env_file_names(environment):
                path = directory / name
                context = {**outcome.variables, **already_present, **process_env}
                content = read_env_file(path, context=context)
                if not content.exists:
                    continue

                for line, message in content.errors:
                    outcome.file_errors.append(FileLoadError(file=str(path), error=message, line=line))
                if not content.readable:
                    continue

                outcome.variables.update(content.variables)
                outcome.loaded_files.append(str(path))
                logger.debug("Loaded %d variables from %s", len(content.variables), path)

        return outcome

    # -- cache management and reports -----------------------------------------

    def clear_cache(self, include_secrets: bool = False) -> None:
        """Drop cached results; with *include_secrets* also wipe the secrets cache."""
        with self._results_lock:
            self._results.clear()
        if include_secrets:
            self._cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        now = self._clock()
        with self._results_lock:
            results = [
                {
                    "app_name": key[0],
                    "environment": key[1],
                    "root_path": key[2],
                    "age": now - cached.created_at,
                    "ttl": cached.ttl,
                }
                for key, cached in self._results.items()
            ]
        return {
            "results": {"entries": len(results), "items": results},
            "secrets": self._cache.get_metrics().model_dump(),
        }

    @staticmethod
    def validate_config(result: ConfigResult, required_keys: list[str] | tuple[str, ...] = ()) -> ValidationReport:
        return validate_config(result, required_keys)

    @staticmethod
    def get_diagnostic_info(result: ConfigResult) -> DiagnosticInfo:
        return get_diagnostic_info(result)

    # -- shutdown -----------------------------------------------------------

    def close(self) -> None:
        """Drop cached results and wipe the secrets cache if this resolver created it."""
        if self._closed:
            return
        self._closed = True
        self.clear_cache()
        if self._owns_cache:
            self._cache.close()

    async def aclose(self) -> None:
        self.close()


def create_resolver(
    *,
    repository: EnvironmentRepository | None = None,
    settings: ResolverSettings | None = None,
    **kwargs: Any,
) -> ConfigResolver:
    """Build a ``ConfigResolver`` wired from ``ENVCASCADE_*`` settings.

    Any ``ConfigResolver`` keyword argument in *kwargs* wins over the
    settings-derived default.
    """
    repo = repository or OsEnvironmentRepository()
    settings = settings or ResolverSettings.load(repo)

    if "cache" not in kwargs:
        kwargs["cache"] = SecretsCache(
            max_entries=settings.cache_max_entries,
            default_ttl=settings.secrets_ttl,
            sweep_interval=settings.sweep_interval,
        )
        kwargs.setdefault("owns_cache", True)
    if "sdk_factory" not in kwargs and settings.service_url:
        kwargs["sdk_factory"] = http_sdk_factory(settings.service_url, timeout=settings.request_timeout)

    kwargs.setdefault("default_app_name", settings.default_app_name)
    kwargs.setdefault("request_timeout", settings.request_timeout)
    kwargs.setdefault("secrets_ttl", settings.secrets_ttl)
    kwargs.setdefault("result_ttl", settings.result_ttl)

    return ConfigResolver(repository=repo, **kwargs)
