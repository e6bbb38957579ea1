"""Layered configuration and secrets resolution.

Finds the secrets-service token, fetches and caches remote secrets, classifies
failures into fallback strategies, and merges everything with local ``.env``
files and the process environment into one ``ConfigResult``::

    async with create_resolver() as resolver:
        result = await resolver.resolve(environment="staging")
        database_url = config("DATABASE_URL", source=result)
"""

from ._app_config import AppConfig
from ._appname import discover_app_name
from ._cache import SecretsCache
from ._casters import Choices, Csv, Duration, cast_bool
from ._client import SecretsClient
from ._errors import ErrorClassifier, SecretsClientError, map_exception, redact
from ._models import (
    CacheInfo,
    CacheMetrics,
    CacheStatus,
    ClassifiedError,
    ConfigResult,
    DiagnosticInfo,
    Diagnostics,
    FallbackMechanism,
    FileLoadError,
    RemoteStatus,
    RetryPolicy,
    SecretsFetchResult,
    TokenSource,
    TokenSourceDiagnostic,
    ValidationReport,
)
from ._monitoring import LogEntry, OperationMonitor
from ._reader import config, get_source, set_source
from ._report import get_diagnostic_info, validate_config
from ._repository import EnvironmentRepository, FakeEnvironmentRepository, OsEnvironmentRepository
from ._resolver import ConfigResolver, ResolveOptions, create_resolver
from ._sdk import HttpSecretsSDK, SecretsSDK, http_sdk_factory, normalize_secrets
from ._settings import ResolverSettings
from ._testing import FakeSecretsSDK, fake_sdk_factory, override_config
from ._token import MIN_TOKEN_LENGTH, TOKEN_ENV_VAR, TokenResolver
from ._types import (
    ConfigError,
    ErrorCode,
    FallbackStrategy,
    InvalidationCriteriaError,
    InvalidationPattern,
    Secret,
    SecretsOrigin,
    SecretsPayloadError,
    TokenOrigin,
    UndefinedValueError,
)
from ._version import __version__
from ._workspace import WORKSPACE_INDICATORS, find_workspace_root

__all__ = [
    "__version__",
    # Resolution
    "ConfigResolver",
    "ResolveOptions",
    "create_resolver",
    "ResolverSettings",
    "ConfigResult",
    "RemoteStatus",
    "Diagnostics",
    "CacheInfo",
    "FileLoadError",
    "validate_config",
    "get_diagnostic_info",
    "ValidationReport",
    "DiagnosticInfo",
    "discover_app_name",
    # Token
    "TokenResolver",
    "TokenSource",
    "TokenSourceDiagnostic",
    "TokenOrigin",
    "TOKEN_ENV_VAR",
    "MIN_TOKEN_LENGTH",
    "find_workspace_root",
    "WORKSPACE_INDICATORS",
    # Secrets service
    "SecretsClient",
    "SecretsFetchResult",
    "SecretsOrigin",
    "SecretsSDK",
    "HttpSecretsSDK",
    "http_sdk_factory",
    "normalize_secrets",
    "SecretsCache",
    "CacheMetrics",
    "CacheStatus",
    "InvalidationPattern",
    # Errors
    "ConfigError",
    "UndefinedValueError",
    "InvalidationCriteriaError",
    "SecretsPayloadError",
    "SecretsClientError",
    "ErrorCode",
    "ErrorClassifier",
    "ClassifiedError",
    "FallbackStrategy",
    "FallbackMechanism",
    "RetryPolicy",
    "map_exception",
    # Monitoring
    "LogEntry",
    "OperationMonitor",
    "redact",
    # Typed access
    "config",
    "set_source",
    "get_source",
    "AppConfig",
    "Secret",
    "Csv",
    "Choices",
    "Duration",
    "cast_bool",
    # Testing
    "EnvironmentRepository",
    "OsEnvironmentRepository",
    "FakeEnvironmentRepository",
    "FakeSecretsSDK",
    "fake_sdk_factory",
    "override_config",
]
