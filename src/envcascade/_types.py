"""Foundation types for envcascade.

Provides sentinel values, the enums shared across the resolution pipeline,
exception classes, and the Secret wrapper type.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar, get_args

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema, core_schema

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Sentinel
# ---------------------------------------------------------------------------


class _Undefined:
    """Sentinel for missing config values (distinct from ``None``)."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TokenOrigin(str, Enum):
    """Where an access token was found, highest precedence first."""

    process_env = "process_env"
    local_env_local = "local_env_local"
    local_env = "local_env"
    root_env_local = "root_env_local"
    root_env = "root_env"


class SecretsOrigin(str, Enum):
    """Where the secrets of a fetch result came from."""

    sdk = "sdk"
    cache = "cache"
    fallback = "fallback"


class ErrorCode(str, Enum):
    """Failure taxonomy for the remote secrets service."""

    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    INVALID_TOKEN = "INVALID_TOKEN"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    ACCESS_DENIED = "ACCESS_DENIED"
    APP_NOT_FOUND = "APP_NOT_FOUND"
    ENVIRONMENT_NOT_FOUND = "ENVIRONMENT_NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SDK_ERROR = "SDK_ERROR"


class FallbackStrategy(str, Enum):
    """Recovery action chosen when the secrets service cannot be used."""

    LOCAL_ENV_ONLY = "LOCAL_ENV_ONLY"
    RETRY_WITH_BACKOFF = "RETRY_WITH_BACKOFF"
    CACHE_FALLBACK = "CACHE_FALLBACK"
    FAIL_FAST = "FAIL_FAST"
    GRACEFUL_DEGRADATION = "GRACEFUL_DEGRADATION"


class InvalidationPattern(str, Enum):
    """Selection rule for ``SecretsCache.invalidate``."""

    ALL = "all"
    BY_APP = "by_app"
    BY_ENVIRONMENT = "by_environment"
    BY_TOKEN_SOURCE_ORIGIN = "by_token_source_origin"
    EXPIRED_ONLY = "expired_only"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(Exception):
    """Base exception for envcascade errors."""


class UndefinedValueError(ConfigError):
    """Raised when a required configuration key is missing."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Configuration key '{key}' is required but not set.")


class InvalidationCriteriaError(ConfigError, ValueError):
    """Raised when an invalidation pattern is missing its criterion."""

    def __init__(self, pattern: InvalidationPattern, criterion: str) -> None:
        self.pattern = pattern
        self.criterion = criterion
        super().__init__(f"'{criterion}' is required for {pattern.value} invalidation")


class SecretsPayloadError(ConfigError):
    """Raised when the secrets service returns a payload of unknown shape."""


# ---------------------------------------------------------------------------
# Secret
# ---------------------------------------------------------------------------


class Secret(Generic[T]):
    """Wraps a value so it is redacted in ``repr`` / ``str`` output.

    Access the real value via ``.secret_value``.
    """

    __slots__ = ("_value",)

    def __init__(self, value: T) -> None:
        object.__setattr__(self, "_value", value)

    @property
    def secret_value(self) -> T:
        return self._value  # type: ignore[return-value]

    # -- redaction ----------------------------------------------------------

    def __repr__(self) -> str:
        return "Secret('***')"

    def __str__(self) -> str:
        return "***"

    # -- comparison ---------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return bool(self._value == other._value)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)

    def __len__(self) -> int:
        return len(self._value)  # type: ignore[arg-type]

    # The wrapper is immutable, so copies can share it.
    def __copy__(self) -> "Secret[T]":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "Secret[T]":
        return self

    # -- Pydantic v2 integration --------------------------------------------

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        # Extract the inner type arg (e.g., ``str`` from ``Secret[str]``).
        args = get_args(source_type)
        inner_type = args[0] if args else Any

        handler.generate_schema(inner_type)

        def _validate(value: Any) -> "Secret[Any]":
            if isinstance(value, Secret):
                return value
            return Secret(value)

        def _serialize(value: "Secret[Any]", _info: Any) -> str:
            return "***"

        return core_schema.no_info_plain_validator_function(
            _validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                _serialize,
                info_arg=True,
            ),
            metadata={"pydantic_js_functions": []},
        )
