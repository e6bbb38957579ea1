"""Error taxonomy for the remote secrets service and its fallback strategies.

``map_exception`` turns whatever the SDK raised into a ``SecretsClientError``
with a taxonomy code. ``ErrorClassifier`` turns that error into a
``ClassifiedError``: a fallback strategy, retry guidance, and operator-facing
messages that name where the token came from but never the token itself.
"""

from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime
from typing import Any

import httpx

from ._models import ClassifiedError, FallbackMechanism, RetryPolicy, TokenSource
from ._types import ConfigError, ErrorCode, FallbackStrategy, TokenOrigin

DEFAULT_RETRY_AFTER = 60

TOKEN_SOURCE_DESCRIPTIONS: dict[TokenOrigin, str] = {
    TokenOrigin.process_env: "the process environment variable",
    TokenOrigin.local_env_local: "the local .env.local file",
    TokenOrigin.local_env: "the local .env file",
    TokenOrigin.root_env_local: "the workspace root .env.local file",
    TokenOrigin.root_env: "the workspace root .env file",
}

_NON_RETRYABLE_LOCAL_ONLY = frozenset(
    {
        ErrorCode.TOKEN_NOT_FOUND,
        ErrorCode.INVALID_TOKEN,
        ErrorCode.AUTHENTICATION_FAILED,
        ErrorCode.ACCESS_DENIED,
        ErrorCode.APP_NOT_FOUND,
        ErrorCode.ENVIRONMENT_NOT_FOUND,
    }
)
_RETRY_WITH_BACKOFF = frozenset({ErrorCode.NETWORK_ERROR, ErrorCode.RATE_LIMIT_EXCEEDED})

_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"token[=:\s]+[a-zA-Z0-9_-]{3,}", re.IGNORECASE), "token=[REDACTED]"),
    (re.compile(r"key[=:\s]+[a-zA-Z0-9_-]{3,}", re.IGNORECASE), "key=[REDACTED]"),
    (re.compile(r"secret[=:\s]+[a-zA-Z0-9_-]{3,}", re.IGNORECASE), "secret=[REDACTED]"),
    (re.compile(r"password[=:\s]+\S+", re.IGNORECASE), "password=[REDACTED]"),
    (re.compile(r"auth[=:\s]+[a-zA-Z0-9_-]{3,}", re.IGNORECASE), "auth=[REDACTED]"),
)

_RETRY_AFTER_RE = re.compile(r"retry[-_ ]after\D{0,5}(\d+)", re.IGNORECASE)
_NETWORK_PHRASES = (
    "timeout",
    "timed out",
    "econnrefused",
    "connection refused",
    "connection reset",
    "network",
    "unreachable",
)


# ---------------------------------------------------------------------------
# Exception
# ---------------------------------------------------------------------------


class SecretsClientError(ConfigError):
    """A secrets-service failure carrying its taxonomy code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
        token_source: TokenSource | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details: dict[str, Any] = dict(details or {})
        self.retryable = retryable
        self.token_source = token_source
        super().__init__(message)

    def __repr__(self) -> str:
        return f"SecretsClientError(code={self.code.value!r}, message={self.message!r})"


# ---------------------------------------------------------------------------
# Raw exception -> taxonomy
# ---------------------------------------------------------------------------


def redact(message: str) -> str:
    """Mask credential-looking ``name=value`` fragments in SDK-supplied text."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def _parse_retry_after(message: str) -> int:
    match = _RETRY_AFTER_RE.search(message)
    if match:
        return int(match.group(1))
    return DEFAULT_RETRY_AFTER


def map_exception(
    exc: BaseException,
    operation: str,
    *,
    token_source: TokenSource | None = None,
    app_name: str | None = None,
    environment: str | None = None,
) -> SecretsClientError:
    """Map an SDK exception onto the taxonomy by type and message content."""
    if isinstance(exc, SecretsClientError):
        if exc.token_source is None and token_source is not None:
            exc.token_source = token_source
        return exc

    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    safe_message = redact(message)
    details: dict[str, Any] = {"original_error": safe_message}

    if "401" in lowered or "unauthorized" in lowered or "authentication" in lowered:
        return SecretsClientError(
            ErrorCode.AUTHENTICATION_FAILED,
            f"Authentication failed during {operation}. Check your service token.",
            details=details,
            token_source=token_source,
        )

    if "403" in lowered or "forbidden" in lowered:
        return SecretsClientError(
            ErrorCode.ACCESS_DENIED,
            f"Access denied during {operation}. Check your service token permissions.",
            details=details,
            token_source=token_source,
        )

    if "404" in lowered or "not found" in lowered:
        details.update(app_name=app_name, environment=environment)
        if "environment" in lowered:
            return SecretsClientError(
                ErrorCode.ENVIRONMENT_NOT_FOUND,
                f'Environment "{environment}" of app "{app_name}" not found during {operation}.',
                details=details,
                token_source=token_source,
            )
        return SecretsClientError(
            ErrorCode.APP_NOT_FOUND,
            f'App "{app_name}" not found during {operation}.',
            details=details,
            token_source=token_source,
        )

    if "429" in lowered or "rate limit" in lowered or "too many requests" in lowered:
        details["retry_after"] = _parse_retry_after(message)
        return SecretsClientError(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            f"Rate limit exceeded during {operation}. Retry later.",
            details=details,
            retryable=True,
            token_source=token_source,
        )

    if (
        isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError, httpx.TransportError))
        or any(phrase in lowered for phrase in _NETWORK_PHRASES)
    ):
        return SecretsClientError(
            ErrorCode.NETWORK_ERROR,
            f"Network error during {operation}. The secrets service may be unavailable.",
            details=details,
            retryable=True,
            token_source=token_source,
        )

    if "token" in lowered and "invalid" in lowered:
        return SecretsClientError(
            ErrorCode.INVALID_TOKEN,
            f"Invalid service token during {operation}.",
            details=details,
            token_source=token_source,
        )

    return SecretsClientError(
        ErrorCode.SDK_ERROR,
        f"Secrets SDK error during {operation}: {safe_message}",
        details=details,
        token_source=token_source,
    )


# ---------------------------------------------------------------------------
# Guidance tables
# ---------------------------------------------------------------------------


_TROUBLESHOOTING: dict[ErrorCode, list[str]] = {
    ErrorCode.TOKEN_NOT_FOUND: [
        "Set ENVCASCADE_SERVICE_TOKEN in the process environment",
        "Or add ENVCASCADE_SERVICE_TOKEN=<token> to a .env.local file",
        "Verify the token is not empty or whitespace",
        "Check file permissions on .env files",
    ],
    ErrorCode.AUTHENTICATION_FAILED: [
        "Verify the token in the secrets service console",
        "Regenerate the service token if needed",
        "Check token permissions and scope",
        "Ensure the token was copied without extra characters",
    ],
    ErrorCode.ACCESS_DENIED: [
        "Check that the token has access to this app and environment",
        "Ask an administrator to extend the token's permissions",
        "Verify you are using the token meant for this project",
    ],
    ErrorCode.APP_NOT_FOUND: [
        "Create the app in the secrets service console",
        "Verify the app name spelling and case",
        "Check that the token has access to the app",
    ],
    ErrorCode.ENVIRONMENT_NOT_FOUND: [
        "Create the environment in the secrets service console",
        "Verify the environment name spelling and case",
        "Check that the environment belongs to the configured app",
    ],
    ErrorCode.NETWORK_ERROR: [
        "Check internet connectivity",
        "Verify the secrets service status",
        "Check firewall and proxy settings",
        "Try again after a few minutes",
    ],
    ErrorCode.RATE_LIMIT_EXCEEDED: [
        "Wait for the rate limit to reset",
        "Retry with exponential backoff",
        "Reduce how often configuration is force-reloaded",
    ],
}
_TROUBLESHOOTING[ErrorCode.INVALID_TOKEN] = _TROUBLESHOOTING[ErrorCode.AUTHENTICATION_FAILED]

_DEFAULT_TROUBLESHOOTING = [
    "Check the secrets service status",
    "Verify all configuration is correct",
    "Contact the secrets service administrator if the issue persists",
]

_MECHANISMS: dict[FallbackStrategy, tuple[str, str]] = {
    FallbackStrategy.LOCAL_ENV_ONLY: (
        "Fall back to local environment variables only",
        "Load variables from .env files without the secrets service",
    ),
    FallbackStrategy.RETRY_WITH_BACKOFF: (
        "Retry with exponential backoff",
        "Retry the secrets service operation with increasing delays",
    ),
    FallbackStrategy.CACHE_FALLBACK: (
        "Use cached secrets if available",
        "Return previously cached secrets while the service is unavailable",
    ),
    FallbackStrategy.FAIL_FAST: (
        "Fail immediately without fallback",
        "Surface the error for critical configuration issues",
    ),
    FallbackStrategy.GRACEFUL_DEGRADATION: (
        "Continue with reduced functionality",
        "Operate with the variables that could be loaded",
    ),
}


def fallback_strategy_for(code: ErrorCode, retryable: bool = False) -> FallbackStrategy:
    """Strategy for *code*. ``retryable`` only matters for ``SDK_ERROR``."""
    if code in _NON_RETRYABLE_LOCAL_ONLY:
        return FallbackStrategy.LOCAL_ENV_ONLY
    if code in _RETRY_WITH_BACKOFF or retryable:
        return FallbackStrategy.RETRY_WITH_BACKOFF
    return FallbackStrategy.LOCAL_ENV_ONLY


def troubleshooting_steps(code: ErrorCode) -> list[str]:
    return list(_TROUBLESHOOTING.get(code, _DEFAULT_TROUBLESHOOTING))


def describe_token_source(token_source: TokenSource | None) -> str:
    """Human description of where a token came from, e.g. for error messages."""
    if token_source is None:
        return "No service token found (checked the process environment, .env.local and .env files)"
    description = TOKEN_SOURCE_DESCRIPTIONS.get(token_source.origin, token_source.origin.value)
    path_info = f" ({token_source.path})" if token_source.path else ""
    return f"Token loaded from {description}{path_info}"


def create_fallback_mechanism(strategy: FallbackStrategy) -> FallbackMechanism:
    description, implementation = _MECHANISMS[strategy]
    retry = RetryPolicy() if strategy is FallbackStrategy.RETRY_WITH_BACKOFF else None
    return FallbackMechanism(
        strategy=strategy,
        description=description,
        implementation=implementation,
        retry=retry,
    )


def format_error_for_logging(
    error: SecretsClientError,
    token_source: TokenSource | None = None,
    operation: str | None = None,
) -> dict[str, Any]:
    source = token_source or error.token_source
    return {
        "timestamp": datetime.now(UTC).isoformat(),
        "operation": operation or "unknown",
        "error_code": error.code.value,
        "message": error.message,
        "retryable": error.retryable,
        "token_source": source.describe() if source is not None else None,
        "details": error.details,
    }


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class ErrorClassifier:
    """Maps errors to a ``ClassifiedError`` with a fallback strategy."""

    def classify(
        self,
        error: BaseException | SecretsClientError,
        token_source: TokenSource | None = None,
        operation: str = "secrets service operation",
    ) -> ClassifiedError:
        client_error = map_exception(error, operation, token_source=token_source)
        source = token_source or client_error.token_source
        code = client_error.code

        strategy = fallback_strategy_for(code, client_error.retryable)
        retryable = strategy is FallbackStrategy.RETRY_WITH_BACKOFF

        steps = troubleshooting_steps(code)
        headline = self._headline(client_error, source)
        user_message = headline + "\n\nTroubleshooting steps:" + "".join(
            f"\n{index}. {step}" for index, step in enumerate(steps, start=1)
        )

        debug_info: dict[str, Any] = {
            "error_code": code.value,
            "operation": operation,
            "token_source": source.origin.value if source is not None else None,
            "token_path": source.path if source is not None else None,
        }
        debug_info.update(
            {key: value for key, value in client_error.details.items() if value is not None}
        )

        origin = source.origin.value if source is not None else "no token"
        return ClassifiedError(
            code=code,
            retryable=retryable,
            fallback_strategy=strategy,
            user_message=user_message,
            log_message=f"{operation} failed ({code.value}, token source: {origin}): {client_error.message}",
            debug_info=debug_info,
            troubleshooting_steps=steps,
        )

    @staticmethod
    def _headline(error: SecretsClientError, token_source: TokenSource | None) -> str:
        code = error.code
        guidance = describe_token_source(token_source)

        if code is ErrorCode.TOKEN_NOT_FOUND:
            return f"Secrets service configuration missing. {guidance}."
        if code is ErrorCode.AUTHENTICATION_FAILED:
            return f"Secrets service authentication failed. {guidance}. Verify the token is valid."
        if code is ErrorCode.INVALID_TOKEN:
            return f"Secrets service token is invalid. {guidance}. Check it was copied correctly."
        if code is ErrorCode.ACCESS_DENIED:
            return f"Secrets service access denied. {guidance}. Check the token's permissions."
        if code is ErrorCode.APP_NOT_FOUND:
            app_name = error.details.get("app_name") or "unknown"
            return f'App "{app_name}" not found in the secrets service. {guidance}.'
        if code is ErrorCode.ENVIRONMENT_NOT_FOUND:
            app_name = error.details.get("app_name") or "unknown"
            environment = error.details.get("environment") or "unknown"
            return (
                f'Environment "{environment}" not found in app "{app_name}". {guidance}.'
            )
        if code is ErrorCode.NETWORK_ERROR:
            return f"Secrets service is temporarily unavailable; using local variables. {guidance}."
        if code is ErrorCode.RATE_LIMIT_EXCEEDED:
            retry_after = error.details.get("retry_after", DEFAULT_RETRY_AFTER)
            return f"Secrets service rate limit exceeded; retry in {retry_after} seconds. {guidance}."
        return f"Secrets service error; using local variables. {guidance}."

    # Convenience passthroughs so callers need only the classifier instance.

    create_fallback_mechanism = staticmethod(create_fallback_mechanism)
    troubleshooting_steps = staticmethod(troubleshooting_steps)
