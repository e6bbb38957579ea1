"""Data models exchanged between the resolution components.

All models are Pydantic v2 models so they can be dumped to JSON for
diagnostics (the CLI does exactly that). Token values are wrapped in
``Secret`` and serialize as ``***``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ._types import ErrorCode, FallbackStrategy, Secret, SecretsOrigin, TokenOrigin


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


class TokenSource(BaseModel):
    """An access token together with where it was found."""

    model_config = ConfigDict(frozen=True)

    origin: TokenOrigin
    token: Secret[str]
    path: str | None = None

    @property
    def token_length(self) -> int:
        return len(self.token.secret_value)

    @property
    def identity(self) -> str:
        """Path of the file the token came from, or ``"env"``."""
        return self.path or "env"

    def describe(self) -> dict[str, Any]:
        """Loggable summary. Never contains the token itself."""
        return {
            "origin": self.origin.value,
            "path": self.path,
            "token_length": self.token_length,
        }


class TokenSourceDiagnostic(BaseModel):
    origin: TokenOrigin
    path: str | None = None
    exists: bool
    has_token: bool
    is_active: bool


# ---------------------------------------------------------------------------
# Remote fetch
# ---------------------------------------------------------------------------


class SecretsFetchResult(BaseModel):
    """Outcome of ``SecretsClient.get_secrets``. Returned, never raised."""

    success: bool
    secrets: dict[str, str] = Field(default_factory=dict)
    origin: SecretsOrigin = SecretsOrigin.fallback
    token_source: TokenSource | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    retryable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ClassifiedError(BaseModel):
    code: ErrorCode
    retryable: bool
    fallback_strategy: FallbackStrategy
    user_message: str
    log_message: str
    debug_info: dict[str, Any] = Field(default_factory=dict)
    troubleshooting_steps: list[str] = Field(default_factory=list)
    should_fallback: bool = True


class RetryPolicy(BaseModel):
    """Exponential backoff parameters."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number *attempt* (1-based)."""
        delay_ms = min(self.base_delay_ms * 2 ** max(attempt - 1, 0), self.max_delay_ms)
        return delay_ms / 1000


class FallbackMechanism(BaseModel):
    strategy: FallbackStrategy
    description: str
    implementation: str
    retry: RetryPolicy | None = None


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheMetrics(BaseModel):
    entries: int
    hits: int
    misses: int
    hit_rate: float
    avg_entry_size: int
    oldest_entry_age: float | None
    newest_entry_age: float | None
    memory_estimate: int
    evictions: int = 0
    sweeps: int = 0


class CacheStatus(BaseModel):
    entries: int
    max_entries: int
    default_ttl: float
    sweep_running: bool
    closed: bool
    memory_estimate: int


# ---------------------------------------------------------------------------
# Resolved configuration
# ---------------------------------------------------------------------------


class CacheInfo(BaseModel):
    cached: bool = False
    age: float = 0.0
    ttl: float = 0.0


class FileLoadError(BaseModel):
    """A local file or line that was skipped during loading."""

    file: str
    error: str
    line: int | None = None


class RemoteStatus(BaseModel):
    available: bool = False
    success: bool = False
    variable_count: int = 0
    error: str | None = None
    token_source: TokenSource | None = None
    fallback_strategy: FallbackStrategy | None = None
    origin: SecretsOrigin = SecretsOrigin.fallback


class Diagnostics(BaseModel):
    token_source_diagnostics: list[TokenSourceDiagnostic] = Field(default_factory=list)
    loading_order: list[str] = Field(default_factory=list)
    cache_info: CacheInfo = Field(default_factory=CacheInfo)
    classified_error: ClassifiedError | None = None
    file_errors: list[FileLoadError] = Field(default_factory=list)


class ConfigResult(BaseModel):
    """Authoritative configuration snapshot produced by ``ConfigResolver``."""

    app_name: str
    environment: str
    variables: dict[str, str] = Field(default_factory=dict)
    loaded_files: list[str] = Field(default_factory=list)
    total_variables: int = 0
    remote_status: RemoteStatus = Field(default_factory=RemoteStatus)
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_staging(self) -> bool:
        return self.environment == "staging"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ValidationReport(BaseModel):
    is_valid: bool
    missing: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class DiagnosticInfo(BaseModel):
    summary: str
    details: dict[str, Any] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
