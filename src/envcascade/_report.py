"""Advisory reports over a ``ConfigResult``."""

from __future__ import annotations

from typing import Iterable

from ._models import ConfigResult, DiagnosticInfo, ValidationReport
from ._token import TOKEN_ENV_VAR

# Below this many variables a result is probably missing its env files.
SPARSE_VARIABLE_THRESHOLD = 5


def validate_config(result: ConfigResult, required_keys: Iterable[str] = ()) -> ValidationReport:
    """Check *required_keys* are present and non-blank. Never raises."""
    missing = [
        key for key in required_keys if not (result.variables.get(key) or "").strip()
    ]

    remote = result.remote_status
    warnings: list[str] = []
    if remote.available and not remote.success:
        warnings.append("Secrets service is available but failed to load secrets")
    if result.total_variables == 0:
        warnings.append("No environment variables loaded")
    if not result.loaded_files and not remote.success:
        warnings.append("No .env files found and secrets service not available")

    return ValidationReport(is_valid=not missing, missing=missing, warnings=warnings)


def get_diagnostic_info(result: ConfigResult) -> DiagnosticInfo:
    remote = result.remote_status
    recommendations: list[str] = []

    if not remote.available:
        recommendations.append(f"Add {TOKEN_ENV_VAR} to enable the secrets service")
    elif not remote.success:
        recommendations.append("Check the secrets service configuration and token validity")
        if remote.error:
            recommendations.append(f"Secrets service error: {remote.error}")

    if not result.loaded_files:
        recommendations.append("Create a .env.local file for local development overrides")

    if result.total_variables < SPARSE_VARIABLE_THRESHOLD:
        recommendations.append("Few variables were loaded; check that the expected .env files exist")

    for file_error in result.diagnostics.file_errors:
        where = f"{file_error.file}:{file_error.line}" if file_error.line else file_error.file
        recommendations.append(f"Fix {where}: {file_error.error}")

    state = "active" if remote.success else "fallback"
    summary = (
        f"App: {result.app_name}, Environment: {result.environment}, "
        f"Variables: {result.total_variables}, Secrets service: {state}"
    )

    return DiagnosticInfo(
        summary=summary,
        details={
            "app_name": result.app_name,
            "environment": result.environment,
            "total_variables": result.total_variables,
            "remote_status": remote.model_dump(mode="json"),
            "loaded_files": list(result.loaded_files),
            "token_source": (
                remote.token_source.describe() if remote.token_source is not None else None
            ),
            "cache_info": result.diagnostics.cache_info.model_dump(mode="json"),
            "loading_order": list(result.diagnostics.loading_order),
        },
        recommendations=recommendations,
    )
