"""Library settings read from ``ENVCASCADE_*`` variables."""

from __future__ import annotations

from typing import Annotated

from pydantic import BeforeValidator, Field

from ._app_config import AppConfig
from ._casters import Duration

Seconds = Annotated[float, BeforeValidator(Duration())]


class ResolverSettings(AppConfig):
    """Defaults for ``create_resolver``.

    ``ENVCASCADE_REQUEST_TIMEOUT=30s`` and ``ENVCASCADE_RESULT_TTL=5m`` style
    durations are accepted, as are bare seconds.
    """

    class Meta:
        env_prefix = "ENVCASCADE"

    default_app_name: str = "App"
    service_url: str | None = None
    request_timeout: Seconds = Field(default=10.0, gt=0)
    secrets_ttl: Seconds = Field(default=300.0, gt=0)
    result_ttl: Seconds = Field(default=300.0, ge=0)
    cache_max_entries: int = Field(default=100, ge=1)
    sweep_interval: Seconds = Field(default=120.0, gt=0)
