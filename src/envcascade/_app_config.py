"""Typed config groups using Pydantic BaseModel.

Subclass ``AppConfig`` and declare fields plus a ``Meta`` inner class::

    class DatabaseConfig(AppConfig):
        class Meta:
            env_prefix = "DB"

        host: str = "localhost"
        port: int = 5432
        password: Secret[str]

    cfg = DatabaseConfig.load(result)
    cfg.port        # read from DB_PORT
    cfg.password    # Secret instance, repr shows '***'
"""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from ._reader import ConfigSource, as_mapping

_C = TypeVar("_C", bound="AppConfig")


class AppConfig(BaseModel):
    """Base class for declarative, typed config groups."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    class Meta:
        env_prefix: str = ""

    @classmethod
    def variable_name(cls, field_name: str) -> str:
        env_prefix = getattr(cls.Meta, "env_prefix", "")
        name = f"{env_prefix}_{field_name}" if env_prefix else field_name
        return name.upper()

    @classmethod
    def load(cls: type[_C], source: ConfigSource | None = None) -> _C:
        """Build a validated instance from *source*.

        Each field reads ``{ENV_PREFIX}_{FIELD_NAME}`` (uppercased). Absent
        variables are omitted so Pydantic applies the field default or raises
        ``ValidationError``.
        """
        variables = as_mapping(source)
        raw_data: dict[str, Any] = {}
        for field_name in cls.model_fields:
            name = cls.variable_name(field_name)
            if name in variables:
                raw_data[field_name] = variables[name]
        return cls.model_validate(raw_data)
