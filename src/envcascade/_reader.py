"""``config()``: typed reads from a resolved configuration.

Lookup order:

1. The variable in *source* (or the active source when *source* is omitted)
2. Default value (returned as-is, **not** passed through ``cast``)
3. Raise ``UndefinedValueError``

The active source starts out as the live process environment. Applications
usually install their ``ConfigResult`` once at startup with ``set_source``.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Union

from ._casters import cast_bool
from ._models import ConfigResult
from ._repository import EnvironmentRepository, OsEnvironmentRepository
from ._types import UNDEFINED, UndefinedValueError, _Undefined

ConfigSource = Union[ConfigResult, EnvironmentRepository, Mapping[str, str]]

_active_source: ConfigSource | None = None


def set_source(source: ConfigSource | None) -> None:
    """Set the module-level source read by ``config()`` and ``AppConfig.load()``."""
    global _active_source
    _active_source = source


def get_source() -> ConfigSource | None:
    """Return the current module-level source (may be ``None``)."""
    return _active_source


def _auto_source() -> ConfigSource:
    global _active_source
    if _active_source is None:
        _active_source = OsEnvironmentRepository()
    return _active_source


def as_mapping(source: ConfigSource | None) -> Mapping[str, str]:
    """Flatten any supported source into a ``{name: value}`` mapping."""
    active = source if source is not None else _auto_source()
    if isinstance(active, ConfigResult):
        return active.variables
    if isinstance(active, Mapping):
        return active
    return active.environ()


def _identity(value: Any) -> Any:
    return value


def _resolve_cast(cast: Callable | type | None) -> Callable[[Any], Any]:
    if cast is None:
        return _identity
    if cast is bool:
        return cast_bool
    return cast


def config(
    key: str,
    *,
    default: Any = UNDEFINED,
    cast: Callable | type | None = None,
    source: ConfigSource | None = None,
) -> Any:
    """Read a configuration value with type casting and fail-fast semantics.

    Parameters
    ----------
    key:
        Variable name, e.g. ``"DATABASE_URL"``.
    default:
        Fallback if the key is absent. Returned **as-is** (not passed
        through *cast*).
    cast:
        Callable to coerce the raw string. ``bool`` is special-cased to
        understand ``"true"`` / ``"0"`` / ``"on"`` and friends.
    source:
        A ``ConfigResult``, an environment repository or a plain mapping.
        Defaults to the module-level source.
    """
    variables = as_mapping(source)
    value = variables.get(key, UNDEFINED)
    if not isinstance(value, _Undefined):
        return _resolve_cast(cast)(value)

    if not isinstance(default, _Undefined):
        return default

    raise UndefinedValueError(key)
