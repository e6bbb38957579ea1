"""Cast helpers for configuration values.

Resolved variables are always strings; these callables turn them into the
Python types the application wants. Each caster also accepts an already-cast
value and returns it unchanged, so they can be used as pydantic
``BeforeValidator``s on ``AppConfig`` fields.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Sequence

_TRUTHY = frozenset({"1", "true", "yes", "on", "t", "y"})
_FALSY = frozenset({"0", "false", "no", "off", "f", "n", ""})


def cast_bool(value: Any) -> bool:
    """Cast ``"true"`` / ``"1"`` / ``"yes"`` / ``"on"`` (and their negatives) to ``bool``.

    Raises ``ValueError`` for anything else.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lower = value.strip().lower()
        if lower in _TRUTHY:
            return True
        if lower in _FALSY:
            return False
        raise ValueError(f"Cannot cast {value!r} to bool")
    raise ValueError(f"Cannot cast {type(value).__name__} to bool")


class Csv:
    """Split a delimited string into a list, casting each element.

    Empty elements are dropped.

    >>> Csv()("a, b,,c")
    ['a', 'b', 'c']
    >>> Csv(cast=int, delimiter=":")("1:2:3")
    [1, 2, 3]
    """

    def __init__(
        self,
        cast: Callable[[str], Any] = str,
        delimiter: str = ",",
        post_process: Callable[[list], Any] | None = None,
    ) -> None:
        self.cast = cast
        self.delimiter = delimiter
        self.post_process = post_process

    def __call__(self, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            items = list(value)
        else:
            items = [self.cast(part.strip()) for part in str(value).split(self.delimiter) if part.strip()]
        if self.post_process is not None:
            return self.post_process(items)
        return items


class Choices:
    """Accept only one of a fixed set of values.

    >>> Choices(["development", "staging", "production"])("staging")
    'staging'
    """

    def __init__(self, choices: Sequence[Any], cast: Callable[[Any], Any] = str) -> None:
        self.choices = tuple(choices)
        self.cast = cast

    def __call__(self, value: Any) -> Any:
        casted = self.cast(value)
        if casted not in self.choices:
            raise ValueError(
                f"{casted!r} is not a valid choice. Must be one of {list(self.choices)}"
            )
        return casted


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class Duration:
    """Parse ``"250ms"``, ``"30s"``, ``"5m"``, ``"1h"`` or a bare number into seconds.

    A bare number is read in *default_unit*.

    >>> Duration()("5m")
    300.0
    """

    def __init__(self, default_unit: str = "s") -> None:
        if default_unit not in _DURATION_UNITS:
            raise ValueError(f"Unknown duration unit {default_unit!r}")
        self.default_unit = default_unit

    def __call__(self, value: Any) -> float:
        if isinstance(value, bool):
            raise ValueError("Cannot cast bool to a duration")
        if isinstance(value, (int, float)):
            return float(value) * _DURATION_UNITS[self.default_unit]
        match = _DURATION_RE.match(str(value))
        if match is None:
            raise ValueError(f"Cannot parse {value!r} as a duration")
        amount, unit = match.groups()
        return float(amount) * _DURATION_UNITS[(unit or self.default_unit).lower()]
