"""
ExecutionContext -- key/value state produced by a running job or step.

The kernel treats the contents as opaque: values are arbitrary scalars or
nested documents. The dirty flag lets an orchestration layer skip
``update_execution_context`` calls when nothing changed.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any


class ExecutionContext(MutableMapping[str, Any]):
    """Mutable string-keyed mapping with a dirty flag."""

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._map: dict[str, Any] = dict(values or {})
        self._dirty = False

    def __getitem__(self, key: str) -> Any:
        return self._map[key]

    def __setitem__(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise TypeError(f"ExecutionContext keys must be str, got {type(key).__name__}")
        if value is None:
            # Storing None removes the key
            if key in self._map:
                del self._map[key]
                self._dirty = True
            return
        if self._map.get(key) != value:
            self._dirty = True
        self._map[key] = value

    def __delitem__(self, key: str) -> None:
        del self._map[key]
        self._dirty = True

    def __iter__(self) -> Iterator[str]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExecutionContext):
            return self._map == other._map
        if isinstance(other, Mapping):
            return self._map == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ExecutionContext({self._map!r})"

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def clear_dirty_flag(self) -> None:
        self._dirty = False

    def get_string(self, key: str, default: str | None = None) -> str | None:
        return self._typed(key, str, default)

    def get_int(self, key: str, default: int | None = None) -> int | None:
        return self._typed(key, int, default)

    def get_float(self, key: str, default: float | None = None) -> float | None:
        return self._typed(key, float, default)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._map)

    def copy(self) -> ExecutionContext:
        return ExecutionContext(self._map)

    def _typed(self, key: str, expected: type, default: Any) -> Any:
        if key not in self._map:
            return default
        value = self._map[key]
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            raise TypeError(
                f"Value for key {key!r} is {type(value).__name__}, expected {expected.__name__}"
            )
        return value
