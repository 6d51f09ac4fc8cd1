"""
Execution context codec.

Responsibility:
    Converts an ExecutionContext to its stored form and back. The stored form
    is either a nested document (the default, values kept native) or a flat
    string produced by a pluggable serializer plus character set, for
    external consumers that require one.

Architecture position:
    Kernel > Domain -- pure, zero I/O. Used by RecordCodec.

Invariants enforced:
    - Both stored forms accept the same values: JSON scalars, Decimal, UUID,
      date, timezone-aware datetime, and lists and string-keyed mappings of
      those.  Naive datetimes are rejected.

Failure modes:
    - ExecutionContextSerializationError wraps any serializer or charset
      failure, and any value the document form cannot hold; the original
      exception is chained as ``__cause__``.  Raised before any write.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from batch_kernel.domain.execution_context import ExecutionContext
from batch_kernel.exceptions import ExecutionContextSerializationError

_TYPE_KEY = "@type"
_VALUE_KEY = "value"


class ExecutionContextSerializer(Protocol):
    """Pluggable byte-level serializer for execution context maps."""

    def dumps(self, values: Mapping[str, Any]) -> bytes:
        ...

    def loads(self, data: bytes) -> dict[str, Any]:
        ...


def _require_aware(value: datetime, where: str) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"naive datetime at {where!r} cannot be stored; attach a timezone")
    return value


def _encode_special(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {_TYPE_KEY: "datetime", _VALUE_KEY: _require_aware(obj, "context").isoformat()}
    if isinstance(obj, date):
        return {_TYPE_KEY: "date", _VALUE_KEY: obj.isoformat()}
    if isinstance(obj, Decimal):
        return {_TYPE_KEY: "decimal", _VALUE_KEY: str(obj)}
    if isinstance(obj, UUID):
        return {_TYPE_KEY: "uuid", _VALUE_KEY: str(obj)}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


_DECODERS = {
    "datetime": datetime.fromisoformat,
    "date": date.fromisoformat,
    "decimal": Decimal,
    "uuid": UUID,
}


def _decode_special(obj: dict[str, Any]) -> Any:
    if set(obj) == {_TYPE_KEY, _VALUE_KEY} and obj[_TYPE_KEY] in _DECODERS:
        return _DECODERS[obj[_TYPE_KEY]](obj[_VALUE_KEY])
    return obj


_DOCUMENT_SCALARS = (str, int, float, Decimal, UUID, date)


def _to_document_value(value: Any, where: str) -> Any:
    """
    Check that ``value`` can be stored in a nested document.

    Accepts None, str, int, float, bool, Decimal, UUID, date, aware datetime,
    and lists, tuples and string-keyed mappings of those.  Tuples come back as
    lists.
    """
    if value is None or isinstance(value, _DOCUMENT_SCALARS):
        if isinstance(value, datetime):
            return _require_aware(value, where)
        return value
    if isinstance(value, Mapping):
        nested = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"non-string key {key!r} at {where!r}")
            nested[key] = _to_document_value(item, f"{where}.{key}")
        return nested
    if isinstance(value, (list, tuple)):
        return [_to_document_value(item, f"{where}[{i}]") for i, item in enumerate(value)]
    raise TypeError(f"Object of type {type(value).__name__} at {where!r} cannot be stored")


class JsonExecutionContextSerializer:
    """
    JSON serializer with type tags for date-times, dates, decimals and UUIDs.

    Keys are sorted so the same context always serializes to the same bytes.
    """

    def __init__(self, charset: str = "utf-8"):
        self._charset = charset

    def dumps(self, values: Mapping[str, Any]) -> bytes:
        return json.dumps(
            dict(values), sort_keys=True, separators=(",", ":"), default=_encode_special
        ).encode(self._charset)

    def loads(self, data: bytes) -> dict[str, Any]:
        loaded = json.loads(data.decode(self._charset), object_hook=_decode_special)
        if not isinstance(loaded, dict):
            raise ValueError(f"expected a JSON object, got {type(loaded).__name__}")
        return loaded


class ContextCodec(ABC):
    """
    Stored-form strategy for execution contexts.

    Contract:
        Subclasses decide what ``encode`` produces. ``decode`` accepts both
        the document form and the string form, so collections written with
        one strategy stay readable after switching to the other.

    Guarantees:
        - ``serialize(None)`` returns ``""``; ``deserialize`` of None or a
          blank string returns an empty context.
    """

    def __init__(
        self,
        serializer: ExecutionContextSerializer | None = None,
        charset: str = "utf-8",
    ):
        self.serializer = serializer or JsonExecutionContextSerializer(charset)
        self.charset = charset

    @abstractmethod
    def encode(self, context: ExecutionContext | None) -> dict[str, Any] | str:
        """Stored form of ``context``; raises ExecutionContextSerializationError."""

    def decode(self, stored: Any) -> ExecutionContext:
        if stored is None:
            return ExecutionContext()
        if isinstance(stored, str):
            return self.deserialize(stored)
        if isinstance(stored, Mapping):
            return ExecutionContext(stored)
        raise ExecutionContextSerializationError(
            "deserialize", f"unsupported stored type {type(stored).__name__}"
        )

    def serialize(self, context: Mapping[str, Any] | None) -> str:
        if context is None:
            return ""
        try:
            return self.serializer.dumps(dict(context)).decode(self.charset)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise ExecutionContextSerializationError("serialize", str(exc)) from exc

    def deserialize(self, serialized: str | None) -> ExecutionContext:
        if serialized is None or not serialized.strip():
            return ExecutionContext()
        try:
            return ExecutionContext(self.serializer.loads(serialized.encode(self.charset)))
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise ExecutionContextSerializationError("deserialize", str(exc)) from exc


class DocumentContextCodec(ContextCodec):
    """Stores the context as a nested document with native values."""

    def encode(self, context: ExecutionContext | None) -> dict[str, Any]:
        if context is None:
            return {}
        try:
            return {key: _to_document_value(value, key) for key, value in context.items()}
        except (TypeError, ValueError) as exc:
            raise ExecutionContextSerializationError("serialize", str(exc)) from exc


class StringContextCodec(ContextCodec):
    """Stores the context as one serialized string."""

    def encode(self, context: ExecutionContext | None) -> str:
        return self.serialize(context)


def context_codec_for(
    context_format: str,
    serializer: ExecutionContextSerializer | None = None,
    charset: str = "utf-8",
) -> ContextCodec:
    """Pick the codec for a configured ``context_format`` (document or string)."""
    if context_format == "document":
        return DocumentContextCodec(serializer, charset)
    if context_format == "string":
        return StringContextCodec(serializer, charset)
    raise ValueError(f"unknown context format {context_format!r}")
