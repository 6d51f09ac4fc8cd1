"""
Module: batch_kernel.db.types
Responsibility: Column types that let relational columns hold document
    values: aware UTC date-times and JSON documents that keep nested
    date-times, decimals and UUIDs intact.
Architecture position: Kernel > DB.  Lowest-level import target of the db
    package.  MUST NOT import from domain/, services/ or selectors/.

Invariants enforced:
    - Date-times read back are always timezone-aware UTC (SQLite drops the
      offset on storage; it is restored here).
    - Naive date-times are rejected on write.
    - Nested values inside JSON columns use an extended-JSON wrapper
      (``{"$date": ...}``, ``{"$dateOnly": ...}``, ``{"$numberDecimal": ...}``,
      ``{"$uuid": ...}``) and decode back to their native types.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime
from sqlalchemy.types import TypeDecorator

_DATE = "$date"
_DATE_ONLY = "$dateOnly"
_DECIMAL = "$numberDecimal"
_UUID = "$uuid"


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"naive datetime {value!r} cannot be stored; attach a timezone")
    return value.astimezone(timezone.utc)


def to_document_json(value: Any) -> Any:
    """Wrap native values that plain JSON cannot carry."""
    if isinstance(value, dict):
        return {k: to_document_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document_json(v) for v in value]
    if isinstance(value, datetime):
        return {_DATE: _require_aware(value).isoformat()}
    if isinstance(value, date):
        return {_DATE_ONLY: value.isoformat()}
    if isinstance(value, Decimal):
        return {_DECIMAL: str(value)}
    if isinstance(value, UUID):
        return {_UUID: str(value)}
    return value


def from_document_json(value: Any) -> Any:
    """Inverse of ``to_document_json``."""
    if isinstance(value, list):
        return [from_document_json(v) for v in value]
    if isinstance(value, dict):
        if len(value) == 1:
            ((key, inner),) = value.items()
            if key == _DATE:
                return datetime.fromisoformat(inner).astimezone(timezone.utc)
            if key == _DATE_ONLY:
                return date.fromisoformat(inner)
            if key == _DECIMAL:
                return Decimal(inner)
            if key == _UUID:
                return UUID(inner)
        return {k: from_document_json(v) for k, v in value.items()}
    return value


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware date-time column.

    Guarantees:
        - process_bind_param: aware datetime -> UTC datetime.
        - process_result_value: always returns an aware UTC datetime.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return _require_aware(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class DocumentJSON(TypeDecorator):
    """JSON column holding an embedded document, array or string."""

    impl = JSON(none_as_null=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_document_json(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_document_json(value)
