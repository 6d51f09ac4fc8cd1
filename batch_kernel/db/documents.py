"""
Module: batch_kernel.db.documents
Responsibility: Document-collection adapter over one table.  Offers the
    single-document primitives the kernel is built on (find, insert,
    conditional update, replace-or-insert, read-modify-write of one
    document, increment-and-fetch) with documents as plain dicts keyed by
    stored field name.
Architecture position: Kernel > DB.  Used by services/ and selectors/.
    MUST NOT import from domain/, services/ or selectors/.

Invariants enforced:
    - Every mutating primitive touches at most one row and runs in exactly
      one ``atomic()`` scope.  The matched row is locked (FOR UPDATE on
      PostgreSQL, BEGIN IMMEDIATE on SQLite) before it is changed, so a
      condition evaluated in the scope still holds when the write lands.
    - Documents returned never contain the surrogate ``_id`` and never
      contain None-valued fields (NULL reads as "absent").

Failure modes:
    - ValueError for a filter or document naming a field the collection
      does not have.
    - sqlalchemy.exc.IntegrityError from a unique index on insert; callers
      map it to a typed error.
"""

from collections.abc import Callable, Mapping
from typing import Any

from sqlalchemy import Table, distinct, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.sql.elements import ColumnElement

from batch_kernel.db.collections import DOCUMENT_ID, ensure_collection
from batch_kernel.db.engine import atomic
from batch_kernel.logging_config import get_logger

logger = get_logger("db.documents")

ASCENDING = 1
DESCENDING = -1

Filter = Mapping[str, Any]
Sort = list[tuple[str, int]]


class DocumentCollection:
    """
    One collection of documents stored as rows of ``table``.

    Filters are mappings of field name to either a value (equality, with
    None meaning "absent") or an operator document:

        {"$exists": bool}   field present / absent
        {"$ne": value}      not equal (``{"$ne": None}`` is "present")
        {"$in": [values]}   membership
        {"$like": pattern}  SQL LIKE with backslash as the escape character
    """

    def __init__(self, engine: Engine, table: Table):
        self.engine = engine
        self.table = table

    @property
    def name(self) -> str:
        return self.table.name

    def __repr__(self) -> str:
        return f"DocumentCollection({self.name!r})"

    def ensure_indexes(self) -> None:
        """Provision the collection and its named indexes (idempotent)."""
        ensure_collection(self.engine, self.table)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(
        self,
        filter: Filter | None = None,
        sort: Sort | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(self.table).where(*self._where(filter))
        stmt = stmt.order_by(*self._order_by(sort))
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [self._to_document(row) for row in rows]

    def find_one(self, filter: Filter | None = None, sort: Sort | None = None) -> dict[str, Any] | None:
        found = self.find(filter, sort=sort, limit=1)
        return found[0] if found else None

    def count(self, filter: Filter | None = None, distinct_field: str | None = None) -> int:
        if distinct_field is None:
            counted = func.count()
        else:
            counted = func.count(distinct(self._column(distinct_field)))
        stmt = select(counted).select_from(self.table).where(*self._where(filter))
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar_one()

    def distinct(
        self,
        field: str,
        filter: Filter | None = None,
        direction: int = ASCENDING,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Any]:
        """Distinct non-absent values of ``field``, sorted and optionally paged."""
        column = self._column(field)
        stmt = (
            select(column)
            .where(column.is_not(None), *self._where(filter))
            .distinct()
            .order_by(column.desc() if direction == DESCENDING else column.asc())
        )
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Single-document writes
    # ------------------------------------------------------------------

    def insert_one(self, document: Mapping[str, Any]) -> int:
        """Insert one document; returns its surrogate id."""
        with atomic(self.engine) as conn:
            result = conn.execute(insert(self.table).values(self._to_values(document)))
            return result.inserted_primary_key[0]

    def update_one(self, filter: Filter, values: Mapping[str, Any]) -> int:
        """
        Set ``values`` on the first document matching ``filter``.

        Fields mapped to None are removed.  Returns the number of documents
        matched (0 or 1).
        """
        with atomic(self.engine) as conn:
            row = self._lock_first(conn, filter)
            if row is None:
                return 0
            conn.execute(self._update_by_id(row).values(self._to_values(values)))
            return 1

    def replace_one_or_insert(self, filter: Filter, document: Mapping[str, Any]) -> bool:
        """
        Replace the first document matching ``filter``, or insert ``document``.

        Fields absent from ``document`` are removed from the replaced one.
        Returns True when an existing document was replaced.
        """
        values = self._to_values(document)
        with atomic(self.engine) as conn:
            row = self._lock_first(conn, filter)
            if row is None:
                conn.execute(insert(self.table).values(values))
                logger.debug("document_inserted", extra={"collection": self.name})
                return False
            replacement = {c.name: None for c in self.table.columns if c.name != DOCUMENT_ID}
            replacement.update(values)
            conn.execute(self._update_by_id(row).values(replacement))
            logger.debug(
                "document_replaced",
                extra={"collection": self.name, "document_id": row._mapping[DOCUMENT_ID]},
            )
            return True

    def modify_one(
        self,
        filter: Filter,
        modifier: Callable[[dict[str, Any]], Mapping[str, Any]],
    ) -> bool:
        """
        Read-modify-write of the first document matching ``filter``.

        ``modifier`` receives the locked document and returns the fields to
        set.  Returns False (and never calls ``modifier``) when nothing
        matches.
        """
        with atomic(self.engine) as conn:
            row = self._lock_first(conn, filter)
            if row is None:
                return False
            values = modifier(self._to_document(row))
            conn.execute(self._update_by_id(row).values(self._to_values(values)))
            return True

    def increment(self, filter: Filter, field: str, amount: int = 1) -> int | None:
        """Atomically add ``amount`` to ``field`` and return the new value (None if no match)."""
        column = self._column(field)
        stmt = update(self.table).where(*self._where(filter)).values({column: column + amount})
        with atomic(self.engine) as conn:
            if self.engine.dialect.update_returning:
                return conn.execute(stmt.returning(column)).scalar_one_or_none()
            if conn.execute(stmt).rowcount == 0:
                return None
            # Same transaction, so the value read is the one just written
            return conn.execute(select(column).where(*self._where(filter))).scalar_one()

    # ------------------------------------------------------------------
    # Translation helpers
    # ------------------------------------------------------------------

    def _column(self, field: str):
        if field == DOCUMENT_ID or field not in self.table.c:
            raise ValueError(f"Collection {self.name!r} has no field {field!r}")
        return self.table.c[field]

    def _where(self, filter: Filter | None) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        for field, condition in (filter or {}).items():
            column = self._column(field)
            if isinstance(condition, Mapping):
                clauses.extend(self._operator_clauses(column, condition))
            elif condition is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == condition)
        return clauses

    @staticmethod
    def _operator_clauses(column, condition: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        clauses = []
        for op, operand in condition.items():
            if op == "$exists":
                clauses.append(column.is_not(None) if operand else column.is_(None))
            elif op == "$ne":
                if operand is None:
                    clauses.append(column.is_not(None))
                else:
                    clauses.append((column != operand) | column.is_(None))
            elif op == "$in":
                clauses.append(column.in_(list(operand)))
            elif op == "$like":
                clauses.append(column.like(operand, escape="\\"))
            else:
                raise ValueError(f"Unsupported filter operator {op!r}")
        return clauses

    def _order_by(self, sort: Sort | None) -> list:
        order = []
        for field, direction in sort or []:
            column = self._column(field)
            order.append(column.desc() if direction == DESCENDING else column.asc())
        return order

    def _lock_first(self, conn, filter: Filter):
        # FOR UPDATE renders as nothing on SQLite, where BEGIN IMMEDIATE holds the lock
        stmt = (
            select(self.table)
            .where(*self._where(filter))
            .order_by(self.table.c[DOCUMENT_ID])
            .limit(1)
            .with_for_update()
        )
        return conn.execute(stmt).first()

    def _update_by_id(self, row):
        return update(self.table).where(self.table.c[DOCUMENT_ID] == row._mapping[DOCUMENT_ID])

    def _to_values(self, document: Mapping[str, Any]) -> dict[str, Any]:
        return {self._column(field).name: value for field, value in document.items()}

    @staticmethod
    def _to_document(row) -> dict[str, Any]:
        return {
            key: value
            for key, value in row._mapping.items()
            if key != DOCUMENT_ID and value is not None
        }
