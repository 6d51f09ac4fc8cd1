"""Database layer - engine, column types, collections and the document adapter."""

from batch_kernel.db.collections import (
    build_counter_collection,
    build_job_collection,
    ensure_collection,
)
from batch_kernel.db.documents import ASCENDING, DESCENDING, DocumentCollection
from batch_kernel.db.engine import atomic, init_engine_from_url
from batch_kernel.db.types import DocumentJSON, UTCDateTime

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "DocumentCollection",
    "DocumentJSON",
    "UTCDateTime",
    "atomic",
    "build_counter_collection",
    "build_job_collection",
    "ensure_collection",
    "init_engine_from_url",
]
