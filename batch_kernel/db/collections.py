"""
Module: batch_kernel.db.collections
Responsibility: Table definitions for the execution collection and the
    counter collection, their named indexes, and idempotent provisioning.
Architecture position: Kernel > DB.  May import from db/types.py and the
    stored field names.  MUST NOT import from domain/, services/ or
    selectors/.

Invariants enforced:
    - Column names are exactly the stored field names, so the tables read
      like the documents they hold.
    - Index names are stable; provisioning an existing index is a no-op.
    - ``jobInstance_jobExecution_unique`` makes (jobName, jobKey,
      executionId) unique; ``jobExecutionId_unique`` makes executionId
      unique.  NULL executionIds (instance placeholders) are exempt from
      both, as SQL unique indexes treat NULLs as distinct.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.engine import Engine

from batch_kernel import fields as f
from batch_kernel.db.types import DocumentJSON, UTCDateTime
from batch_kernel.logging_config import get_logger

logger = get_logger("db.collections")

DOCUMENT_ID = "_id"

# SQLite only autoincrements INTEGER PRIMARY KEY
_DocumentId = BigInteger().with_variant(Integer(), "sqlite")


def build_job_collection(metadata: MetaData, name: str = f.DEFAULT_JOB_COLLECTION) -> Table:
    """Execution collection: one row per execution (or instance placeholder)."""
    table = Table(
        name,
        metadata,
        Column(DOCUMENT_ID, _DocumentId, primary_key=True, autoincrement=True),
        Column(f.INSTANCE_ID, BigInteger, nullable=False),
        Column(f.JOB_NAME, String(255), nullable=False),
        Column(f.JOB_KEY, String(64), nullable=False),
        Column(f.EXECUTION_ID, BigInteger, nullable=True),
        Column(f.VERSION, Integer, nullable=True),
        Column(f.STATUS, String(32), nullable=True),
        Column(f.PARAMETERS, DocumentJSON, nullable=True),
        Column(f.STEPS, DocumentJSON, nullable=True),
        Column(f.START_TIME, UTCDateTime, nullable=True),
        Column(f.CREATE_TIME, UTCDateTime, nullable=True),
        Column(f.END_TIME, UTCDateTime, nullable=True),
        Column(f.LAST_UPDATED, UTCDateTime, nullable=True),
        Column(f.EXIT_CODE, String(2500), nullable=True),
        Column(f.EXIT_DESCRIPTION, Text, nullable=True),
        Column(f.EXECUTION_CONTEXT, DocumentJSON, nullable=True),
        Column(f.JOB_CONFIGURATION_NAME, String(2500), nullable=True),
    )
    Index(
        f.JOB_INSTANCE_EXECUTION_UNIQUE_INDEX,
        table.c[f.JOB_NAME],
        table.c[f.JOB_KEY],
        table.c[f.EXECUTION_ID],
        unique=True,
    )
    Index(f.EXECUTION_ID_UNIQUE_INDEX, table.c[f.EXECUTION_ID], unique=True)
    Index(f.INSTANCE_ID_INDEX, table.c[f.INSTANCE_ID])
    Index(f.JOB_NAME_INSTANCE_ID_INDEX, table.c[f.JOB_NAME], table.c[f.INSTANCE_ID])
    return table


def build_counter_collection(
    metadata: MetaData, name: str = f.DEFAULT_COUNTER_COLLECTION
) -> Table:
    """Counter collection: one row per named sequence."""
    table = Table(
        name,
        metadata,
        Column(DOCUMENT_ID, _DocumentId, primary_key=True, autoincrement=True),
        Column(f.COUNTER_NAME, String(255), nullable=False),
        Column(f.COUNTER_VALUE, BigInteger, nullable=False, default=0),
    )
    Index(f.COUNTER_UNIQUE_INDEX, table.c[f.COUNTER_NAME], unique=True)
    return table


def ensure_collection(engine: Engine, table: Table) -> None:
    """
    Create the table and each of its indexes if missing.

    Indexes are checked one by one so an index added to an existing
    collection is still provisioned.
    """
    table.create(engine, checkfirst=True)
    for index in sorted(table.indexes, key=lambda i: i.name):
        index.create(engine, checkfirst=True)
    logger.debug(
        "collection_ensured",
        extra={"collection": table.name, "indexes": sorted(i.name for i in table.indexes)},
    )
