"""
Wiring for a complete execution history store.

``BatchHistory.from_settings`` builds the engine, the two collections, the
sequence service, the codec, the store and the reader, and provisions the
collections and sequences.  An orchestration layer holds one BatchHistory
per database.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import MetaData
from sqlalchemy.engine import Engine

from batch_kernel.config import StoreSettings
from batch_kernel.db.collections import build_counter_collection, build_job_collection
from batch_kernel.db.documents import DocumentCollection
from batch_kernel.db.engine import init_engine_from_url
from batch_kernel.domain.clock import Clock
from batch_kernel.domain.context_codec import ExecutionContextSerializer, context_codec_for
from batch_kernel.domain.job_key import JobKeyGenerator
from batch_kernel.domain.record_codec import RecordCodec
from batch_kernel.logging_config import configure_logging, get_logger
from batch_kernel.selectors.history_reader import HistoryReader
from batch_kernel.services.execution_store import ExecutionStore
from batch_kernel.services.sequence_service import SequenceService

logger = get_logger("bootstrap")


@dataclass
class BatchHistory:
    """Everything needed to record and read execution history."""

    engine: Engine
    jobs: DocumentCollection
    counters: DocumentCollection
    sequences: SequenceService
    codec: RecordCodec
    store: ExecutionStore
    reader: HistoryReader

    @classmethod
    def from_settings(
        cls,
        settings: StoreSettings | None = None,
        *,
        engine: Engine | None = None,
        serializer: ExecutionContextSerializer | None = None,
        job_key_generator: JobKeyGenerator | None = None,
        clock: Clock | None = None,
    ) -> BatchHistory:
        """
        Build and provision a history store.

        Args:
            settings: Store settings; defaults to ``StoreSettings()``.
            engine: Use an existing engine instead of building one from
                ``settings.database_url``.
            serializer: Byte-level execution context serializer.
            job_key_generator: Replaces the default MD5 job key.
            clock: Time source for ``create_time`` / ``last_updated``.
        """
        settings = settings or StoreSettings()
        configure_logging()
        if engine is None:
            engine = init_engine_from_url(
                settings.database_url,
                echo=settings.echo,
                pool_size=settings.pool_size,
                max_overflow=settings.max_overflow,
                pool_timeout=settings.pool_timeout,
                busy_timeout=settings.busy_timeout,
            )

        metadata = MetaData()
        jobs = DocumentCollection(engine, build_job_collection(metadata, settings.job_collection))
        counters = DocumentCollection(
            engine, build_counter_collection(metadata, settings.counter_collection)
        )
        codec = RecordCodec(
            context_codec=context_codec_for(
                settings.context_format, serializer, settings.context_charset
            ),
            job_key_generator=job_key_generator,
        )
        sequences = SequenceService(counters)
        store = ExecutionStore(jobs, sequences, codec=codec, clock=clock)
        reader = HistoryReader(jobs, codec)

        logger.info(
            "batch_history_ready",
            extra={
                "dialect": engine.dialect.name,
                "job_collection": jobs.name,
                "counter_collection": counters.name,
                "context_format": settings.context_format,
            },
        )
        return cls(
            engine=engine,
            jobs=jobs,
            counters=counters,
            sequences=sequences,
            codec=codec,
            store=store,
            reader=reader,
        )

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()
