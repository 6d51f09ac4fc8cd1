"""
Module: batch_kernel.selectors.history_reader
Responsibility: Read-only query surface over job execution history: point
    lookups, grouping by job name, paginated instance listings, wildcard
    search, running executions and step lookup.
Architecture position: Kernel > Selectors.  May import from db/, domain/
    and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no mutation of any document.
    - Instance listings are ordered by instanceId descending.
    - Instance-only placeholders are never returned as executions.

Failure modes:
    - NoSuchJobError from ``get_job_instance_count`` when the job name has no
      instances.  Every other query returns None or an empty list when
      nothing matches.
"""

from __future__ import annotations

from batch_kernel import fields as f
from batch_kernel.db.documents import DESCENDING
from batch_kernel.domain.entities import JobExecution, JobInstance, StepExecution
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.exceptions import MissingRequiredFieldError, NoSuchJobError
from batch_kernel.logging_config import get_logger
from batch_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.history_reader")

_HAS_EXECUTION = {"$ne": None}
_NEWEST_EXECUTION_FIRST = [(f.EXECUTION_ID, DESCENDING)]


def job_name_pattern(job_name: str) -> str:
    """
    Translate a glob-style job name into a substring LIKE pattern.

    ``*`` and ``%`` match any run of characters; ``_`` and ``\\`` are
    literal.  ``"Report*"`` becomes ``"%Report%%"``.  Matching is
    case-sensitive on every supported backend.
    """
    escaped = job_name.replace("\\", "\\\\").replace("_", "\\_").replace("*", "%")
    return f"%{escaped}%"


class HistoryReader(BaseSelector):
    """Read-only access to job instances, executions and steps."""

    # -- point lookups ----------------------------------------------------

    def get_job_instance(self, instance_id: int) -> JobInstance | None:
        document = self.collection.find_one({f.INSTANCE_ID: instance_id})
        return None if document is None else self.codec.decode_instance(document)

    def get_job_execution(self, execution_id: int) -> JobExecution | None:
        if execution_id is None:
            return None
        document = self.collection.find_one({f.EXECUTION_ID: execution_id})
        return None if document is None else self.codec.decode_execution(document)

    def get_step_execution(self, execution_id: int, step_execution_id: int) -> StepExecution | None:
        """Hydrate the execution, then scan its steps (step ids are not indexed)."""
        if execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.EXECUTION_ID)
        if step_execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.STEP_EXECUTION_ID)
        execution = self.get_job_execution(execution_id)
        if execution is None:
            return None
        return execution.find_step_execution(step_execution_id)

    # -- grouping by job name ---------------------------------------------

    def get_job_names(self) -> list[str]:
        return self.collection.distinct(f.JOB_NAME)

    def get_job_instance_count(self, job_name: str) -> int:
        count = self.collection.count({f.JOB_NAME: job_name}, distinct_field=f.INSTANCE_ID)
        if count == 0:
            logger.info("no_such_job", extra={"job_name": job_name})
            raise NoSuchJobError(job_name)
        return count

    def get_job_instances(self, job_name: str, start: int, count: int) -> list[JobInstance]:
        """Instances of ``job_name``, newest instance id first, paged."""
        return self._instances({f.JOB_NAME: job_name}, start, count)

    def find_job_instances_by_job_name(self, job_name: str, start: int, count: int) -> list[JobInstance]:
        """Like ``get_job_instances`` but ``job_name`` is a glob matched anywhere in the name."""
        return self._instances({f.JOB_NAME: {"$like": job_name_pattern(job_name)}}, start, count)

    def get_last_job_instance(self, job_name: str) -> JobInstance | None:
        document = self.collection.find_one(
            {f.JOB_NAME: job_name}, sort=[(f.INSTANCE_ID, DESCENDING)]
        )
        return None if document is None else self.codec.decode_instance(document)

    def _instances(self, filter: dict, start: int, count: int) -> list[JobInstance]:
        if count <= 0:
            return []
        instance_ids = self.collection.distinct(
            f.INSTANCE_ID, filter, direction=DESCENDING, skip=max(start, 0), limit=count
        )
        if not instance_ids:
            return []
        documents = self.collection.find({f.INSTANCE_ID: {"$in": instance_ids}})
        by_id = {doc[f.INSTANCE_ID]: doc for doc in documents}
        return [self.codec.decode_instance(by_id[i]) for i in instance_ids]

    # -- executions -------------------------------------------------------

    def get_job_executions(self, instance: JobInstance) -> list[JobExecution]:
        """All executions of the instance, newest first."""
        self._require_instance(instance)
        documents = self.collection.find(
            {f.INSTANCE_ID: instance.instance_id, f.EXECUTION_ID: _HAS_EXECUTION},
            sort=_NEWEST_EXECUTION_FIRST,
        )
        return [self.codec.decode_execution(doc) for doc in documents]

    def get_last_job_execution(self, instance: JobInstance) -> JobExecution | None:
        self._require_instance(instance)
        document = self.collection.find_one(
            {f.INSTANCE_ID: instance.instance_id, f.EXECUTION_ID: _HAS_EXECUTION},
            sort=_NEWEST_EXECUTION_FIRST,
        )
        return None if document is None else self.codec.decode_execution(document)

    def get_last_completed_job_execution(self, job_name: str) -> JobExecution | None:
        document = self.collection.find_one(
            {
                f.JOB_NAME: job_name,
                f.STATUS: BatchStatus.COMPLETED.value,
                f.EXIT_CODE: ExitStatus.COMPLETED.exit_code,
            },
            sort=_NEWEST_EXECUTION_FIRST,
        )
        return None if document is None else self.codec.decode_execution(document)

    def find_running_job_executions(self, job_name: str) -> list[JobExecution]:
        """Executions that have started and not ended, newest first."""
        documents = self.collection.find(
            {
                f.JOB_NAME: job_name,
                f.START_TIME: {"$exists": True},
                f.END_TIME: {"$exists": False},
            },
            sort=_NEWEST_EXECUTION_FIRST,
        )
        return [self.codec.decode_execution(doc) for doc in documents]

    @staticmethod
    def _require_instance(instance: JobInstance) -> None:
        if instance is None or instance.instance_id is None:
            raise MissingRequiredFieldError("JobInstance", f.INSTANCE_ID)
