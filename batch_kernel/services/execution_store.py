"""
ExecutionStore -- the repository protocol for job execution history.

Responsibility:
    Creates job instances and executions (including the restart decision),
    applies optimistic-concurrency updates to executions and their steps,
    appends steps, and stores execution contexts.  Every write is one
    single-document atomic operation on the execution collection.

Architecture position:
    Kernel > Services -- imperative shell.  Uses SequenceService for ids,
    RecordCodec for document shapes and DocumentCollection for storage.

Invariants enforced:
    - Restart rules: an instance with a running or stopping execution
      cannot get another; an UNKNOWN execution blocks restart; a COMPLETED
      or ABANDONED execution blocks restart when identifying parameters are
      present.
    - A fresh execution is written with one atomic claim: replace the
      (jobName, jobKey, no executionId) placeholder, or insert.
    - Versioned writes match (executionId, version == held) and set
      version + 1.  The version is shared by the execution and all of its
      steps.

Failure modes:
    - MissingRequiredFieldError / StepExecutionAlreadySavedError on invalid
      input, raised before any write.
    - JobExecutionAlreadyRunningError, JobRestartError,
      JobInstanceAlreadyCompleteError, JobInstanceAlreadyExistsError on a
      restart/creation conflict.
    - OptimisticLockError when a versioned write matches nothing.
    - OrphanedJobInstanceError, JobExecutionNotFoundError on inconsistent
      storage.
    - DuplicateRecordError when a unique index rejects an insert.
    None of these are retried here; the check-then-claim window in
    ``create_job_execution`` is left to the caller, who re-calls it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError

from batch_kernel import fields as f
from batch_kernel.db.documents import DESCENDING, DocumentCollection
from batch_kernel.domain.clock import Clock, SystemClock
from batch_kernel.domain.entities import JobExecution, JobInstance, StepExecution
from batch_kernel.domain.record_codec import RecordCodec
from batch_kernel.domain.status import BatchStatus
from batch_kernel.domain.values import JobParameters
from batch_kernel.exceptions import (
    DuplicateRecordError,
    JobExecutionAlreadyRunningError,
    JobExecutionNotFoundError,
    JobInstanceAlreadyCompleteError,
    JobInstanceAlreadyExistsError,
    JobRestartError,
    MissingRequiredFieldError,
    OptimisticLockError,
    OrphanedJobInstanceError,
    StepExecutionAlreadySavedError,
)
from batch_kernel.logging_config import LogContext, get_logger
from batch_kernel.services.sequence_service import SequenceService

logger = get_logger("services.execution_store")

# Fields of a step element rewritten by a step update; the element's name,
# id and execution context are left alone.
_STEP_PROGRESS_FIELDS = (
    f.START_TIME,
    f.END_TIME,
    f.STATUS,
    f.COMMIT_COUNT,
    f.READ_COUNT,
    f.FILTER_COUNT,
    f.WRITE_COUNT,
    f.EXIT_CODE,
    f.EXIT_DESCRIPTION,
    f.READ_SKIP_COUNT,
    f.PROCESS_SKIP_COUNT,
    f.WRITE_SKIP_COUNT,
    f.ROLLBACK_COUNT,
    f.LAST_UPDATED,
)

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


class ExecutionStore:
    """
    Repository for job instances, job executions and step executions.

    Contract:
        Entities passed in are mutated in place: ids, ``version`` and
        ``last_updated`` are assigned by the store.  On any exception the
        stored document is unchanged (in-memory ids or stamps assigned
        before the failing write may remain).

    Guarantees:
        - Construction provisions the collections, their named indexes and
          the three sequences, idempotently.
        - Every mutation touches exactly one document.

    Non-goals:
        - Retrying lost races or optimistic-lock failures.
        - Deleting anything.
    """

    def __init__(
        self,
        jobs: DocumentCollection,
        sequences: SequenceService,
        codec: RecordCodec | None = None,
        clock: Clock | None = None,
    ):
        self._jobs = jobs
        self._sequences = sequences
        self._codec = codec or RecordCodec()
        self._clock = clock or SystemClock()

        self._jobs.ensure_indexes()
        self._sequences.initialize_sequences()

    @property
    def codec(self) -> RecordCodec:
        return self._codec

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def is_job_instance_exists(self, job_name: str, parameters: JobParameters) -> bool:
        self._validate_job_instance(job_name, parameters)
        found = self._jobs.find_one(
            {f.JOB_NAME: job_name, f.JOB_KEY: self._codec.job_key(parameters)}
        )
        return found is not None

    def create_job_instance(self, job_name: str, parameters: JobParameters) -> JobInstance:
        """
        Insert an instance-only placeholder for (job_name, parameters).

        The placeholder has no executionId; the first execution created for
        the instance claims it.

        Raises:
            JobInstanceAlreadyExistsError: a record for the instance exists.
        """
        self._validate_job_instance(job_name, parameters)
        job_key = self._codec.job_key(parameters)
        if self.is_job_instance_exists(job_name, parameters):
            logger.warning(
                "job_instance_already_exists",
                extra={"job_name": job_name, "job_key": job_key},
            )
            raise JobInstanceAlreadyExistsError(job_name, job_key)

        instance = JobInstance(
            instance_id=self._sequences.next_value(SequenceService.JOB_INSTANCE),
            job_name=job_name,
            job_key=job_key,
        )
        try:
            self._jobs.insert_one(self._codec.encode_instance_placeholder(instance, parameters))
        except IntegrityError as exc:
            raise DuplicateRecordError(
                self._jobs.name, {f.JOB_NAME: job_name, f.JOB_KEY: job_key}
            ) from exc
        logger.info(
            "job_instance_created",
            extra={"job_name": job_name, "job_key": job_key, "instance_id": instance.instance_id},
        )
        return instance

    # ------------------------------------------------------------------
    # Execution creation
    # ------------------------------------------------------------------

    def create_job_execution(self, job_name: str, parameters: JobParameters) -> JobExecution:
        """
        Create the next execution for (job_name, parameters), deciding
        whether this is a new instance or a restart of an existing one.

        Raises:
            JobExecutionAlreadyRunningError: an execution is running or stopping.
            JobRestartError: an execution ended in UNKNOWN status.
            JobInstanceAlreadyCompleteError: the instance completed (or was
                abandoned) and the parameters are identifying.
            OrphanedJobInstanceError: only a placeholder exists.
        """
        self._validate_job_instance(job_name, parameters)
        job_key = self._codec.job_key(parameters)

        with LogContext.bind(job_name=job_name, job_key=job_key):
            documents = self._jobs.find(
                {f.JOB_NAME: job_name, f.JOB_KEY: job_key},
                sort=[(f.EXECUTION_ID, DESCENDING)],
            )

            if not documents:
                instance = JobInstance(
                    instance_id=self._sequences.next_value(SequenceService.JOB_INSTANCE),
                    job_name=job_name,
                    job_key=job_key,
                )
                execution = self._new_execution(instance, parameters)
                self._insert_new_execution(execution)
                logger.info(
                    "job_execution_created",
                    extra={
                        "instance_id": instance.instance_id,
                        "new_instance": True,
                        "execution_id": execution.execution_id,
                    },
                )
                return execution

            executions = [
                self._codec.decode_execution(doc)
                for doc in documents
                if doc.get(f.EXECUTION_ID) is not None
            ]
            if not executions:
                logger.error("job_instance_without_executions")
                raise OrphanedJobInstanceError(job_name, job_key)

            self._check_for_running_executions(job_name, job_key, executions)

            previous = executions[0]
            execution = self._new_execution(previous.job_instance, parameters)
            execution.execution_context = previous.execution_context.copy()
            self._insert_new_execution(execution)
            logger.info(
                "job_execution_restarted",
                extra={
                    "instance_id": previous.instance_id,
                    "previous_execution_id": previous.execution_id,
                    "previous_status": previous.status.value,
                    "execution_id": execution.execution_id,
                },
            )
            return execution

    def create_job_execution_for_instance(
        self,
        instance: JobInstance,
        parameters: JobParameters,
        job_configuration_name: str | None = None,
    ) -> JobExecution:
        """Create an execution for a known instance, claiming its placeholder if present."""
        if instance is None or instance.instance_id is None:
            raise MissingRequiredFieldError("JobInstance", f.INSTANCE_ID)
        if parameters is None:
            raise MissingRequiredFieldError("JobExecution", f.PARAMETERS)
        execution = self._new_execution(instance, parameters, job_configuration_name)
        self._insert_new_execution(execution)
        logger.info(
            "job_execution_created",
            extra={
                "job_name": instance.job_name,
                "instance_id": instance.instance_id,
                "execution_id": execution.execution_id,
            },
        )
        return execution

    def _new_execution(
        self,
        instance: JobInstance,
        parameters: JobParameters,
        job_configuration_name: str | None = None,
    ) -> JobExecution:
        now = self._clock.now()
        return JobExecution(
            job_instance=instance,
            parameters=parameters,
            create_time=now,
            last_updated=now,
            job_configuration_name=job_configuration_name,
        )

    def _insert_new_execution(self, execution: JobExecution) -> None:
        execution.execution_id = self._sequences.next_value(SequenceService.JOB_EXECUTION)
        execution.increment_version()
        job_key = self._codec.job_key(execution.parameters)
        claim = {f.JOB_NAME: execution.job_name, f.JOB_KEY: job_key, f.EXECUTION_ID: None}
        try:
            claimed = self._jobs.replace_one_or_insert(claim, self._codec.encode_execution(execution))
        except IntegrityError as exc:
            raise DuplicateRecordError(
                self._jobs.name,
                {f.JOB_NAME: execution.job_name, f.JOB_KEY: job_key, f.EXECUTION_ID: execution.execution_id},
            ) from exc
        logger.debug(
            "job_execution_inserted",
            extra={"execution_id": execution.execution_id, "claimed_placeholder": claimed},
        )

    @staticmethod
    def _check_for_running_executions(
        job_name: str, job_key: str, executions: Iterable[JobExecution]
    ) -> None:
        for execution in executions:
            if execution.is_running or execution.is_stopping:
                logger.warning(
                    "job_execution_already_running",
                    extra={"execution_id": execution.execution_id, "status": execution.status.value},
                )
                raise JobExecutionAlreadyRunningError(job_name, job_key, execution.execution_id)
            if execution.status is BatchStatus.UNKNOWN:
                logger.warning(
                    "job_restart_from_unknown_refused",
                    extra={"execution_id": execution.execution_id},
                )
                raise JobRestartError(job_name, job_key, execution.execution_id)
            if (
                execution.status in (BatchStatus.COMPLETED, BatchStatus.ABANDONED)
                and execution.parameters.has_identifying_parameters()
            ):
                logger.warning(
                    "job_instance_already_complete",
                    extra={"execution_id": execution.execution_id, "status": execution.status.value},
                )
                raise JobInstanceAlreadyCompleteError(job_name, job_key, execution.execution_id)

    # ------------------------------------------------------------------
    # Execution updates
    # ------------------------------------------------------------------

    def update(self, entity: JobExecution | StepExecution) -> None:
        """Versioned update of a job execution or of one step execution."""
        if isinstance(entity, StepExecution):
            self.update_step_execution(entity)
        else:
            self.update_job_execution(entity)

    def update_job_execution(self, execution: JobExecution) -> None:
        """
        Write status, timestamps and exit status under the held version.

        If the stored version differs from the held one, the stored status
        and version are adopted first, so a caller holding a stale copy
        catches up instead of failing.

        Raises:
            OptimisticLockError: the document changed between the catch-up
                read and the conditional write.
        """
        self._validate_job_execution(execution)
        if execution.version is None:
            raise MissingRequiredFieldError("JobExecution", f.VERSION, execution.execution_id)

        with LogContext.bind(job_name=execution.job_name, execution_id=execution.execution_id):
            self._synchronize_status_and_version(execution)
            execution.last_updated = self._clock.now()

            current = execution.version
            matched = self._jobs.update_one(
                {f.EXECUTION_ID: execution.execution_id, f.VERSION: current},
                {
                    f.START_TIME: execution.start_time,
                    f.END_TIME: execution.end_time,
                    f.STATUS: execution.status.value,
                    f.EXIT_CODE: execution.exit_status.exit_code,
                    f.EXIT_DESCRIPTION: execution.exit_status.exit_description,
                    f.VERSION: current + 1,
                    f.CREATE_TIME: execution.create_time,
                    f.LAST_UPDATED: execution.last_updated,
                },
            )
            if not matched:
                logger.warning("job_execution_version_conflict", extra={"version": current})
                raise OptimisticLockError("JobExecution", execution.execution_id, current)
            execution.increment_version()
            logger.debug(
                "job_execution_updated",
                extra={"status": execution.status.value, "version": execution.version},
            )

    def _synchronize_status_and_version(self, execution: JobExecution) -> None:
        document = self._jobs.find_one(
            {
                f.JOB_NAME: execution.job_name,
                f.JOB_KEY: self._codec.job_key(execution.parameters),
                f.EXECUTION_ID: execution.execution_id,
            }
        )
        if document is None:
            logger.error("job_execution_missing", extra={"execution_id": execution.execution_id})
            raise JobExecutionNotFoundError(execution.execution_id, execution.job_name)
        saved = self._codec.decode_execution(document)
        if saved.version != execution.version:
            logger.info(
                "job_execution_version_synchronized",
                extra={
                    "held_version": execution.version,
                    "stored_version": saved.version,
                    "stored_status": saved.status.value,
                },
            )
            execution.status = saved.status
            execution.version = saved.version

    # ------------------------------------------------------------------
    # Step executions
    # ------------------------------------------------------------------

    def add(self, step: StepExecution) -> None:
        """
        Assign an id to an unsaved step and append it to its execution.

        The append is not gated by the execution's version.

        Raises:
            StepExecutionAlreadySavedError: the step already has an id.
        """
        self._validate_step_execution(step)
        if step.step_execution_id is not None:
            raise StepExecutionAlreadySavedError(step.step_name, step.step_execution_id)

        step.step_execution_id = self._sequences.next_value(SequenceService.STEP_EXECUTION)
        step.last_updated = self._clock.now()
        element = self._codec.encode_step(step)

        def append(document: dict[str, Any]) -> dict[str, Any]:
            return {f.STEPS: [*(document.get(f.STEPS) or []), element]}

        if not self._jobs.modify_one({f.EXECUTION_ID: step.job_execution_id}, append):
            logger.error("job_execution_missing", extra={"execution_id": step.job_execution_id})
            raise JobExecutionNotFoundError(step.job_execution_id, step.job_execution.job_name)

        parent = step.job_execution
        if not any(s is step for s in parent.step_executions):
            parent.step_executions.append(step)
        logger.debug(
            "step_execution_added",
            extra={
                "execution_id": step.job_execution_id,
                "step_name": step.step_name,
                "step_execution_id": step.step_execution_id,
            },
        )

    def add_all(self, steps: Iterable[StepExecution]) -> None:
        for step in steps or ():
            self.add(step)

    def update_step_execution(self, step: StepExecution) -> None:
        """
        Versioned update of one step's progress inside its execution.

        The parent's version guards the write, so two steps of the same
        execution updated concurrently contend: one of them gets an
        OptimisticLockError.  If the parent is STOPPING the step is marked
        terminate-only.
        """
        self._validate_step_execution(step)
        if step.step_execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.STEP_EXECUTION_ID)

        parent = step.job_execution
        with LogContext.bind(
            job_name=parent.job_name,
            execution_id=parent.execution_id,
            step_execution_id=step.step_execution_id,
        ):
            step.last_updated = self._clock.now()
            self._synchronize_status_and_version(parent)

            current = parent.version
            progress = self._codec.encode_step(step)
            element_found = False

            def apply(document: dict[str, Any]) -> dict[str, Any]:
                nonlocal element_found
                steps = []
                for element in document.get(f.STEPS) or []:
                    if element.get(f.STEP_EXECUTION_ID) == step.step_execution_id:
                        element_found = True
                        element = dict(element)
                        for field_name in _STEP_PROGRESS_FIELDS:
                            if field_name in progress:
                                element[field_name] = progress[field_name]
                            else:
                                element.pop(field_name, None)
                    steps.append(element)
                return {f.STEPS: steps, f.VERSION: current + 1}

            matched = self._jobs.modify_one(
                {f.EXECUTION_ID: parent.execution_id, f.VERSION: current}, apply
            )
            if not matched:
                logger.warning("step_execution_version_conflict", extra={"version": current})
                raise OptimisticLockError("StepExecution", parent.execution_id, current)
            if not element_found:
                logger.warning("step_execution_element_missing")
            parent.increment_version()

            if parent.is_stopping:
                logger.info("step_execution_terminate_requested")
                step.set_terminate_only()

    # ------------------------------------------------------------------
    # Execution contexts
    # ------------------------------------------------------------------

    def update_execution_context(self, entity: JobExecution | StepExecution) -> None:
        """Unconditionally store the entity's execution context (last write wins)."""
        if isinstance(entity, StepExecution):
            self.update_step_execution_context(entity)
        else:
            self.update_job_execution_context(entity)

    def update_job_execution_context(self, execution: JobExecution) -> None:
        self._validate_job_execution(execution)
        matched = self._jobs.update_one(
            {f.EXECUTION_ID: execution.execution_id},
            {f.EXECUTION_CONTEXT: self._codec.encode_context(execution.execution_context)},
        )
        if not matched:
            logger.error("job_execution_missing", extra={"execution_id": execution.execution_id})
            raise JobExecutionNotFoundError(execution.execution_id, execution.job_name)
        execution.execution_context.clear_dirty_flag()

    def update_step_execution_context(self, step: StepExecution) -> None:
        self._validate_step_execution(step)
        if step.step_execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.STEP_EXECUTION_ID)
        encoded = self._codec.encode_context(step.execution_context)

        def set_context(document: dict[str, Any]) -> dict[str, Any]:
            steps = []
            for element in document.get(f.STEPS) or []:
                if element.get(f.STEP_EXECUTION_ID) == step.step_execution_id:
                    element = {**element, f.EXECUTION_CONTEXT: encoded}
                steps.append(element)
            return {f.STEPS: steps}

        if not self._jobs.modify_one({f.EXECUTION_ID: step.job_execution_id}, set_context):
            logger.error("job_execution_missing", extra={"execution_id": step.job_execution_id})
            raise JobExecutionNotFoundError(step.job_execution_id, step.job_execution.job_name)
        step.execution_context.clear_dirty_flag()

    # ------------------------------------------------------------------
    # Queries used by an orchestration layer while running
    # ------------------------------------------------------------------

    def get_last_job_execution(self, job_name: str, parameters: JobParameters) -> JobExecution | None:
        """Newest execution of the instance, ignoring the placeholder."""
        self._validate_job_instance(job_name, parameters)
        document = self._jobs.find_one(
            {
                f.JOB_NAME: job_name,
                f.JOB_KEY: self._codec.job_key(parameters),
                f.EXECUTION_ID: {"$ne": None},
            },
            sort=[(f.EXECUTION_ID, DESCENDING)],
        )
        return None if document is None else self._codec.decode_execution(document)

    def get_last_step_execution(self, instance: JobInstance, step_name: str) -> StepExecution | None:
        """Latest run of ``step_name`` in the instance, by start time then step id."""
        self._validate_step_search(instance, step_name)
        best_document = None
        best_key = None
        for document in self._instance_execution_documents(instance):
            for element in document.get(f.STEPS) or []:
                if element.get(f.STEP_NAME) != step_name:
                    continue
                start_time = element.get(f.START_TIME)
                key = (start_time is not None, start_time or _EARLIEST, element.get(f.STEP_EXECUTION_ID))
                if best_key is None or key > best_key:
                    best_key, best_document = key, document
        if best_document is None:
            return None
        execution = self._codec.decode_execution(best_document)
        return execution.find_step_execution(best_key[2])

    def get_step_execution_count(self, instance: JobInstance, step_name: str) -> int:
        self._validate_step_search(instance, step_name)
        return sum(
            1
            for document in self._instance_execution_documents(instance)
            for element in document.get(f.STEPS) or []
            if element.get(f.STEP_NAME) == step_name
        )

    def _instance_execution_documents(self, instance: JobInstance) -> list[dict[str, Any]]:
        return self._jobs.find(
            {
                f.JOB_NAME: instance.job_name,
                f.INSTANCE_ID: instance.instance_id,
                f.EXECUTION_ID: {"$ne": None},
            }
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_job_instance(job_name: str, parameters: JobParameters) -> None:
        if not job_name or not job_name.strip():
            raise MissingRequiredFieldError("JobInstance", f.JOB_NAME)
        if parameters is None:
            raise MissingRequiredFieldError("JobInstance", f.PARAMETERS)

    @staticmethod
    def _validate_job_execution(execution: JobExecution) -> None:
        if execution is None or execution.execution_id is None:
            raise MissingRequiredFieldError("JobExecution", f.EXECUTION_ID)

    @staticmethod
    def _validate_step_execution(step: StepExecution) -> None:
        if step is None or step.job_execution is None or step.job_execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.EXECUTION_ID)

    @staticmethod
    def _validate_step_search(instance: JobInstance, step_name: str) -> None:
        if instance is None or instance.instance_id is None:
            raise MissingRequiredFieldError("JobInstance", f.INSTANCE_ID)
        if not step_name or not step_name.strip():
            raise MissingRequiredFieldError("StepExecution", f.STEP_NAME)
