"""
Typed Exception Hierarchy for the batch history kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the execution store must branch on *what* went wrong: retry a lost
race, abort a duplicate launch, page an operator for a corrupted counter.
Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Exceptions carry structured DATA (execution id, job name, job key,
     version) so a log line is actionable without re-deriving context

Example - WRONG way to handle errors:
    try:
        store.create_job_execution("ReportJob", params)
    except Exception as e:
        if "already running" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        store.create_job_execution("ReportJob", params)
    except JobExecutionAlreadyRunningError as e:
        log.info("skip launch", extra={"execution_id": e.execution_id})

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BatchKernelError (base)
    |
    +-- ValidationError
    |   +-- MissingRequiredFieldError
    |   +-- InvalidJobParameterError
    |   +-- StepExecutionAlreadySavedError
    |   +-- ExecutionContextSerializationError
    |
    +-- JobStateError
    |   +-- JobExecutionAlreadyRunningError
    |   +-- JobRestartError
    |   +-- JobInstanceAlreadyCompleteError
    |   +-- JobInstanceAlreadyExistsError
    |   +-- DuplicateRecordError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- InconsistentStateError
    |   +-- OrphanedJobInstanceError
    |   +-- CounterNotFoundError
    |   +-- JobExecutionNotFoundError
    |
    +-- NoSuchJobError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                            | When Raised
----------------|---------------------------------|------------------------------------
Validation      | MISSING_REQUIRED_FIELD          | Identity field absent on encode/call
                | INVALID_JOB_PARAMETER           | Value does not match its type tag
                | STEP_EXECUTION_ALREADY_SAVED    | add() of a step that has an id
                | EXECUTION_CONTEXT_CODEC_ERROR   | Context (de)serialization failed
----------------|---------------------------------|------------------------------------
State conflict  | JOB_EXECUTION_ALREADY_RUNNING   | Running/stopping execution exists
                | JOB_RESTART_UNSAFE              | Prior execution ended UNKNOWN
                | JOB_INSTANCE_ALREADY_COMPLETE   | Completed/abandoned, same identity
                | JOB_INSTANCE_ALREADY_EXISTS     | Placeholder insert for known key
                | DUPLICATE_RECORD                | Unique index rejected an insert
----------------|---------------------------------|------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT        | Conditional write matched nothing
----------------|---------------------------------|------------------------------------
Inconsistent    | JOB_INSTANCE_WITHOUT_EXECUTIONS | Placeholder-only instance on restart
                | COUNTER_NOT_FOUND               | Counter document deleted
                | JOB_EXECUTION_NOT_FOUND         | Saved execution vanished
----------------|---------------------------------|------------------------------------
Reader          | NO_SUCH_JOB                     | No instances for a job name
Config          | CONFIGURATION_ERROR             | Settings missing or malformed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. OPTIMISTIC LOCK / LOST CLAIM -> the caller re-reads and retries. The
   kernel never retries internally.

2. STATE CONFLICTS -> branch on the concrete class:

    except JobInstanceAlreadyCompleteError:
        # change identifying parameters to get a new instance
    except JobRestartError:
        # manual intervention: prior run could not be rolled back

3. INCONSISTENT STATE -> stop and alert; an invariant was broken out of band.
"""

from __future__ import annotations

from typing import Any


class BatchKernelError(Exception):
    """
    Base exception for all batch kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "BATCH_KERNEL_ERROR"


# Validation errors


class ValidationError(BatchKernelError):
    """Base exception for input and codec validation failures."""

    code: str = "VALIDATION_ERROR"


class MissingRequiredFieldError(ValidationError):
    """A required identity field was absent."""

    code: str = "MISSING_REQUIRED_FIELD"

    def __init__(self, entity_type: str, field_name: str, entity_id: Any = None):
        self.entity_type = entity_type
        self.field_name = field_name
        self.entity_id = entity_id
        suffix = f" (id={entity_id})" if entity_id is not None else ""
        super().__init__(f"{entity_type} requires {field_name}{suffix}")


class InvalidJobParameterError(ValidationError):
    """A job parameter value does not match its declared type."""

    code: str = "INVALID_JOB_PARAMETER"

    def __init__(self, parameter_name: str | None, reason: str):
        self.parameter_name = parameter_name
        self.reason = reason
        super().__init__(f"Invalid job parameter {parameter_name!r}: {reason}")


class StepExecutionAlreadySavedError(ValidationError):
    """A to-be-added step execution already carries an id."""

    code: str = "STEP_EXECUTION_ALREADY_SAVED"

    def __init__(self, step_name: str, step_execution_id: int):
        self.step_name = step_name
        self.step_execution_id = step_execution_id
        super().__init__(
            f"Step execution {step_name!r} already has id {step_execution_id}; "
            "only unsaved step executions can be added"
        )


class ExecutionContextSerializationError(ValidationError):
    """
    Serializing or deserializing an execution context failed.

    The original codec exception is chained as ``__cause__``.
    """

    code: str = "EXECUTION_CONTEXT_CODEC_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Could not {operation} the execution context: {reason}")


# State conflict errors


class JobStateError(BatchKernelError):
    """Base exception for restart-decision conflicts."""

    code: str = "JOB_STATE_ERROR"


class JobExecutionAlreadyRunningError(JobStateError):
    """An execution for this instance is still running or stopping."""

    code: str = "JOB_EXECUTION_ALREADY_RUNNING"

    def __init__(self, job_name: str, job_key: str, execution_id: int):
        self.job_name = job_name
        self.job_key = job_key
        self.execution_id = execution_id
        super().__init__(
            f"A job execution for this job is already running: "
            f"job_name={job_name} job_key={job_key} execution_id={execution_id}"
        )


class JobRestartError(JobStateError):
    """
    A prior execution ended in UNKNOWN status.

    The last execution failed in a way that could not be rolled back, so a
    restart may be unsafe. Manual intervention is required.
    """

    code: str = "JOB_RESTART_UNSAFE"

    def __init__(self, job_name: str, job_key: str, execution_id: int):
        self.job_name = job_name
        self.job_key = job_key
        self.execution_id = execution_id
        super().__init__(
            f"Cannot restart job from UNKNOWN status: "
            f"job_name={job_name} job_key={job_key} execution_id={execution_id}"
        )


class JobInstanceAlreadyCompleteError(JobStateError):
    """The instance already completed; change identifying parameters to rerun."""

    code: str = "JOB_INSTANCE_ALREADY_COMPLETE"

    def __init__(self, job_name: str, job_key: str, execution_id: int):
        self.job_name = job_name
        self.job_key = job_key
        self.execution_id = execution_id
        super().__init__(
            f"A job instance already exists and is complete: "
            f"job_name={job_name} job_key={job_key} execution_id={execution_id}. "
            "Change the identifying parameters to run this job again."
        )


class JobInstanceAlreadyExistsError(JobStateError):
    """A record for (job_name, job_key) already exists."""

    code: str = "JOB_INSTANCE_ALREADY_EXISTS"

    def __init__(self, job_name: str, job_key: str):
        self.job_name = job_name
        self.job_key = job_key
        super().__init__(
            f"Job instance already exists: job_name={job_name} job_key={job_key}"
        )


class DuplicateRecordError(JobStateError):
    """A unique index rejected an insert."""

    code: str = "DUPLICATE_RECORD"

    def __init__(self, collection: str, key: dict[str, Any]):
        self.collection = collection
        self.key = key
        super().__init__(f"Duplicate record in {collection}: {key}")


# Concurrency errors


class ConcurrencyError(BatchKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """
    A version-gated write matched zero documents.

    Another writer advanced the version first. Retryable by the caller.
    """

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, execution_id: int, version: int):
        self.entity_type = entity_type
        self.execution_id = execution_id
        self.version = version
        super().__init__(
            f"Optimistic lock conflict on {entity_type}: attempt to update "
            f"execution_id={execution_id} with version={version} which was not found"
        )


# Inconsistent state errors


class InconsistentStateError(BatchKernelError):
    """Base exception for invariants broken out of band. Not retryable."""

    code: str = "INCONSISTENT_STATE"


class OrphanedJobInstanceError(InconsistentStateError):
    """An instance placeholder exists with no executions during a restart."""

    code: str = "JOB_INSTANCE_WITHOUT_EXECUTIONS"

    def __init__(self, job_name: str, job_key: str):
        self.job_name = job_name
        self.job_key = job_key
        super().__init__(
            f"Cannot find any job execution for job_name={job_name} job_key={job_key}"
        )


class CounterNotFoundError(InconsistentStateError):
    """A sequence counter document is missing."""

    code: str = "COUNTER_NOT_FOUND"

    def __init__(self, counter_name: str):
        self.counter_name = counter_name
        super().__init__(f"Could not find counter: {counter_name}")


class JobExecutionNotFoundError(InconsistentStateError):
    """A saved job execution could not be found in storage."""

    code: str = "JOB_EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: int, job_name: str | None = None):
        self.execution_id = execution_id
        self.job_name = job_name
        super().__init__(
            f"Job execution not found: execution_id={execution_id} job_name={job_name}"
        )


# Reader errors


class NoSuchJobError(BatchKernelError):
    """No job instances exist for the given job name."""

    code: str = "NO_SUCH_JOB"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(f"No job instances were found for job name {job_name}")


# Configuration errors


class ConfigurationError(BatchKernelError):
    """Settings are missing or malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)
