"""
Execution history entities.

Responsibility:
    In-memory representation of job instances, job executions and step
    executions as they are created, mutated and persisted by the execution
    store.

Architecture position:
    Kernel > Domain -- pure, zero I/O. The execution store and the record
    codec are the only components that map these entities to documents.

Invariants enforced:
    - ``version`` is None until the execution is first saved, then starts at
      0 and only increases.
    - A StepExecution always belongs to exactly one JobExecution; the
      back-reference is excluded from equality and repr to avoid cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from batch_kernel.domain.execution_context import ExecutionContext
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import JobParameters


@dataclass(frozen=True)
class JobInstance:
    """Identity of one (job name, identifying parameters) pairing."""

    instance_id: int
    job_name: str
    job_key: str | None = None


@dataclass
class JobExecution:
    """
    One attempt to run a JobInstance.

    Contract:
        Mutated in place by the execution store (id, version, last_updated)
        and by the orchestration layer (status, timestamps, exit status).
    """

    job_instance: JobInstance
    parameters: JobParameters = field(default_factory=JobParameters)
    execution_id: int | None = None
    version: int | None = None
    status: BatchStatus = BatchStatus.UNSTARTED
    create_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_updated: datetime | None = None
    exit_status: ExitStatus = ExitStatus.UNKNOWN
    execution_context: ExecutionContext = field(default_factory=ExecutionContext)
    step_executions: list[StepExecution] = field(default_factory=list)
    job_configuration_name: str | None = None

    @property
    def instance_id(self) -> int:
        return self.job_instance.instance_id

    @property
    def job_name(self) -> str:
        return self.job_instance.job_name

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    @property
    def is_stopping(self) -> bool:
        return self.status is BatchStatus.STOPPING

    def increment_version(self) -> None:
        self.version = 0 if self.version is None else self.version + 1

    def create_step_execution(self, step_name: str) -> StepExecution:
        """Create an unsaved step execution attached to this execution."""
        step = StepExecution(step_name=step_name, job_execution=self)
        self.step_executions.append(step)
        return step

    def find_step_execution(self, step_execution_id: int) -> StepExecution | None:
        for step in self.step_executions:
            if step.step_execution_id == step_execution_id:
                return step
        return None


@dataclass
class StepExecution:
    """One step's run record inside a JobExecution."""

    step_name: str
    job_execution: JobExecution = field(compare=False, repr=False)
    step_execution_id: int | None = None
    status: BatchStatus = BatchStatus.UNSTARTED
    read_count: int = 0
    write_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    read_skip_count: int = 0
    process_skip_count: int = 0
    write_skip_count: int = 0
    filter_count: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_updated: datetime | None = None
    exit_status: ExitStatus = ExitStatus.EXECUTING
    execution_context: ExecutionContext = field(default_factory=ExecutionContext)
    terminate_only: bool = field(default=False, compare=False)

    @property
    def job_execution_id(self) -> int | None:
        return self.job_execution.execution_id

    @property
    def skip_count(self) -> int:
        return self.read_skip_count + self.process_skip_count + self.write_skip_count

    def set_terminate_only(self) -> None:
        """Ask the step to stop at the next opportunity."""
        self.terminate_only = True
