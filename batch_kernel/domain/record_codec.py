"""
Record codec -- entity <-> stored document transforms.

Responsibility:
    Pure mapping between JobExecution / StepExecution / JobParameters and
    the document shapes stored in the execution collection. Knows the
    stored field names and the decode defaults; knows nothing about the
    database.

Architecture position:
    Kernel > Domain -- pure, zero I/O. Called by ExecutionStore (encode and
    decode) and HistoryReader (decode only).

Invariants enforced:
    - An encoded execution always carries executionId, instanceId, jobName,
      status and exit code.
    - ``identifying`` is written only when false; absent means identifying.
    - Fields whose value is None are omitted from encoded documents, so a
      stored document never distinguishes "null" from "absent".

Failure modes:
    - MissingRequiredFieldError on encode of an incomplete entity, or on
      decode of an execution document without instanceId.
    - ValidationError on a parameter document with no recognised tag, or an
      unknown stored status.
    - ExecutionContextSerializationError from the context codec.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from batch_kernel import fields as f
from batch_kernel.domain.context_codec import ContextCodec, DocumentContextCodec
from batch_kernel.domain.entities import JobExecution, JobInstance, StepExecution
from batch_kernel.domain.execution_context import ExecutionContext
from batch_kernel.domain.job_key import DefaultJobKeyGenerator, JobKeyGenerator
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import JobParameter, JobParameters, ParameterType
from batch_kernel.exceptions import (
    InvalidJobParameterError,
    MissingRequiredFieldError,
    ValidationError,
)

_STEP_COUNTERS = (
    ("read_count", f.READ_COUNT),
    ("write_count", f.WRITE_COUNT),
    ("commit_count", f.COMMIT_COUNT),
    ("rollback_count", f.ROLLBACK_COUNT),
    ("read_skip_count", f.READ_SKIP_COUNT),
    ("process_skip_count", f.PROCESS_SKIP_COUNT),
    ("write_skip_count", f.WRITE_SKIP_COUNT),
    ("filter_count", f.FILTER_COUNT),
)


def _compact(document: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in document.items() if v is not None}


def _decode_status(value: Any) -> BatchStatus:
    if value is None:
        return BatchStatus.UNKNOWN
    try:
        return BatchStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown stored status {value!r}") from exc


def _decode_exit_status(document: Mapping[str, Any]) -> ExitStatus:
    return ExitStatus(
        document.get(f.EXIT_CODE) or ExitStatus.UNKNOWN.exit_code,
        document.get(f.EXIT_DESCRIPTION) or "",
    )


class RecordCodec:
    """
    Encoder/decoder for execution documents.

    Contract:
        ``encode_*`` returns plain dicts ready to be written; ``decode_*``
        returns fresh entities. Decoded step executions are attached to the
        decoded parent (back-reference set, list order preserved).

    Guarantees:
        - decode(encode(x)) reproduces every persisted field of x.
        - The job key written with an execution is the one produced by the
          configured JobKeyGenerator.
    """

    def __init__(
        self,
        context_codec: ContextCodec | None = None,
        job_key_generator: JobKeyGenerator | None = None,
    ):
        self.context_codec = context_codec or DocumentContextCodec()
        self.job_key_generator = job_key_generator or DefaultJobKeyGenerator()

    # -- parameters -------------------------------------------------------

    def encode_parameters(self, parameters: JobParameters) -> dict[str, Any]:
        encoded: dict[str, Any] = {}
        for name, parameter in parameters.items():
            entry: dict[str, Any] = {parameter.parameter_type.value: parameter.value}
            if not parameter.identifying:
                entry[f.IDENTIFYING] = False
            encoded[name] = entry
        return encoded

    def decode_parameters(self, document: Mapping[str, Any] | None) -> JobParameters:
        if not document:
            return JobParameters()
        decoded: dict[str, JobParameter] = {}
        for name, entry in document.items():
            tags = [t for t in ParameterType if t.value in entry]
            if len(tags) != 1:
                raise InvalidJobParameterError(name, "no recognised type tag in stored parameter")
            tag = tags[0]
            value = entry[tag.value]
            # JSON numbers lose the int/float distinction for whole doubles
            if tag is ParameterType.DOUBLE and isinstance(value, int):
                value = float(value)
            try:
                decoded[name] = JobParameter(value, tag, entry.get(f.IDENTIFYING) is not False)
            except InvalidJobParameterError as exc:
                raise InvalidJobParameterError(name, exc.reason) from exc
        return JobParameters(decoded)

    # -- execution context ------------------------------------------------

    def encode_context(self, context: ExecutionContext | None) -> dict[str, Any] | str:
        return self.context_codec.encode(context)

    def decode_context(self, stored: Any) -> ExecutionContext:
        return self.context_codec.decode(stored)

    def serialize_context(self, context: ExecutionContext | None) -> str:
        """Context as a string, for external marshalling adapters."""
        return self.context_codec.serialize(context)

    def deserialize_context(self, serialized: str | None) -> ExecutionContext:
        return self.context_codec.deserialize(serialized)

    # -- steps ------------------------------------------------------------

    def encode_step(self, step: StepExecution) -> dict[str, Any]:
        if step.step_execution_id is None:
            raise MissingRequiredFieldError("StepExecution", f.STEP_EXECUTION_ID)
        if step.status is None:
            raise MissingRequiredFieldError("StepExecution", f.STATUS, step.step_execution_id)
        if step.exit_status is None:
            raise MissingRequiredFieldError("StepExecution", f.EXIT_CODE, step.step_execution_id)
        document: dict[str, Any] = {
            f.STEP_EXECUTION_ID: step.step_execution_id,
            f.STEP_NAME: step.step_name,
            f.STATUS: step.status.value,
        }
        for attr, field_name in _STEP_COUNTERS:
            document[field_name] = getattr(step, attr)
        document.update(
            {
                f.START_TIME: step.start_time,
                f.END_TIME: step.end_time,
                f.LAST_UPDATED: step.last_updated,
                f.EXIT_CODE: step.exit_status.exit_code,
                f.EXIT_DESCRIPTION: step.exit_status.exit_description,
                f.EXECUTION_CONTEXT: self.encode_context(step.execution_context),
            }
        )
        return _compact(document)

    def decode_step(self, document: Mapping[str, Any], job_execution: JobExecution) -> StepExecution:
        step = StepExecution(
            step_name=document.get(f.STEP_NAME),
            job_execution=job_execution,
            step_execution_id=document.get(f.STEP_EXECUTION_ID),
            status=_decode_status(document.get(f.STATUS)),
            start_time=document.get(f.START_TIME),
            end_time=document.get(f.END_TIME),
            last_updated=document.get(f.LAST_UPDATED),
            exit_status=_decode_exit_status(document),
            execution_context=self.decode_context(document.get(f.EXECUTION_CONTEXT)),
        )
        for attr, field_name in _STEP_COUNTERS:
            setattr(step, attr, document.get(field_name) or 0)
        return step

    # -- executions -------------------------------------------------------

    def job_key(self, parameters: JobParameters) -> str:
        return self.job_key_generator.generate_key(parameters)

    def encode_execution(self, execution: JobExecution) -> dict[str, Any]:
        if execution.execution_id is None:
            raise MissingRequiredFieldError("JobExecution", f.EXECUTION_ID)
        if execution.job_instance is None or execution.job_instance.instance_id is None:
            raise MissingRequiredFieldError("JobExecution", f.INSTANCE_ID, execution.execution_id)
        if not execution.job_name:
            raise MissingRequiredFieldError("JobExecution", f.JOB_NAME, execution.execution_id)
        if execution.status is None:
            raise MissingRequiredFieldError("JobExecution", f.STATUS, execution.execution_id)
        if execution.exit_status is None:
            raise MissingRequiredFieldError("JobExecution", f.EXIT_CODE, execution.execution_id)
        document = {
            f.INSTANCE_ID: execution.instance_id,
            f.JOB_NAME: execution.job_name,
            f.JOB_KEY: self.job_key(execution.parameters),
            f.EXECUTION_ID: execution.execution_id,
            f.VERSION: execution.version,
            f.STATUS: execution.status.value,
            f.PARAMETERS: self.encode_parameters(execution.parameters),
            f.STEPS: [self.encode_step(step) for step in execution.step_executions],
            f.START_TIME: execution.start_time,
            f.CREATE_TIME: execution.create_time,
            f.END_TIME: execution.end_time,
            f.LAST_UPDATED: execution.last_updated,
            f.EXIT_CODE: execution.exit_status.exit_code,
            f.EXIT_DESCRIPTION: execution.exit_status.exit_description,
            f.EXECUTION_CONTEXT: self.encode_context(execution.execution_context),
            f.JOB_CONFIGURATION_NAME: execution.job_configuration_name,
        }
        return _compact(document)

    def decode_execution(self, document: Mapping[str, Any]) -> JobExecution:
        execution_id = document.get(f.EXECUTION_ID)
        if document.get(f.INSTANCE_ID) is None:
            raise MissingRequiredFieldError("JobExecution document", f.INSTANCE_ID, execution_id)
        execution = JobExecution(
            job_instance=self.decode_instance(document),
            parameters=self.decode_parameters(document.get(f.PARAMETERS)),
            execution_id=execution_id,
            version=document.get(f.VERSION),
            status=_decode_status(document.get(f.STATUS)),
            create_time=document.get(f.CREATE_TIME),
            start_time=document.get(f.START_TIME),
            end_time=document.get(f.END_TIME),
            last_updated=document.get(f.LAST_UPDATED),
            exit_status=_decode_exit_status(document),
            execution_context=self.decode_context(document.get(f.EXECUTION_CONTEXT)),
            job_configuration_name=document.get(f.JOB_CONFIGURATION_NAME),
        )
        execution.step_executions = [
            self.decode_step(step, execution) for step in document.get(f.STEPS) or []
        ]
        return execution

    # -- instances --------------------------------------------------------

    def encode_instance_placeholder(
        self, instance: JobInstance, parameters: JobParameters
    ) -> dict[str, Any]:
        """Instance-only document: no executionId until an execution claims it."""
        if instance.instance_id is None:
            raise MissingRequiredFieldError("JobInstance", f.INSTANCE_ID)
        if not instance.job_name:
            raise MissingRequiredFieldError("JobInstance", f.JOB_NAME, instance.instance_id)
        return {
            f.INSTANCE_ID: instance.instance_id,
            f.JOB_NAME: instance.job_name,
            f.JOB_KEY: instance.job_key or self.job_key(parameters),
            f.PARAMETERS: self.encode_parameters(parameters),
        }

    def decode_instance(self, document: Mapping[str, Any]) -> JobInstance:
        instance_id = document.get(f.INSTANCE_ID)
        if instance_id is None:
            raise MissingRequiredFieldError(
                "JobInstance document", f.INSTANCE_ID, document.get(f.EXECUTION_ID)
            )
        return JobInstance(
            instance_id=instance_id,
            job_name=document.get(f.JOB_NAME),
            job_key=document.get(f.JOB_KEY),
        )
