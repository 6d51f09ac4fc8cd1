"""
Pure domain layer.

Entities, value objects and codecs for execution history, with NO
dependencies on SQLAlchemy, the database or I/O (the clock's SystemClock
being the one sanctioned exception).
"""

from batch_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from batch_kernel.domain.context_codec import (
    ContextCodec,
    DocumentContextCodec,
    ExecutionContextSerializer,
    JsonExecutionContextSerializer,
    StringContextCodec,
    context_codec_for,
)
from batch_kernel.domain.entities import JobExecution, JobInstance, StepExecution
from batch_kernel.domain.execution_context import ExecutionContext
from batch_kernel.domain.job_key import DefaultJobKeyGenerator, JobKeyGenerator
from batch_kernel.domain.record_codec import RecordCodec
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import (
    JobParameter,
    JobParameters,
    JobParametersBuilder,
    ParameterType,
)

__all__ = [
    "BatchStatus",
    "Clock",
    "ContextCodec",
    "DefaultJobKeyGenerator",
    "DeterministicClock",
    "DocumentContextCodec",
    "ExecutionContext",
    "ExecutionContextSerializer",
    "ExitStatus",
    "JobExecution",
    "JobInstance",
    "JobKeyGenerator",
    "JobParameter",
    "JobParameters",
    "JobParametersBuilder",
    "JsonExecutionContextSerializer",
    "ParameterType",
    "RecordCodec",
    "StepExecution",
    "StringContextCodec",
    "SystemClock",
    "context_codec_for",
]
