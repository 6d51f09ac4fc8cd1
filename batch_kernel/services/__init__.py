"""Services for the batch kernel (write side)."""

from batch_kernel.services.execution_store import ExecutionStore
from batch_kernel.services.sequence_service import SequenceService

__all__ = [
    "ExecutionStore",
    "SequenceService",
]
