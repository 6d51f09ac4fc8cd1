"""
Status vocabulary -- batch status and exit status.

Responsibility:
    Closed enumerations for the lifecycle state of job and step executions
    and the value object describing how an execution exited.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BatchStatus(str, Enum):
    """
    Lifecycle status of a job or step execution.

    Contract:
        Stored as the upper-case member value. UNSTARTED and RUNNING are the
        running states; COMPLETED, FAILED and ABANDONED are terminal.
        UNKNOWN marks an execution whose failure could not be rolled back
        (and is the decode default when a stored status is absent).
    """

    UNSTARTED = "UNSTARTED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_running(self) -> bool:
        return self in (BatchStatus.UNSTARTED, BatchStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (
            BatchStatus.COMPLETED,
            BatchStatus.FAILED,
            BatchStatus.ABANDONED,
        )


@dataclass(frozen=True)
class ExitStatus:
    """
    How an execution exited: a code plus a free-text description.

    Guarantees:
        - Immutable; ``with_description`` returns a new instance.
    """

    exit_code: str
    exit_description: str = ""

    def with_description(self, description: str) -> ExitStatus:
        return ExitStatus(self.exit_code, description)

    def __str__(self) -> str:
        return self.exit_code


ExitStatus.UNKNOWN = ExitStatus("UNKNOWN")
ExitStatus.EXECUTING = ExitStatus("EXECUTING")
ExitStatus.COMPLETED = ExitStatus("COMPLETED")
ExitStatus.NOOP = ExitStatus("NOOP")
ExitStatus.FAILED = ExitStatus("FAILED")
ExitStatus.STOPPED = ExitStatus("STOPPED")
