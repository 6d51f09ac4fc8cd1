"""
SequenceService -- named counters with atomic increment-and-fetch.

Responsibility:
    Hands out strictly increasing identifiers for job instances, job
    executions and step executions.  Each sequence is one counter document
    in the counter collection; every allocation is one atomic
    increment-and-fetch on that document.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ExecutionStore whenever it needs a new identifier.

Invariants enforced:
    - Monotonicity: two calls for the same counter never return the same
      value, regardless of process or thread.  The aggregate-max-plus-one
      anti-pattern is never used; the counter document is the sole source
      of truth.
    - Counters are created lazily at zero and never deleted.

Failure modes:
    - CounterNotFoundError: the counter document disappeared after
      initialisation.  Fatal; never retried and never silently re-created,
      since re-creating at zero would hand out ids that are already in use.
    - IntegrityError on concurrent counter creation is treated as "already
      created".

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from sqlalchemy.exc import IntegrityError

from batch_kernel import fields as f
from batch_kernel.db.documents import DocumentCollection
from batch_kernel.exceptions import CounterNotFoundError
from batch_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating sequence numbers.

    Contract:
        Accepts a counter name and returns the next strictly increasing
        integer value.  Each call is one atomic operation that commits on
        its own; there is no caller transaction to join.

    Guarantees:
        - Concurrency safety: the increment and the read of the new value
          happen in one single-document atomic operation.
        - Values are > 0 for counters created by ``ensure_sequence``.

    Non-goals:
        - Gap-free allocation.  An id taken by a caller that later fails is
          simply never used.
    """

    # Well-known sequence names
    JOB_INSTANCE = f.JOB_INSTANCE_SEQUENCE
    JOB_EXECUTION = f.JOB_EXECUTION_SEQUENCE
    STEP_EXECUTION = f.STEP_EXECUTION_SEQUENCE

    WELL_KNOWN = (JOB_INSTANCE, JOB_EXECUTION, STEP_EXECUTION)

    def __init__(self, counters: DocumentCollection):
        """
        Args:
            counters: The counter collection.
        """
        self._counters = counters

    def next_value(self, counter_name: str) -> int:
        """
        Atomically increment the named counter and return the new value.

        Raises:
            CounterNotFoundError: the counter document does not exist.
        """
        value = self._counters.increment({f.COUNTER_NAME: counter_name}, f.COUNTER_VALUE)
        if value is None:
            logger.error("sequence_counter_missing", extra={"sequence_name": counter_name})
            raise CounterNotFoundError(counter_name)
        logger.debug("sequence_allocated", extra={"sequence_name": counter_name, "value": value})
        return value

    def current_value(self, counter_name: str) -> int | None:
        """
        Get the current value of a counter without incrementing.

        Returns:
            Current value, or None if the counter doesn't exist.
        """
        counter = self._counters.find_one({f.COUNTER_NAME: counter_name})
        return None if counter is None else counter[f.COUNTER_VALUE]

    def ensure_sequence(self, counter_name: str) -> None:
        """Create the counter at zero unless it already exists (idempotent)."""
        if self._counters.find_one({f.COUNTER_NAME: counter_name}) is not None:
            return
        try:
            self._counters.insert_one({f.COUNTER_NAME: counter_name, f.COUNTER_VALUE: 0})
        except IntegrityError:
            # Another process created it between the check and the insert
            logger.debug("sequence_counter_race", extra={"sequence_name": counter_name})
            return
        logger.info("sequence_counter_created", extra={"sequence_name": counter_name})

    def initialize_sequences(self) -> None:
        """Provision the counter collection and ensure all well-known sequences exist."""
        self._counters.ensure_indexes()
        for name in self.WELL_KNOWN:
            self.ensure_sequence(name)
