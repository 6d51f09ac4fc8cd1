"""
Property tests: executions written through ExecutionStore read back equal.

Covers:
- Steps with every progress field, present or absent
- Job and step execution contexts holding every storable value type
  (JSON scalars, Decimal, UUID, calendar dates, aware date-times, nested
  lists and mappings)
- Both context storage formats
"""

import itertools
import string
from datetime import datetime, timezone

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from batch_kernel.bootstrap import BatchHistory
from batch_kernel.config import StoreSettings
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import JobParametersBuilder

_runs = itertools.count(1)

context_keys = st.text(alphabet=string.ascii_letters + string.digits + "_.", min_size=1, max_size=8)

aware_datetimes = st.datetimes(
    min_value=datetime(1970, 1, 2),
    max_value=datetime(2200, 1, 1),
    timezones=st.just(timezone.utc),
)

context_scalars = st.one_of(
    st.text(max_size=20),
    st.integers(min_value=-(2**53), max_value=2**53),
    st.floats(allow_nan=False, allow_infinity=False),
    st.booleans(),
    st.decimals(allow_nan=False, allow_infinity=False, places=4),
    st.uuids(),
    st.dates(),
    aware_datetimes,
)

context_values = st.recursive(
    context_scalars,
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(context_keys, children, max_size=3),
    max_leaves=8,
)

contexts = st.dictionaries(context_keys, context_values, max_size=4)

optional_times = st.none() | aware_datetimes

exit_statuses = st.builds(
    ExitStatus,
    st.sampled_from(["COMPLETED", "FAILED", "STOPPED", "NOOP", "EXECUTING", "UNKNOWN"]),
    st.text(max_size=30),
)

counts = st.integers(min_value=0, max_value=10_000)

step_specs = st.fixed_dictionaries(
    {
        "name": st.sampled_from(["load", "transform", "publish"]),
        "status": st.sampled_from(list(BatchStatus)),
        "read_count": counts,
        "write_count": counts,
        "commit_count": counts,
        "rollback_count": counts,
        "read_skip_count": counts,
        "process_skip_count": counts,
        "write_skip_count": counts,
        "filter_count": counts,
        "start_time": optional_times,
        "end_time": optional_times,
        "exit_status": exit_statuses,
        "context": contexts,
    }
)

execution_specs = st.fixed_dictionaries(
    {
        "status": st.sampled_from(list(BatchStatus)),
        "start_time": optional_times,
        "end_time": optional_times,
        "exit_status": exit_statuses,
        "context": contexts,
        "steps": st.lists(step_specs, max_size=3),
        "note": st.none() | st.text(max_size=20),
    }
)


def _write_execution(store, spec):
    builder = JobParametersBuilder().add_long("run", next(_runs))
    if spec["note"] is not None:
        builder.add_string("note", spec["note"], identifying=False)
    execution = store.create_job_execution("RoundTripJob", builder.to_job_parameters())

    for step_spec in spec["steps"]:
        step = execution.create_step_execution(step_spec["name"])
        store.add(step)
        for attr, value in step_spec.items():
            if attr not in ("name", "context"):
                setattr(step, attr, value)
        store.update(step)
        step.execution_context.update(step_spec["context"])
        store.update_execution_context(step)

    execution.status = spec["status"]
    execution.start_time = spec["start_time"]
    execution.end_time = spec["end_time"]
    execution.exit_status = spec["exit_status"]
    store.update(execution)
    execution.execution_context.update(spec["context"])
    store.update_execution_context(execution)
    return execution


class TestExecutionRoundTrip:
    """decode(encode(x)) == x through real storage."""

    @given(spec=execution_specs)
    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_document_context_format(self, store, reader, spec):
        execution = _write_execution(store, spec)

        stored = reader.get_job_execution(execution.execution_id)

        assert stored == execution
        assert stored.step_executions == execution.step_executions
        assert all(s.job_execution is stored for s in stored.step_executions)

    @pytest.fixture
    def string_history(self, tmp_path, clock):
        history = BatchHistory.from_settings(
            StoreSettings(
                database_url=f"sqlite:///{tmp_path / 'string-history.db'}",
                context_format="string",
            ),
            clock=clock,
        )
        yield history
        history.dispose()

    @given(spec=execution_specs)
    @settings(
        max_examples=20,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_string_context_format(self, string_history, spec):
        execution = _write_execution(string_history.store, spec)

        stored = string_history.reader.get_job_execution(execution.execution_id)

        assert stored == execution
