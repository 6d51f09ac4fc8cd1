"""
Tests for step executions in ExecutionStore.

Covers:
- Appending steps (add / add_all)
- Versioned step progress updates and the shared execution version
- Terminate-only signalling when the execution is stopping
- Step execution contexts
- Last-step and step-count queries across an instance
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from batch_kernel import fields as f
from batch_kernel.domain.entities import JobExecution, StepExecution
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.exceptions import (
    JobExecutionNotFoundError,
    MissingRequiredFieldError,
    OptimisticLockError,
    StepExecutionAlreadySavedError,
)


@pytest.fixture
def execution(store, report_parameters):
    return store.create_job_execution("ReportJob", report_parameters())


class TestAddStep:
    """Tests for add / add_all."""

    def test_add_assigns_id_and_stamp(self, store, reader, execution, clock):
        step = execution.create_step_execution("load")

        store.add(step)

        assert step.step_execution_id == 1
        assert step.last_updated == clock.now()
        stored = reader.get_step_execution(execution.execution_id, 1)
        assert stored.step_name == "load"
        assert stored.status is BatchStatus.UNSTARTED
        assert stored.job_execution_id == execution.execution_id

    def test_add_does_not_bump_version(self, store, reader, execution):
        store.add(execution.create_step_execution("load"))
        assert execution.version == 0
        assert reader.get_job_execution(execution.execution_id).version == 0

    def test_add_attaches_to_parent(self, store, execution):
        step = StepExecution(step_name="load", job_execution=execution)
        store.add(step)
        assert execution.step_executions == [step]

    def test_add_all_preserves_order(self, store, reader, execution):
        steps = [execution.create_step_execution(name) for name in ("load", "transform", "publish")]

        store.add_all(steps)

        assert [s.step_execution_id for s in steps] == [1, 2, 3]
        stored = reader.get_job_execution(execution.execution_id)
        assert [s.step_name for s in stored.step_executions] == ["load", "transform", "publish"]

    def test_add_all_empty(self, store, execution):
        store.add_all([])
        assert execution.step_executions == []

    def test_saved_step_rejected(self, store, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        with pytest.raises(StepExecutionAlreadySavedError) as exc_info:
            store.add(step)
        assert exc_info.value.step_execution_id == step.step_execution_id

    def test_unsaved_parent_rejected(self, store, execution):
        unsaved = JobExecution(job_instance=execution.job_instance, parameters=execution.parameters)
        with pytest.raises(MissingRequiredFieldError):
            store.add(unsaved.create_step_execution("load"))

    def test_missing_parent_document(self, store, execution):
        ghost = JobExecution(
            job_instance=execution.job_instance,
            parameters=execution.parameters,
            execution_id=999,
        )
        with pytest.raises(JobExecutionNotFoundError):
            store.add(ghost.create_step_execution("load"))


class TestUpdateStep:
    """Tests for update(StepExecution)."""

    def test_progress_written(self, store, reader, execution, clock):
        step = execution.create_step_execution("load")
        store.add(step)
        step.status = BatchStatus.COMPLETED
        step.start_time = clock.tick()
        step.read_count = 40
        step.write_count = 38
        step.filter_count = 1
        step.commit_count = 4
        step.rollback_count = 1
        step.read_skip_count = 1
        step.process_skip_count = 0
        step.write_skip_count = 1
        step.end_time = clock.tick()
        step.exit_status = ExitStatus.COMPLETED

        store.update(step)

        assert execution.version == 1
        stored = reader.get_step_execution(execution.execution_id, step.step_execution_id)
        assert stored.status is BatchStatus.COMPLETED
        assert stored.read_count == 40
        assert stored.write_count == 38
        assert stored.skip_count == 2
        assert stored.start_time == step.start_time
        assert stored.end_time == step.end_time
        assert stored.last_updated == clock.now()
        assert stored.exit_status == ExitStatus.COMPLETED
        assert reader.get_job_execution(execution.execution_id).version == 1

    def test_update_leaves_other_steps(self, store, reader, execution):
        load, publish = execution.create_step_execution("load"), execution.create_step_execution("publish")
        store.add_all([load, publish])
        load.read_count = 5
        store.update(load)

        stored = reader.get_job_execution(execution.execution_id)
        assert stored.step_executions[0].read_count == 5
        assert stored.step_executions[1].read_count == 0
        assert stored.step_executions[1].step_name == "publish"

    def test_progress_update_leaves_step_context(self, store, reader, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        step.execution_context["offset"] = 10
        store.update_execution_context(step)

        step.execution_context["offset"] = 20
        step.read_count = 20
        store.update(step)

        stored = reader.get_step_execution(execution.execution_id, step.step_execution_id)
        assert stored.read_count == 20
        assert stored.execution_context == {"offset": 10}

    def test_cleared_field_removed(self, store, reader, execution, clock):
        step = execution.create_step_execution("load")
        store.add(step)
        step.end_time = clock.tick()
        store.update(step)
        step.end_time = None
        store.update(step)

        stored = reader.get_step_execution(execution.execution_id, step.step_execution_id)
        assert stored.end_time is None

    def test_steps_share_execution_version(self, store, reader, execution):
        load, publish = execution.create_step_execution("load"), execution.create_step_execution("publish")
        store.add_all([load, publish])

        store.update(load)
        store.update(publish)
        execution.status = BatchStatus.RUNNING
        store.update(execution)

        assert execution.version == 3
        assert reader.get_job_execution(execution.execution_id).version == 3

    def test_stale_parent_catches_up(self, store, reader, execution):
        load, publish = execution.create_step_execution("load"), execution.create_step_execution("publish")
        store.add_all([load, publish])
        other = reader.get_job_execution(execution.execution_id)
        other_publish = other.find_step_execution(publish.step_execution_id)

        store.update(load)
        other_publish.read_count = 3
        store.update(other_publish)

        assert other.version == 2
        assert reader.get_job_execution(execution.execution_id).version == 2

    @pytest.mark.slow_locks
    def test_concurrent_step_updates_exactly_one_wins(self, store, reader, jobs, execution, monkeypatch):
        load, publish = execution.create_step_execution("load"), execution.create_step_execution("publish")
        store.add_all([load, publish])
        workers = [
            reader.get_job_execution(execution.execution_id).find_step_execution(step.step_execution_id)
            for step in (load, publish)
        ]

        # Both workers have read version 0 before either writes
        both_synced = threading.Barrier(2, timeout=10)
        modify_one = jobs.modify_one

        def modify_one_after_both_synced(filter, modifier):
            both_synced.wait()
            return modify_one(filter, modifier)

        monkeypatch.setattr(jobs, "modify_one", modify_one_after_both_synced)

        def run(step):
            step.read_count = 5
            try:
                store.update(step)
            except OptimisticLockError as exc:
                return exc
            return None

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(run, workers))

        failures = [outcome for outcome in outcomes if outcome is not None]
        assert len(failures) == 1
        assert failures[0].entity_type == "StepExecution"
        assert failures[0].version == 0
        stored = reader.get_job_execution(execution.execution_id)
        assert stored.version == 1
        assert sorted(s.read_count for s in stored.step_executions) == [0, 5]

    def test_stopping_execution_requests_terminate(self, store, reader, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        operator_copy = reader.get_job_execution(execution.execution_id)
        operator_copy.status = BatchStatus.STOPPING
        store.update(operator_copy)

        step.read_count = 1
        store.update(step)

        assert execution.status is BatchStatus.STOPPING
        assert step.terminate_only is True

    def test_running_execution_does_not_terminate(self, store, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        store.update(step)
        assert step.terminate_only is False

    def test_missing_element_still_bumps_version(self, store, reader, execution, captured_logs):
        ghost = StepExecution(step_name="ghost", job_execution=execution, step_execution_id=999)

        store.update(ghost)

        assert execution.version == 1
        assert reader.get_job_execution(execution.execution_id).step_executions == []
        assert any(r["message"] == "step_execution_element_missing" for r in captured_logs())

    def test_unsaved_step_rejected(self, store, execution):
        with pytest.raises(MissingRequiredFieldError) as exc_info:
            store.update(execution.create_step_execution("load"))
        assert exc_info.value.field_name == f.STEP_EXECUTION_ID


class TestStepExecutionContext:
    """Tests for update_execution_context(StepExecution)."""

    def test_context_written_and_clean(self, store, reader, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        step.execution_context["offset"] = 250

        store.update_execution_context(step)

        assert not step.execution_context.is_dirty
        stored = reader.get_step_execution(execution.execution_id, step.step_execution_id)
        assert stored.execution_context == {"offset": 250}

    def test_context_write_is_not_versioned(self, store, reader, execution):
        step = execution.create_step_execution("load")
        store.add(step)
        step.execution_context["offset"] = 1
        store.update_execution_context(step)
        assert reader.get_job_execution(execution.execution_id).version == 0

    def test_only_matching_step_changes(self, store, reader, execution):
        load, publish = execution.create_step_execution("load"), execution.create_step_execution("publish")
        store.add_all([load, publish])
        publish.execution_context["target"] = "s3"
        store.update_execution_context(publish)

        stored = reader.get_job_execution(execution.execution_id)
        assert stored.step_executions[0].execution_context == {}
        assert stored.step_executions[1].execution_context == {"target": "s3"}

    def test_unsaved_step_rejected(self, store, execution):
        with pytest.raises(MissingRequiredFieldError):
            store.update_execution_context(execution.create_step_execution("load"))


class TestStepQueries:
    """Tests for get_last_step_execution / get_step_execution_count."""

    def _run_step(self, store, execution, clock, name="load", started=True):
        step = execution.create_step_execution(name)
        store.add(step)
        if started:
            step.start_time = clock.tick()
            store.update(step)
        return step

    def test_latest_start_time_wins(self, store, execution, clock, report_parameters, finish_execution):
        self._run_step(store, execution, clock)
        finish_execution(execution, BatchStatus.FAILED)
        restart = store.create_job_execution("ReportJob", report_parameters())
        second = self._run_step(store, restart, clock)

        last = store.get_last_step_execution(execution.job_instance, "load")

        assert last.step_execution_id == second.step_execution_id
        assert last.job_execution.execution_id == restart.execution_id
        assert store.get_step_execution_count(execution.job_instance, "load") == 2

    def test_started_beats_unstarted(self, store, execution, clock):
        started = self._run_step(store, execution, clock)
        self._run_step(store, execution, clock, started=False)

        last = store.get_last_step_execution(execution.job_instance, "load")
        assert last.step_execution_id == started.step_execution_id

    def test_same_start_time_higher_id_wins(self, store, execution, clock):
        first = execution.create_step_execution("load")
        second = execution.create_step_execution("load")
        store.add_all([first, second])
        first.start_time = second.start_time = clock.tick()
        store.update(first)
        store.update(second)

        last = store.get_last_step_execution(execution.job_instance, "load")
        assert last.step_execution_id == second.step_execution_id

    def test_unstarted_only(self, store, execution, clock):
        step = self._run_step(store, execution, clock, started=False)
        last = store.get_last_step_execution(execution.job_instance, "load")
        assert last.step_execution_id == step.step_execution_id

    def test_other_step_names_ignored(self, store, execution, clock):
        self._run_step(store, execution, clock, name="publish")
        assert store.get_last_step_execution(execution.job_instance, "load") is None
        assert store.get_step_execution_count(execution.job_instance, "load") == 0

    def test_requires_step_name(self, store, execution):
        with pytest.raises(MissingRequiredFieldError):
            store.get_step_execution_count(execution.job_instance, " ")
