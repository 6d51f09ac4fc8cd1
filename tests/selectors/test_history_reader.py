"""
Tests for HistoryReader.

Covers:
- Point lookups of instances, executions and steps
- Job names, instance counts and paged instance listings
- Wildcard job name search
- Last / last completed / running executions
"""

import pytest

from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import JobParameters
from batch_kernel.exceptions import MissingRequiredFieldError, NoSuchJobError
from batch_kernel.selectors.history_reader import job_name_pattern


class TestJobNamePattern:
    """Tests for glob to LIKE translation."""

    def test_star_becomes_percent(self):
        assert job_name_pattern("Report*") == "%Report%%"

    def test_underscore_is_literal(self):
        assert job_name_pattern("nightly_load") == "%nightly\\_load%"

    def test_backslash_is_literal(self):
        assert job_name_pattern("a\\b") == "%a\\\\b%"


class TestPointLookups:
    """Tests for get_job_instance / get_job_execution / get_step_execution."""

    def test_get_job_instance(self, store, reader, report_parameters):
        execution = store.create_job_execution("ReportJob", report_parameters())
        instance = reader.get_job_instance(execution.instance_id)
        assert instance == execution.job_instance

    def test_get_placeholder_instance(self, store, reader, report_parameters):
        created = store.create_job_instance("ReportJob", report_parameters())
        assert reader.get_job_instance(created.instance_id) == created

    def test_unknown_instance(self, reader):
        assert reader.get_job_instance(42) is None

    def test_get_job_execution(self, store, reader, report_parameters):
        execution = store.create_job_execution("ReportJob", report_parameters())
        found = reader.get_job_execution(execution.execution_id)
        assert found.execution_id == execution.execution_id
        assert found.parameters == execution.parameters
        assert found.create_time == execution.create_time

    def test_get_job_execution_none_or_unknown(self, reader):
        assert reader.get_job_execution(None) is None
        assert reader.get_job_execution(42) is None

    def test_get_step_execution(self, store, reader, report_parameters):
        execution = store.create_job_execution("ReportJob", report_parameters())
        store.add_all([execution.create_step_execution("load"), execution.create_step_execution("publish")])

        step = reader.get_step_execution(execution.execution_id, 2)

        assert step.step_name == "publish"
        assert step.job_execution.execution_id == execution.execution_id
        assert reader.get_step_execution(execution.execution_id, 99) is None
        assert reader.get_step_execution(999, 1) is None

    def test_get_step_execution_requires_ids(self, reader):
        with pytest.raises(MissingRequiredFieldError):
            reader.get_step_execution(None, 1)
        with pytest.raises(MissingRequiredFieldError):
            reader.get_step_execution(1, None)


class TestInstances:
    """Tests for names, counts and paged listings."""

    @pytest.fixture
    def five_reports(self, store, report_parameters):
        return [
            store.create_job_execution("ReportJob", report_parameters(day)).job_instance
            for day in range(19, 24)
        ]

    def test_job_names_sorted_and_distinct(self, store, reader, report_parameters):
        store.create_job_execution("ReportJob", report_parameters(19))
        store.create_job_execution("ReportJob", report_parameters(20))
        store.create_job_execution("CleanupJob", JobParameters())

        assert reader.get_job_names() == ["CleanupJob", "ReportJob"]

    def test_no_job_names(self, reader):
        assert reader.get_job_names() == []

    def test_instance_count(self, store, reader, report_parameters, finish_execution, five_reports):
        finish_execution(reader.get_last_job_execution(five_reports[0]), BatchStatus.FAILED)
        # A restart adds an execution, not an instance
        store.create_job_execution("ReportJob", report_parameters(19))

        assert reader.get_job_instance_count("ReportJob") == 5

    def test_instance_count_unknown_job(self, reader):
        with pytest.raises(NoSuchJobError) as exc_info:
            reader.get_job_instance_count("NoSuchJob")
        assert exc_info.value.job_name == "NoSuchJob"

    def test_instances_newest_first(self, reader, five_reports):
        instances = reader.get_job_instances("ReportJob", 0, 10)
        assert [i.instance_id for i in instances] == [5, 4, 3, 2, 1]

    def test_instances_paged(self, reader, five_reports):
        assert [i.instance_id for i in reader.get_job_instances("ReportJob", 1, 2)] == [4, 3]
        assert [i.instance_id for i in reader.get_job_instances("ReportJob", 4, 2)] == [1]
        assert reader.get_job_instances("ReportJob", 5, 2) == []
        assert reader.get_job_instances("ReportJob", 0, 0) == []

    def test_restarted_instance_listed_once(
        self, store, reader, report_parameters, finish_execution, five_reports
    ):
        finish_execution(reader.get_last_job_execution(five_reports[-1]), BatchStatus.FAILED)
        store.create_job_execution("ReportJob", report_parameters(23))

        instances = reader.get_job_instances("ReportJob", 0, 2)
        assert [i.instance_id for i in instances] == [5, 4]

    def test_placeholders_are_listed(self, store, reader, report_parameters):
        store.create_job_instance("ReportJob", report_parameters())
        assert [i.instance_id for i in reader.get_job_instances("ReportJob", 0, 5)] == [1]

    def test_last_job_instance(self, reader, five_reports):
        assert reader.get_last_job_instance("ReportJob").instance_id == 5
        assert reader.get_last_job_instance("NoSuchJob") is None

    def test_wildcard_search(self, store, reader):
        store.create_job_execution("DailyReportJob", JobParameters())
        store.create_job_execution("ReportArchive", JobParameters())
        store.create_job_execution("CleanupJob", JobParameters())

        found = reader.find_job_instances_by_job_name("Report*", 0, 10)

        assert sorted(i.job_name for i in found) == ["DailyReportJob", "ReportArchive"]

    def test_wildcard_search_is_case_sensitive(self, store, reader):
        store.create_job_execution("DailyReportJob", JobParameters())
        store.create_job_execution("dailyreportjob", JobParameters())

        found = reader.find_job_instances_by_job_name("Report*", 0, 10)

        assert [i.job_name for i in found] == ["DailyReportJob"]
        assert reader.find_job_instances_by_job_name("REPORT", 0, 10) == []

    def test_wildcard_underscore_literal(self, store, reader):
        store.create_job_execution("nightly_load", JobParameters())
        store.create_job_execution("nightlyXload", JobParameters())

        found = reader.find_job_instances_by_job_name("y_l", 0, 10)

        assert [i.job_name for i in found] == ["nightly_load"]


class TestExecutions:
    """Tests for execution listings."""

    def test_job_executions_newest_first(self, store, reader, report_parameters, finish_execution):
        first = store.create_job_execution("ReportJob", report_parameters())
        finish_execution(first, BatchStatus.FAILED)
        second = store.create_job_execution("ReportJob", report_parameters())

        executions = reader.get_job_executions(first.job_instance)

        assert [e.execution_id for e in executions] == [second.execution_id, first.execution_id]
        assert reader.get_last_job_execution(first.job_instance).execution_id == second.execution_id

    def test_placeholder_has_no_executions(self, store, reader, report_parameters):
        instance = store.create_job_instance("ReportJob", report_parameters())
        assert reader.get_job_executions(instance) == []
        assert reader.get_last_job_execution(instance) is None

    def test_executions_require_instance(self, reader):
        with pytest.raises(MissingRequiredFieldError):
            reader.get_job_executions(None)

    def test_last_completed(self, store, reader, report_parameters, finish_execution):
        finish_execution(store.create_job_execution("ReportJob", report_parameters(19)))
        completed = finish_execution(store.create_job_execution("ReportJob", report_parameters(20)))
        finish_execution(
            store.create_job_execution("ReportJob", report_parameters(21)), BatchStatus.FAILED
        )
        finish_execution(
            store.create_job_execution("ReportJob", report_parameters(22)),
            BatchStatus.COMPLETED,
            ExitStatus.NOOP,
        )

        last = reader.get_last_completed_job_execution("ReportJob")

        assert last.execution_id == completed.execution_id

    def test_last_completed_none(self, store, reader, report_parameters):
        store.create_job_execution("ReportJob", report_parameters())
        assert reader.get_last_completed_job_execution("ReportJob") is None

    def test_running_executions(self, store, reader, report_parameters, finish_execution):
        running = finish_execution(
            store.create_job_execution("ReportJob", report_parameters(19)), BatchStatus.RUNNING
        )
        store.create_job_execution("ReportJob", report_parameters(20))
        finish_execution(store.create_job_execution("ReportJob", report_parameters(21)))
        store.create_job_instance("ReportJob", report_parameters(22))
        finish_execution(
            store.create_job_execution("AuditJob", report_parameters(19)), BatchStatus.RUNNING
        )

        found = reader.find_running_job_executions("ReportJob")

        assert [e.execution_id for e in found] == [running.execution_id]
        assert found[0].status is BatchStatus.RUNNING
