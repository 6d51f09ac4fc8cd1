"""
Pytest fixtures for the batch kernel test suite.

Provides:
- A fully provisioned history store on a fresh SQLite file per test
- A deterministic clock
- Parameter builders and a helper that finishes an execution
- Structured log capture

Every test gets its own database under ``tmp_path``, so tests never share
state and can run in any order.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from batch_kernel.bootstrap import BatchHistory
from batch_kernel.config import StoreSettings
from batch_kernel.domain.clock import DeterministicClock
from batch_kernel.domain.status import BatchStatus, ExitStatus
from batch_kernel.domain.values import JobParametersBuilder
from batch_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture batch_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, store):
            store.create_job_execution(...)
            logs = captured_logs()
            assert any(r["message"] == "job_execution_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("batch_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'history.db'}"


@pytest.fixture
def settings(database_url) -> StoreSettings:
    return StoreSettings(database_url=database_url)


@pytest.fixture
def history(settings, clock):
    history = BatchHistory.from_settings(settings, clock=clock)
    yield history
    history.dispose()


@pytest.fixture
def store(history):
    return history.store


@pytest.fixture
def reader(history):
    return history.reader


@pytest.fixture
def sequences(history):
    return history.sequences


@pytest.fixture
def jobs(history):
    return history.jobs


# =============================================================================
# Test data helpers
# =============================================================================


@pytest.fixture
def report_parameters():
    """Identifying ``date`` parameter for the ReportJob examples."""

    def _build(day: int = 19, **non_identifying):
        builder = JobParametersBuilder().add_date(
            "date", datetime(2022, 2, day, tzinfo=timezone.utc)
        )
        for name, value in non_identifying.items():
            builder.add_string(name, value, identifying=False)
        return builder.to_job_parameters()

    return _build


@pytest.fixture
def finish_execution(store, clock):
    """Run an execution to a terminal (or any) status through the store."""

    def _finish(execution, status=BatchStatus.COMPLETED, exit_status=None):
        if execution.start_time is None:
            execution.start_time = clock.tick()
        execution.status = status
        if status.is_terminal or status is BatchStatus.UNKNOWN:
            execution.end_time = clock.tick()
        execution.exit_status = exit_status or ExitStatus(status.value)
        store.update(execution)
        return execution

    return _finish
