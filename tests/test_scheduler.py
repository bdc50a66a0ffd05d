import logging
import threading

import pytest

from market_etl.errors import ConfigurationError
from market_etl.pipeline import PipelineResult, PipelineState
from market_etl.scheduler import EtlScheduler, build_trigger, validate_schedule


def _ok():
    return PipelineResult(success=True, state=PipelineState.DONE, message="ok")


def test_validate_schedule():
    assert validate_schedule("0 0 * * *")
    assert validate_schedule("15 22 * * 1-5", "America/New_York")
    assert not validate_schedule("every day")
    assert not validate_schedule("61 * * * *")


def test_build_trigger_raises_configuration_error():
    with pytest.raises(ConfigurationError, match="Invalid cron expression"):
        build_trigger("* * *")


def test_trigger_skipped_while_run_in_flight(caplog):
    calls = []
    sched = EtlScheduler(lambda: calls.append(1) or _ok())

    sched._in_flight.acquire()
    try:
        assert sched.run_job() is None
    finally:
        sched._in_flight.release()

    assert calls == []
    assert "still in progress" in caplog.text
    assert sched.run_job().success
    assert calls == [1]


def test_summary_without_load_result(caplog):
    caplog.set_level(logging.INFO)
    result = PipelineResult(success=True, state=PipelineState.DONE, message="ok")
    assert result.summary() == "ETL pipeline completed: ok"
    assert EtlScheduler(lambda: result).run_job() is result
    assert "Scheduled ETL pipeline completed successfully: ETL pipeline completed: ok" in caplog.text


def test_failed_result_is_returned_not_raised(caplog):
    failed = PipelineResult(success=False, state=PipelineState.FAILED, error="storage unreachable")
    sched = EtlScheduler(lambda: failed)
    assert sched.run_job() is failed
    assert "Scheduled ETL pipeline failed: storage unreachable" in caplog.text


def test_start_runs_once_immediately_and_registers_cron_job(caplog):
    finished = threading.Event()
    outcomes = []

    sched = EtlScheduler(_ok, schedule="0 0 * * *")
    run_job = sched.run_job

    def recording_run_job():
        outcomes.append(run_job())
        finished.set()

    sched.run_job = recording_run_job
    sched.start(run_immediately=True)
    try:
        assert finished.wait(timeout=10)
        assert len(outcomes) == 1 and outcomes[0].success
        assert "raised an exception" not in caplog.text
        cron_job = sched.scheduler.get_job("etl_pipeline")
        assert cron_job is not None
        assert cron_job.max_instances == 1
        assert cron_job.coalesce is True
    finally:
        sched.shutdown()
