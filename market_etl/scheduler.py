import logging
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .constants import DEFAULT_SCHEDULE, DEFAULT_SCHEDULER_TZ
from .errors import ConfigurationError
from .pipeline import PipelineResult

logger = logging.getLogger(__name__)


def build_trigger(schedule: str, timezone: str = DEFAULT_SCHEDULER_TZ) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(schedule, timezone=timezone)
    except (ValueError, KeyError) as e:
        raise ConfigurationError(f"Invalid cron expression {schedule!r} ({timezone}): {e}") from e


def validate_schedule(schedule: str, timezone: str = DEFAULT_SCHEDULER_TZ) -> bool:
    try:
        build_trigger(schedule, timezone)
    except ConfigurationError:
        return False
    return True


class EtlScheduler:
    """
    Runs the ETL job on a cron cadence, plus once at start.
    A trigger that fires while a run is still in flight is skipped.
    """

    def __init__(
        self,
        job: Callable[[], PipelineResult],
        schedule: str = DEFAULT_SCHEDULE,
        timezone: str = DEFAULT_SCHEDULER_TZ,
        blocking: bool = False,
    ):
        self.job = job
        self.schedule = schedule
        self.timezone = timezone
        scheduler_cls = BlockingScheduler if blocking else BackgroundScheduler
        self.scheduler = scheduler_cls(timezone=timezone)
        self._in_flight = threading.Lock()

    def run_job(self) -> Optional[PipelineResult]:
        if not self._in_flight.acquire(blocking=False):
            logger.warning("Previous ETL run still in progress; skipping this trigger")
            return None
        try:
            logger.info("Running scheduled ETL pipeline")
            result = self.job()
        except Exception as e:
            logger.exception(f"Error in scheduled ETL pipeline: {e}")
            return None
        finally:
            self._in_flight.release()

        if result.success:
            logger.info(f"Scheduled ETL pipeline completed successfully: {result.summary()}")
        else:
            logger.error(f"Scheduled ETL pipeline failed: {result.error}")
        return result

    def start(self, run_immediately: bool = True):
        trigger = build_trigger(self.schedule, self.timezone)
        self.scheduler.add_job(
            self.run_job,
            trigger,
            id="etl_pipeline",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if run_immediately:
            # No trigger: runs once as soon as the scheduler starts
            self.scheduler.add_job(self.run_job, id="etl_pipeline_initial", replace_existing=True)
        logger.info(f"Starting ETL scheduler with schedule: {self.schedule} ({self.timezone})")
        self.scheduler.start()

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
