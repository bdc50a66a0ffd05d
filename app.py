import logging
import signal
import sys

from dotenv import load_dotenv
load_dotenv()  # 加载.env文件

from market_etl.config import PipelineConfig
from market_etl.errors import ConfigurationError
from market_etl.pipeline import run_etl_pipeline
from market_etl.scheduler import EtlScheduler, validate_schedule

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    try:
        config = PipelineConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Invalid ETL configuration: {e}")
        sys.exit(1)
    if not validate_schedule(config.schedule, config.scheduler_timezone):
        logger.error(f"Invalid cron expression: {config.schedule}")
        sys.exit(1)

    scheduler = EtlScheduler(
        lambda: run_etl_pipeline(PipelineConfig.from_env()),
        schedule=config.schedule,
        timezone=config.scheduler_timezone,
        blocking=True,
    )

    def stop(signum, frame):
        logger.info("Stopping ETL scheduler...")
        scheduler.shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, stop)
    signal.signal(signal.SIGTERM, stop)

    scheduler.start(run_immediately=True)


if __name__ == "__main__":
    main()
