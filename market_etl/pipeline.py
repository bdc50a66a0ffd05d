"""
Orchestrates one ETL run: extract -> transform -> load.

EtlPipeline.run_once never raises. Item-level problems show up as counts in the
LoadResult; anything that escapes a stage is logged and returned as a failed
PipelineResult. Whether a failure ends the process is up to the caller.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import requests

from .config import PipelineConfig
from .db import MetricsStore, RunLog
from .extract import Extractor, read_raw_data
from .load import Loader
from .metrics import transform
from .models import ExtractionBatch, LoadResult, utc_now_iso
from .rate_limit import FixedIntervalGate
from .sources import (
    AlphaVantageFundamentalsSource,
    AlphaVantagePriceSource,
    FmpIndexSource,
    YFinanceIndexSource,
)

logger = logging.getLogger(__name__)

JOB_NAME = "financial_etl"


class PipelineState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    TRANSFORMING = "transforming"
    LOADING = "loading"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineResult:
    success: bool
    state: PipelineState
    message: str = ""
    error: Optional[str] = None
    load_result: Optional[LoadResult] = None
    started_at: str = field(default_factory=utc_now_iso)
    finished_at: str = field(default_factory=utc_now_iso)

    def summary(self) -> str:
        if not self.success:
            return f"ETL pipeline failed: {self.error}"
        r = self.load_result
        if r is None:
            return f"ETL pipeline completed: {self.message or 'nothing loaded'}"
        return (
            f"ETL pipeline completed: {r.stocks_loaded} stocks loaded, {r.stock_errors} stock errors; "
            f"{r.indicators_loaded} indicators loaded, {r.indicator_errors} indicator errors"
        )

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "state": self.state.value}
        if self.success:
            out["message"] = self.message
        else:
            out["error"] = self.error
        if self.load_result is not None:
            out["load_result"] = self.load_result.as_dict()
        out["started_at"] = self.started_at
        out["finished_at"] = self.finished_at
        return out


class EtlPipeline:
    def __init__(self, extractor: Extractor, loader: Loader, run_log: Optional[RunLog] = None):
        self.extractor = extractor
        self.loader = loader
        self.run_log = run_log
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        return self._state

    def run_once(self) -> PipelineResult:
        return self._run(self.extractor.extract)

    def replay(self, raw_data_path: Union[str, Path]) -> PipelineResult:
        """Transform and load a previously saved raw data file instead of fetching."""
        return self._run(lambda: read_raw_data(raw_data_path))

    def extract_only(self) -> PipelineResult:
        """Fetch upstream data and write the raw data file; nothing is transformed or loaded."""
        started_at = utc_now_iso()
        try:
            self._state = PipelineState.EXTRACTING
            batch = self.extractor.extract()
        except Exception as e:
            self._state = PipelineState.FAILED
            logger.exception(f"Error in ETL pipeline while extracting: {e}")
            return PipelineResult(success=False, state=PipelineState.FAILED, error=str(e), started_at=started_at)

        if batch.raw_data_path is None:
            self._state = PipelineState.FAILED
            return PipelineResult(
                success=False,
                state=PipelineState.FAILED,
                error="Raw data file was not written",
                started_at=started_at,
            )
        self._state = PipelineState.DONE
        return PipelineResult(
            success=True,
            state=PipelineState.DONE,
            message=f"Extracted data for {len(batch.stocks)} stocks -> {batch.raw_data_path}",
            started_at=started_at,
        )

    def _run(self, extract_fn: Callable[[], ExtractionBatch]) -> PipelineResult:
        logger.info("Starting ETL pipeline...")
        started_at = utc_now_iso()
        run_id = self._log_start()
        try:
            self._state = PipelineState.EXTRACTING
            batch = extract_fn()
            logger.info(
                f"Extracted data for {len(batch.stocks)} stocks and {1 if batch.index is not None else 0} market indices"
            )

            self._state = PipelineState.TRANSFORMING
            transformed = transform(batch)
            logger.info(
                f"Transformed {len(transformed.stock_metrics)} stock metrics and "
                f"{1 if transformed.market_indicator else 0} market indicators"
            )

            self._state = PipelineState.LOADING
            load_result = self.loader.load(transformed.stock_metrics, transformed.market_indicator)
        except Exception as e:
            failed_stage = self._state.value
            self._state = PipelineState.FAILED
            logger.exception(f"Error in ETL pipeline while {failed_stage}: {e}")
            self._log_finish(run_id, "failed", None, str(e))
            return PipelineResult(
                success=False,
                state=PipelineState.FAILED,
                error=str(e),
                started_at=started_at,
            )

        self._state = PipelineState.DONE
        result = PipelineResult(
            success=True,
            state=PipelineState.DONE,
            message="ETL pipeline completed successfully",
            load_result=load_result,
            started_at=started_at,
        )
        logger.info(result.summary())
        for identifier, error in load_result.failures:
            logger.warning(f"Not loaded: {identifier}: {error}")
        self._log_finish(
            run_id,
            "completed",
            load_result.stocks_loaded + load_result.indicators_loaded,
            None,
        )
        return result

    def _log_start(self) -> Optional[str]:
        if self.run_log is None:
            return None
        try:
            return self.run_log.start(JOB_NAME)
        except Exception as e:
            logger.warning(f"Could not record ETL run start: {e}")
            return None

    def _log_finish(self, run_id: Optional[str], status: str, records: Optional[int], error: Optional[str]):
        if self.run_log is None or run_id is None:
            return
        try:
            self.run_log.finish(run_id, status, records, error)
        except Exception as e:
            logger.warning(f"Could not record ETL run end: {e}")


def build_index_source(config: PipelineConfig, session: Optional[requests.Session] = None):
    if config.index_provider == "yfinance":
        return YFinanceIndexSource(config.index_symbol, config.index_name)
    return FmpIndexSource(
        config.fmp_api_key,
        config.index_symbol,
        config.index_name,
        timeout=config.http_timeout_seconds,
        session=session,
    )


def build_pipeline(config: PipelineConfig, session: Optional[requests.Session] = None) -> EtlPipeline:
    session = session or requests.Session()
    extractor = Extractor(
        config.stocks,
        config.index_name,
        AlphaVantagePriceSource(config.alpha_vantage_api_key, timeout=config.http_timeout_seconds, session=session),
        AlphaVantageFundamentalsSource(config.alpha_vantage_api_key, timeout=config.http_timeout_seconds, session=session),
        build_index_source(config, session),
        gate=FixedIntervalGate(config.request_delay_seconds),
        raw_data_dir=config.raw_data_dir,
    )
    store = MetricsStore(config.db_path)
    store.init_db()
    return EtlPipeline(extractor, Loader(store), RunLog(store))


def _with_pipeline(action: Callable[[EtlPipeline], PipelineResult], config: Optional[PipelineConfig],
                   validate: bool = True) -> PipelineResult:
    session = requests.Session()
    try:
        try:
            config = config or PipelineConfig.from_env()
            if validate:
                config = config.validate()
            pipeline = build_pipeline(config, session)
        except Exception as e:
            logger.exception(f"Error setting up ETL pipeline: {e}")
            return PipelineResult(success=False, state=PipelineState.FAILED, error=str(e))
        return action(pipeline)
    finally:
        session.close()


def run_etl_pipeline(config: Optional[PipelineConfig] = None) -> PipelineResult:
    """Load configuration, wire the pipeline and run it once. Never raises."""
    return _with_pipeline(lambda p: p.run_once(), config)


def extract_raw_data(config: Optional[PipelineConfig] = None) -> PipelineResult:
    return _with_pipeline(lambda p: p.extract_only(), config)


def replay_raw_data(raw_data_path: Union[str, Path], config: Optional[PipelineConfig] = None) -> PipelineResult:
    # no upstream calls, so API keys are not required
    return _with_pipeline(lambda p: p.replay(raw_data_path), config, validate=False)
