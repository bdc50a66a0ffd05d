import logging
from typing import List, Optional, Sequence, Tuple

from .db import MetricsStore
from .models import LoadResult, MetricsRecord

logger = logging.getLogger(__name__)


class Loader:
    """
    Writes metrics records to the store, one upsert per record.
    Errored records are counted and never written; a failed write is logged,
    counted, and does not stop the remaining writes.
    """

    def __init__(self, store: MetricsStore):
        self.store = store

    def load_stock_metrics(self, records: Sequence[MetricsRecord]) -> Tuple[int, List[Tuple[str, str]]]:
        loaded = 0
        failures = []
        for record in records:
            if not record.ok:
                failures.append((record.identifier, record.error))
                continue
            try:
                self.store.upsert_stock_metrics(record.to_row())
            except Exception as e:
                logger.error(f"Error loading data for {record.identifier}: {e}")
                failures.append((record.identifier, str(e)))
                continue
            loaded += 1
        return loaded, failures

    def load_market_indicator(self, record: Optional[MetricsRecord]) -> Optional[str]:
        """Write the index record; return None on success or the error message."""
        if record is None:
            return "No market indicators provided"
        if not record.ok:
            return record.error
        try:
            self.store.upsert_market_indicator(record.to_row())
        except Exception as e:
            logger.error(f"Error loading market indicators for {record.identifier}: {e}")
            return str(e)
        return None

    def load(self, stock_records: Sequence[MetricsRecord], index_record: Optional[MetricsRecord]) -> LoadResult:
        logger.info("Starting data loading process...")
        stocks_loaded, failures = self.load_stock_metrics(stock_records)
        stock_errors = len(failures)
        index_error = self.load_market_indicator(index_record)
        if index_error is not None:
            failures.append((index_record.identifier if index_record else "market_index", index_error))
        return LoadResult(
            stocks_loaded=stocks_loaded,
            stock_errors=stock_errors,
            indicators_loaded=0 if index_error is not None else 1,
            indicator_errors=1 if index_error is not None else 0,
            failures=failures,
        )
