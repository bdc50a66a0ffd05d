import json
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from .models import ExtractionBatch, RawSeries, SeriesKind, utc_now_iso
from .rate_limit import FixedIntervalGate

logger = logging.getLogger(__name__)


def raw_data_filename(timestamp: str) -> str:
    return f"raw_data_{timestamp.replace(':', '-').replace('.', '-')}.json"


def save_raw_data(batch: ExtractionBatch, raw_data_dir: Union[str, Path]) -> Optional[Path]:
    """
    Write the full batch (successes and failures) to a new timestamped JSON file.
    Existing files are never overwritten. Returns the path, or None if the write
    failed; a failed write is logged and otherwise ignored.
    """
    try:
        out_dir = Path(raw_data_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / raw_data_filename(batch.extracted_at)
        with open(path, "x", encoding="utf-8") as fh:
            json.dump(batch.to_dict(), fh, indent=2)
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error saving raw data: {e}")
        return None
    return path


def read_raw_data(path: Union[str, Path]) -> ExtractionBatch:
    """Load a raw data file written by save_raw_data, for replay."""
    with open(path, encoding="utf-8") as fh:
        batch = ExtractionBatch.from_dict(json.load(fh))
    batch.raw_data_path = Path(path)
    return batch


class Extractor:
    """
    Fetches one RawSeries per tracked equity and one for the market index.
    - fetch_equity / fetch_index never raise; failures become errored series
    - equity fetches run sequentially, spaced by the gate
    """

    def __init__(
        self,
        symbols: Sequence[str],
        index_name: str,
        price_source,
        fundamentals_source,
        index_source,
        gate: Optional[FixedIntervalGate] = None,
        raw_data_dir: Optional[Union[str, Path]] = None,
    ):
        self.symbols = list(symbols)
        self.index_name = index_name
        self.price_source = price_source
        self.fundamentals_source = fundamentals_source
        self.index_source = index_source
        self.gate = gate or FixedIntervalGate(0)
        self.raw_data_dir = raw_data_dir

    def fetch_equity(self, symbol: str) -> RawSeries:
        try:
            bars = self.price_source.fetch(symbol)
            overview = self.fundamentals_source.fetch(symbol)
        except Exception as e:
            logger.error(f"Error fetching data for {symbol}: {e}")
            return RawSeries.failed(symbol, SeriesKind.EQUITY, str(e))
        return RawSeries(
            identifier=symbol,
            kind=SeriesKind.EQUITY,
            bars=tuple(bars),
            fundamentals=dict(overview or {}),
        )

    def fetch_index(self) -> RawSeries:
        try:
            bars = self.index_source.fetch()
        except Exception as e:
            logger.error(f"Error fetching market index data for {self.index_name}: {e}")
            return RawSeries.failed(self.index_name, SeriesKind.INDEX, str(e))
        return RawSeries(identifier=self.index_name, kind=SeriesKind.INDEX, bars=tuple(bars))

    def extract(self) -> ExtractionBatch:
        logger.info("Starting data extraction process...")
        stocks = []
        for symbol in self.symbols:
            self.gate.wait()
            stocks.append(self.fetch_equity(symbol))
        index = self.fetch_index()

        batch = ExtractionBatch(stocks=stocks, index=index, extracted_at=utc_now_iso())
        failed = sum(1 for s in stocks if not s.ok)
        logger.info(
            f"Extracted {len(stocks) - failed}/{len(stocks)} stocks; "
            f"market index {'ok' if index.ok else 'failed'}"
        )
        if self.raw_data_dir is not None:
            batch.raw_data_path = save_raw_data(batch, self.raw_data_dir)
            if batch.raw_data_path:
                logger.info(f"Raw data saved to {batch.raw_data_path}")
        return batch
