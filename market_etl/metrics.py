import logging
import math
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from .constants import (
    FUNDAMENTAL_FIELDS,
    LOOKBACK_DAYS,
    NO_HISTORICAL_DATA,
    NO_TIME_SERIES_DATA,
    TRADING_DAYS_PER_YEAR,
    VOLATILITY_WINDOW,
)
from .models import (
    ErrorKind,
    ExtractionBatch,
    MetricsRecord,
    PriceBar,
    PriceBlock,
    PriceChanges,
    RawSeries,
    SeriesKind,
    TransformBatch,
    VolatilityBlock,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def sort_bars_desc(bars: Sequence[PriceBar]):
    """Most recent bar first, ordered by calendar date."""
    return sorted(bars, key=lambda b: b.date, reverse=True)


def price_change(bars_desc: Sequence[PriceBar], k: int):
    """
    Absolute and percent change of the latest close versus the close k bars earlier.
    Returns (None, None) unless more than k bars are available.
    """
    if len(bars_desc) <= k:
        return None, None
    latest = bars_desc[0].close
    base = bars_desc[k].close
    change = latest - base
    if base == 0:
        return change, None
    return change, change / base * 100


def daily_returns(bars_desc: Sequence[PriceBar], window: int = VOLATILITY_WINDOW) -> np.ndarray:
    closes = np.array([b.close for b in bars_desc[: window + 1]], dtype=float)
    current, previous = closes[:-1], closes[1:]
    return (current - previous) / previous


def annualized_volatility(bars_desc: Sequence[PriceBar], window: int = VOLATILITY_WINDOW) -> Optional[float]:
    """
    Annualized volatility in percent from the most recent `window` simple daily
    returns, using the population standard deviation (ddof=0).
    Returns None unless more than `window` bars are available.
    """
    if len(bars_desc) <= window:
        return None
    if any(b.close == 0 for b in bars_desc[1 : window + 1]):
        return None
    returns = daily_returns(bars_desc, window)
    return float(np.std(returns) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100)


def parse_decimal(value) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        # Alpha Vantage uses placeholders such as "None" and "-" for missing ratios
        return None
    if math.isnan(number):
        return None
    return number


def parse_fundamentals(overview: Optional[Mapping[str, str]]) -> Dict[str, Optional[float]]:
    overview = overview or {}
    out = {}
    for f in FUNDAMENTAL_FIELDS:
        number = parse_decimal(overview.get(f.source))
        out[f.column] = None if number is None else number * f.scale
    return out


def compute_metrics(series: RawSeries, transformed_at: Optional[str] = None) -> MetricsRecord:
    """Derive the metrics record for one equity or index series. Performs no I/O."""
    transformed_at = transformed_at or utc_now_iso()

    if series.error is not None:
        return MetricsRecord(
            identifier=series.identifier,
            kind=series.kind,
            transformed_at=transformed_at,
            error=series.error,
            error_kind=ErrorKind.UPSTREAM,
        )

    bars = sort_bars_desc(series.bars)
    if not bars:
        return MetricsRecord(
            identifier=series.identifier,
            kind=series.kind,
            transformed_at=transformed_at,
            error=NO_TIME_SERIES_DATA if series.kind is SeriesKind.EQUITY else NO_HISTORICAL_DATA,
            error_kind=ErrorKind.NO_DATA,
        )

    latest = bars[0]
    changes = {}
    for k in LOOKBACK_DAYS:
        changes[f"change_{k}d"], changes[f"percent_change_{k}d"] = price_change(bars, k)

    return MetricsRecord(
        identifier=series.identifier,
        kind=series.kind,
        transformed_at=transformed_at,
        date=latest.date,
        price=PriceBlock(
            open=latest.open,
            high=latest.high,
            low=latest.low,
            close=latest.close,
            volume=latest.volume,
        ),
        price_changes=PriceChanges(**changes),
        volatility=VolatilityBlock(volatility_30d=annualized_volatility(bars)),
        fundamentals=parse_fundamentals(series.fundamentals) if series.kind is SeriesKind.EQUITY else None,
    )


def transform(batch: ExtractionBatch, transformed_at: Optional[str] = None) -> TransformBatch:
    logger.info("Starting data transformation process...")
    stock_metrics = [compute_metrics(s, transformed_at) for s in batch.stocks]
    market_indicator = compute_metrics(batch.index, transformed_at) if batch.index is not None else None
    for record in stock_metrics + ([market_indicator] if market_indicator else []):
        if not record.ok:
            logger.warning(f"No metrics for {record.identifier}: {record.error}")
    return TransformBatch(
        stock_metrics=stock_metrics,
        market_indicator=market_indicator,
        transformed_at=transformed_at or utc_now_iso(),
    )
