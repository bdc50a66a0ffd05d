"""Value types passed between the extract, transform and load stages."""

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def parse_bar_date(value) -> dt.date:
    """Normalise a date-like value (date, datetime, Timestamp or string) to a date.

    Ordering of bars always uses the calendar date, so any representation the
    upstream uses is accepted here rather than compared as text.
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f"Invalid bar date: {value!r}")
    return ts.date()


class SeriesKind(str, Enum):
    EQUITY = "equity"
    INDEX = "index"


class ErrorKind(str, Enum):
    UPSTREAM = "upstream"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class PriceBar:
    date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: int

    def __post_init__(self):
        object.__setattr__(self, "date", parse_bar_date(self.date))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PriceBar":
        return cls(
            date=data["date"],
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=int(data["volume"]),
        )


@dataclass(frozen=True)
class RawSeries:
    """Fetched history for one equity or index.

    A failed fetch is represented by a series carrying only ``identifier``,
    ``kind``, ``error`` and ``extracted_at``.
    """

    identifier: str
    kind: SeriesKind
    bars: Tuple[PriceBar, ...] = ()
    fundamentals: Optional[Mapping[str, str]] = None
    error: Optional[str] = None
    extracted_at: str = field(default_factory=utc_now_iso)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, identifier: str, kind: SeriesKind, error: str) -> "RawSeries":
        return cls(identifier=identifier, kind=kind, error=error)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"identifier": self.identifier, "kind": self.kind.value}
        if self.error is not None:
            out["error"] = self.error
        else:
            out["bars"] = [b.to_dict() for b in self.bars]
            if self.fundamentals is not None:
                out["fundamentals"] = dict(self.fundamentals)
        out["extracted_at"] = self.extracted_at
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawSeries":
        return cls(
            identifier=data["identifier"],
            kind=SeriesKind(data["kind"]),
            bars=tuple(PriceBar.from_dict(b) for b in data.get("bars", [])),
            fundamentals=data.get("fundamentals"),
            error=data.get("error"),
            extracted_at=data.get("extracted_at") or utc_now_iso(),
        )


@dataclass
class ExtractionBatch:
    stocks: List[RawSeries]
    index: RawSeries
    extracted_at: str = field(default_factory=utc_now_iso)
    raw_data_path: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stock_data": [s.to_dict() for s in self.stocks],
            "market_data": self.index.to_dict(),
            "extraction_timestamp": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExtractionBatch":
        return cls(
            stocks=[RawSeries.from_dict(s) for s in data.get("stock_data", [])],
            index=RawSeries.from_dict(data["market_data"]),
            extracted_at=data.get("extraction_timestamp") or utc_now_iso(),
        )


@dataclass(frozen=True)
class PriceBlock:
    open: float
    high: float
    low: float
    close: float
    volume: int


@dataclass(frozen=True)
class PriceChanges:
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None
    change_90d: Optional[float] = None
    percent_change_7d: Optional[float] = None
    percent_change_30d: Optional[float] = None
    percent_change_90d: Optional[float] = None


@dataclass(frozen=True)
class VolatilityBlock:
    volatility_30d: Optional[float] = None


@dataclass(frozen=True)
class MetricsRecord:
    identifier: str
    kind: SeriesKind
    transformed_at: str
    date: Optional[dt.date] = None
    price: Optional[PriceBlock] = None
    price_changes: Optional[PriceChanges] = None
    volatility: Optional[VolatilityBlock] = None
    fundamentals: Optional[Dict[str, Optional[float]]] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def key_column(self) -> str:
        return "symbol" if self.kind is SeriesKind.EQUITY else "index_name"

    def as_dict(self) -> Dict[str, Any]:
        """
        Nested representation; blocks a record does not carry are omitted.
        An errored record renders as identifier, error and transformed_at only.
        """
        if self.error is not None:
            return {"identifier": self.identifier, "error": self.error, "transformed_at": self.transformed_at}
        out: Dict[str, Any] = {"identifier": self.identifier, "kind": self.kind.value}
        out["date"] = self.date.isoformat()
        out["price"] = vars(self.price).copy()
        out["price_changes"] = vars(self.price_changes).copy()
        out["volatility"] = vars(self.volatility).copy()
        if self.fundamentals is not None:
            out["fundamentals"] = dict(self.fundamentals)
        out["transformed_at"] = self.transformed_at
        return out

    def to_row(self) -> Dict[str, Any]:
        """Flatten into the column layout of stock_metrics / market_indicators."""
        if self.error is not None:
            raise ValueError(f"Cannot build a row for errored record {self.identifier}: {self.error}")
        row: Dict[str, Any] = {
            self.key_column: self.identifier,
            "date": self.date.isoformat(),
            "price_open": self.price.open,
            "price_high": self.price.high,
            "price_low": self.price.low,
            "price_close": self.price.close,
            "volume": self.price.volume,
            "price_change_7d": self.price_changes.change_7d,
            "price_change_30d": self.price_changes.change_30d,
            "price_change_90d": self.price_changes.change_90d,
            "percent_change_7d": self.price_changes.percent_change_7d,
            "percent_change_30d": self.price_changes.percent_change_30d,
            "percent_change_90d": self.price_changes.percent_change_90d,
            "volatility_30d": self.volatility.volatility_30d,
        }
        if self.kind is SeriesKind.EQUITY:
            row.update(self.fundamentals or {})
        row["processed_at"] = self.transformed_at
        return row


@dataclass
class TransformBatch:
    stock_metrics: List[MetricsRecord]
    market_indicator: Optional[MetricsRecord]
    transformed_at: str = field(default_factory=utc_now_iso)


@dataclass
class LoadResult:
    stocks_loaded: int = 0
    stock_errors: int = 0
    indicators_loaded: int = 0
    indicator_errors: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stocks_loaded": self.stocks_loaded,
            "stock_errors": self.stock_errors,
            "indicators_loaded": self.indicators_loaded,
            "indicator_errors": self.indicator_errors,
            "failures": [{"identifier": i, "error": e} for i, e in self.failures],
            "timestamp": self.timestamp,
        }
