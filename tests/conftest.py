import datetime as dt

import pandas as pd
import pytest

from market_etl.db import MetricsStore
from market_etl.errors import UpstreamError
from market_etl.models import PriceBar, RawSeries, SeriesKind


def build_bars(closes, start=dt.date(2024, 1, 2)):
    """One bar per business day, closes given oldest first."""
    dates = pd.bdate_range(start, periods=len(closes))
    return tuple(
        PriceBar(date=d.date(), open=c - 1, high=c + 2, low=c - 2, close=c, volume=1_000_000 + i)
        for i, (d, c) in enumerate(zip(dates, closes))
    )


class FakePriceSource:
    def __init__(self, closes_by_symbol, fail=()):
        self.closes_by_symbol = closes_by_symbol
        self.fail = set(fail)
        self.calls = []

    def fetch(self, symbol):
        self.calls.append(symbol)
        if symbol in self.fail:
            raise UpstreamError(f"Alpha Vantage API error for {symbol}: Invalid API call.", symbol)
        return list(build_bars(self.closes_by_symbol.get(symbol, [])))


class FakeFundamentalsSource:
    def __init__(self, overview=None, fail=()):
        self.overview = overview if overview is not None else {
            "MarketCapitalization": "2500000000000",
            "PERatio": "28.5",
            "DividendYield": "0.0052",
            "EPS": "6.1",
            "ProfitMargin": "0.25",
        }
        self.fail = set(fail)

    def fetch(self, symbol):
        if symbol in self.fail:
            raise UpstreamError(f"overview unavailable for {symbol}", symbol)
        return dict(self.overview)


class FakeIndexSource:
    def __init__(self, closes=None, error=None):
        self.closes = closes if closes is not None else [4000 + i for i in range(100)]
        self.error = error

    def fetch(self):
        if self.error:
            raise UpstreamError(self.error)
        return list(build_bars(self.closes))


@pytest.fixture
def make_series():
    def _make(identifier="X", closes=(100.0,), kind=SeriesKind.EQUITY, fundamentals=None):
        if kind is SeriesKind.EQUITY and fundamentals is None:
            fundamentals = {}
        return RawSeries(identifier=identifier, kind=kind, bars=build_bars(list(closes)), fundamentals=fundamentals)
    return _make


@pytest.fixture
def store(tmp_path):
    s = MetricsStore(str(tmp_path / "market_data.sqlite"))
    s.init_db()
    return s
