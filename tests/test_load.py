import sqlite3

import pytest

from market_etl.db import get_conn
from market_etl.load import Loader
from market_etl.metrics import compute_metrics
from market_etl.models import RawSeries, SeriesKind

TS = "2025-03-04T05:00:00+00:00"


def _count(store, table):
    with get_conn(store.db_path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def test_same_record_twice_yields_one_row(store, make_series):
    record = compute_metrics(make_series("AAA", closes=[10.0, 11.0, 12.0]), TS)
    loader = Loader(store)

    first = loader.load([record], None)
    second = loader.load([record], None)

    assert first.stocks_loaded == 1 and second.stocks_loaded == 1
    assert second.stock_errors == 0
    assert _count(store, "stock_metrics") == 1


def test_rerun_for_same_date_updates_in_place(store, make_series):
    loader = Loader(store)
    loader.load_stock_metrics([compute_metrics(make_series("AAA", closes=[10.0, 11.0]), TS)])
    loader.load_stock_metrics([compute_metrics(make_series("AAA", closes=[10.0, 15.0]), TS)])

    df = store.read_stock_metrics("AAA")
    assert len(df) == 1
    assert df["price_close"].iloc[0] == 15.0


def test_index_record_upsert_is_idempotent(store, make_series):
    record = compute_metrics(make_series("S&P500", closes=[4000.0 + i for i in range(40)], kind=SeriesKind.INDEX), TS)
    loader = Loader(store)
    assert loader.load_market_indicator(record) is None
    assert loader.load_market_indicator(record) is None
    df = store.read_market_indicators("S&P500")
    assert len(df) == 1
    assert df["volatility_30d"].iloc[0] == pytest.approx(record.volatility.volatility_30d)


def test_errored_records_are_counted_not_written(store, make_series):
    records = [
        compute_metrics(make_series("AAA"), TS),
        compute_metrics(RawSeries.failed("BBB", SeriesKind.EQUITY, "Invalid API call."), TS),
        compute_metrics(make_series("CCC", closes=[]), TS),
    ]
    result = Loader(store).load(records, None)

    assert result.stocks_loaded == 1
    assert result.stock_errors == 2
    assert result.indicators_loaded == 0
    assert result.indicator_errors == 1
    assert ("BBB", "Invalid API call.") in result.failures
    assert list(store.read_stock_metrics()["symbol"]) == ["AAA"]


class FlakyStore:
    def __init__(self, inner, failing):
        self.inner = inner
        self.failing = failing

    def upsert_stock_metrics(self, row):
        if row["symbol"] in self.failing:
            raise sqlite3.IntegrityError("NOT NULL constraint failed: stock_metrics.processed_at")
        self.inner.upsert_stock_metrics(row)

    def upsert_market_indicator(self, row):
        self.inner.upsert_market_indicator(row)


def test_write_failure_is_isolated_per_record(store, make_series, caplog):
    records = [compute_metrics(make_series(s), TS) for s in ("AAA", "BBB", "CCC")]
    result = Loader(FlakyStore(store, {"BBB"})).load(records, None)

    assert result.stocks_loaded == 2
    assert result.stock_errors == 1
    assert sorted(store.read_stock_metrics()["symbol"]) == ["AAA", "CCC"]
    assert "Error loading data for BBB" in caplog.text


def test_fundamentals_persisted(store, make_series):
    series = make_series("AAA", fundamentals={"DividendYield": "0.0052", "PERatio": "28.5"})
    Loader(store).load_stock_metrics([compute_metrics(series, TS)])
    row = store.read_stock_metrics("AAA").iloc[0]
    assert row["dividend_yield"] == pytest.approx(0.52)
    assert row["pe_ratio"] == 28.5
    assert row["processed_at"] == TS
