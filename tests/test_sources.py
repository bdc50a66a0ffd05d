import datetime as dt

import numpy as np
import pandas as pd
import pytest
import requests

from market_etl import sources
from market_etl.errors import UpstreamError
from market_etl.sources import (
    AlphaVantageFundamentalsSource,
    AlphaVantagePriceSource,
    FmpIndexSource,
    YFinanceIndexSource,
)


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.exc:
            raise self.exc
        return self.response


DAILY_PAYLOAD = {
    "Meta Data": {"2. Symbol": "IBM"},
    "Time Series (Daily)": {
        "2024-03-01": {"1. open": "185.0", "2. high": "188.1", "3. low": "184.2", "4. close": "187.5", "5. volume": "4200000"},
        "2024-02-29": {"1. open": "184.0", "2. high": "186.0", "3. low": "183.1", "4. close": "185.0", "5. volume": "3900000"},
    },
}


def test_alpha_vantage_daily_bars_parsed():
    session = FakeSession(FakeResponse(DAILY_PAYLOAD))
    bars = AlphaVantagePriceSource("KEY", timeout=5, session=session).fetch("IBM")

    assert len(bars) == 2
    latest = max(bars, key=lambda b: b.date)
    assert latest.date == dt.date(2024, 3, 1)
    assert latest.close == 187.5
    assert latest.volume == 4200000
    url, params, timeout = session.requests[0]
    assert params["function"] == "TIME_SERIES_DAILY"
    assert params["symbol"] == "IBM"
    assert timeout == 5


@pytest.mark.parametrize("payload", [
    {"Error Message": "Invalid API call."},
    {"Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute."},
    ["not", "a", "mapping"],
])
def test_alpha_vantage_error_payloads_raise(payload):
    with pytest.raises(UpstreamError) as excinfo:
        AlphaVantagePriceSource("KEY", session=FakeSession(FakeResponse(payload))).fetch("BAD")
    assert excinfo.value.identifier == "BAD"


def test_alpha_vantage_missing_series_is_empty():
    bars = AlphaVantagePriceSource("KEY", session=FakeSession(FakeResponse({}))).fetch("NEW")
    assert bars == []


def test_alpha_vantage_malformed_bar_raises():
    payload = {"Time Series (Daily)": {"2024-03-01": {"1. open": "1", "4. close": "abc"}}}
    with pytest.raises(UpstreamError, match="Malformed daily bar"):
        AlphaVantagePriceSource("KEY", session=FakeSession(FakeResponse(payload))).fetch("IBM")


def test_transport_and_http_errors_become_upstream_errors():
    with pytest.raises(UpstreamError, match="Request failed"):
        AlphaVantagePriceSource("KEY", session=FakeSession(exc=requests.ConnectionError("reset"))).fetch("IBM")
    with pytest.raises(UpstreamError, match="500"):
        AlphaVantagePriceSource("KEY", session=FakeSession(FakeResponse({}, status_code=500))).fetch("IBM")
    with pytest.raises(UpstreamError, match="Invalid JSON"):
        AlphaVantagePriceSource("KEY", session=FakeSession(FakeResponse(ValueError("no json")))).fetch("IBM")


def test_fundamentals_returned_as_strings():
    payload = {"Symbol": "IBM", "MarketCapitalization": "170000000000", "PERatio": "22.1", "Beta": None}
    out = AlphaVantageFundamentalsSource("KEY", session=FakeSession(FakeResponse(payload))).fetch("IBM")
    assert out["MarketCapitalization"] == "170000000000"
    assert "Beta" not in out


def test_fmp_index_history_parsed():
    payload = {
        "symbol": "^GSPC",
        "historical": [
            {"date": "2024-03-01", "open": 5100.1, "high": 5140.3, "low": 5094.2, "close": 5137.1, "volume": 3912330000},
            {"date": "2024-02-29", "open": 5085.4, "high": 5104.9, "low": 5061.9, "close": 5096.3, "volume": 5219740000},
        ],
    }
    session = FakeSession(FakeResponse(payload))
    bars = FmpIndexSource("KEY", "^GSPC", "S&P500", session=session).fetch()

    assert [b.close for b in bars] == [5137.1, 5096.3]
    assert session.requests[0][0].endswith("/index/%5EGSPC")


def test_fmp_missing_history_raises():
    with pytest.raises(UpstreamError, match="Failed to fetch S&P500 data"):
        FmpIndexSource("KEY", "^GSPC", "S&P500", session=FakeSession(FakeResponse({}))).fetch()


def test_yfinance_index_source(monkeypatch):
    idx = pd.date_range("2024-03-04", periods=3, freq="B")
    frame = pd.DataFrame(
        {
            ("Open", "^GSPC"): [5100.0, 5110.0, np.nan],
            ("High", "^GSPC"): [5150.0, 5160.0, np.nan],
            ("Low", "^GSPC"): [5090.0, 5100.0, np.nan],
            ("Close", "^GSPC"): [5130.0, 5140.0, np.nan],
            ("Adj Close", "^GSPC"): [5130.0, 5140.0, np.nan],
            ("Volume", "^GSPC"): [3.9e9, 4.1e9, np.nan],
        },
        index=idx,
    )
    calls = []

    def fake_download(ticker, **kwargs):
        calls.append((ticker, kwargs))
        return frame

    monkeypatch.setattr(sources.yf, "download", fake_download)
    bars = YFinanceIndexSource("^GSPC", "S&P500").fetch()

    assert [b.date for b in bars] == [dt.date(2024, 3, 4), dt.date(2024, 3, 5)]
    assert bars[1].volume == 4100000000
    assert calls[0][0] == "^GSPC"
    assert calls[0][1]["interval"] == "1d"


def test_yfinance_download_failure_raises(monkeypatch):
    def boom(ticker, **kwargs):
        raise RuntimeError("Yahoo unavailable")

    monkeypatch.setattr(sources.yf, "download", boom)
    with pytest.raises(UpstreamError, match="Yahoo unavailable"):
        YFinanceIndexSource("^GSPC", "S&P500").fetch()
