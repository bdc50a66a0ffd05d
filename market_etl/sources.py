"""
Upstream data sources.

Each source returns plain model values (PriceBar lists or a fundamentals
mapping) and raises UpstreamError for anything it cannot turn into data:
transport failures, error payloads, malformed bodies. An empty result means the
upstream answered but had no bars.
"""

import datetime as dt
import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import pandas as pd
import requests
import yfinance as yf

from .constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from .errors import UpstreamError
from .models import PriceBar

logger = logging.getLogger(__name__)

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
FMP_INDEX_URL = "https://financialmodelingprep.com/api/v3/historical-price-full/index/{symbol}"

# Alpha Vantage reports problems in-band with HTTP 200
ALPHA_VANTAGE_ERROR_KEYS = ("Error Message", "Note", "Information")


class HttpJsonSource:
    def __init__(self, api_key: str, timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str, params: Mapping[str, Any], identifier: str) -> Any:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise UpstreamError(f"Request failed for {identifier}: {e}", identifier) from e
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON response for {identifier}: {e}", identifier) from e


def _check_alpha_vantage_payload(payload: Any, symbol: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise UpstreamError(f"Alpha Vantage returned a malformed response for {symbol}", symbol)
    for key in ALPHA_VANTAGE_ERROR_KEYS:
        if payload.get(key):
            raise UpstreamError(f"Alpha Vantage API error for {symbol}: {payload[key]}", symbol)
    return payload


class AlphaVantagePriceSource(HttpJsonSource):
    """Daily OHLCV history from Alpha Vantage TIME_SERIES_DAILY."""

    def fetch(self, symbol: str) -> List[PriceBar]:
        payload = self._get_json(
            ALPHA_VANTAGE_URL,
            {"function": "TIME_SERIES_DAILY", "symbol": symbol, "apikey": self.api_key},
            symbol,
        )
        payload = _check_alpha_vantage_payload(payload, symbol)
        series = payload.get("Time Series (Daily)") or {}
        if not isinstance(series, dict):
            raise UpstreamError(f"Malformed time series for {symbol}", symbol)

        bars = []
        for date_str, fields in series.items():
            try:
                bars.append(
                    PriceBar(
                        date=date_str,
                        open=float(fields["1. open"]),
                        high=float(fields["2. high"]),
                        low=float(fields["3. low"]),
                        close=float(fields["4. close"]),
                        volume=int(float(fields["5. volume"])),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise UpstreamError(f"Malformed daily bar for {symbol} on {date_str}: {e}", symbol) from e
        return bars


class AlphaVantageFundamentalsSource(HttpJsonSource):
    """Company overview ratios from Alpha Vantage OVERVIEW, returned as strings."""

    def fetch(self, symbol: str) -> Dict[str, str]:
        payload = self._get_json(
            ALPHA_VANTAGE_URL,
            {"function": "OVERVIEW", "symbol": symbol, "apikey": self.api_key},
            symbol,
        )
        payload = _check_alpha_vantage_payload(payload, symbol)
        return {k: str(v) for k, v in payload.items() if v is not None}


class FmpIndexSource(HttpJsonSource):
    """Daily index history from Financial Modeling Prep."""

    def __init__(self, api_key: str, symbol: str, index_name: str, **kwargs):
        super().__init__(api_key, **kwargs)
        self.symbol = symbol
        self.index_name = index_name

    def fetch(self) -> List[PriceBar]:
        url = FMP_INDEX_URL.format(symbol=quote(self.symbol, safe=""))
        payload = self._get_json(url, {"apikey": self.api_key}, self.index_name)
        if not isinstance(payload, dict) or "historical" not in payload:
            message = payload.get("Error Message") if isinstance(payload, dict) else None
            raise UpstreamError(message or f"Failed to fetch {self.index_name} data", self.index_name)
        historical = payload["historical"] or []
        try:
            return [PriceBar.from_dict(item) for item in historical]
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed historical bar for {self.index_name}: {e}", self.index_name) from e


def _download_yf(ticker: str, start: dt.date, end: dt.date) -> pd.DataFrame:
    # yfinance 'end' is exclusive, so pass end + 1 day to include the requested end date
    yf_end = end + dt.timedelta(days=1)
    df = yf.download(ticker, start=start, end=yf_end, interval="1d", progress=False, auto_adjust=False)
    if df is None or df.empty:
        return pd.DataFrame()
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.droplevel(1)
    cols = ["Open", "High", "Low", "Close", "Volume"]
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise UpstreamError(f"yfinance response for {ticker} is missing columns {missing}", ticker)
    return df[cols]


class YFinanceIndexSource:
    """Daily index history from Yahoo Finance; needs no API key."""

    def __init__(self, symbol: str, index_name: str, lookback_days: int = 200):
        self.symbol = symbol
        self.index_name = index_name
        self.lookback_days = lookback_days

    def fetch(self) -> List[PriceBar]:
        end = dt.date.today()
        start = end - dt.timedelta(days=self.lookback_days)
        try:
            df = _download_yf(self.symbol, start, end)
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"yfinance download failed for {self.index_name}: {e}", self.index_name) from e
        if df.empty:
            logger.info(f"No yfinance data for {self.symbol} between {start} and {end}")
            return []

        bars = []
        for d, row in df.iterrows():
            if row.isna().any():
                logger.warning(f"Blank data for {self.symbol} on {pd.Timestamp(d).date()}; skipping")
                continue
            bars.append(
                PriceBar(
                    date=pd.Timestamp(d).date(),
                    open=float(row["Open"]),
                    high=float(row["High"]),
                    low=float(row["Low"]),
                    close=float(row["Close"]),
                    volume=int(row["Volume"]),
                )
            )
        return bars
