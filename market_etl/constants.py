"""Pipeline constants and defaults"""

from collections import namedtuple

# Symbols tracked when STOCKS_TO_TRACK is not set
DEFAULT_STOCKS = ("AAPL", "MSFT", "GOOGL", "AMZN")

# Market index
DEFAULT_INDEX_NAME = "S&P500"
DEFAULT_INDEX_SYMBOL = "^GSPC"
INDEX_PROVIDERS = ("fmp", "yfinance")

# Upstream throttling / HTTP
DEFAULT_REQUEST_DELAY_SECONDS = 1.5
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

# Scheduling: daily at midnight
DEFAULT_SCHEDULE = "0 0 * * *"
DEFAULT_SCHEDULER_TZ = "UTC"

# Lookbacks are counted in trading days (bars), not calendar days
LOOKBACK_DAYS = (7, 30, 90)
VOLATILITY_WINDOW = 30
TRADING_DAYS_PER_YEAR = 252

NO_TIME_SERIES_DATA = "No time series data available"
NO_HISTORICAL_DATA = "No historical data available"

# Company overview field -> output column, scale applied after parsing.
# Ratios reported as fractions are scaled to percentages.
FundamentalField = namedtuple("FundamentalField", ["source", "column", "scale"])

FUNDAMENTAL_FIELDS = (
    FundamentalField("MarketCapitalization", "market_cap", 1),
    FundamentalField("PERatio", "pe_ratio", 1),
    FundamentalField("DividendYield", "dividend_yield", 100),
    FundamentalField("EPS", "eps", 1),
    FundamentalField("RevenueTTM", "revenue", 1),
    FundamentalField("GrossProfitTTM", "gross_profit", 1),
    FundamentalField("ProfitMargin", "profit_margin", 100),
    FundamentalField("OperatingMarginTTM", "operating_margin", 100),
    FundamentalField("ReturnOnAssetsTTM", "roa", 100),
    FundamentalField("ReturnOnEquityTTM", "roe", 100),
    FundamentalField("DilutedEPSTTM", "diluted_eps", 1),
)
