import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from .constants import (
    DEFAULT_HTTP_TIMEOUT_SECONDS,
    DEFAULT_INDEX_NAME,
    DEFAULT_INDEX_SYMBOL,
    DEFAULT_REQUEST_DELAY_SECONDS,
    DEFAULT_SCHEDULE,
    DEFAULT_SCHEDULER_TZ,
    DEFAULT_STOCKS,
    INDEX_PROVIDERS,
)
from .errors import ConfigurationError


def parse_symbols(raw: Optional[str]) -> Tuple[str, ...]:
    if raw is None:
        return DEFAULT_STOCKS
    return tuple(s.strip().upper() for s in raw.split(",") if s.strip())


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class PipelineConfig:
    """
    Settings for one pipeline process.
    - from_env: read from os.environ (after loading .env) or a given mapping
    - validate: reject settings that would make every run fail
    """

    alpha_vantage_api_key: str = ""
    fmp_api_key: str = ""
    stocks: Tuple[str, ...] = DEFAULT_STOCKS
    index_provider: str = "fmp"
    index_name: str = DEFAULT_INDEX_NAME
    index_symbol: str = DEFAULT_INDEX_SYMBOL
    request_delay_seconds: float = DEFAULT_REQUEST_DELAY_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    db_path: str = os.path.join(os.getcwd(), "market_data.sqlite")
    raw_data_dir: str = os.path.join(os.getcwd(), "data")
    schedule: str = DEFAULT_SCHEDULE
    scheduler_timezone: str = DEFAULT_SCHEDULER_TZ

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PipelineConfig":
        if env is None:
            load_dotenv()
            env = os.environ
        cwd = os.getcwd()
        return cls(
            alpha_vantage_api_key=env.get("ALPHA_VANTAGE_API_KEY", "").strip(),
            fmp_api_key=env.get("FINANCIAL_MODELING_PREP_API_KEY", "").strip(),
            stocks=parse_symbols(env.get("STOCKS_TO_TRACK")),
            index_provider=env.get("ETL_INDEX_PROVIDER", "fmp").strip().lower() or "fmp",
            index_name=env.get("ETL_INDEX_NAME", DEFAULT_INDEX_NAME).strip() or DEFAULT_INDEX_NAME,
            index_symbol=env.get("ETL_INDEX_SYMBOL", DEFAULT_INDEX_SYMBOL).strip() or DEFAULT_INDEX_SYMBOL,
            request_delay_seconds=_float(env, "ETL_REQUEST_DELAY_SECONDS", DEFAULT_REQUEST_DELAY_SECONDS),
            http_timeout_seconds=_float(env, "ETL_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
            db_path=env.get("MARKET_DB_PATH") or os.path.join(cwd, "market_data.sqlite"),
            raw_data_dir=env.get("ETL_RAW_DATA_DIR") or os.path.join(cwd, "data"),
            schedule=env.get("ETL_SCHEDULE", DEFAULT_SCHEDULE).strip() or DEFAULT_SCHEDULE,
            scheduler_timezone=env.get("SCHED_TZ", DEFAULT_SCHEDULER_TZ).strip() or DEFAULT_SCHEDULER_TZ,
        )

    def validate(self) -> "PipelineConfig":
        if not self.alpha_vantage_api_key:
            raise ConfigurationError("ALPHA_VANTAGE_API_KEY is not set")
        if self.index_provider not in INDEX_PROVIDERS:
            raise ConfigurationError(
                f"Unknown index provider {self.index_provider!r}; expected one of {', '.join(INDEX_PROVIDERS)}"
            )
        if self.index_provider == "fmp" and not self.fmp_api_key:
            raise ConfigurationError("FINANCIAL_MODELING_PREP_API_KEY is not set")
        if not self.stocks:
            raise ConfigurationError("STOCKS_TO_TRACK does not name any symbols")
        if self.request_delay_seconds < 0:
            raise ConfigurationError("ETL_REQUEST_DELAY_SECONDS must not be negative")
        if self.http_timeout_seconds <= 0:
            raise ConfigurationError("ETL_HTTP_TIMEOUT_SECONDS must be positive")
        return self
