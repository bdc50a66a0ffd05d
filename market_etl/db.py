import os
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from .constants import FUNDAMENTAL_FIELDS
from .models import utc_now_iso

_PRICE_COLUMNS_SQL = """
                date TEXT NOT NULL,
                price_open REAL,
                price_high REAL,
                price_low REAL,
                price_close REAL,
                volume INTEGER,
                price_change_7d REAL,
                price_change_30d REAL,
                price_change_90d REAL,
                percent_change_7d REAL,
                percent_change_30d REAL,
                percent_change_90d REAL,
                volatility_30d REAL,
"""

_FUNDAMENTAL_COLUMNS_SQL = "".join(f"                {f.column} REAL,\n" for f in FUNDAMENTAL_FIELDS)


def init_db(db_path: str):
    Path(os.path.dirname(os.path.abspath(db_path))).mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        cur = conn.cursor()
        # Per-symbol metrics
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS stock_metrics (
                symbol TEXT NOT NULL,{_PRICE_COLUMNS_SQL}{_FUNDAMENTAL_COLUMNS_SQL}
                processed_at TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (symbol, date)
            )
            """
        )
        # Per-index metrics
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS market_indicators (
                index_name TEXT NOT NULL,{_PRICE_COLUMNS_SQL}
                processed_at TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (index_name, date)
            )
            """
        )
        # One row per pipeline run
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS etl_logs (
                id TEXT PRIMARY KEY,
                job_name TEXT NOT NULL,
                start_time TEXT NOT NULL,
                end_time TEXT,
                status TEXT NOT NULL,
                records_processed INTEGER,
                error_message TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_etl_logs_job_name_start_time ON etl_logs(job_name, start_time)")
        conn.commit()


@contextmanager
def get_conn(db_path: str):
    conn = sqlite3.connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


def upsert_many(table: str, columns: Iterable[str], rows: Iterable[Iterable], db_path: str,
                key: Sequence[str] = ("symbol", "date")):
    """Insert rows, updating non-key columns of any row that already has the same key."""
    cols = list(columns)
    placeholders = ",".join(["?"] * len(cols))
    updates = ",".join([f"{c}=excluded.{c}" for c in cols if c not in key])
    sql = (
        f"INSERT INTO {table} ({','.join(cols)}) VALUES ({placeholders}) "
        f"ON CONFLICT({','.join(key)}) DO UPDATE SET {updates}"
    )
    with get_conn(db_path) as conn:
        conn.executemany(sql, rows)
        conn.commit()


def fetch_df(query: str, params: tuple = (), *, db_path: str):
    import pandas as pd
    with get_conn(db_path) as conn:
        df = pd.read_sql_query(query, conn, params=params, parse_dates=["date"])  # type: ignore
    if not df.empty:
        df = df.sort_values("date").set_index("date")
    return df


class MetricsStore:
    """
    SQLite sink for metrics rows.
    - upsert_stock_metrics / upsert_market_indicator: one idempotent write per row
    - read_*: DataFrames indexed by date, for consumers and checks
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    def init_db(self):
        init_db(self.db_path)

    def _upsert_row(self, table: str, key: Sequence[str], row: Mapping[str, Any]):
        cols = list(row.keys())
        upsert_many(table, cols, [tuple(row[c] for c in cols)], db_path=self.db_path, key=key)

    def upsert_stock_metrics(self, row: Mapping[str, Any]):
        self._upsert_row("stock_metrics", ("symbol", "date"), row)

    def upsert_market_indicator(self, row: Mapping[str, Any]):
        self._upsert_row("market_indicators", ("index_name", "date"), row)

    def read_stock_metrics(self, symbol: Optional[str] = None):
        if symbol is None:
            return fetch_df("SELECT * FROM stock_metrics", db_path=self.db_path)
        return fetch_df("SELECT * FROM stock_metrics WHERE symbol=?", (symbol,), db_path=self.db_path)

    def read_market_indicators(self, index_name: Optional[str] = None):
        if index_name is None:
            return fetch_df("SELECT * FROM market_indicators", db_path=self.db_path)
        return fetch_df("SELECT * FROM market_indicators WHERE index_name=?", (index_name,), db_path=self.db_path)


class RunLog:
    """Records pipeline runs in etl_logs."""

    def __init__(self, store: MetricsStore):
        self.store = store

    def start(self, job_name: str) -> str:
        run_id = str(uuid.uuid4())
        with get_conn(self.store.db_path) as conn:
            conn.execute(
                "INSERT INTO etl_logs (id, job_name, start_time, status) VALUES (?, ?, ?, ?)",
                (run_id, job_name, utc_now_iso(), "running"),
            )
            conn.commit()
        return run_id

    def finish(self, run_id: str, status: str, records_processed: Optional[int] = None,
               error_message: Optional[str] = None):
        with get_conn(self.store.db_path) as conn:
            conn.execute(
                "UPDATE etl_logs SET end_time=?, status=?, records_processed=?, error_message=? WHERE id=?",
                (utc_now_iso(), status, records_processed, error_message, run_id),
            )
            conn.commit()

    def recent(self, limit: int = 20):
        import pandas as pd
        with get_conn(self.store.db_path) as conn:
            return pd.read_sql_query(
                "SELECT * FROM etl_logs ORDER BY start_time DESC LIMIT ?", conn, params=(limit,)
            )
