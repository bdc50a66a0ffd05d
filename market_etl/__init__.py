"""
ETL package for extracting daily equity and index history, deriving price
metrics, and persisting them to a local SQLite database on a schedule.

Modules:
- config: PipelineConfig loaded from the environment / .env
- sources: Upstream clients (Alpha Vantage, Financial Modeling Prep, yfinance)
- rate_limit: Fixed-interval gate between sequential upstream requests
- extract: Per-item isolated extraction and raw JSON audit snapshots
- metrics: Pure metric engine (changes, percent changes, volatility, fundamentals)
- db: DB initialization, upsert helpers, metrics store and run log
- load: Idempotent per-record loading with failure isolation
- pipeline: Orchestrator running extract -> transform -> load once
- scheduler: Cron scheduler that runs the pipeline on start and on a cadence
"""
