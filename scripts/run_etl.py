#!/usr/bin/env python3
"""Run the ETL pipeline once from the command line.

Usage:
    python scripts/run_etl.py run              # extract, transform, load
    python scripts/run_etl.py extract          # extract only, write the raw data file
    python scripts/run_etl.py replay FILE      # transform and load a saved raw data file

Exits with status 1 when the run fails.
"""
import argparse
import json
import logging
import sys

from market_etl.pipeline import extract_raw_data, replay_raw_data, run_etl_pipeline

logging.basicConfig(level=logging.INFO)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Financial data ETL pipeline")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run extract, transform and load once (default)")
    sub.add_parser("extract", help="Fetch upstream data and save the raw data file only")
    replay = sub.add_parser("replay", help="Transform and load a saved raw data file")
    replay.add_argument("path", help="Path to a raw_data_*.json file")
    parser.add_argument("--json", action="store_true", help="Print the run result as JSON")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    command = args.command or "run"

    if command == "extract":
        result = extract_raw_data()
    elif command == "replay":
        result = replay_raw_data(args.path)
    else:
        result = run_etl_pipeline()

    if args.json:
        print(json.dumps(result.as_dict(), indent=2))
    else:
        print(result.summary())
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
