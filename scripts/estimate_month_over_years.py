#!/usr/bin/env python3
"""Compare one month's bill from a local CSV with the same month in other years.

Usage:
  python3 scripts/estimate_month_over_years.py --csv data/gas.csv --month 2024-01

--csv falls back to GAS_DATA_PATH; --month defaults to the previous calendar month.
"""

from __future__ import annotations

import argparse
import calendar
import os
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Sequence, Tuple

from portal_config import load_env_file
from portal_errors import ConfigurationError, UsagePortalError
from run_logging import configure_logging, log_event, report_failure
from usage_baseline import compare_month_over_years, format_cost_report
from usage_records import read_usage_csv

ENV_CSV_PATH = "GAS_DATA_PATH"


def parse_month(value: str) -> Tuple[int, int]:
    try:
        year_text, month_text = value.split("-", 1)
        year, month = int(year_text), int(month_text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}'. Use YYYY-MM.") from exc
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}'. Use YYYY-MM.")
    return year, month


def previous_month(today: date) -> Tuple[int, int]:
    last_day = today.replace(day=1) - timedelta(days=1)
    return last_day.year, last_day.month


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--csv", help=f"Billing-history CSV. Falls back to {ENV_CSV_PATH}.")
    parser.add_argument("--month", type=parse_month, help="Month to compare (YYYY-MM).")
    parser.add_argument("--env-file", help="Path to a .env file. Defaults to ./.env when present.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        configure_logging(args.log_level)
    except ConfigurationError as exc:
        configure_logging()
        report_failure(exc)
        return 1

    try:
        load_env_file(args.env_file)
        csv_path = args.csv or os.getenv(ENV_CSV_PATH)
        if not csv_path:
            raise ConfigurationError(f"Missing CSV path. Set --csv or env var {ENV_CSV_PATH}.")
        year, month = args.month or previous_month(date.today())
        log_event("CSV_READ", path=csv_path, month=f"{year:04d}-{month:02d}")
        comparison = compare_month_over_years(read_usage_csv(Path(csv_path)), month, year)
    except UsagePortalError as exc:
        report_failure(exc)
        return 1

    for line in format_cost_report(comparison, calendar.month_name[month]):
        print(line)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
