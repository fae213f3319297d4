#!/usr/bin/env python3
"""Estimate the extra cost of the latest bill against the same period in prior years.

Downloads the billing history from the WaterSmart portal (or reads a local CSV
with --csv), matches the latest bill to the closest-dated bill of every prior
year, and prints the usage difference and what it cost at the current price.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional, Sequence

from download_usage_history import download_usage_csv
from portal_config import parse_portal_args, portal_config_from_args
from portal_errors import UsagePortalError
from run_logging import configure_logging, log_event, report_failure
from usage_baseline import UsageComparison, compare_latest_bill, format_cost_report
from usage_records import UsageRecord, parse_usage_csv, read_usage_csv


def _add_estimate_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--csv", help="Read billing history from this CSV instead of the portal.")


def load_records(args: argparse.Namespace) -> List[UsageRecord]:
    if args.csv:
        return read_usage_csv(Path(args.csv))
    config = portal_config_from_args(args)
    return parse_usage_csv(download_usage_csv(config, show_progress=not args.no_progress))


def print_comparison(comparison: UsageComparison) -> None:
    for baseline in comparison.baselines:
        print(
            f"Using the closest date for year {baseline.year}: "
            f"{baseline.record.bill_date.strftime('%m-%d-%Y')}"
        )
    for line in format_cost_report(comparison):
        print(line)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = parse_portal_args(__doc__, argv, extra_arguments=_add_estimate_arguments)
        configure_logging(args.log_level)
    except UsagePortalError as exc:
        configure_logging()
        report_failure(exc)
        return 1

    try:
        records = load_records(args)
        comparison = compare_latest_bill(records)
    except UsagePortalError as exc:
        report_failure(exc)
        return 1

    log_event(
        "ESTIMATE_DONE",
        bill_date=comparison.current.bill_date.isoformat(),
        baselines=len(comparison.baselines),
    )
    print_comparison(comparison)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
