#!/usr/bin/env python3
"""Log in to the WaterSmart portal and download the billing-history CSV.

Usage:
  export WATERSMART_EMAIL="..."
  export WATERSMART_PASSWORD="..."
  export WATERSMART_AUTH_SESSION="..."
  export WATERSMART_DOWNLOAD_URL="https://austintx.watersmart.com/index.php/..."
  python3 scripts/download_usage_history.py --output download.csv
"""

from __future__ import annotations

from typing import Optional, Sequence

import requests

from portal_config import PortalConfig, parse_portal_args, portal_config_from_args
from portal_errors import UsagePortalError
from portal_session import PortalClient
from run_logging import configure_logging, log_event, report_failure
from usage_records import parse_usage_csv


def download_usage_csv(
    config: PortalConfig,
    session: Optional[requests.Session] = None,
    show_progress: bool = True,
) -> str:
    """Log in, follow the session redirects, then fetch the CSV. Returns the CSV text."""
    with PortalClient(config, session=session, show_progress=show_progress) as client:
        cookie = client.login(config.credentials)
        return client.fetch_resource(config.download_url, cookie, config.output_path)


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = parse_portal_args(__doc__, argv)
        configure_logging(args.log_level)
    except UsagePortalError as exc:
        configure_logging()
        report_failure(exc)
        return 1

    try:
        config = portal_config_from_args(args)
        csv_text = download_usage_csv(config, show_progress=not args.no_progress)
        records = parse_usage_csv(csv_text)
    except UsagePortalError as exc:
        report_failure(exc)
        return 1

    output = config.output_path if config.output_path is not None else "memory"
    log_event("RUN_DONE", rows=len(records), output=str(output))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
