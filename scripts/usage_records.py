"""Parse the portal's billing-history CSV into :class:`UsageRecord` rows."""

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional

from portal_errors import ConfigurationError, DataError

BILL_DATE_COLUMN = "Bill Date"
TOTAL_USAGE_COLUMN = "Total Usage (CCF)"
BILL_AMOUNT_COLUMN = "Bill Amount"
BILL_DATE_FORMAT = "%m-%d-%Y"


@dataclass(frozen=True)
class UsageRecord:
    """One billing period. ``total_usage`` is in CCF (hundred cubic feet)."""

    bill_date: date
    total_usage: float
    bill_amount: Optional[float] = None


def parse_bill_date(value: str) -> date:
    return datetime.strptime(value.strip(), BILL_DATE_FORMAT).date()


def parse_number(value: str) -> float:
    number = float(value.strip().replace(",", ""))
    if not math.isfinite(number):
        raise ValueError(f"non-finite number '{value.strip()}'")
    return number


def parse_amount(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    text = value.strip().replace("$", "")
    if not text:
        return None
    return parse_number(text)


def _lookup_columns(fieldnames: List[str]) -> Dict[str, str]:
    lower_to_name = {name.strip().lower(): name for name in fieldnames}
    columns: Dict[str, str] = {}
    for wanted in (BILL_DATE_COLUMN, TOTAL_USAGE_COLUMN, BILL_AMOUNT_COLUMN):
        actual = lower_to_name.get(wanted.lower())
        if actual is not None:
            columns[wanted] = actual
    return columns


def parse_usage_csv(text: str) -> List[UsageRecord]:
    """Parse CSV text, keeping the file's row order (most recent bill first)."""
    reader = csv.DictReader(io.StringIO(text))
    columns = _lookup_columns(list(reader.fieldnames or []))
    missing = [name for name in (BILL_DATE_COLUMN, TOTAL_USAGE_COLUMN) if name not in columns]
    if missing:
        raise DataError("Usage CSV is missing required column(s): " + ", ".join(missing))

    records: List[UsageRecord] = []
    # Row 1 is the header.
    for row_number, row in enumerate(reader, start=2):
        raw_date = (row.get(columns[BILL_DATE_COLUMN]) or "").strip()
        raw_usage = (row.get(columns[TOTAL_USAGE_COLUMN]) or "").strip()
        if not raw_date and not raw_usage:
            continue
        try:
            bill_date = parse_bill_date(raw_date)
            total_usage = parse_number(raw_usage)
            bill_amount = None
            if BILL_AMOUNT_COLUMN in columns:
                bill_amount = parse_amount(row.get(columns[BILL_AMOUNT_COLUMN]))
        except ValueError as exc:
            raise DataError(f"Invalid usage row {row_number}: {exc}") from exc
        records.append(UsageRecord(bill_date=bill_date, total_usage=total_usage, bill_amount=bill_amount))
    return records


def read_usage_csv(path: Path) -> List[UsageRecord]:
    if not path.is_file():
        raise ConfigurationError(f"Usage CSV not found: {path}")
    return parse_usage_csv(path.read_text(encoding="utf-8-sig"))
