"""Monthly CSV exports: billing detail, timesheet, site-daily hours."""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional

import pandas as pd

from analysis import records_to_frame
from csv_codec import encode, encode_rows
from etl import RateConfig, WorkLogRecord

UNKNOWN_WORKER = "(unknown)"

BILLING_COLUMNS = ["site_id", "unit", "quantity", "unit_price", "amount"]
TIMESHEET_COLUMNS = ["worker", "date", "hours"]
SITE_DAILY_COLUMNS = ["site_id", "date", "worker_hours"]

EXPORT_PREFIXES = {
    "billing": "billing",
    "timesheet": "timesheet",
    "site_daily_hours": "site_daily_hours",
    "worklog": "worklog",
}


def round_half_up(x: float) -> int:
    return int(Decimal(str(float(x))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def export_filename(kind: str, month: Optional[str] = None) -> str:
    """``billing_2025-08.csv`` etc. The work-log dump defaults to today's date."""
    if kind not in EXPORT_PREFIXES:
        raise ValueError(f"Unknown export kind: {kind}")
    stamp = month or date.today().isoformat()
    return f"{EXPORT_PREFIXES[kind]}_{stamp}.csv"


def _dated(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[df["work_date"] != ""]

def billing_rows(records: Iterable[WorkLogRecord], rates: RateConfig) -> List[list]:
    df = records_to_frame(records)
    df = df.loc[df["output_unit"] != ""]
    if df.empty:
        return []
    qty = df.groupby(["site_key", "output_unit"])["output_value"].sum()
    rows = []
    for (site, unit), q in qty.items():
        price = rates.price_for(unit)
        rows.append([site, unit, f"{q:.1f}", price, round_half_up(q * price)])
    return rows

def timesheet_rows(records: Iterable[WorkLogRecord]) -> List[list]:
    df = _dated(records_to_frame(records)).copy()
    if df.empty:
        return []
    df["worker"] = df["worker_key"].where(df["worker_key"] != "", UNKNOWN_WORKER)
    hours = df.groupby(["worker", "work_date"])["worker_hours"].sum()
    return [[worker, day, f"{h:.2f}"] for (worker, day), h in hours.items()]

def site_daily_rows(records: Iterable[WorkLogRecord]) -> List[list]:
    df = _dated(records_to_frame(records))
    if df.empty:
        return []
    hours = df.groupby(["site_key", "work_date"])["worker_hours"].sum()
    return [[site, day, f"{h:.2f}"] for (site, day), h in hours.items()]


def billing_detail_csv(records: Iterable[WorkLogRecord], rates: RateConfig) -> str:
    return encode_rows(BILLING_COLUMNS, billing_rows(records, rates))

def timesheet_csv(records: Iterable[WorkLogRecord]) -> str:
    return encode_rows(TIMESHEET_COLUMNS, timesheet_rows(records))

def site_daily_hours_csv(records: Iterable[WorkLogRecord]) -> str:
    return encode_rows(SITE_DAILY_COLUMNS, site_daily_rows(records))

def worklog_csv(records: Iterable[WorkLogRecord]) -> str:
    return encode(records)
