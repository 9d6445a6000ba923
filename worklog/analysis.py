"""
Work-Log KPIs — Output vs Hours vs Cost
=======================================

This module powers the dashboard and the monthly P&L.

Core definitions (IMPORTANT)
----------------------------
1) WORKER HOURS  = Σ work_time_min / 60     (person-hours)
2) MACHINE HOURS = Σ machine_time_min / 60
3) OUTPUT        = Σ output_value, kept per unit (ha, 本, m³, m ...).
   Quantities in different units are never added together.
4) SINGLE UNIT   = the one distinct non-empty unit in the filtered set, if
   exactly one exists. Productivity (output / worker hours) is only defined
   in that case; with mixed units it is reported as "-".

Site-level productivity is gated on the *global* single unit, not on each
site's own unit mix, so that sites stay comparable on one chart.

P&L lens (per site, per month)
------------------------------
A) Revenue      = Σ_unit output × unit price   (missing price => 0)
B) Labour cost  = worker hours × hourly wage
C) Machine cost = machine hours × machine rate
D) Other cost   = Σ cost-ledger amounts for the site in the month
E) Gross        = A - (B + C + D)
F) Margin ratio = E / A   (undefined when A <= 0)

Everything here is recomputed from the record list on every call.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from csv_codec import WORKLOG_COLUMNS
from etl import (
    INCIDENT_MINOR, INCIDENT_SEVERE,
    CostLedgerEntry, RateConfig, WorkLogRecord,
)

LOGGER = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================

UNSET_SITE = "(unset)"
ALL_TASKS = "all"
PLACEHOLDER = "-"

NUMERIC_COLUMNS = ["work_time_min", "output_value", "machine_time_min"]

_LEADING_NUMBER = re.compile(r"^([\d.]+)")


# =============================================================================
# HELPERS
# =============================================================================

def safe_div(n, d):
    """Vector-safe divide. Supports scalars, numpy arrays, and pandas Series."""
    n_arr = np.asarray(n, dtype="float64")
    d_arr = np.asarray(d, dtype="float64")
    out = np.zeros_like(n_arr, dtype="float64")
    np.divide(n_arr, d_arr, out=out, where=d_arr != 0)
    # Preserve scalar return type when inputs are scalar
    return float(out) if out.shape == () else out

def output_label(output_by_unit: Dict[str, float]) -> str:
    if not output_by_unit:
        return PLACEHOLDER
    return " / ".join(f"{v:.1f} {u}" for u, v in output_by_unit.items())

def productivity_label(productivity: Optional[float], unit: Optional[str]) -> str:
    if productivity is None or not unit:
        return PLACEHOLDER
    return f"{productivity:.2f} {unit}/hour"

def label_value(label: str) -> float:
    """Leading number of a productivity label; "-" reads as 0."""
    m = _LEADING_NUMBER.match(label or "")
    if not m:
        return 0.0
    try:
        return float(m.group(1))
    except ValueError:
        return 0.0

def site_key(site_id: str) -> str:
    return site_id or UNSET_SITE


# =============================================================================
# FRAME
# =============================================================================

def records_to_frame(records: Iterable[WorkLogRecord]) -> pd.DataFrame:
    """
    One row per record in schema order, plus derived keys:
    worker_hours, machine_hours, site_key, worker_key.
    """
    df = pd.DataFrame([r.to_row() for r in records], columns=WORKLOG_COLUMNS)

    for col in NUMERIC_COLUMNS:
        df[col] = df[col].astype("float64")
    df["ky_check"] = df["ky_check"].astype(bool)
    for col in [c for c in WORKLOG_COLUMNS if c not in NUMERIC_COLUMNS and c != "ky_check"]:
        df[col] = df[col].astype(object).fillna("").astype(str)

    df["output_unit"] = df["output_unit"].str.strip()
    df["worker_hours"] = df["work_time_min"] / 60.0
    df["machine_hours"] = df["machine_time_min"] / 60.0
    df["site_key"] = df["site_id"].where(df["site_id"] != "", UNSET_SITE)
    df["worker_key"] = df["worker_id"].where(df["worker_id"] != "", df["worker_name"])
    return df

def _output_by_unit(df: pd.DataFrame) -> Dict[str, float]:
    with_unit = df.loc[df["output_unit"] != ""]
    if with_unit.empty:
        return {}
    sums = with_unit.groupby("output_unit", sort=False)["output_value"].sum()
    return {str(u): float(v) for u, v in sums.items()}

def _distinct(series: pd.Series) -> int:
    return int(series.loc[series != ""].nunique())


# =============================================================================
# FILTERING
# =============================================================================

@dataclass
class FilterReport:
    raw_records: int
    excluded_missing_date: int
    excluded_other_month: int
    excluded_other_task: int
    final_records: int

def filter_records(
    records: Sequence[WorkLogRecord],
    *,
    month: Optional[str] = None,
    task: Optional[str] = None,
) -> Tuple[List[WorkLogRecord], FilterReport]:
    """
    Month (``YYYY-MM``) and task filter. Returns the kept records + counts.
    Records without a work date can't be placed in a month and are dropped
    whenever a month is given.
    """
    base = list(records)
    raw_n = len(base)

    missing_date = other_month = 0
    if month:
        missing_date = sum(1 for r in base if not r.work_date)
        dated = [r for r in base if r.work_date]
        base = [r for r in dated if r.month == month]
        other_month = len(dated) - len(base)

    other_task = 0
    if task and task != ALL_TASKS:
        before = len(base)
        base = [r for r in base if r.task_code == task]
        other_task = before - len(base)

    rep = FilterReport(
        raw_records=raw_n,
        excluded_missing_date=missing_date,
        excluded_other_month=other_month,
        excluded_other_task=other_task,
        final_records=len(base),
    )
    return base, rep

def available_months(records: Iterable[WorkLogRecord]) -> List[str]:
    return sorted({r.month for r in records if r.work_date})


# =============================================================================
# AGGREGATIONS (records → site → portfolio)
# =============================================================================

@dataclass(frozen=True)
class SeriesPoint:
    label: str
    value: float

@dataclass(frozen=True)
class SiteSummary:
    site_id: str
    count: int
    days: int
    worker_hours: float
    machine_hours: float
    output_by_unit: Dict[str, float]
    productivity: Optional[float]
    productivity_unit: Optional[str]
    ky_rate: float
    incident_minor_count: int
    incident_severe_count: int

    @property
    def output_label(self) -> str:
        return output_label(self.output_by_unit)

    @property
    def productivity_label(self) -> str:
        return productivity_label(self.productivity, self.productivity_unit)

@dataclass(frozen=True)
class KPISummary:
    count: int
    worker_hours: float
    machine_hours: float
    ky_count: int
    ky_rate: float
    incident_minor_count: int
    incident_severe_count: int
    output_by_unit: Dict[str, float]
    single_unit: Optional[str]
    productivity: Optional[float]
    machine_utilization: Optional[float]
    daily_series: List[SeriesPoint] = field(default_factory=list)
    site_summaries: List[SiteSummary] = field(default_factory=list)
    worker_count: int = 0
    team_count: int = 0
    site_count: int = 0

    @property
    def total_output_label(self) -> str:
        return output_label(self.output_by_unit)

    @property
    def productivity_label(self) -> str:
        return productivity_label(self.productivity, self.single_unit)

    @property
    def site_productivity_series(self) -> List[SeriesPoint]:
        return [SeriesPoint(s.site_id, label_value(s.productivity_label)) for s in self.site_summaries]


def _productivity(output: float, hours: float, unit: Optional[str]) -> Optional[float]:
    if not unit or hours <= 0:
        return None
    return output / hours

def _daily_series(df: pd.DataFrame, single_unit: Optional[str]) -> List[SeriesPoint]:
    dated = df.loc[df["work_date"] != ""]
    if dated.empty:
        return []
    if single_unit:
        values = dated["output_value"].where(dated["output_unit"] == single_unit, 0.0)
    else:
        values = dated["worker_hours"]
    by_day = values.groupby(dated["work_date"]).sum().sort_index()
    return [SeriesPoint(str(d), float(v)) for d, v in by_day.items()]

def _summarize_site(key: str, grp: pd.DataFrame, single_unit: Optional[str]) -> SiteSummary:
    count = len(grp)
    worker_hours = float(grp["worker_hours"].sum())
    out_by_unit = _output_by_unit(grp)
    prod = _productivity(out_by_unit.get(single_unit, 0.0), worker_hours, single_unit)
    return SiteSummary(
        site_id=key,
        count=count,
        days=_distinct(grp["work_date"]),
        worker_hours=worker_hours,
        machine_hours=float(grp["machine_hours"].sum()),
        output_by_unit=out_by_unit,
        productivity=prod,
        productivity_unit=single_unit if prod is not None else None,
        ky_rate=safe_div(int(grp["ky_check"].sum()), count),
        incident_minor_count=int((grp["incident"] == INCIDENT_MINOR).sum()),
        incident_severe_count=int((grp["incident"] == INCIDENT_SEVERE).sum()),
    )

def compute_site_summaries(df: pd.DataFrame, single_unit: Optional[str]) -> List[SiteSummary]:
    """Per-site rollups in first-appearance order."""
    if df.empty:
        return []
    return [
        _summarize_site(str(key), grp, single_unit)
        for key, grp in df.groupby("site_key", sort=False)
    ]

def compute_kpi(records: Iterable[WorkLogRecord]) -> KPISummary:
    """All dashboard KPIs for an already-filtered record set."""
    df = records_to_frame(records)
    count = len(df)

    worker_hours = float(df["worker_hours"].sum())
    machine_hours = float(df["machine_hours"].sum())
    ky_count = int(df["ky_check"].sum())

    out_by_unit = _output_by_unit(df)
    single_unit = next(iter(out_by_unit)) if len(out_by_unit) == 1 else None
    prod = _productivity(out_by_unit.get(single_unit, 0.0), worker_hours, single_unit)

    return KPISummary(
        count=count,
        worker_hours=worker_hours,
        machine_hours=machine_hours,
        ky_count=ky_count,
        ky_rate=safe_div(ky_count, count),
        incident_minor_count=int((df["incident"] == INCIDENT_MINOR).sum()),
        incident_severe_count=int((df["incident"] == INCIDENT_SEVERE).sum()),
        output_by_unit=out_by_unit,
        single_unit=single_unit,
        productivity=prod,
        machine_utilization=machine_hours / worker_hours if worker_hours > 0 else None,
        daily_series=_daily_series(df, single_unit),
        site_summaries=compute_site_summaries(df, single_unit),
        worker_count=_distinct(df["worker_key"]),
        team_count=_distinct(df["team"]),
        site_count=_distinct(df["site_id"]),
    )

def site_summary_frame(kpi: KPISummary) -> pd.DataFrame:
    cols = ["Site", "Days", "Worker_Hours", "Machine_Hours", "Output",
            "Productivity", "KY_Rate", "Incident_Minor", "Incident_Severe"]
    return pd.DataFrame(
        [
            [s.site_id, s.days, s.worker_hours, s.machine_hours, s.output_label,
             s.productivity_label, s.ky_rate, s.incident_minor_count, s.incident_severe_count]
            for s in kpi.site_summaries
        ],
        columns=cols,
    )


# =============================================================================
# COST / P&L (site × month)
# =============================================================================

@dataclass(frozen=True)
class SitePnL:
    site_id: str
    month: str
    revenue: float
    labor_cost: float
    machine_cost: float
    other_cost: float
    gross: float
    margin_ratio: Optional[float]

    @property
    def total_cost(self) -> float:
        return self.labor_cost + self.machine_cost + self.other_cost

def ledger_to_frame(ledger: Iterable[CostLedgerEntry]) -> pd.DataFrame:
    df = pd.DataFrame(
        [[e.date, e.site_id, e.account, e.amount, e.note] for e in ledger],
        columns=["date", "site_id", "account", "amount", "note"],
    )
    df["amount"] = df["amount"].astype("float64")
    df["date"] = df["date"].astype(object).fillna("").astype(str)
    df["site_id"] = df["site_id"].astype(object).fillna("").astype(str)
    df["site_key"] = df["site_id"].where(df["site_id"] != "", UNSET_SITE)
    return df

def ledger_costs_by_site(ledger: Iterable[CostLedgerEntry], month: str) -> Dict[str, float]:
    """Σ ledger amounts per site key for entries dated in ``month``."""
    df = ledger_to_frame(ledger)
    in_month = df.loc[df["date"].str[:7] == month]
    if in_month.empty:
        return {}
    sums = in_month.groupby("site_key", sort=False)["amount"].sum()
    return {str(k): float(v) for k, v in sums.items()}

def compute_site_pnl(
    site_summaries: Sequence[SiteSummary],
    rates: RateConfig,
    ledger: Iterable[CostLedgerEntry],
    month: str,
) -> List[SitePnL]:
    """
    Join one month's site summaries with rates and the cost ledger.
    Rows come from the work-log side only; ledger entries for sites with no
    logged work never show up. Sorted by gross, highest first.
    """
    other_by_site = ledger_costs_by_site(ledger, month)

    rows: List[SitePnL] = []
    for s in site_summaries:
        revenue = sum(qty * rates.price_for(unit) for unit, qty in s.output_by_unit.items())
        labor = s.worker_hours * rates.hourly_wage
        machine = s.machine_hours * rates.machine_rate
        other = other_by_site.get(s.site_id, 0.0)
        gross = revenue - (labor + machine + other)
        rows.append(SitePnL(
            site_id=s.site_id,
            month=month,
            revenue=revenue,
            labor_cost=labor,
            machine_cost=machine,
            other_cost=other,
            gross=gross,
            margin_ratio=gross / revenue if revenue > 0 else None,
        ))

    unmatched = set(other_by_site) - {s.site_id for s in site_summaries}
    if unmatched:
        LOGGER.debug("Ledger sites without work logs in %s: %s", month, sorted(unmatched))

    rows.sort(key=lambda r: r.gross, reverse=True)
    return rows

def build_monthly_pnl(
    records: Sequence[WorkLogRecord],
    rates: RateConfig,
    ledger: Iterable[CostLedgerEntry],
    month: str,
    *,
    task: Optional[str] = None,
) -> List[SitePnL]:
    filtered, rep = filter_records(records, month=month, task=task)
    LOGGER.info("P&L %s: %d of %d records in scope", month, rep.final_records, rep.raw_records)
    kpi = compute_kpi(filtered)
    return compute_site_pnl(kpi.site_summaries, rates, ledger, month)

def summarize_pnl(rows: Sequence[SitePnL]) -> Dict[str, object]:
    revenue = float(sum(r.revenue for r in rows))
    labor = float(sum(r.labor_cost for r in rows))
    machine = float(sum(r.machine_cost for r in rows))
    other = float(sum(r.other_cost for r in rows))
    total_cost = float(sum(r.total_cost for r in rows))
    gross = revenue - total_cost
    return {
        "site_count": len(rows),
        "revenue": revenue,
        "labor_cost": labor,
        "machine_cost": machine,
        "other_cost": other,
        "total_cost": total_cost,
        "gross": gross,
        "margin_ratio": gross / revenue if revenue > 0 else None,
        "sites_at_loss": sum(1 for r in rows if r.gross < 0),
    }

def pnl_frame(rows: Sequence[SitePnL]) -> pd.DataFrame:
    cols = ["Site", "Revenue", "Labor_Cost", "Machine_Cost", "Other_Cost", "Total_Cost", "Gross",
            "Margin_Ratio"]
    return pd.DataFrame(
        [[r.site_id, r.revenue, r.labor_cost, r.machine_cost, r.other_cost, r.total_cost, r.gross,
          r.margin_ratio]
         for r in rows],
        columns=cols,
    )
