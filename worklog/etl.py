"""
Work-log ETL
============

Turns heterogeneous raw inputs into canonical records.

Inputs arrive from two places: the CSV export (every cell is text) and
documents pulled from the remote store (numbers, booleans, timestamp objects).
``WorkLogRecord.from_raw`` is the single canonicalization boundary for both.
It is total: bad cells degrade to their type's zero value ("" / 0 / False)
instead of failing a whole batch.

Also holds the two side inputs of the P&L: ``RateConfig`` and the cost ledger.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from csv_codec import WORKLOG_COLUMNS, SchemaMismatch, check_header, decode

LOGGER = logging.getLogger(__name__)


# =============================================================================
# CONFIG
# =============================================================================

# Known tasks and the unit their output is normally measured in
TASK_OPTIONS: Dict[str, str] = {
    "下刈り": "ha",
    "間伐": "本",
    "主伐": "m³",
    "造林": "本",
    "路網整備": "m",
    "集材": "m³",
    "造材": "m³",
    "搬出": "m³",
    "調査": "ha",
}

UNIT_ALIASES = {"m3": "m³"}

INCIDENT_NONE = "none"
INCIDENT_MINOR = "minor"
INCIDENT_SEVERE = "severe"

INCIDENT_ALIASES = {
    "none": INCIDENT_NONE, "無": INCIDENT_NONE,
    "minor": INCIDENT_MINOR, "軽微": INCIDENT_MINOR,
    "severe": INCIDENT_SEVERE, "事故": INCIDENT_SEVERE,
}

TRUE_TOKENS = {"true", "1", "yes", "y", "on", "はい"}

# Remote-store documents may only carry a creation timestamp
DATE_FALLBACK_FIELDS = ("createdAt", "created_at")

LEDGER_COLUMNS = ["date", "site_id", "account", "amount", "note"]
LEDGER_REQUIRED = ["date", "site_id", "amount"]

_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}")

# ASCII decimal literals only; float() alone would accept "1_000" and fullwidth digits
_NUMERIC = re.compile(r"^[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _as_str(x) -> str:
    if x is None:
        return ""
    if isinstance(x, float) and math.isnan(x):
        return ""
    return str(x).strip()

def to_number(x, *, thousands: bool = False) -> float:
    """Finite float or 0.0. Never raises."""
    if isinstance(x, (bool, np.bool_)):
        return float(x)
    if isinstance(x, (int, float, np.number)):
        v = float(x)
    elif isinstance(x, str):
        s = x.strip()
        if thousands:
            s = s.replace(",", "")
        if not _NUMERIC.match(s):
            return 0.0
        v = float(s)
    else:
        return 0.0
    return v if math.isfinite(v) else 0.0

def _non_negative(x) -> float:
    return max(to_number(x), 0.0)

def to_bool(x) -> bool:
    if isinstance(x, (bool, np.bool_)):
        return bool(x)
    if isinstance(x, (int, float, np.number)):
        return to_number(x) == 1
    return _as_str(x).lower() in TRUE_TOKENS

def normalize_unit(x) -> str:
    u = _as_str(x)
    return UNIT_ALIASES.get(u, u)

def normalize_incident(x) -> str:
    s = _as_str(x)
    if s == "":
        return INCIDENT_NONE
    return INCIDENT_ALIASES.get(s.lower(), s)

def _timestamp_seconds(x) -> Optional[float]:
    """Seconds from a ``{seconds: n}`` mapping or a Timestamp-like object."""
    if isinstance(x, Mapping):
        sec = x.get("seconds")
    else:
        sec = getattr(x, "seconds", None)
    if isinstance(sec, bool) or not isinstance(sec, (int, float, np.number)):
        return None
    sec = float(sec)
    return sec if math.isfinite(sec) else None

def _day_of(ts: pd.Timestamp) -> str:
    if pd.isna(ts):
        return ""
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC")
    return ts.strftime("%Y-%m-%d")

def to_iso_date(x) -> str:
    """
    Calendar day as ``YYYY-MM-DD``, or "" when the value can't be read.

    Accepts ISO strings (truncated to the day), ``{seconds: n}`` timestamps
    (UTC day), datetime/date objects, epoch milliseconds, and anything else
    pandas can parse.
    """
    if x is None or x is pd.NaT or isinstance(x, bool):
        return ""
    if isinstance(x, str):
        s = x.strip()
        if s == "":
            return ""
        if _ISO_DAY.match(s):
            try:
                return date.fromisoformat(s[:10]).isoformat()
            except ValueError:
                return ""
        return _parse_generic(s)
    if isinstance(x, datetime):
        if x.tzinfo is not None:
            x = x.astimezone(timezone.utc)
        return x.date().isoformat()
    if isinstance(x, date):
        return x.isoformat()
    sec = _timestamp_seconds(x)
    if sec is not None:
        return _parse_generic(sec, unit="s")
    if isinstance(x, (Mapping, list, tuple, set)):
        return ""
    if isinstance(x, (int, float, np.number)):
        return _parse_generic(x, unit="ms")
    return _parse_generic(x)

def _parse_generic(x, unit: Optional[str] = None) -> str:
    try:
        if unit:
            ts = pd.to_datetime(x, unit=unit, utc=True, errors="coerce")
        else:
            ts = pd.to_datetime(x, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return ""
    if not isinstance(ts, pd.Timestamp):
        return ""
    return _day_of(ts)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class WorkLogRecord:
    work_date: str = ""
    worker_id: str = ""
    worker_name: str = ""
    team: str = ""
    site_id: str = ""
    stand_id: str = ""
    task_code: str = ""
    work_time_min: float = 0.0
    output_value: float = 0.0
    output_unit: str = ""
    machine_id: str = ""
    machine_time_min: float = 0.0
    weather: str = ""
    ky_check: bool = False
    incident: str = INCIDENT_NONE
    photo_1: str = ""
    photo_2: str = ""
    photo_3: str = ""
    note: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "WorkLogRecord":
        """Canonical record from any mapping. Never raises."""
        if not isinstance(raw, Mapping):
            raw = {}

        work_date = to_iso_date(raw.get("work_date"))
        if not work_date:
            for alias in DATE_FALLBACK_FIELDS:
                work_date = to_iso_date(raw.get(alias))
                if work_date:
                    break

        return cls(
            work_date=work_date,
            worker_id=_as_str(raw.get("worker_id")),
            worker_name=_as_str(raw.get("worker_name")),
            team=_as_str(raw.get("team")),
            site_id=_as_str(raw.get("site_id")),
            stand_id=_as_str(raw.get("stand_id")),
            task_code=_as_str(raw.get("task_code")),
            work_time_min=_non_negative(raw.get("work_time_min")),
            output_value=_non_negative(raw.get("output_value")),
            output_unit=normalize_unit(raw.get("output_unit")),
            machine_id=_as_str(raw.get("machine_id")),
            machine_time_min=_non_negative(raw.get("machine_time_min")),
            weather=_as_str(raw.get("weather")),
            ky_check=to_bool(raw.get("ky_check")),
            incident=normalize_incident(raw.get("incident")),
            photo_1=_as_str(raw.get("photo_1")),
            photo_2=_as_str(raw.get("photo_2")),
            photo_3=_as_str(raw.get("photo_3")),
            note=_as_str(raw.get("note")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in WORKLOG_COLUMNS}

    def to_row(self) -> List[Any]:
        return [getattr(self, k) for k in WORKLOG_COLUMNS]

    @property
    def worker_key(self) -> str:
        return self.worker_id or self.worker_name

    @property
    def month(self) -> str:
        return self.work_date[:7]


def normalize(raws: Iterable[Mapping[str, Any]]) -> List[WorkLogRecord]:
    return [WorkLogRecord.from_raw(r) for r in raws]


# =============================================================================
# RATES + COST LEDGER
# =============================================================================

@dataclass(frozen=True)
class RateConfig:
    hourly_wage: float = 0.0
    machine_rate: float = 0.0
    unit_prices: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "RateConfig":
        raw = raw or {}
        prices = raw.get("unit_prices") or {}
        if not isinstance(prices, Mapping):
            prices = {}
        return cls(
            hourly_wage=to_number(raw.get("hourly_wage")),
            machine_rate=to_number(raw.get("machine_rate")),
            unit_prices={
                normalize_unit(u): to_number(p)
                for u, p in prices.items() if normalize_unit(u)
            },
        )

    def price_for(self, unit: str) -> float:
        return self.unit_prices.get(unit, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hourly_wage": self.hourly_wage,
            "machine_rate": self.machine_rate,
            "unit_prices": dict(self.unit_prices),
        }


DEFAULT_RATES = RateConfig(
    hourly_wage=1500.0,
    machine_rate=3000.0,
    unit_prices={"ha": 50000.0, "本": 300.0, "m³": 8000.0, "m": 1200.0},
)


@dataclass(frozen=True)
class CostLedgerEntry:
    date: str = ""
    site_id: str = ""
    account: str = ""
    amount: float = 0.0
    note: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "CostLedgerEntry":
        if not isinstance(raw, Mapping):
            raw = {}
        return cls(
            date=to_iso_date(raw.get("date")),
            site_id=_as_str(raw.get("site_id")),
            account=_as_str(raw.get("account")),
            amount=to_number(raw.get("amount"), thousands=True),
            note=_as_str(raw.get("note")),
        )

    @property
    def month(self) -> str:
        return self.date[:7]


# =============================================================================
# CSV IMPORT
# =============================================================================

def read_worklog_csv(text: str) -> List[WorkLogRecord]:
    """
    Parse a work-log export. The header must match ``WORKLOG_COLUMNS`` exactly;
    anything else raises ``SchemaMismatch`` and nothing is imported.
    """
    table = decode(text)
    if not table:
        return []
    check_header(table[0])

    width = len(WORKLOG_COLUMNS)
    records: List[WorkLogRecord] = []
    skipped = 0
    for row in table[1:]:
        if len(row) <= 1:
            skipped += 1
            continue
        cells = (row + [""] * width)[:width]
        records.append(WorkLogRecord.from_raw(dict(zip(WORKLOG_COLUMNS, cells))))

    LOGGER.info("Imported %d work-log records (%d blank rows skipped)", len(records), skipped)
    return records

def read_ledger_csv(text: str) -> List[CostLedgerEntry]:
    """
    Parse a cost-ledger CSV. Column names are matched case-insensitively and
    may appear in any order; ``account`` and ``note`` are optional.
    """
    table = decode(text)
    if not table:
        return []

    cols = [c.strip().lower() for c in table[0]]
    missing = [c for c in LEDGER_REQUIRED if c not in cols]
    if missing:
        LOGGER.warning("Ledger header missing columns: %s", missing)
        raise SchemaMismatch(LEDGER_COLUMNS, table[0])
    idx = {name: cols.index(name) for name in LEDGER_COLUMNS if name in cols}

    entries: List[CostLedgerEntry] = []
    skipped = 0
    for row in table[1:]:
        if not any(cell.strip() for cell in row):
            skipped += 1
            continue
        raw = {name: (row[i] if i < len(row) else "") for name, i in idx.items()}
        entries.append(CostLedgerEntry.from_raw(raw))

    LOGGER.info("Imported %d ledger entries (%d blank rows skipped)", len(entries), skipped)
    return entries
