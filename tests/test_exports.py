"""
Tests for the monthly CSV exports.
"""

from datetime import date

import pytest

from csv_codec import BOM, decode
from etl import read_worklog_csv
from exports import (
    UNKNOWN_WORKER,
    billing_detail_csv,
    billing_rows,
    export_filename,
    round_half_up,
    site_daily_hours_csv,
    site_daily_rows,
    timesheet_csv,
    timesheet_rows,
    worklog_csv,
)


# ===================================================================
# Helpers
# ===================================================================

class TestHelpers:

    @pytest.mark.parametrize("value, expected", [
        (2.5, 3),
        (3.5, 4),
        (2.4999, 2),
        (0.0, 0),
        (150000.0, 150000),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected

    def test_export_filenames_keyed_by_month(self):
        assert export_filename("billing", "2025-08") == "billing_2025-08.csv"
        assert export_filename("timesheet", "2025-08") == "timesheet_2025-08.csv"
        assert export_filename("site_daily_hours", "2025-08") == "site_daily_hours_2025-08.csv"

    def test_worklog_filename_defaults_to_today(self):
        assert export_filename("worklog") == f"worklog_{date.today().isoformat()}.csv"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            export_filename("payroll", "2025-08")


# ===================================================================
# Billing detail
# ===================================================================

class TestBilling:

    def test_rows_per_site_and_unit(self, august_records, rates):
        assert billing_rows(august_records, rates) == [
            ["A", "ha", "3.0", 50000.0, 150000],
            ["B", "本", "10.0", 300.0, 3000],
        ]

    def test_unpriced_unit_bills_zero(self, make_record, rates):
        records = [make_record(site_id="A", output_value=2.25, output_unit="m")]
        assert billing_rows(records, rates) == [["A", "m", "2.2", 0.0, 0]]

    def test_records_without_unit_skipped(self, make_record, rates):
        assert billing_rows([make_record(site_id="A", output_value=5)], rates) == []

    def test_encoded_text(self, august_records, rates):
        table = decode(billing_detail_csv(august_records, rates))
        assert table[0] == ["site_id", "unit", "quantity", "unit_price", "amount"]
        assert table[1] == ["A", "ha", "3.0", "50000", "150000"]


# ===================================================================
# Timesheet
# ===================================================================

class TestTimesheet:

    def test_hours_per_worker_and_day(self, make_record):
        records = [
            make_record(work_date="2025-08-01", worker_id="W1", work_time_min=300),
            make_record(work_date="2025-08-01", worker_id="W1", work_time_min=180),
            make_record(work_date="2025-08-02", worker_id="W1", work_time_min=100),
        ]
        assert timesheet_rows(records) == [
            ["W1", "2025-08-01", "8.00"],
            ["W1", "2025-08-02", "1.67"],
        ]

    def test_worker_key_fallback(self, make_record):
        records = [
            make_record(work_date="2025-08-01", worker_name="Sato", work_time_min=60),
            make_record(work_date="2025-08-01", work_time_min=30),
        ]
        assert timesheet_rows(records) == [
            [UNKNOWN_WORKER, "2025-08-01", "0.50"],
            ["Sato", "2025-08-01", "1.00"],
        ]

    def test_undated_records_skipped(self, make_record):
        assert timesheet_rows([make_record(worker_id="W1", work_time_min=60)]) == []

    def test_encoded_text(self, august_records):
        text = timesheet_csv(august_records)
        assert text.startswith(BOM + "worker,date,hours\n")
        assert len(decode(text)) == 4


# ===================================================================
# Site daily hours
# ===================================================================

class TestSiteDailyHours:

    def test_rows(self, august_records, make_record):
        records = august_records + [make_record(work_date="2025-08-01", work_time_min=90)]
        assert site_daily_rows(records) == [
            ["(unset)", "2025-08-01", "1.50"],
            ["A", "2025-08-01", "12.00"],
            ["B", "2025-08-02", "8.00"],
        ]

    def test_empty(self):
        assert site_daily_hours_csv([]) == BOM + "site_id,date,worker_hours"


# ===================================================================
# Work-log dump
# ===================================================================

def test_worklog_csv_round_trips(august_records):
    assert read_worklog_csv(worklog_csv(august_records)) == august_records
