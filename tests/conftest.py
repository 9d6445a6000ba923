"""
Shared fixtures for the work-log test suite.

Records are built through ``WorkLogRecord.from_raw`` so every fixture goes
through the same normalization path as real imports.
"""

import pytest

from etl import RateConfig, WorkLogRecord


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_record():
    """Build a normalized record from keyword overrides."""
    def _make(**overrides):
        return WorkLogRecord.from_raw(overrides)
    return _make


@pytest.fixture
def august_records(make_record):
    """Two sites, two units: 3 ha at site A over 12h, 10 本 at site B over 8h."""
    return [
        make_record(work_date="2025-08-01", worker_id="W1", worker_name="Sato", team="A-team",
                    site_id="A", task_code="下刈り", output_value=2, output_unit="ha", work_time_min=480),
        make_record(work_date="2025-08-01", worker_id="W2", worker_name="Suzuki", team="A-team",
                    site_id="A", task_code="下刈り", output_value=1, output_unit="ha", work_time_min=240),
        make_record(work_date="2025-08-02", worker_id="W3", worker_name="Tanaka", team="B-team",
                    site_id="B", task_code="間伐", output_value=10, output_unit="本", work_time_min=480),
    ]


@pytest.fixture
def single_unit_records(make_record):
    """Same sites, every record measured in ha."""
    return [
        make_record(work_date="2025-08-02", worker_id="W1", site_id="A", output_value=2,
                    output_unit="ha", work_time_min=480, machine_time_min=120, ky_check=True),
        make_record(work_date="2025-08-01", worker_id="W2", site_id="A", output_value=1,
                    output_unit="ha", work_time_min=240, ky_check="yes", incident="軽微"),
        make_record(work_date="2025-08-01", worker_id="W3", site_id="B", output_value=4,
                    output_unit="ha", work_time_min=480, incident="severe"),
    ]


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------

@pytest.fixture
def rates():
    return RateConfig.from_mapping({
        "hourly_wage": 1500,
        "machine_rate": 3000,
        "unit_prices": {"ha": 50000, "本": 300},
    })
