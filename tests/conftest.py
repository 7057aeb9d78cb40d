"""
Shared fixtures for the Medtracker test suite.

Every test gets a fresh SQLite file bound to the peewee proxy, so the real
database_manager store is exercised end to end.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

import business_logic
import database_manager as db
from tracking_engine import MedicationTrackingEngine
from utils import generate_uid, dump_labels


class FakeClock:
    """Callable clock returning a settable date."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture(scope="function")
def setup_test_db(tmp_path):
    """Setup test database before each test, teardown after."""
    db.initialize_connection(db_engine="sqlite", db_path=str(tmp_path / "medtracker_test.db"))
    db.create_tables_if_not_exist()

    yield

    db.close_connection()


@pytest.fixture
def clock():
    return FakeClock(date(2025, 3, 1))


@pytest.fixture
def engine(setup_test_db, clock, monkeypatch):
    """Engine on the test store with a pinned clock, also used by business_logic."""
    test_engine = MedicationTrackingEngine(store=db, clock=clock)
    monkeypatch.setattr(business_logic, "engine", test_engine)
    return test_engine


@pytest.fixture
def make_medication(setup_test_db):
    """Insert a medication row directly (bypasses form validation)."""
    def _make(**overrides):
        now = datetime.now()
        data = {
            'id': generate_uid(),
            'name': 'Metformin',
            'dosage': '500mg',
            'form': 'tablet',
            'frequency': 2,
            'timings': dump_labels(['Morning', 'Evening']),
            'quantity_per_fill': 60,
            'current_quantity': 10,
            'cost': Decimal('30.00'),
            'total_repeats': 5,
            'repeats_remaining': 5,
            'total_dispensings_purchased': 0,
            'yearly_total_cost': Decimal('0'),
            'last_yearly_reset_date': date(2025, 1, 1),
            'is_active': True,
            'created_at': now,
            'updated_at': now,
        }
        if 'timings' in overrides:
            overrides['timings'] = dump_labels(overrides['timings'])
        data.update(overrides)
        return db.create_medication(data)
    return _make
