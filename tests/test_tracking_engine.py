"""
Tests for tracking_engine.py

Dose taken/untaken state machine, daily stock reduction, purchase recording
and the lazily reset yearly cost accumulator, run against the real
database_manager store on a temporary SQLite file.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import database_manager as db
from errors import ValidationError, MedicationNotFoundError
from tracking_engine import (
    LAST_STOCK_REDUCTION_KEY,
    total_number_of_dispensings,
    remaining_dispensings,
    total_amount_for_this_purchase,
    remaining_days_of_supply,
)


def _quantity(medication_id):
    return db.get_medication_by_id(medication_id).current_quantity


# ==================== DERIVED QUANTITIES ====================

def test_remaining_days_of_supply():
    assert remaining_days_of_supply(30, 2) == 15
    assert remaining_days_of_supply(5, 2) == 2
    assert remaining_days_of_supply(0, 3) == 0


def test_remaining_days_of_supply_frequency_zero_is_undefined():
    """Frequency 0 must not divide by zero."""
    assert remaining_days_of_supply(30, 0) is None


def test_dispensing_quantities():
    med = SimpleNamespace(total_repeats=5, total_dispensings_purchased=2, cost=Decimal('31.60'))
    assert total_number_of_dispensings(med) == 6
    assert remaining_dispensings(med) == 4
    assert total_amount_for_this_purchase(med) == Decimal('63.20')


# ==================== MARK / UNMARK TAKEN ====================

def test_mark_taken_adds_timing_and_consumes_one_unit(engine, make_medication):
    med = make_medication(current_quantity=10)

    assert engine.mark_taken(med.id, "Morning", "2025-03-01") is True

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning"}
    assert _quantity(med.id) == 9


def test_mark_taken_twice_is_idempotent(engine, make_medication):
    med = make_medication(current_quantity=10)

    assert engine.mark_taken(med.id, "Morning", "2025-03-01") is True
    assert engine.mark_taken(med.id, "Morning", "2025-03-01") is False

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning"}
    assert _quantity(med.id) == 9


def test_mark_second_timing_updates_same_record(engine, make_medication):
    med = make_medication(current_quantity=10)

    engine.mark_taken(med.id, "Morning", "2025-03-01")
    engine.mark_taken(med.id, "Evening", "2025-03-01")

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning", "Evening"}
    assert len(db.get_daily_taken_by_date(date(2025, 3, 1))) == 1
    assert _quantity(med.id) == 8


def test_mark_taken_floors_quantity_at_zero(engine, make_medication):
    med = make_medication(current_quantity=0)

    assert engine.mark_taken(med.id, "Morning", "2025-03-01") is True

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning"}
    assert _quantity(med.id) == 0


def test_mark_then_unmark_restores_state(engine, make_medication):
    """Round trip restores quantity and deletes the emptied record."""
    med = make_medication(current_quantity=10)

    engine.mark_taken(med.id, "Morning", "2025-03-01")
    assert engine.unmark_taken(med.id, "Morning", "2025-03-01") is True

    assert engine.get_taken_timings(med.id, "2025-03-01") == set()
    assert db.get_daily_taken(med.id, date(2025, 3, 1)) is None
    assert _quantity(med.id) == 10


def test_unmark_keeps_record_while_timings_remain(engine, make_medication):
    med = make_medication(current_quantity=10)
    engine.mark_taken(med.id, "Morning", "2025-03-01")
    engine.mark_taken(med.id, "Evening", "2025-03-01")

    engine.unmark_taken(med.id, "Morning", "2025-03-01")

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Evening"}
    assert _quantity(med.id) == 9


def test_unmark_untaken_timing_is_noop(engine, make_medication):
    med = make_medication(current_quantity=10)
    engine.mark_taken(med.id, "Morning", "2025-03-01")

    assert engine.unmark_taken(med.id, "Evening", "2025-03-01") is False
    assert engine.unmark_taken(med.id, "Morning", "2025-03-02") is False

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning"}
    assert _quantity(med.id) == 9


def test_unmark_has_no_upper_bound(engine, make_medication):
    """Unmarking after a floored mark returns a unit the mark never took."""
    med = make_medication(current_quantity=0, quantity_per_fill=60)
    engine.mark_taken(med.id, "Morning", "2025-03-01")

    engine.unmark_taken(med.id, "Morning", "2025-03-01")

    assert _quantity(med.id) == 1


def test_timing_outside_configured_timings_is_accepted(engine, make_medication):
    med = make_medication(timings=["Morning"])

    assert engine.mark_taken(med.id, "Lunch", "2025-03-01") is True
    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Lunch"}


def test_mark_taken_accepts_date_objects(engine, make_medication):
    med = make_medication()

    engine.mark_taken(med.id, "Morning", date(2025, 3, 1))

    assert engine.get_taken_timings(med.id, "2025-03-01") == {"Morning"}


@pytest.mark.parametrize("timing", ["", "   ", None])
def test_mark_taken_rejects_empty_timing(engine, make_medication, timing):
    med = make_medication(current_quantity=10)

    with pytest.raises(ValidationError):
        engine.mark_taken(med.id, timing, "2025-03-01")
    assert _quantity(med.id) == 10


@pytest.mark.parametrize("bad_date", ["2025-02-30", "01/03/2025", "", None])
def test_mark_taken_rejects_malformed_date(engine, make_medication, bad_date):
    med = make_medication(current_quantity=10)

    with pytest.raises(ValidationError):
        engine.mark_taken(med.id, "Morning", bad_date)
    assert _quantity(med.id) == 10
    assert db.get_all_daily_taken() == []


def test_unknown_medication_raises_not_found(engine):
    with pytest.raises(MedicationNotFoundError) as exc_info:
        engine.mark_taken("missing", "Morning", "2025-03-01")
    assert exc_info.value.medication_id == "missing"

    with pytest.raises(MedicationNotFoundError):
        engine.unmark_taken("missing", "Morning", "2025-03-01")
    with pytest.raises(MedicationNotFoundError):
        engine.get_taken_timings("missing", "2025-03-01")
    assert db.get_all_daily_taken() == []


def test_not_found_is_a_validation_error():
    assert issubclass(MedicationNotFoundError, ValidationError)
    assert issubclass(ValidationError, ValueError)


# ==================== DAILY STOCK REDUCTION ====================

def test_daily_reduction_consumes_frequency(engine, make_medication):
    med = make_medication(current_quantity=10, frequency=2)

    result = engine.run_daily_reduction()

    assert result['date'] == date(2025, 3, 1)
    assert result['reduced'] == {med.id: 2}
    assert _quantity(med.id) == 8
    assert engine.get_last_reduction_date() == date(2025, 3, 1)


def test_daily_reduction_runs_once_per_day(engine, make_medication):
    med = make_medication(current_quantity=10, frequency=2)

    assert engine.run_daily_reduction() is not None
    assert engine.run_daily_reduction() is None

    assert _quantity(med.id) == 8


def test_daily_reduction_skips_inactive_medications(engine, make_medication):
    med = make_medication(current_quantity=10, is_active=False)

    result = engine.run_daily_reduction()

    assert med.id not in result['reduced']
    assert _quantity(med.id) == 10


def test_daily_reduction_skips_medication_with_any_timing_taken(engine, make_medication):
    """A single marked timing exempts the medication from the whole day's reduction."""
    med = make_medication(current_quantity=10, frequency=3,
                          timings=["Morning", "Noon", "Evening"])
    engine.mark_taken(med.id, "Morning", "2025-03-01")

    result = engine.run_daily_reduction()

    assert result['skipped'] == [med.id]
    assert _quantity(med.id) == 9


def test_daily_reduction_floors_at_zero(engine, make_medication):
    med = make_medication(current_quantity=1, frequency=3)

    result = engine.run_daily_reduction()

    assert result['reduced'] == {med.id: 1}
    assert _quantity(med.id) == 0


def test_daily_reduction_runs_again_next_day(engine, clock, make_medication):
    med = make_medication(current_quantity=10, frequency=2)

    engine.run_daily_reduction()
    clock.today = date(2025, 3, 2)
    engine.run_daily_reduction()

    assert _quantity(med.id) == 6


def test_daily_reduction_marker_in_future_counts_as_run(engine, clock, make_medication):
    """A clock moved backwards must not trigger a second reduction."""
    med = make_medication(current_quantity=10, frequency=2)
    engine.run_daily_reduction()

    clock.today = date(2025, 2, 28)
    assert engine.run_daily_reduction() is None
    assert _quantity(med.id) == 8


def test_malformed_marker_is_ignored(engine, make_medication):
    med = make_medication(current_quantity=10, frequency=2)
    now = datetime.now()
    db.create_configuration({
        'id': 'marker1', 'key': LAST_STOCK_REDUCTION_KEY, 'value': 'garbage',
        'created_at': now, 'updated_at': now
    })

    assert engine.get_last_reduction_date() is None
    assert engine.run_daily_reduction() is not None
    assert _quantity(med.id) == 8
    assert db.get_configuration_by_key(LAST_STOCK_REDUCTION_KEY).value == '2025-03-01'


def test_daily_reduction_with_no_medications_writes_marker(engine):
    result = engine.run_daily_reduction()

    assert result == {'date': date(2025, 3, 1), 'reduced': {}, 'skipped': []}
    assert engine.get_last_reduction_date() == date(2025, 3, 1)


def test_end_to_end_partial_day_then_untracked_day(engine, clock, make_medication):
    """
    Quantity 10, frequency 2: Morning taken on D -> 9; reduction on D keeps 9
    (any record exists); on D+1 with nothing taken the reduction takes 2 -> 7.
    """
    med = make_medication(current_quantity=10, frequency=2, timings=["Morning", "Evening"])
    day = date(2025, 3, 1)

    engine.mark_taken(med.id, "Morning", day)
    assert _quantity(med.id) == 9

    engine.run_daily_reduction()
    assert _quantity(med.id) == 9

    clock.today = day + timedelta(days=1)
    engine.run_daily_reduction()
    assert _quantity(med.id) == 7


# ==================== PURCHASES & YEARLY COST ====================

def test_record_purchases_accumulate(engine, make_medication):
    med = make_medication()

    engine.record_purchase(med.id, 50, "2025-03-01")
    engine.record_purchase(med.id, 25, "2025-03-15")

    fetched = db.get_medication_by_id(med.id)
    assert engine.resolve_yearly_total(fetched, "2025-03-20") == Decimal('75')
    assert len(db.get_purchases_by_medication(med.id)) == 2


def test_resolve_yearly_total_is_zero_in_a_later_year(engine, make_medication):
    med = make_medication(yearly_total_cost=Decimal('500.00'), last_yearly_reset_date=date(2024, 1, 1))

    assert engine.resolve_yearly_total(med, date(2025, 1, 1)) == Decimal('0')
    assert engine.resolve_yearly_total(med, date(2024, 12, 31)) == Decimal('500')
    # Stored field is not rewritten by a read
    assert db.get_medication_by_id(med.id).yearly_total_cost == Decimal('500')


def test_resolve_yearly_total_without_reset_date(engine, make_medication):
    """A never-reset accumulator belongs to the previous year."""
    med = make_medication(yearly_total_cost=Decimal('80.00'), last_yearly_reset_date=None)

    assert engine.resolve_yearly_total(med, date(2025, 6, 1)) == Decimal('0')


def test_record_purchase_applies_lazy_reset_on_write(engine, clock, make_medication):
    med = make_medication(yearly_total_cost=Decimal('300.00'), last_yearly_reset_date=date(2024, 1, 1))
    clock.today = date(2025, 2, 1)

    engine.record_purchase(med.id, 40, "2025-02-01")

    fetched = db.get_medication_by_id(med.id)
    assert fetched.yearly_total_cost == Decimal('40')
    assert fetched.last_yearly_reset_date == date(2025, 1, 1)


def test_record_purchases_accumulate_while_clock_is_in_a_later_year(engine, clock, make_medication):
    """Purchases resolve against their own date, not the clock."""
    clock.today = date(2026, 10, 17)
    med = make_medication(last_yearly_reset_date=date(2026, 1, 1))

    engine.record_purchase(med.id, 50, "2025-03-01")
    engine.record_purchase(med.id, 25, "2025-03-15")

    fetched = db.get_medication_by_id(med.id)
    assert engine.resolve_yearly_total(fetched, "2025-03-20") == Decimal('75')
    assert fetched.last_yearly_reset_date == date(2025, 1, 1)
    assert len(db.get_purchases_by_medication(med.id)) == 2


def test_record_purchase_dated_in_another_year_moves_reset_date(engine, make_medication):
    med = make_medication(yearly_total_cost=Decimal('20.00'))

    engine.record_purchase(med.id, 99, "2024-12-30")

    fetched = db.get_medication_by_id(med.id)
    assert fetched.yearly_total_cost == Decimal('119')
    assert fetched.last_yearly_reset_date == date(2024, 1, 1)
    assert engine.resolve_yearly_total(fetched, "2024-12-31") == Decimal('119')
    assert engine.resolve_yearly_total(fetched, "2025-03-01") == Decimal('0')
    assert [p.purchase_date for p in db.get_purchases_by_medication(med.id)] == [date(2024, 12, 30)]


def test_record_purchase_zero_amount_is_noop(engine, make_medication):
    med = make_medication()

    assert engine.record_purchase(med.id, 0, "2025-03-01") is None
    assert db.get_purchases_by_medication(med.id) == []


@pytest.mark.parametrize("amount", [-1, "abc", None, float('nan')])
def test_record_purchase_rejects_invalid_amount(engine, make_medication, amount):
    med = make_medication()

    with pytest.raises(ValidationError):
        engine.record_purchase(med.id, amount, "2025-03-01")
    assert db.get_purchases_by_medication(med.id) == []


def test_record_purchase_rejects_malformed_date(engine, make_medication):
    med = make_medication()

    with pytest.raises(ValidationError):
        engine.record_purchase(med.id, 10, "March 1st")


def test_record_purchase_unknown_medication(engine):
    with pytest.raises(MedicationNotFoundError):
        engine.record_purchase("missing", 10, "2025-03-01")
    with pytest.raises(MedicationNotFoundError):
        engine.record_purchase("missing", 0, "2025-03-01")
    assert db.get_all_purchases() == []


def test_finalize_purchase_records_dispensings_times_cost(engine, make_medication):
    med = make_medication(cost=Decimal('31.60'), total_dispensings_purchased=2)

    purchase = engine.finalize_purchase(med.id)

    assert purchase.amount == Decimal('63.20')
    assert purchase.purchase_date == date(2025, 3, 1)
    fetched = db.get_medication_by_id(med.id)
    assert fetched.total_dispensings_purchased == 0
    assert engine.resolve_yearly_total(fetched, date(2025, 3, 1)) == Decimal('63.20')


def test_finalize_purchase_with_nothing_pending(engine, make_medication):
    med = make_medication(total_dispensings_purchased=0)

    assert engine.finalize_purchase(med.id, "2025-03-01") is None
    assert db.get_purchases_by_medication(med.id) == []


def test_override_yearly_total(engine, make_medication):
    med = make_medication(yearly_total_cost=Decimal('10.00'), last_yearly_reset_date=date(2023, 1, 1))

    engine.override_yearly_total(med.id, "120.50")

    fetched = db.get_medication_by_id(med.id)
    assert engine.resolve_yearly_total(fetched, date(2025, 3, 1)) == Decimal('120.50')
    assert fetched.last_yearly_reset_date == date(2025, 1, 1)


def test_override_yearly_total_rejects_negative(engine, make_medication):
    med = make_medication()

    with pytest.raises(ValidationError):
        engine.override_yearly_total(med.id, -5)


def test_set_current_quantity(engine, make_medication):
    med = make_medication(current_quantity=3)

    engine.set_current_quantity(med.id, 60)

    assert _quantity(med.id) == 60


@pytest.mark.parametrize("quantity", [-1, "10", 2.5, True])
def test_set_current_quantity_rejects_invalid(engine, make_medication, quantity):
    med = make_medication(current_quantity=3)

    with pytest.raises(ValidationError):
        engine.set_current_quantity(med.id, quantity)
    assert _quantity(med.id) == 3
