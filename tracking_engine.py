"""
Medication tracking engine for Medtracker application.

Owns every rule that changes a medication's stock or yearly cost:
- Marking/unmarking a timing as taken for a date (one unit per taken timing)
- Implicit daily consumption for medications nobody tracked that day
- Purchase recording and the lazily reset yearly cost accumulator

The engine is the only writer of current_quantity, yearly_total_cost,
last_yearly_reset_date and total_dispensings_purchased. It talks to storage
exclusively through the store it is constructed with (database_manager in
production) and reads "today" from an injectable clock.

No-op outcomes (already taken, not taken, already run today, zero amount)
are reported through return values. Invalid input raises ValidationError
before anything is written; storage failures surface as StorageError.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from errors import ValidationError, MedicationNotFoundError
from utils import generate_uid, parse_date, format_date, to_decimal, dump_labels, load_labels

logger = logging.getLogger(__name__)

# Configuration key holding the YYYY-MM-DD of the last daily stock reduction
LAST_STOCK_REDUCTION_KEY = 'last_stock_reduction_date'


# ==================== DERIVED QUANTITIES ====================

def total_number_of_dispensings(medication) -> int:
    """Original fill plus every authorised repeat."""
    return (medication.total_repeats or 0) + 1


def remaining_dispensings(medication) -> int:
    """Dispensings authorised but not yet purchased."""
    return total_number_of_dispensings(medication) - (medication.total_dispensings_purchased or 0)


def total_amount_for_this_purchase(medication) -> Decimal:
    """Amount of the purchase being entered: dispensings purchased x cost per fill."""
    return (medication.total_dispensings_purchased or 0) * to_decimal(medication.cost or 0)


def remaining_days_of_supply(current_quantity: int, frequency: int) -> Optional[int]:
    """
    Whole days the current stock lasts at the prescribed frequency.

    Returns None when frequency is 0 (supply is undefined, not infinite days).
    """
    if not frequency:
        return None
    return current_quantity // frequency


# ==================== ENGINE ====================

class MedicationTrackingEngine:
    """
    Stock and cost state machine for medications.

    Args:
        store: Object exposing the database_manager CRUD functions
            (get_medication_by_id, update_medication, get_daily_taken, ...)
            and an atomic() transaction context manager
        clock: Callable returning today's date (default: date.today)

    All mutating operations run in one store transaction and under one
    process-wide lock, so the "already taken" and "already run today"
    checks cannot interleave with another request's write.
    """

    def __init__(self, store, clock=date.today):
        self.store = store
        self.clock = clock
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self):
        """
        Engine lock plus one store transaction for multi-step edits that
        mix plain writes with engine operations (lock first, then transaction).
        """
        with self._lock, self.store.atomic():
            yield

    # ---------- validation helpers ----------

    def _require_medication(self, medication_id: str):
        if not medication_id:
            raise ValidationError("Medication ID is required")
        medication = self.store.get_medication_by_id(medication_id)
        if not medication:
            raise MedicationNotFoundError(medication_id)
        return medication

    @staticmethod
    def _validate_timing(timing: str) -> str:
        if not isinstance(timing, str) or not timing.strip():
            raise ValidationError("Timing is required")
        return timing.strip()

    @staticmethod
    def _validate_date(value, field: str = "Date") -> date:
        try:
            return parse_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be in YYYY-MM-DD format")

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        try:
            amount = to_decimal(amount)
        except ValueError as e:
            raise ValidationError(str(e))
        if not amount.is_finite() or amount < 0:
            raise ValidationError("Amount must be a non-negative number")
        return amount

    # ---------- dose taken/untaken ----------

    def get_taken_timings(self, medication_id: str, taken_date) -> set:
        """
        Timings marked taken for a medication on a date.

        Returns:
            Set of timing labels (empty if nothing was taken)
        """
        taken_date = self._validate_date(taken_date)
        self._require_medication(medication_id)
        record = self.store.get_daily_taken(medication_id, taken_date)
        if not record:
            return set()
        return set(load_labels(record.timings_taken))

    def mark_taken(self, medication_id: str, timing: str, taken_date) -> bool:
        """
        Mark a timing as taken and consume one unit of stock.

        Creates the day's record on first use. Marking an already-taken
        timing changes nothing (double clicks must not consume twice).

        Returns:
            True if the timing was marked, False if it was already taken

        Raises:
            ValidationError: Empty timing or malformed date
            MedicationNotFoundError: Unknown medication
        """
        timing = self._validate_timing(timing)
        taken_date = self._validate_date(taken_date)

        with self._lock, self.store.atomic():
            medication = self._require_medication(medication_id)
            record = self.store.get_daily_taken(medication_id, taken_date)
            taken = set(load_labels(record.timings_taken)) if record else set()

            if timing in taken:
                logger.debug(f"'{timing}' already taken for {medication_id} on {taken_date} - no-op")
                return False

            taken.add(timing)
            now = datetime.now()
            if record:
                self.store.update_daily_taken(record.id, {
                    'timings_taken': dump_labels(taken),
                    'updated_at': now
                })
            else:
                self.store.create_daily_taken({
                    'id': generate_uid(),
                    'medication': medication_id,
                    'date': taken_date,
                    'timings_taken': dump_labels(taken),
                    'created_at': now,
                    'updated_at': now
                })

            new_quantity = max(0, medication.current_quantity - 1)
            self.store.update_medication(medication_id, {
                'current_quantity': new_quantity,
                'updated_at': now
            })

        logger.info(f"Marked '{timing}' taken for {medication.name} ({medication_id}) on {taken_date}, "
                    f"quantity {medication.current_quantity} -> {new_quantity}")
        return True

    def unmark_taken(self, medication_id: str, timing: str, taken_date) -> bool:
        """
        Reverse a taken timing and return one unit to stock.

        The day's record is deleted when its last timing is removed.
        Unmarking a timing that is not taken changes nothing. Stock is
        incremented without an upper bound.

        Returns:
            True if the timing was unmarked, False if it was not taken

        Raises:
            ValidationError: Empty timing or malformed date
            MedicationNotFoundError: Unknown medication
        """
        timing = self._validate_timing(timing)
        taken_date = self._validate_date(taken_date)

        with self._lock, self.store.atomic():
            medication = self._require_medication(medication_id)
            record = self.store.get_daily_taken(medication_id, taken_date)
            taken = set(load_labels(record.timings_taken)) if record else set()

            if timing not in taken:
                logger.debug(f"'{timing}' not taken for {medication_id} on {taken_date} - no-op")
                return False

            taken.discard(timing)
            now = datetime.now()
            if taken:
                self.store.update_daily_taken(record.id, {
                    'timings_taken': dump_labels(taken),
                    'updated_at': now
                })
            else:
                self.store.delete_daily_taken(record.id)

            new_quantity = medication.current_quantity + 1
            self.store.update_medication(medication_id, {
                'current_quantity': new_quantity,
                'updated_at': now
            })

        logger.info(f"Unmarked '{timing}' for {medication.name} ({medication_id}) on {taken_date}, "
                    f"quantity {medication.current_quantity} -> {new_quantity}")
        return True

    # ---------- daily stock reduction ----------

    def get_last_reduction_date(self) -> Optional[date]:
        """Date of the last daily stock reduction, or None if it never ran."""
        config = self.store.get_configuration_by_key(LAST_STOCK_REDUCTION_KEY)
        if not config or not config.value:
            return None
        try:
            return parse_date(config.value)
        except ValueError:
            logger.warning(f"Ignoring malformed {LAST_STOCK_REDUCTION_KEY}: {config.value!r}")
            return None

    def run_daily_reduction(self) -> Optional[dict]:
        """
        Apply implicit daily consumption once per calendar day.

        Every active medication with no taken record for today loses its full
        daily frequency (floored at 0). A medication with any timing marked
        today is skipped entirely, even if fewer timings than its frequency
        were marked. The run is guarded by the persisted last-run date, so
        repeated calls on the same day do nothing.

        Returns:
            None if already run today, otherwise
            {'date': today, 'reduced': {medication_id: units_removed}, 'skipped': [ids tracked today]}
        """
        with self._lock, self.store.atomic():
            today = self.clock()
            last_run = self.get_last_reduction_date()
            if last_run is not None and last_run >= today:
                logger.debug(f"Daily stock reduction already ran on {last_run} - no-op")
                return None

            reduced = {}
            skipped = []
            now = datetime.now()
            for medication in self.store.get_active_medications():
                if self.store.daily_taken_exists(medication.id, today):
                    skipped.append(medication.id)
                    continue

                new_quantity = max(0, medication.current_quantity - medication.frequency)
                if new_quantity != medication.current_quantity:
                    self.store.update_medication(medication.id, {
                        'current_quantity': new_quantity,
                        'updated_at': now
                    })
                reduced[medication.id] = medication.current_quantity - new_quantity

            self.store.create_or_update_configuration({
                'id': generate_uid(),
                'key': LAST_STOCK_REDUCTION_KEY,
                'value': format_date(today),
                'created_at': now,
                'updated_at': now
            })

        logger.info(f"Daily stock reduction for {today}: reduced {len(reduced)} medications, "
                    f"skipped {len(skipped)} tracked today")
        return {'date': today, 'reduced': reduced, 'skipped': skipped}

    # ---------- purchases and yearly cost ----------

    def resolve_yearly_total(self, medication, as_of_date) -> Decimal:
        """
        Effective yearly cost of a medication for as_of_date's year.

        The stored accumulator belongs to the year of last_yearly_reset_date
        (previous year if never set). Once as_of_date is in a later year the
        accumulator is stale and resolves to 0; the stored field is only
        rewritten by the next engine write.
        """
        as_of_date = self._validate_date(as_of_date, "As-of date")
        if medication.last_yearly_reset_date:
            last_reset_year = parse_date(medication.last_yearly_reset_date).year
        else:
            last_reset_year = as_of_date.year - 1

        if as_of_date.year > last_reset_year:
            return Decimal('0')
        return to_decimal(medication.yearly_total_cost or 0)

    def record_purchase(self, medication_id: str, amount, purchase_date):
        """
        Record a purchase and add it to the yearly accumulator.

        The accumulator is resolved against the purchase date (lazy reset
        applied and persisted), the amount is added, and the reset date moves
        to January 1 of the purchase's year.

        Returns:
            The created PurchaseHistory entry, or None for a zero amount

        Raises:
            ValidationError: Negative/non-numeric amount or malformed date
            MedicationNotFoundError: Unknown medication
        """
        amount = self._validate_amount(amount)
        purchase_date = self._validate_date(purchase_date, "Purchase date")

        if amount == 0:
            self._require_medication(medication_id)
            logger.debug(f"Zero-amount purchase for {medication_id} not recorded")
            return None

        with self._lock, self.store.atomic():
            medication = self._require_medication(medication_id)
            now = datetime.now()
            purchase = self.store.create_purchase({
                'id': generate_uid(),
                'medication': medication_id,
                'amount': amount,
                'purchase_date': purchase_date,
                'created_at': now
            })

            yearly_total = self.resolve_yearly_total(medication, purchase_date) + amount
            self.store.update_medication(medication_id, {
                'yearly_total_cost': yearly_total,
                'last_yearly_reset_date': date(purchase_date.year, 1, 1),
                'updated_at': now
            })

        logger.info(f"Recorded purchase of {amount} for {medication.name} ({medication_id}) on {purchase_date}, "
                    f"yearly total {yearly_total}")
        return purchase

    def finalize_purchase(self, medication_id: str, purchase_date=None):
        """
        Turn the medication's pending dispensings into a recorded purchase.

        Amount is total_dispensings_purchased x cost. A non-zero amount is
        recorded via record_purchase(); the dispensings counter is then reset
        to 0 so the next edit starts a fresh purchase.

        Returns:
            The created PurchaseHistory entry, or None if the amount was 0
        """
        if purchase_date is None:
            purchase_date = self.clock()
        purchase_date = self._validate_date(purchase_date, "Purchase date")

        with self._lock, self.store.atomic():
            medication = self._require_medication(medication_id)
            amount = total_amount_for_this_purchase(medication)
            purchase = self.record_purchase(medication_id, amount, purchase_date)
            if medication.total_dispensings_purchased:
                self.store.update_medication(medication_id, {
                    'total_dispensings_purchased': 0,
                    'updated_at': datetime.now()
                })
        return purchase

    def override_yearly_total(self, medication_id: str, amount):
        """
        Manually correct the current year's accumulated cost.

        Returns:
            Updated Medication
        """
        amount = self._validate_amount(amount)
        with self._lock, self.store.atomic():
            self._require_medication(medication_id)
            medication = self.store.update_medication(medication_id, {
                'yearly_total_cost': amount,
                'last_yearly_reset_date': date(self.clock().year, 1, 1),
                'updated_at': datetime.now()
            })
        logger.info(f"Yearly total for {medication_id} overridden to {amount}")
        return medication

    # ---------- stock corrections ----------

    def set_current_quantity(self, medication_id: str, quantity: int):
        """
        Manual stock correction (restock, count after a spill, ...).

        Returns:
            Updated Medication
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError("Current quantity must be a non-negative integer")
        with self._lock, self.store.atomic():
            medication = self._require_medication(medication_id)
            previous = medication.current_quantity
            medication = self.store.update_medication(medication_id, {
                'current_quantity': quantity,
                'updated_at': datetime.now()
            })
        logger.info(f"Stock for {medication_id} set {previous} -> {quantity}")
        return medication
