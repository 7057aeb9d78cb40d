"""
Business logic for Medtracker application.

All validation, business rules, and data preparation happens here.
This module prepares complete data dicts with IDs, timestamps, and NULL conversion
before passing to database_manager.py for pure CRUD operations.

Stock quantities and yearly costs are never written here directly - every
such change goes through the MedicationTrackingEngine instance `engine`.

DO NOT call database methods directly - always use database_manager module.
"""

import logging
import os
import json
import time
from datetime import datetime, date, timedelta
from decimal import Decimal
from typing import Optional
from utils import (
    generate_uid, empty_to_none, validate_year, parse_date, format_date,
    to_decimal, dump_labels, load_labels
)
from errors import ValidationError, MedicationNotFoundError
from tracking_engine import (
    MedicationTrackingEngine,
    total_number_of_dispensings,
    remaining_dispensings,
    total_amount_for_this_purchase,
    remaining_days_of_supply,
)
import database_manager as db

logger = logging.getLogger(__name__)

# Engine bound to the real store; replaced in tests to pin the clock
engine = MedicationTrackingEngine(store=db)

# Configuration cache for performance
# Avoids re-reading the config file on every dashboard request
_config_cache = {}
_cache_timestamp = None
CACHE_TIMEOUT = 300  # 5 minutes

# Database configuration state
DATABASE_CONFIGURED = False

# Try multiple paths for database config file (Docker vs local development)
DB_CONFIG_PATHS = [
    "/app/data/medtracker_db_config.json",  # Docker container path
    "./medtracker_db_config.json",           # Local development (project root)
    "./data/medtracker_db_config.json"       # Local development (data subdirectory)
]

# Application settings and their defaults (overridable in the config file)
APP_SETTING_DEFAULTS = {
    'reduce_on_startup': False,
    'low_stock_threshold': 7,
    'refill_warning_days': 7,
    'expiry_warning_days': 30,
}

MEDICATION_FORMS = [
    'tablet', 'capsule', 'liquid', 'injection', 'cream', 'ointment',
    'drops', 'inhaler', 'patch', 'suppository', 'other'
]

# Fields owned by the tracking engine, never accepted from the edit form
ENGINE_MANAGED_FIELDS = {'yearly_total_cost', 'last_yearly_reset_date'}

MEDICATION_FIELDS = {
    'name', 'dosage', 'form', 'frequency', 'timings', 'instructions',
    'doctor_id', 'pharmacy_id', 'prescription_date', 'expiry_date',
    'repeats_remaining', 'total_repeats', 'quantity_per_fill',
    'current_quantity', 'cost', 'total_dispensings_purchased',
    'is_active', 'notes'
}


# ==================== CONFIGURATION ====================

def _get_config_file_path() -> str:
    """
    Get the path to the database configuration file.

    Tries multiple paths in order:
    1. /app/data/medtracker_db_config.json (Docker container)
    2. ./medtracker_db_config.json (local dev - project root)
    3. ./data/medtracker_db_config.json (local dev - data subdirectory)

    Returns:
        str: Path to the config file (may not exist yet)
    """
    for path in DB_CONFIG_PATHS:
        if os.path.exists(path):
            return path

    if os.path.exists("/app/data"):
        return DB_CONFIG_PATHS[0]  # Docker
    else:
        return DB_CONFIG_PATHS[1]  # Local dev


def load_database_config() -> dict:
    """
    Load configuration from medtracker_db_config.json file.

    Returns:
        dict: Configuration (db_engine, db_path, db_host, db_port, db_name,
              db_user, db_password, db_pool_size plus application settings)
        None if file doesn't exist or can't be parsed
    """
    config_file = _get_config_file_path()

    if not os.path.exists(config_file):
        return None

    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
            logger.info(f"Database configuration loaded from {config_file}")
            return config
    except Exception as e:
        logger.error(f"Failed to read {config_file}: {e}")
        return None


def get_app_settings() -> dict:
    """
    Application settings merged over APP_SETTING_DEFAULTS.

    Cached for CACHE_TIMEOUT seconds.
    """
    global _config_cache, _cache_timestamp

    if _cache_timestamp is not None and time.time() - _cache_timestamp < CACHE_TIMEOUT:
        return _config_cache

    settings = dict(APP_SETTING_DEFAULTS)
    config = load_database_config() or {}
    for key in APP_SETTING_DEFAULTS:
        if key in config:
            settings[key] = config[key]

    _config_cache = settings
    _cache_timestamp = time.time()
    return settings


def clear_settings_cache() -> None:
    """Drop cached settings so the next read hits the config file."""
    global _config_cache, _cache_timestamp
    _config_cache = {}
    _cache_timestamp = None


def initialize_database():
    """Initialize database connection and create tables if needed."""
    global DATABASE_CONFIGURED

    try:
        config = load_database_config()

        if config is None:
            db_path = os.getenv("DATABASE_PATH", "./medtracker.db")
            logger.info(f"No medtracker_db_config.json found - using SQLite at {db_path}")
            config = {'db_engine': 'sqlite', 'db_path': db_path}

        db_engine = config.get('db_engine', 'sqlite')
        logger.info(f"Connecting to {db_engine} database")

        db.initialize_connection(
            db_engine=db_engine,
            db_path=config.get('db_path', os.getenv("DATABASE_PATH", "./medtracker.db")),
            host=config.get('db_host', 'localhost'),
            port=int(config.get('db_port', 3306)),
            database_name=config.get('db_name', 'medtracker'),
            user=config.get('db_user', 'medtracker_user'),
            password=config.get('db_password', 'medtracker_pass'),
            pool_size=int(config.get('db_pool_size', 10))
        )
        db.create_tables_if_not_exist()
        logger.info("Database initialized successfully")
        DATABASE_CONFIGURED = True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        DATABASE_CONFIGURED = False
        # Don't raise - allow app to start so user can fix configuration


# ==================== HELPER FUNCTIONS ====================

def _int_field(data: dict, key: str, label: str, minimum: int = 0,
               maximum: Optional[int] = None) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if value < minimum:
        raise ValidationError(f"{label} must be at least {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{label} cannot exceed {maximum}")
    return value


def _date_field(data: dict, key: str, label: str) -> Optional[date]:
    value = empty_to_none(data[key])
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"{label} must be in YYYY-MM-DD format")


def _purchase_date_field(value) -> Optional[date]:
    value = empty_to_none(value)
    if value is None:
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError("Purchase date must be in YYYY-MM-DD format")


def _clean_medication_data(data: dict, partial: bool = False) -> dict:
    """
    Validate medication form input and convert it to model field values.

    Args:
        data: Raw input dict
        partial: True for updates (only validate keys present)

    Returns:
        Dict of cleaned model fields

    Raises:
        ValidationError: On the first invalid field
    """
    managed = ENGINE_MANAGED_FIELDS & set(data)
    if managed:
        raise ValidationError(f"Field(s) managed by purchase tracking: {', '.join(sorted(managed))}")

    unknown = set(data) - MEDICATION_FIELDS
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(sorted(unknown))}")

    def wanted(key):
        return key in data if partial else True

    cleaned = {}

    if wanted('name'):
        name = empty_to_none(data.get('name'))
        if not name:
            raise ValidationError("Medication name is required")
        cleaned['name'] = name.strip()

    if wanted('frequency'):
        if data.get('frequency') is None:
            raise ValidationError("Frequency is required")
        cleaned['frequency'] = _int_field(data, 'frequency', "Frequency", minimum=1, maximum=10)

    if wanted('timings'):
        timings = data.get('timings') or []
        if isinstance(timings, str) or not all(isinstance(t, str) for t in timings):
            raise ValidationError("Timings must be a list of labels")
        labels = {t.strip() for t in timings if t.strip()}
        if not labels:
            raise ValidationError("At least one timing is required")
        cleaned['timings'] = dump_labels(labels)

    if wanted('quantity_per_fill'):
        if data.get('quantity_per_fill') is None:
            raise ValidationError("Quantity per fill is required")
        cleaned['quantity_per_fill'] = _int_field(data, 'quantity_per_fill', "Quantity per fill", minimum=1)

    if 'form' in data or not partial:
        form = empty_to_none(data.get('form')) or 'tablet'
        if form not in MEDICATION_FORMS:
            raise ValidationError(f"Form must be one of: {', '.join(MEDICATION_FORMS)}")
        cleaned['form'] = form

    for key, label in (('repeats_remaining', "Repeats remaining"),
                       ('total_repeats', "Total repeats"),
                       ('current_quantity', "Current quantity"),
                       ('total_dispensings_purchased', "Total dispensings purchased")):
        if key in data and data[key] is not None:
            cleaned[key] = _int_field(data, key, label)
        elif not partial:
            cleaned[key] = 0

    if 'cost' in data or not partial:
        try:
            cost = to_decimal(data.get('cost') or 0)
        except ValueError:
            raise ValidationError("Cost must be a number")
        if not cost.is_finite() or cost < 0:
            raise ValidationError("Cost cannot be negative")
        cleaned['cost'] = cost

    for key, label in (('prescription_date', "Prescription date"), ('expiry_date', "Expiry date")):
        if key in data:
            cleaned[key] = _date_field(data, key, label)

    for key in ('dosage', 'instructions', 'doctor_id', 'pharmacy_id', 'notes'):
        if key in data:
            cleaned[key] = empty_to_none(data[key])

    if 'is_active' in data:
        if not isinstance(data['is_active'], bool):
            raise ValidationError("is_active must be true or false")
        cleaned['is_active'] = data['is_active']
    elif not partial:
        cleaned['is_active'] = True

    return cleaned


def _medication_to_dict(medication, as_of: Optional[date] = None) -> dict:
    """Serialize a medication with derived quantities and the resolved yearly cost."""
    as_of = as_of or engine.clock()
    return {
        'id': medication.id,
        'name': medication.name,
        'dosage': medication.dosage,
        'form': medication.form,
        'frequency': medication.frequency,
        'timings': load_labels(medication.timings),
        'instructions': medication.instructions,
        'doctor_id': medication.doctor_id,
        'pharmacy_id': medication.pharmacy_id,
        'prescription_date': format_date(medication.prescription_date),
        'expiry_date': format_date(medication.expiry_date),
        'repeats_remaining': medication.repeats_remaining,
        'total_repeats': medication.total_repeats,
        'quantity_per_fill': medication.quantity_per_fill,
        'current_quantity': medication.current_quantity,
        'cost': to_decimal(medication.cost or 0),
        'total_dispensings_purchased': medication.total_dispensings_purchased,
        'yearly_total_cost': engine.resolve_yearly_total(medication, as_of),
        'is_active': medication.is_active,
        'notes': medication.notes,
        'total_number_of_dispensings': total_number_of_dispensings(medication),
        'remaining_dispensings': remaining_dispensings(medication),
        'total_amount_for_this_purchase': total_amount_for_this_purchase(medication),
        'remaining_days_of_supply': remaining_days_of_supply(medication.current_quantity,
                                                             medication.frequency),
    }


def _purchase_to_dict(purchase, medication_name: Optional[str] = None) -> dict:
    result = {
        'id': purchase.id,
        'medication_id': purchase.medication_id,
        'amount': to_decimal(purchase.amount),
        'purchase_date': format_date(purchase.purchase_date),
    }
    if medication_name is not None:
        result['medication_name'] = medication_name
    return result


def _get_medication_or_raise(medication_id: str):
    medication = db.get_medication_by_id(medication_id)
    if not medication:
        raise MedicationNotFoundError(medication_id)
    return medication


# ==================== MEDICATION BUSINESS LOGIC ====================

def get_all_medications(active_only: bool = False) -> list:
    """
    Get all medications (optionally only active ones) as dicts.
    """
    try:
        medications = db.get_active_medications() if active_only else db.get_all_medications()
        today = engine.clock()
        return [_medication_to_dict(m, today) for m in medications]
    except Exception as e:
        logger.error(f"Failed to get medications: {e}")
        raise


def get_medication(medication_id: str) -> dict:
    """Get a single medication as dict."""
    try:
        return _medication_to_dict(_get_medication_or_raise(medication_id))
    except Exception as e:
        logger.error(f"Failed to get medication {medication_id}: {e}")
        raise


def create_medication(data: dict) -> dict:
    """
    Create new medication.

    Business logic:
    - Validate required fields (name, frequency, timings, quantity_per_fill)
    - Validate ranges, form and dates
    - Generate ID and timestamps
    - Start the yearly accumulator at 0 for the current year
    - A non-zero total_dispensings_purchased is finalized as a purchase
      (optional purchase_date, default today)
    - Row creation and purchase finalization commit together or not at all
    """
    try:
        data = dict(data)
        purchase_date = _purchase_date_field(data.pop('purchase_date', None))
        cleaned = _clean_medication_data(data)

        now = datetime.now()
        medication_data = {
            'id': generate_uid(),
            **cleaned,
            'yearly_total_cost': Decimal('0'),
            'last_yearly_reset_date': date(engine.clock().year, 1, 1),
            'created_at': now,
            'updated_at': now
        }

        with engine.atomic():
            medication = db.create_medication(medication_data)
            if cleaned['total_dispensings_purchased'] > 0:
                engine.finalize_purchase(medication.id, purchase_date)

        logger.info(f"Business logic: Created medication {medication.name}")
        return _medication_to_dict(db.get_medication_by_id(medication.id))
    except Exception as e:
        logger.error(f"Failed to create medication: {e}")
        raise


def update_medication(medication_id: str, data: dict) -> dict:
    """
    Update medication from the edit form.

    Business logic:
    - Validate medication exists and only known, form-editable fields are sent
    - current_quantity is applied as an engine stock correction
    - A non-zero total_dispensings_purchased finalizes a purchase of
      dispensings x cost on purchase_date (default today) and resets the
      counter to 0
    - yearly_total_cost / last_yearly_reset_date are rejected
      (use override_yearly_total)
    - All writes commit together; any failure leaves the medication unchanged
    """
    try:
        _get_medication_or_raise(medication_id)

        data = dict(data)
        purchase_date = _purchase_date_field(data.pop('purchase_date', None))
        cleaned = _clean_medication_data(data, partial=True)
        new_quantity = cleaned.pop('current_quantity', None)

        with engine.atomic():
            if cleaned:
                cleaned['updated_at'] = datetime.now()
                db.update_medication(medication_id, cleaned)

            if new_quantity is not None:
                engine.set_current_quantity(medication_id, new_quantity)

            if cleaned.get('total_dispensings_purchased'):
                engine.finalize_purchase(medication_id, purchase_date)

        logger.info(f"Business logic: Updated medication {medication_id}")
        return _medication_to_dict(db.get_medication_by_id(medication_id))
    except Exception as e:
        logger.error(f"Failed to update medication: {e}")
        raise


def delete_medication(medication_id: str) -> None:
    """
    Delete medication.

    Business logic:
    - Validate medication exists
    - Delete with its taken history and purchase history
    """
    try:
        _get_medication_or_raise(medication_id)
        db.delete_medication(medication_id)
        logger.info(f"Business logic: Deleted medication {medication_id}")
    except Exception as e:
        logger.error(f"Failed to delete medication: {e}")
        raise


# ==================== DOSE TRACKING ====================

def _taken_state(medication_id: str, taken_date: date, changed: bool) -> dict:
    medication = db.get_medication_by_id(medication_id)
    return {
        'medication_id': medication_id,
        'date': format_date(taken_date),
        'changed': changed,
        'timings_taken': sorted(engine.get_taken_timings(medication_id, taken_date)),
        'current_quantity': medication.current_quantity,
    }


def mark_taken(medication_id: str, timing: str, taken_date: str) -> dict:
    """
    Mark a timing as taken for a date.

    Returns the resulting taken state; 'changed' is False when the timing
    was already taken (no stock consumed).
    """
    try:
        changed = engine.mark_taken(medication_id, timing, taken_date)
        return _taken_state(medication_id, parse_date(taken_date), changed)
    except Exception as e:
        logger.error(f"Failed to mark medication taken: {e}")
        raise


def unmark_taken(medication_id: str, timing: str, taken_date: str) -> dict:
    """
    Reverse a taken timing for a date.

    'changed' is False when the timing was not taken (no stock returned).
    """
    try:
        changed = engine.unmark_taken(medication_id, timing, taken_date)
        return _taken_state(medication_id, parse_date(taken_date), changed)
    except Exception as e:
        logger.error(f"Failed to unmark medication taken: {e}")
        raise


def get_taken_timings(medication_id: str, taken_date: str) -> list:
    """Sorted timing labels taken for a medication on a date."""
    try:
        return sorted(engine.get_taken_timings(medication_id, taken_date))
    except Exception as e:
        logger.error(f"Failed to get taken timings: {e}")
        raise


def run_daily_reduction() -> dict:
    """
    Run the daily stock reduction (no-op if it already ran today).

    Returns:
        {'ran': bool, 'date': 'YYYY-MM-DD', 'reduced': {...}, 'skipped': [...]}
    """
    try:
        result = engine.run_daily_reduction()
        if result is None:
            return {
                'ran': False,
                'date': format_date(engine.get_last_reduction_date()),
                'reduced': {},
                'skipped': []
            }
        return {
            'ran': True,
            'date': format_date(result['date']),
            'reduced': result['reduced'],
            'skipped': result['skipped']
        }
    except Exception as e:
        logger.error(f"Failed to run daily stock reduction: {e}")
        raise


# ==================== PURCHASES & YEARLY COST ====================

def record_purchase(medication_id: str, amount, purchase_date: str) -> Optional[dict]:
    """
    Record a purchase for a medication.

    Returns the purchase dict, or None for a zero amount (nothing recorded).
    """
    try:
        purchase = engine.record_purchase(medication_id, amount, purchase_date)
        if purchase is None:
            return None
        logger.info(f"Business logic: Recorded purchase {purchase.id}")
        return _purchase_to_dict(purchase)
    except Exception as e:
        logger.error(f"Failed to record purchase: {e}")
        raise


def get_purchase_history(medication_id: str) -> list:
    """All purchases for a medication, newest first."""
    try:
        _get_medication_or_raise(medication_id)
        return [_purchase_to_dict(p) for p in db.get_purchases_by_medication(medication_id)]
    except Exception as e:
        logger.error(f"Failed to get purchase history: {e}")
        raise


def get_yearly_total(medication_id: str, as_of: Optional[str] = None) -> dict:
    """
    Effective yearly cost for a medication as of a date (default today).
    """
    try:
        medication = _get_medication_or_raise(medication_id)
        if empty_to_none(as_of) is None:
            as_of_date = engine.clock()
        else:
            try:
                as_of_date = parse_date(as_of)
            except ValueError:
                raise ValidationError("As-of date must be in YYYY-MM-DD format")
        return {
            'medication_id': medication_id,
            'as_of': format_date(as_of_date),
            'yearly_total_cost': engine.resolve_yearly_total(medication, as_of_date)
        }
    except Exception as e:
        logger.error(f"Failed to get yearly total: {e}")
        raise


def override_yearly_total(medication_id: str, amount) -> dict:
    """Manually set the current year's accumulated cost."""
    try:
        engine.override_yearly_total(medication_id, amount)
        logger.info(f"Business logic: Overrode yearly total for {medication_id}")
        return get_yearly_total(medication_id)
    except Exception as e:
        logger.error(f"Failed to override yearly total: {e}")
        raise


def get_recent_purchases(limit: int = 10) -> list:
    """
    Get most recent purchases across all medications.

    Returns list of dicts with medication name included.
    """
    try:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("Limit must be a positive integer")
        purchases = db.get_recent_purchases(limit)
        result = [_purchase_to_dict(p, p.medication.name) for p in purchases]
        logger.info(f"Business logic: Retrieved {len(result)} recent purchases")
        return result
    except Exception as e:
        logger.error(f"Failed to get recent purchases: {e}")
        raise


# ==================== DASHBOARD & REPORTS ====================

def get_dashboard_stats(as_of: Optional[date] = None) -> dict:
    """
    Get all data needed for the dashboard.

    Business logic:
    - Low stock: current_quantity <= low_stock_threshold
    - Upcoming refills: remaining days of supply <= refill_warning_days
      (medications with frequency 0 never qualify)
    - Needing appointment: active, running out, and no repeats remaining
    - Expiring: expiry date within expiry_warning_days after today
    - Yearly spending: sum of resolved yearly totals
    """
    try:
        today = as_of or engine.clock()
        settings = get_app_settings()
        low_stock_threshold = int(settings['low_stock_threshold'])
        refill_days = int(settings['refill_warning_days'])
        expiry_limit = today + timedelta(days=int(settings['expiry_warning_days']))

        medications = db.get_all_medications()

        def running_out(med):
            days = remaining_days_of_supply(med.current_quantity, med.frequency)
            return days is not None and days <= refill_days

        low_stock = [m for m in medications if m.current_quantity <= low_stock_threshold]
        upcoming_refills = [m for m in medications if running_out(m)]
        needing_appointment = [m for m in medications
                               if m.is_active and running_out(m) and m.repeats_remaining == 0]
        expiring = [m for m in medications
                    if m.expiry_date and today < parse_date(m.expiry_date) <= expiry_limit]
        yearly_spending = sum((engine.resolve_yearly_total(m, today) for m in medications), Decimal('0'))

        def summary(med):
            return {
                'id': med.id,
                'name': med.name,
                'current_quantity': med.current_quantity,
                'remaining_days_of_supply': remaining_days_of_supply(med.current_quantity, med.frequency),
                'repeats_remaining': med.repeats_remaining,
                'expiry_date': format_date(med.expiry_date),
            }

        return {
            'date': format_date(today),
            'total_medications': len(medications),
            'active_medications': sum(1 for m in medications if m.is_active),
            'medications_low': len(low_stock),
            'upcoming_refills': len(upcoming_refills),
            'yearly_spending': yearly_spending,
            'low_stock': [summary(m) for m in low_stock],
            'expiring': [summary(m) for m in expiring],
            'needing_appointment': [summary(m) for m in needing_appointment],
        }
    except Exception as e:
        logger.error(f"Failed to get dashboard stats: {e}")
        raise


def get_schedule_for_date(schedule_date: str) -> list:
    """
    Active medications with each timing flagged as taken or not for a date.
    """
    try:
        try:
            day = parse_date(schedule_date)
        except ValueError:
            raise ValidationError("Date must be in YYYY-MM-DD format")

        taken_by_medication = {
            record.medication_id: set(load_labels(record.timings_taken))
            for record in db.get_daily_taken_by_date(day)
        }

        result = []
        for medication in db.get_active_medications():
            taken = taken_by_medication.get(medication.id, set())
            result.append({
                'medication_id': medication.id,
                'name': medication.name,
                'dosage': medication.dosage,
                'frequency': medication.frequency,
                'current_quantity': medication.current_quantity,
                'timings': [{'timing': t, 'taken': t in taken} for t in load_labels(medication.timings)],
                'taken_count': len(taken),
            })
        return result
    except Exception as e:
        logger.error(f"Failed to get schedule: {e}")
        raise


def get_medication_report(year: int) -> dict:
    """
    Per-medication summary and monthly spending for a year.

    Yearly cost for the current year is the resolved accumulator (includes
    manual overrides); for other years it is the purchase history total.
    """
    try:
        if not validate_year(year):
            raise ValidationError(f"Invalid year: {year}")

        today = engine.clock()
        medications = []
        for med in db.get_all_medications():
            purchase_total = to_decimal(db.get_purchase_total_by_medication_year(med.id, year))
            if year == today.year:
                yearly_cost = engine.resolve_yearly_total(med, today)
            else:
                yearly_cost = purchase_total
            medications.append({
                'id': med.id,
                'name': med.name,
                'is_active': med.is_active,
                'current_quantity': med.current_quantity,
                'remaining_days_of_supply': remaining_days_of_supply(med.current_quantity, med.frequency),
                'repeats_remaining': med.repeats_remaining,
                'yearly_cost': yearly_cost,
                'purchase_total': purchase_total,
            })

        monthly_spending = {month: Decimal('0') for month in range(1, 13)}
        for purchase in db.get_purchases_by_year(year):
            month = parse_date(purchase.purchase_date).month
            monthly_spending[month] += to_decimal(purchase.amount)

        return {
            'year': year,
            'medications': medications,
            'monthly_spending': [{'month': m, 'amount': monthly_spending[m]} for m in range(1, 13)],
            'total_spending': sum(monthly_spending.values(), Decimal('0')),
        }
    except Exception as e:
        logger.error(f"Failed to get medication report: {e}")
        raise
