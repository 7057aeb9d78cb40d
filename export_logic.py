"""
Export/import logic for Medtracker application.

Serializes the whole store (medications, daily taken records, purchase
history, daily-reduction marker) to a JSON document and restores it.
Stored fields are exported raw, including the stored yearly_total_cost and
last_yearly_reset_date, so a round trip is lossless.

This module follows the same architectural pattern as business_logic.py:
- NO direct database calls - always use database_manager module
- Timestamps set here (not in database)
- Empty strings converted to NULL via utils.empty_to_none()
"""

import logging
from datetime import datetime

from utils import (
    generate_uid, parse_date, format_date, to_decimal, dump_labels, load_labels, empty_to_none
)
from tracking_engine import LAST_STOCK_REDUCTION_KEY
import database_manager as db

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1

MEDICATION_REQUIRED_KEYS = ['id', 'name', 'frequency', 'timings', 'quantity_per_fill', 'current_quantity']
MEDICATION_DATE_KEYS = ['prescription_date', 'expiry_date', 'last_yearly_reset_date']
MEDICATION_OPTIONAL_COUNT_KEYS = ['total_dispensings_purchased', 'repeats_remaining', 'total_repeats']
TIMESTAMP_KEYS = ['created_at', 'updated_at']
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


# ==================== HELPER FUNCTIONS ====================

def _timestamp(value) -> str:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.strftime(TIMESTAMP_FORMAT)


def _parse_timestamp(value):
    if empty_to_none(value) is None:
        return datetime.now()
    return datetime.strptime(value, TIMESTAMP_FORMAT)


def _money(value) -> str:
    return str(to_decimal(value or 0))


def _is_count(value, minimum: int = 0) -> bool:
    """Integer (bools excluded) no smaller than minimum."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= minimum


def _timestamp_errors(label: str, item: dict) -> list:
    errors = []
    for key in TIMESTAMP_KEYS:
        value = empty_to_none(item.get(key))
        if value is None:
            continue
        try:
            datetime.strptime(value, TIMESTAMP_FORMAT)
        except (TypeError, ValueError):
            errors.append(f"{label}: {key} must be in YYYY-MM-DD HH:MM:SS format")
    return errors


# ==================== EXPORT ====================

def export_store() -> dict:
    """
    Serialize the entire store to a JSON-compatible dict.

    Returns:
        {
            "format_version": 1,
            "exported_at": "YYYY-MM-DD HH:MM:SS",
            "medications": [...],
            "daily_medication_taken": [...],
            "purchase_history": [...],
            "last_stock_reduction_date": "YYYY-MM-DD" or None
        }
    """
    medications = []
    for med in db.get_all_medications():
        medications.append({
            'id': med.id,
            'name': med.name,
            'dosage': med.dosage,
            'form': med.form,
            'frequency': med.frequency,
            'timings': load_labels(med.timings),
            'instructions': med.instructions,
            'doctor_id': med.doctor_id,
            'pharmacy_id': med.pharmacy_id,
            'prescription_date': format_date(med.prescription_date),
            'expiry_date': format_date(med.expiry_date),
            'repeats_remaining': med.repeats_remaining,
            'total_repeats': med.total_repeats,
            'quantity_per_fill': med.quantity_per_fill,
            'current_quantity': med.current_quantity,
            'cost': _money(med.cost),
            'total_dispensings_purchased': med.total_dispensings_purchased,
            'yearly_total_cost': _money(med.yearly_total_cost),
            'last_yearly_reset_date': format_date(med.last_yearly_reset_date),
            'is_active': med.is_active,
            'notes': med.notes,
            'created_at': _timestamp(med.created_at),
            'updated_at': _timestamp(med.updated_at),
        })

    taken_records = [{
        'id': record.id,
        'medication_id': record.medication_id,
        'date': format_date(record.date),
        'timings_taken': load_labels(record.timings_taken),
        'created_at': _timestamp(record.created_at),
        'updated_at': _timestamp(record.updated_at),
    } for record in db.get_all_daily_taken()]

    purchases = [{
        'id': purchase.id,
        'medication_id': purchase.medication_id,
        'amount': _money(purchase.amount),
        'purchase_date': format_date(purchase.purchase_date),
        'created_at': _timestamp(purchase.created_at),
    } for purchase in db.get_all_purchases()]

    marker = db.get_configuration_by_key(LAST_STOCK_REDUCTION_KEY)

    logger.info(f"Exported {len(medications)} medications, {len(taken_records)} taken records, "
                f"{len(purchases)} purchases")

    return {
        'format_version': EXPORT_FORMAT_VERSION,
        'exported_at': _timestamp(datetime.now()),
        'medications': medications,
        'daily_medication_taken': taken_records,
        'purchase_history': purchases,
        'last_stock_reduction_date': marker.value if marker else None,
    }


# ==================== IMPORT ====================

def validate_import(payload: dict) -> dict:
    """
    Dry-run validation before import.

    Checks:
    - Top-level structure and format version
    - Required medication fields, integer counts (bools rejected), is_active
      flag, date and timestamp formats
    - Duplicate medication IDs
    - Taken records / purchases carry an id and reference exported medications
    - Duplicate (medication, date) taken records

    Returns:
        {
            "valid": True/False,
            "errors": ["..."],
            "warnings": ["..."],
            "summary": {"medication_count": 3, "taken_count": 40, "purchase_count": 6}
        }
    """
    errors = []
    warnings = []

    if not isinstance(payload, dict):
        return {"valid": False, "errors": ["Import data must be a JSON object"], "warnings": [],
                "summary": {"medication_count": 0, "taken_count": 0, "purchase_count": 0}}

    version = payload.get('format_version')
    if version != EXPORT_FORMAT_VERSION:
        errors.append(f"Unsupported format_version: {version!r}")

    medications = payload.get('medications', [])
    taken_records = payload.get('daily_medication_taken', [])
    purchases = payload.get('purchase_history', [])
    for key, value in (('medications', medications), ('daily_medication_taken', taken_records),
                       ('purchase_history', purchases)):
        if not isinstance(value, list):
            errors.append(f"'{key}' must be a list")
    if errors:
        return {"valid": False, "errors": errors, "warnings": warnings,
                "summary": {"medication_count": 0, "taken_count": 0, "purchase_count": 0}}

    # Validate medications
    medication_ids = set()
    for index, med in enumerate(medications):
        label = f"Medication #{index + 1}"
        missing = [k for k in MEDICATION_REQUIRED_KEYS if k not in med]
        if missing:
            errors.append(f"{label}: missing field(s) {', '.join(missing)}")
            continue

        label = f"Medication '{med['name']}'"
        if med['id'] in medication_ids:
            errors.append(f"{label}: duplicate id {med['id']}")
        medication_ids.add(med['id'])

        if not _is_count(med['frequency']):
            errors.append(f"{label}: frequency must be a non-negative integer")
        if not _is_count(med['current_quantity']):
            errors.append(f"{label}: current_quantity must be a non-negative integer")
        if not _is_count(med['quantity_per_fill'], minimum=1):
            errors.append(f"{label}: quantity_per_fill must be a positive integer")
        for key in MEDICATION_OPTIONAL_COUNT_KEYS:
            if key in med and not _is_count(med[key]):
                errors.append(f"{label}: {key} must be a non-negative integer")
        if 'is_active' in med and not isinstance(med['is_active'], bool):
            errors.append(f"{label}: is_active must be true or false")
        if not isinstance(med['timings'], list):
            errors.append(f"{label}: timings must be a list")

        for key in MEDICATION_DATE_KEYS:
            if empty_to_none(med.get(key)) is not None:
                try:
                    parse_date(med[key])
                except ValueError:
                    errors.append(f"{label}: {key} must be in YYYY-MM-DD format")

        for key in ('cost', 'yearly_total_cost'):
            try:
                if to_decimal(med.get(key) or 0) < 0:
                    errors.append(f"{label}: {key} cannot be negative")
            except ValueError:
                errors.append(f"{label}: {key} is not a number")

        errors.extend(_timestamp_errors(label, med))

    # Validate taken records
    seen_days = set()
    for index, record in enumerate(taken_records):
        label = f"Taken record #{index + 1}"
        if empty_to_none(record.get('id')) is None:
            errors.append(f"{label}: missing id")
        errors.extend(_timestamp_errors(label, record))
        if record.get('medication_id') not in medication_ids:
            errors.append(f"{label}: unknown medication {record.get('medication_id')!r}")
            continue
        try:
            day = parse_date(record.get('date'))
        except ValueError:
            errors.append(f"{label}: date must be in YYYY-MM-DD format")
            continue
        key = (record['medication_id'], day)
        if key in seen_days:
            errors.append(f"{label}: duplicate record for {record['medication_id']} on {format_date(day)}")
        seen_days.add(key)
        if not record.get('timings_taken'):
            warnings.append(f"{label}: no timings taken - will be skipped")

    # Validate purchases
    for index, purchase in enumerate(purchases):
        label = f"Purchase #{index + 1}"
        if empty_to_none(purchase.get('id')) is None:
            errors.append(f"{label}: missing id")
        errors.extend(_timestamp_errors(label, purchase))
        if purchase.get('medication_id') not in medication_ids:
            errors.append(f"{label}: unknown medication {purchase.get('medication_id')!r}")
            continue
        try:
            parse_date(purchase.get('purchase_date'))
        except ValueError:
            errors.append(f"{label}: purchase_date must be in YYYY-MM-DD format")
        try:
            if to_decimal(purchase.get('amount')) < 0:
                errors.append(f"{label}: amount cannot be negative")
        except ValueError:
            errors.append(f"{label}: amount is not a number")

    marker = empty_to_none(payload.get('last_stock_reduction_date'))
    if marker is not None:
        try:
            parse_date(marker)
        except ValueError:
            errors.append("last_stock_reduction_date must be in YYYY-MM-DD format")

    if db.get_all_medications():
        warnings.append("Existing data will be replaced by the import")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "summary": {
            "medication_count": len(medications),
            "taken_count": len(taken_records),
            "purchase_count": len(purchases)
        }
    }


def import_store(payload: dict) -> dict:
    """
    Replace the entire store with an exported document.

    Prerequisites: validate_import() should pass before calling this

    Returns:
        {
            "medication_count": 3,
            "taken_count": 40,
            "purchase_count": 6,
            "message": "Successfully imported data"
        }

    Raises:
        ValueError: If the payload does not validate
    """
    validation = validate_import(payload)
    if not validation["valid"]:
        raise ValueError(f"Import data is invalid: {'; '.join(validation['errors'])}")

    now = datetime.now()
    medication_count = 0
    taken_count = 0
    purchase_count = 0

    with db.atomic():
        db.delete_all_data()

        for med in payload['medications']:
            db.create_medication({
                'id': med['id'],
                'name': med['name'],
                'dosage': empty_to_none(med.get('dosage')),
                'form': med.get('form') or 'tablet',
                'frequency': med['frequency'],
                'timings': dump_labels(med['timings']),
                'instructions': empty_to_none(med.get('instructions')),
                'doctor_id': empty_to_none(med.get('doctor_id')),
                'pharmacy_id': empty_to_none(med.get('pharmacy_id')),
                'prescription_date': _optional_date(med.get('prescription_date')),
                'expiry_date': _optional_date(med.get('expiry_date')),
                'repeats_remaining': med.get('repeats_remaining', 0),
                'total_repeats': med.get('total_repeats', 0),
                'quantity_per_fill': med['quantity_per_fill'],
                'current_quantity': med['current_quantity'],
                'cost': to_decimal(med.get('cost') or 0),
                'total_dispensings_purchased': med.get('total_dispensings_purchased', 0),
                'yearly_total_cost': to_decimal(med.get('yearly_total_cost') or 0),
                'last_yearly_reset_date': _optional_date(med.get('last_yearly_reset_date')),
                'is_active': med.get('is_active', True),
                'notes': empty_to_none(med.get('notes')),
                'created_at': _parse_timestamp(med.get('created_at')),
                'updated_at': _parse_timestamp(med.get('updated_at')),
            })
            medication_count += 1

        for record in payload['daily_medication_taken']:
            if not record.get('timings_taken'):
                continue
            db.create_daily_taken({
                'id': record['id'],
                'medication': record['medication_id'],
                'date': parse_date(record['date']),
                'timings_taken': dump_labels(record['timings_taken']),
                'created_at': _parse_timestamp(record.get('created_at')),
                'updated_at': _parse_timestamp(record.get('updated_at')),
            })
            taken_count += 1

        for purchase in payload['purchase_history']:
            db.create_purchase({
                'id': purchase['id'],
                'medication': purchase['medication_id'],
                'amount': to_decimal(purchase['amount']),
                'purchase_date': parse_date(purchase['purchase_date']),
                'created_at': _parse_timestamp(purchase.get('created_at')),
            })
            purchase_count += 1

        marker = empty_to_none(payload.get('last_stock_reduction_date'))
        if marker is not None:
            db.create_configuration({
                'id': generate_uid(),
                'key': LAST_STOCK_REDUCTION_KEY,
                'value': format_date(marker),
                'created_at': now,
                'updated_at': now,
            })

    logger.info(f"Imported {medication_count} medications, {taken_count} taken records, "
                f"{purchase_count} purchases")

    return {
        "medication_count": medication_count,
        "taken_count": taken_count,
        "purchase_count": purchase_count,
        "message": "Successfully imported data"
    }


def _optional_date(value):
    value = empty_to_none(value)
    return parse_date(value) if value is not None else None
