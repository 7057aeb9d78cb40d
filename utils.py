# Helpers for Medtracker application

import json
import uuid
from datetime import datetime, date
from decimal import Decimal, InvalidOperation


def generate_uid():
    """
    Generate unique record ID using UUID + timestamp.
    """
    uuid_part = uuid.uuid4().hex[:6]
    timestamp_part = str(int(datetime.now().timestamp()))[-4:]
    return f"{uuid_part}{timestamp_part}"


def empty_to_none(value):
    """Convert empty string or whitespace-only string to None.

    This ensures we store NULL in the database instead of empty strings,
    maintaining data integrity and query consistency.

    Args:
        value: Any value, typically a string from form input

    Returns:
        None if value is empty/whitespace/None, otherwise the value
    """
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return value


def validate_date_format(date_str: str) -> bool:
    """
    Validate date string is in YYYY-MM-DD format.

    Returns True if valid, False otherwise.
    """
    try:
        datetime.strptime(date_str, '%Y-%m-%d')
        return True
    except (ValueError, TypeError):
        return False


def validate_year(year: int) -> bool:
    """Validate year is reasonable (1900-2100)."""
    return isinstance(year, int) and 1900 <= year <= 2100


def parse_date(value):
    """
    Coerce a date or YYYY-MM-DD string to a date object.

    datetime values are truncated to their date part.

    Raises:
        ValueError: If value is neither a date nor a valid YYYY-MM-DD string
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and validate_date_format(value.strip()):
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    raise ValueError(f"Date must be in YYYY-MM-DD format: {value!r}")


def format_date(value) -> str:
    """Render a date as YYYY-MM-DD (None stays None)."""
    if value is None:
        return None
    return parse_date(value).strftime('%Y-%m-%d')


def to_decimal(value) -> Decimal:
    """
    Convert a money value (int, float, str, Decimal) to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: If value is not numeric
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")


def dump_labels(labels) -> str:
    """Serialize a collection of labels as a sorted JSON list (duplicates removed)."""
    return json.dumps(sorted(set(labels)))


def load_labels(raw) -> list:
    """Parse a JSON label list stored by dump_labels(). Empty/NULL gives []."""
    if not raw:
        return []
    return list(json.loads(raw))
