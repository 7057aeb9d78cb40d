"""
Database manager for Medtracker application.

All database CRUD operations are performed here using PeeWee ORM.
This module contains PURE CRUD functions - no validation, no logic.
All data preparation and validation happens in business_logic.py and
tracking_engine.py.

The module itself is the store handed to MedicationTrackingEngine.
"""

import logging
import time
from contextlib import contextmanager
from datetime import date
from peewee import (
    SqliteDatabase, DoesNotExist, OperationalError, InterfaceError, fn
)
from playhouse.pool import PooledMySQLDatabase
from database_model import (
    database,
    ALL_MODELS,
    Medication,
    DailyMedicationTaken,
    PurchaseHistory,
    Configuration
)
from errors import StorageError

logger = logging.getLogger(__name__)

# Connection retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1  # seconds

# Query performance tracking
ENABLE_QUERY_METRICS = True
SLOW_QUERY_THRESHOLD = 1.0  # Log queries taking longer than 1 second


# ==================== INITIALIZATION ====================

def initialize_connection(db_engine: str = "sqlite",
                          db_path: str = "./medtracker.db",
                          host: str = "localhost", port: int = 3306,
                          database_name: str = "medtracker",
                          user: str = "medtracker_user",
                          password: str = "medtracker_pass",
                          pool_size: int = 10,
                          pool_recycle: int = 3600) -> None:
    """
    Initialize database connection.

    SQLite is the default for a single-user install. MySQL uses connection
    pooling so concurrent API requests reuse connections.

    Args:
        db_engine: 'sqlite' or 'mysql'
        db_path: SQLite database file (sqlite only)
        host: Database host (mysql only)
        port: Database port (mysql only)
        database_name: Database name (mysql only)
        user: Database user (mysql only)
        password: Database password (mysql only)
        pool_size: Maximum number of connections in pool (default: 10)
        pool_recycle: Recycle connections after this many seconds (default: 3600)
    """
    try:
        if db_engine == "mysql":
            database.initialize(PooledMySQLDatabase(
                database_name,
                host=host,
                port=port,
                user=user,
                password=password,
                charset='utf8mb4',
                max_connections=pool_size,
                stale_timeout=pool_recycle,
                timeout=10  # Connection timeout
            ))
            target = f"{host}:{port}/{database_name} (pool_size={pool_size}, recycle={pool_recycle}s)"
        elif db_engine == "sqlite":
            database.initialize(SqliteDatabase(
                db_path,
                pragmas={'foreign_keys': 1, 'journal_mode': 'wal'}
            ))
            target = db_path
        else:
            raise ValueError(f"Unsupported database engine: {db_engine}")

        if database.is_closed():
            database.connect()

        logger.info(f"Database connection initialized: {db_engine} {target}")
    except Exception as e:
        logger.error(f"Failed to initialize database connection: {e}")
        raise


def check_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns True if connection is alive, False otherwise.
    """
    try:
        database.execute_sql('SELECT 1')
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def reconnect() -> bool:
    """
    Attempt to reconnect to database.

    Returns True if reconnection successful, False otherwise.
    """
    try:
        if not database.is_closed():
            database.close()
        database.connect()
        logger.info("Database reconnection successful")
        return True
    except Exception as e:
        logger.error(f"Database reconnection failed: {e}")
        return False


def execute_with_retry(operation, *args, **kwargs):
    """
    Execute database operation with retry logic for transient failures.

    Inside an open transaction there is no retry: reconnecting would drop
    the transaction, so the failure is surfaced to the outer scope.

    Args:
        operation: Function to execute
        *args, **kwargs: Arguments to pass to operation

    Returns:
        Result of operation

    Raises:
        StorageError: If all retries exhausted
    """
    last_exception = None

    for attempt in range(MAX_RETRIES):
        try:
            # Check connection health before operation
            if attempt > 0 and not check_connection():
                logger.info("Connection unhealthy, attempting reconnect...")
                reconnect()

            return operation(*args, **kwargs)

        except (OperationalError, InterfaceError) as e:
            last_exception = e
            if database.in_transaction():
                raise StorageError(f"Database operation failed inside transaction: {e}") from e

            logger.warning(f"Database operation failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}")

            if attempt < MAX_RETRIES - 1:
                time.sleep(RETRY_DELAY)
                reconnect()
            else:
                logger.error(f"Database operation failed after {MAX_RETRIES} attempts")
                raise StorageError(f"Database unavailable: {e}") from e

        except Exception as e:
            # Non-retryable error, raise immediately
            logger.error(f"Non-retryable database error: {e}")
            raise

    raise StorageError(f"Database unavailable: {last_exception}")


def create_tables_if_not_exist() -> None:
    """
    Create all tables if they don't exist.

    Note: PeeWee's safe=True checks if tables exist, but may still try to
    add indexes. We catch duplicate key errors which can happen if tables
    already exist with indexes from a previous run.
    """
    try:
        database.create_tables(ALL_MODELS, safe=True)
        logger.info("Database tables created/verified")
    except OperationalError as e:
        if "Duplicate key name" in str(e) or "Duplicate entry" in str(e):
            logger.info("Database tables already exist with indexes - skipping creation")
        else:
            logger.error(f"Failed to create tables: {e}")
            raise
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


def close_connection() -> None:
    """Close database connection."""
    if database.obj is not None and not database.is_closed():
        database.close()
        logger.info("Database connection closed")


@contextmanager
def atomic():
    """
    Transaction scope for multi-step read-check-write sequences.

    CRUD functions called inside the block join the transaction (as
    savepoints). Connection failures surface as StorageError.
    """
    try:
        with database.atomic():
            yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Transaction aborted: {e}")
        raise StorageError(f"Database unavailable: {e}") from e


def _execute_transaction(func, *args, **kwargs):
    """
    Inner function to execute database operation in transaction.

    This is separated out so it can be wrapped by execute_with_retry.
    """
    with database.atomic():
        return func(*args, **kwargs)


def with_transaction(func):
    """
    Decorator to wrap database write operations in transactions with retry logic.

    Ensures atomicity - either all changes succeed or all are rolled back.
    Automatically retries on transient connection failures (OperationalError).
    """
    def wrapper(*args, **kwargs):
        try:
            return execute_with_retry(_execute_transaction, func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__} after all retries: {e}")
            raise
    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper


def with_retry(func):
    """
    Decorator to wrap database read operations with retry logic.

    Automatically retries on transient connection failures (OperationalError).
    """
    def wrapper(*args, **kwargs):
        try:
            return execute_with_retry(func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to {func.__name__} after all retries: {e}")
            raise
    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper


def log_query_time(func):
    """
    Decorator to log query execution time for performance monitoring.

    Logs warning for queries exceeding SLOW_QUERY_THRESHOLD.
    """
    def wrapper(*args, **kwargs):
        if not ENABLE_QUERY_METRICS:
            return func(*args, **kwargs)

        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            elapsed = time.time() - start_time

            if elapsed > SLOW_QUERY_THRESHOLD:
                logger.warning(f"Slow query in {func.__name__}: {elapsed:.3f}s")
            else:
                logger.debug(f"Query {func.__name__}: {elapsed:.3f}s")

            return result
        except Exception as e:
            elapsed = time.time() - start_time
            logger.error(f"Query failed in {func.__name__} after {elapsed:.3f}s: {e}")
            raise
    wrapper.__name__ = func.__name__
    wrapper.__doc__ = func.__doc__
    return wrapper


# ==================== MEDICATION CRUD ====================

@with_transaction
def create_medication(data: dict) -> Medication:
    """Create medication with provided data dict."""
    medication = Medication(**data)
    medication.save(force_insert=True)
    logger.info(f"Created medication: {medication.name} ({medication.id})")
    return medication


@with_retry
def get_medication_by_id(medication_id: str) -> Medication:
    """Get medication by ID."""
    try:
        return Medication.get(Medication.id == medication_id)
    except DoesNotExist:
        return None


@with_retry
def get_all_medications() -> list:
    """Get all medications, ordered by name."""
    return list(Medication.select().order_by(Medication.name))


@with_retry
def get_active_medications() -> list:
    """Get medications with is_active set."""
    return list(Medication
                .select()
                .where(Medication.is_active == True)  # noqa: E712
                .order_by(Medication.name))


@with_transaction
def update_medication(medication_id: str, data: dict) -> Medication:
    """Update medication fields."""
    medication = Medication.get(Medication.id == medication_id)
    for key, value in data.items():
        setattr(medication, key, value)
    medication.save()
    logger.debug(f"Updated medication: {medication.name} ({medication.id}) fields={sorted(data)}")
    return medication


@with_transaction
def delete_medication(medication_id: str) -> None:
    """
    Delete a medication and all related data.

    WARNING: This cascades to delete all associated:
    - Daily taken records
    - Purchase history
    """
    taken_count = DailyMedicationTaken.delete().where(
        DailyMedicationTaken.medication == medication_id
    ).execute()
    purchase_count = PurchaseHistory.delete().where(
        PurchaseHistory.medication == medication_id
    ).execute()

    medication = Medication.get(Medication.id == medication_id)
    medication_name = medication.name
    medication.delete_instance()
    logger.info(f"Deleted medication: {medication_name} ({medication_id}), "
                f"{taken_count} taken records, {purchase_count} purchases")


# ==================== DAILY TAKEN CRUD ====================

@with_transaction
def create_daily_taken(data: dict) -> DailyMedicationTaken:
    """Create daily taken record with provided data dict."""
    record = DailyMedicationTaken(**data)
    record.save(force_insert=True)
    logger.debug(f"Created daily taken record: {record.id}")
    return record


@with_retry
def get_daily_taken(medication_id: str, taken_date: date) -> DailyMedicationTaken:
    """Get daily taken record by medication/date."""
    return DailyMedicationTaken.get_or_none(
        (DailyMedicationTaken.medication == medication_id) &
        (DailyMedicationTaken.date == taken_date)
    )


@with_retry
def daily_taken_exists(medication_id: str, taken_date: date) -> bool:
    """Check if any timing was marked taken for medication/date."""
    return DailyMedicationTaken.select().where(
        (DailyMedicationTaken.medication == medication_id) &
        (DailyMedicationTaken.date == taken_date)
    ).exists()


@with_retry
def get_daily_taken_by_date(taken_date: date) -> list:
    """Get all daily taken records for a date."""
    return list(DailyMedicationTaken
                .select()
                .where(DailyMedicationTaken.date == taken_date))


@with_retry
def get_all_daily_taken() -> list:
    """Get all daily taken records."""
    return list(DailyMedicationTaken
                .select()
                .order_by(DailyMedicationTaken.date, DailyMedicationTaken.medication))


@with_transaction
def update_daily_taken(record_id: str, data: dict) -> DailyMedicationTaken:
    """Update daily taken record fields."""
    record = DailyMedicationTaken.get(DailyMedicationTaken.id == record_id)
    for key, value in data.items():
        setattr(record, key, value)
    record.save()
    logger.debug(f"Updated daily taken record: {record.id}")
    return record


@with_transaction
def delete_daily_taken(record_id: str) -> None:
    """Delete daily taken record by ID."""
    record = DailyMedicationTaken.get(DailyMedicationTaken.id == record_id)
    record.delete_instance()
    logger.debug(f"Deleted daily taken record: {record_id}")


# ==================== PURCHASE HISTORY CRUD ====================

@with_transaction
def create_purchase(data: dict) -> PurchaseHistory:
    """Create purchase history entry with provided data dict."""
    purchase = PurchaseHistory(**data)
    purchase.save(force_insert=True)
    logger.info(f"Created purchase: {purchase.id}, amount={purchase.amount}")
    return purchase


@with_retry
def get_purchases_by_medication(medication_id: str) -> list:
    """Get purchase history for a medication, newest first."""
    return list(PurchaseHistory
                .select()
                .where(PurchaseHistory.medication == medication_id)
                .order_by(PurchaseHistory.purchase_date.desc()))


@with_retry
@log_query_time
def get_purchases_by_year(year: int) -> list:
    """Get all purchases dated within year (with eager-loaded medications)."""
    start_date = date(year, 1, 1)
    end_date = date(year + 1, 1, 1)

    return list(PurchaseHistory
                .select(PurchaseHistory, Medication)
                .join(Medication)
                .where(
                    (PurchaseHistory.purchase_date >= start_date) &
                    (PurchaseHistory.purchase_date < end_date)
                )
                .order_by(PurchaseHistory.purchase_date))


@with_retry
def get_purchase_total_by_medication_year(medication_id: str, year: int):
    """Sum purchase amounts for a medication within year (0 if none)."""
    start_date = date(year, 1, 1)
    end_date = date(year + 1, 1, 1)

    total = (PurchaseHistory
             .select(fn.SUM(PurchaseHistory.amount))
             .where(
                 (PurchaseHistory.medication == medication_id) &
                 (PurchaseHistory.purchase_date >= start_date) &
                 (PurchaseHistory.purchase_date < end_date)
             )
             .scalar())
    return total or 0


@with_retry
def get_recent_purchases(limit: int = 10) -> list:
    """Get most recent purchases (with eager-loaded medications to avoid N+1 queries)."""
    return list(PurchaseHistory
                .select(PurchaseHistory, Medication)
                .join(Medication)
                .order_by(PurchaseHistory.purchase_date.desc(), PurchaseHistory.created_at.desc())
                .limit(limit))


@with_retry
def get_all_purchases() -> list:
    """Get all purchase history entries."""
    return list(PurchaseHistory
                .select()
                .order_by(PurchaseHistory.purchase_date, PurchaseHistory.created_at))


# ==================== CONFIGURATION CRUD ====================

@with_transaction
def create_configuration(data: dict) -> Configuration:
    """Create configuration entry with provided data dict."""
    config = Configuration(**data)
    config.save(force_insert=True)
    logger.info(f"Created configuration: {config.key}")
    return config


@with_retry
def get_configuration_by_key(key: str) -> Configuration:
    """Get configuration by key."""
    try:
        return Configuration.get(Configuration.key == key)
    except DoesNotExist:
        return None


@with_transaction
def create_or_update_configuration(data: dict) -> Configuration:
    """
    Create or update configuration entry.

    Checks if entry exists by key.
    If exists: updates value, updated_at
    If not: creates new entry

    Args:
        data: Configuration data dict with all fields

    Returns:
        Configuration object (created or updated)
    """
    existing = Configuration.get_or_none(Configuration.key == data["key"])

    if existing:
        existing.value = data["value"]
        existing.updated_at = data["updated_at"]
        existing.save()
        logger.info(f"Updated configuration: {existing.key}")
        return existing
    else:
        config = Configuration(**data)
        config.save(force_insert=True)
        logger.info(f"Created configuration: {config.key}")
        return config


# ==================== BULK OPERATIONS ====================

@with_transaction
def delete_all_data() -> None:
    """
    Delete every row from every table (children first).

    Used by full-store import, which replaces the whole dataset.
    """
    for model in reversed(ALL_MODELS):
        count = model.delete().execute()
        logger.info(f"Cleared {model._meta.table_name}: {count} rows")
