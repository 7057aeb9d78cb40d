"""
Database models for Medtracker application.

All models use PeeWee ORM and follow these principles:
- IDs generated in business_logic.py via utils.generate_uid()
- Currency amounts stored as DECIMAL(12,2), quantities as integers
- Set-valued fields stored as sorted JSON lists (utils.dump_labels)
- Empty strings converted to NULL via utils.empty_to_none()
- NO LOGIC IN MODELS - pure data structures only
- Stock and yearly-cost fields are only written by tracking_engine.py
- Timestamps set explicitly by the calling layer
"""

from peewee import (
    Model,
    DatabaseProxy,
    CharField,
    IntegerField,
    BooleanField,
    DecimalField,
    DateField,
    DateTimeField,
    TextField,
    ForeignKeyField,
)


# Database connection placeholder
# Initialized in database_manager.py with either a pooled MySQL database or SQLite
database = DatabaseProxy()


class BaseModel(Model):
    """
    Base model with common fields.

    All models inherit from this to get:
    - id field (set by business_logic.py)
    - created_at timestamp
    - Shared database connection
    """
    id = CharField(primary_key=True, max_length=10)
    created_at = DateTimeField()

    class Meta:
        database = database


class Medication(BaseModel):
    """
    A prescribed medication with its schedule, stock and cost state.

    Business rules:
    - frequency is doses per day (1-10 when entered through the form)
    - timings is a JSON list of labels ("Morning", "Bedtime", ...)
    - current_quantity never drops below 0
    - yearly_total_cost belongs to the year of last_yearly_reset_date and is
      only read through tracking_engine.resolve_yearly_total()
    - doctor_id / pharmacy_id are opaque references to external records
    """
    name = CharField(max_length=255)
    dosage = CharField(max_length=100, null=True)
    form = CharField(max_length=20, default='tablet')
    frequency = IntegerField()
    timings = TextField()
    instructions = TextField(null=True)
    doctor_id = CharField(max_length=36, null=True)
    pharmacy_id = CharField(max_length=36, null=True)
    prescription_date = DateField(null=True)
    expiry_date = DateField(null=True)
    repeats_remaining = IntegerField(default=0)
    total_repeats = IntegerField(default=0)
    quantity_per_fill = IntegerField()
    current_quantity = IntegerField(default=0)
    cost = DecimalField(max_digits=12, decimal_places=2, default=0)
    total_dispensings_purchased = IntegerField(default=0)
    yearly_total_cost = DecimalField(max_digits=12, decimal_places=2, default=0)
    last_yearly_reset_date = DateField(null=True)
    is_active = BooleanField(default=True)
    notes = TextField(null=True)
    updated_at = DateTimeField()

    class Meta:
        table_name = 'medtracker_medications'


class DailyMedicationTaken(BaseModel):
    """
    Timings marked as taken for one medication on one calendar date.

    Business rules:
    - At most one row per (medication, date)
    - timings_taken holds each label at most once
    - Row is deleted once its last timing is unmarked
    """
    medication = ForeignKeyField(Medication, column_name='medication_id', backref='taken_records')
    date = DateField()
    timings_taken = TextField()
    updated_at = DateTimeField()

    class Meta:
        table_name = 'medtracker_daily_taken'
        indexes = (
            (('medication', 'date'), True),  # Unique together
        )


class PurchaseHistory(BaseModel):
    """
    One recorded medication purchase.

    Rows are append-only; they are removed only with their medication.
    """
    medication = ForeignKeyField(Medication, column_name='medication_id', backref='purchases')
    amount = DecimalField(max_digits=12, decimal_places=2)
    purchase_date = DateField()

    class Meta:
        table_name = 'medtracker_purchase_history'
        indexes = (
            (('purchase_date',), False),  # Index for year-based queries
        )


class Configuration(BaseModel):
    """
    Application key/value state.

    Keys in use:
    - last_stock_reduction_date: YYYY-MM-DD of the last daily stock reduction

    NOTE: Connection settings live in medtracker_db_config.json, NOT here.
    """
    key = CharField(max_length=255, unique=True)
    value = TextField()
    updated_at = DateTimeField()

    class Meta:
        table_name = 'medtracker_configuration'


# List of all models for easy reference (dependency order)
ALL_MODELS = [
    Medication,
    DailyMedicationTaken,
    PurchaseHistory,
    Configuration,
]
