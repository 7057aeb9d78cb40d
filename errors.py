"""
Failure kinds raised by Medtracker.

Validation failures subclass ValueError so callers that already map
ValueError to a client error keep working. Storage failures are a separate
branch so callers can retry or alert instead of reporting bad input.
"""


class MedicationTrackingError(Exception):
    """Base class for all Medtracker failures."""


class ValidationError(MedicationTrackingError, ValueError):
    """Input rejected before any mutation was applied."""


class MedicationNotFoundError(ValidationError):
    """Referenced medication id does not exist."""

    def __init__(self, medication_id: str):
        self.medication_id = medication_id
        super().__init__(f"Medication {medication_id} not found")


class StorageError(MedicationTrackingError):
    """Persistence layer unavailable after all retries."""
