"""Error taxonomy shared by the sync, availability and booking services"""
from typing import Optional
from uuid import UUID


class SlotkeeperError(Exception):
    """Base class for all errors raised by the core"""


class ValidationError(SlotkeeperError):
    """Bad input: inactive rule, out-of-range date, unavailable slot, unknown token"""


class NotFoundError(ValidationError):
    """Referenced entity does not exist"""


class SyncError(SlotkeeperError):
    """Feed fetch or parse failure. Leaves stored events untouched."""

    def __init__(self, message: str, calendar_id: Optional[UUID] = None):
        super().__init__(message)
        self.calendar_id = calendar_id


class StorageError(SlotkeeperError):
    """Repository failure"""


class ConcurrencyConflict(StorageError):
    """A booking insert lost the race for an identical slot"""


SLOT_UNAVAILABLE_MESSAGE = "The requested time slot is not available"
