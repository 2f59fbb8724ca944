# slotkeeper/models/__init__.py
from .base import Base
from .calendar_source import CalendarSource
from .event import Event
from .availability import AvailabilityRule
from .booking import Booking

__all__ = [
    "Base",
    "CalendarSource",
    "Event",
    "AvailabilityRule",
    "Booking",
]
