# slotkeeper/schemas/__init__.py
from .calendar_events import (
    CalendarSourceKind,
    BookingStatus,
    NotificationEvent,
    TimeSlot,
    ParsedEvent,
    SyncResult,
    TimeRange,
    AvailabilityRuleCreate,
    AvailabilityRuleUpdate,
    BookingRequest,
)

__all__ = [
    "CalendarSourceKind",
    "BookingStatus",
    "NotificationEvent",
    "TimeSlot",
    "ParsedEvent",
    "SyncResult",
    "TimeRange",
    "AvailabilityRuleCreate",
    "AvailabilityRuleUpdate",
    "BookingRequest",
]
