# slotkeeper/schemas/calendar_events.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Union
from datetime import date, datetime
from enum import Enum
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class CalendarSourceKind(str, Enum):
    URL = "url"
    FILE = "file"
    MANUAL = "manual"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class NotificationEvent(str, Enum):
    BOOKING_CREATED = "booking.created"
    BOOKING_CANCELLED = "booking.cancelled"


def _validate_timezone_name(v: str) -> str:
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {v}")
    return v


class TimeSlot(BaseModel):
    """Bookable slot, absolute instants"""
    model_config = ConfigDict(frozen=True)

    start: datetime = Field(..., description="Slot start (UTC)")
    end: datetime = Field(..., description="Slot end (UTC)")

    @field_validator("end")
    @classmethod
    def end_after_start(cls, v: datetime, info) -> datetime:
        start = info.data.get("start")
        if start and v <= start:
            raise ValueError("End time must be after start time")
        return v


class ParsedEvent(BaseModel):
    """One event component as read from a calendar feed"""
    uid: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    # date values for all-day events, aware datetimes otherwise
    start: Optional[Union[datetime, date]] = None
    end: Optional[Union[datetime, date]] = None
    timezone: str = "UTC"
    all_day: bool = False
    recurrence_rule: Optional[str] = None
    recurrence_id: Optional[datetime] = None


class SyncResult(BaseModel):
    """Outcome of one calendar sync"""
    calendar_id: Optional[UUID] = None
    imported: int = Field(0, ge=0, description="Events inserted or updated")
    deleted: int = Field(0, ge=0, description="Stored events no longer in the feed")


class TimeRange(BaseModel):
    """Daily window in the rule's timezone"""
    start: str = Field(..., description="Start time (HH:MM)")
    end: str = Field(..., description="End time (HH:MM)")

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        try:
            parsed = datetime.strptime(v, "%H:%M")
        except ValueError:
            raise ValueError("Time must be in HH:MM format")
        return parsed.strftime("%H:%M")

    @model_validator(mode="after")
    def start_before_end(self) -> "TimeRange":
        if datetime.strptime(self.start, "%H:%M") >= datetime.strptime(self.end, "%H:%M"):
            raise ValueError("Time range must end after it starts")
        return self


class AvailabilityRuleCreate(BaseModel):
    """Owner request to publish a new availability rule"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    owner_email: Optional[str] = Field(None, description="Where booking notifications are sent")
    slot_duration_minutes: int = Field(30, gt=0)
    buffer_minutes: int = Field(0, ge=0)
    timezone: str = Field("UTC")
    available_days: List[int] = Field(..., description="Weekdays, 0=Monday, 6=Sunday")
    time_ranges: List[TimeRange] = Field(..., min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_bookings_per_day: Optional[int] = Field(None, ge=1)
    calendar_ids: List[UUID] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return _validate_timezone_name(v)

    @field_validator("available_days")
    @classmethod
    def validate_days(cls, v: List[int]) -> List[int]:
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Weekdays must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_window(self) -> "AvailabilityRuleCreate":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class AvailabilityRuleUpdate(BaseModel):
    """Partial update; share_token cannot be changed"""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    owner_email: Optional[str] = None
    slot_duration_minutes: Optional[int] = Field(None, gt=0)
    buffer_minutes: Optional[int] = Field(None, ge=0)
    timezone: Optional[str] = None
    available_days: Optional[List[int]] = None
    time_ranges: Optional[List[TimeRange]] = Field(None, min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_bookings_per_day: Optional[int] = Field(None, ge=1)
    calendar_ids: Optional[List[UUID]] = None
    is_active: Optional[bool] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_timezone_name(v) if v is not None else v

    @field_validator("available_days")
    @classmethod
    def validate_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        if v is None:
            return v
        if any(day < 0 or day > 6 for day in v):
            raise ValueError("Weekdays must be between 0 (Monday) and 6 (Sunday)")
        return sorted(set(v))


class BookingRequest(BaseModel):
    """Public booking request against a shared rule"""
    share_token: str = Field(..., min_length=1)
    start: datetime
    end: datetime
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    notes: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        local, sep, domain = v.strip().partition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("Invalid email address")
        return v.strip()

    @field_validator("start", "end")
    @classmethod
    def validate_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError("Datetime must carry an explicit timezone")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_timezone_name(v) if v is not None else v

    @model_validator(mode="after")
    def end_after_start(self) -> "BookingRequest":
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self
