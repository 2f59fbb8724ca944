# ===== slotkeeper/models/availability.py =====
from sqlalchemy import CheckConstraint, Column, String, Integer, Boolean, Date, JSON, Text, Uuid
from slotkeeper.models.base import Base, UTCDateTime, utcnow
import uuid


class AvailabilityRule(Base):
    """Owner-defined configuration describing when slots may be offered"""
    __tablename__ = "availability_rules"
    __table_args__ = (
        CheckConstraint("slot_duration_minutes > 0", name="ck_availability_rules_duration"),
        CheckConstraint("buffer_minutes >= 0", name="ck_availability_rules_buffer"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    owner_email = Column(String(255), nullable=True)  # Booking notifications go here

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    buffer_minutes = Column(Integer, nullable=False, default=0)  # Between slots
    timezone = Column(String(64), nullable=False, default="UTC")

    available_days = Column(JSON, nullable=False, default=list)  # 0=Monday, 6=Sunday
    time_ranges = Column(JSON, nullable=False, default=list)  # [{"start": "09:00", "end": "12:00"}]

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    max_bookings_per_day = Column(Integer, nullable=True)

    calendar_ids = Column(JSON, nullable=False, default=list)  # UUID strings of CalendarSource rows

    is_active = Column(Boolean, nullable=False, default=True)

    # Issued once at creation, never rewritten
    share_token = Column(String(64), nullable=False, unique=True, index=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
