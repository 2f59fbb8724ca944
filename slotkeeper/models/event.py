from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, String, Text, UniqueConstraint, Uuid
from slotkeeper.models.base import Base, UTCDateTime, utcnow
import uuid


class Event(Base):
    """Busy time imported from an external calendar feed"""
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("calendar_id", "uid", name="uq_events_calendar_uid"),
        CheckConstraint("start_time <= end_time", name="ck_events_start_before_end"),
        Index("ix_events_calendar_time", "calendar_id", "start_time", "end_time"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    calendar_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("calendar_sources.id", ondelete="CASCADE"),
        nullable=False
    )

    # Provider UID, natural key for diffing between syncs
    uid = Column(String(512), nullable=False)

    # Opaque to the availability engine
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(Text, nullable=True)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")
    is_all_day = Column(Boolean, nullable=False, default=False)
    recurrence_rule = Column(Text, nullable=True)  # raw RRULE, never expanded

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
