from sqlalchemy import CheckConstraint, Column, String, Text, ForeignKey, Index, Uuid, text
from slotkeeper.models.base import Base, UTCDateTime, utcnow
import uuid


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one live booking per (rule, slot); cancelled rows free the slot
        Index(
            "uq_bookings_active_slot",
            "rule_id", "start_time", "end_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("ix_bookings_rule_time", "rule_id", "start_time"),
        CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name="ck_bookings_status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rule_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("availability_rules.id", ondelete="CASCADE"),
        nullable=False
    )

    # Requester info
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC")  # Requester's timezone

    status = Column(String(20), nullable=False, default="pending")  # pending, confirmed, cancelled
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)
    cancelled_at = Column(UTCDateTime, nullable=True)
