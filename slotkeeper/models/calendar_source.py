from sqlalchemy import CheckConstraint, Column, String, Text, Uuid
from slotkeeper.models.base import Base, UTCDateTime, utcnow
from slotkeeper.schemas.calendar_events import CalendarSourceKind
import uuid


class CalendarSource(Base):
    __tablename__ = "calendar_sources"
    __table_args__ = (
        CheckConstraint("source_kind IN ('url', 'file', 'manual')", name="ck_calendar_sources_kind"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    source_kind = Column(String(20), nullable=False)  # 'url', 'file', 'manual'
    source_url = Column(Text, nullable=True)
    source_payload = Column(Text, nullable=True)  # raw ICS text for 'file' sources

    # Written only by the sync engine
    last_synced_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    @property
    def kind(self) -> CalendarSourceKind:
        return CalendarSourceKind(self.source_kind)

    @property
    def is_syncable(self) -> bool:
        return self.kind != CalendarSourceKind.MANUAL

    def __repr__(self) -> str:
        return f"<CalendarSource {self.id} {self.source_kind} {self.name!r}>"
