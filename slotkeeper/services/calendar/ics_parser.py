# slotkeeper/services/calendar/ics_parser.py
"""iCalendar (RFC 5545) feed parsing"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Protocol, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icalendar import Calendar

from slotkeeper.core.exceptions import SyncError
from slotkeeper.schemas.calendar_events import ParsedEvent

logger = logging.getLogger(__name__)


class FeedParser(Protocol):
    def parse(self, raw: bytes) -> List[ParsedEvent]: ...


def _zone_name(tzinfo) -> Optional[str]:
    """IANA name of a tzinfo coming out of icalendar (zoneinfo, pytz or dateutil)"""
    if tzinfo is None:
        return None
    for attr in ("key", "zone"):
        name = getattr(tzinfo, attr, None)
        if isinstance(name, str):
            return name
    if tzinfo.utcoffset(None) == timedelta(0) or tzinfo is timezone.utc:
        return "UTC"
    return None


def _is_iana(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _text(component, name: str) -> Optional[str]:
    value = component.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IcsFeedParser:
    """Turns raw ICS bytes into ParsedEvent values. Non-VEVENT components are ignored."""

    def parse(self, raw: Union[bytes, str]) -> List[ParsedEvent]:
        try:
            calendar = Calendar.from_ical(raw)
        except Exception as e:
            raise SyncError(f"Unparseable calendar feed: {e}") from e

        default_tz = _text(calendar, "X-WR-TIMEZONE")
        if not _is_iana(default_tz):
            default_tz = "UTC"

        events: List[ParsedEvent] = []
        skipped = 0
        for component in calendar.walk("VEVENT"):
            try:
                parsed = self._parse_event(component, default_tz)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed VEVENT {component.get('UID')}: {e}")
                skipped += 1
                continue
            if parsed is None:
                skipped += 1
                continue
            events.append(parsed)

        if skipped:
            logger.info(f"Parsed {len(events)} events, skipped {skipped}")
        return events

    def _parse_event(self, component, default_tz: str) -> Optional[ParsedEvent]:
        dtstart = component.get("DTSTART")
        title = _text(component, "SUMMARY")
        if dtstart is None:
            # Nothing to place on a timeline
            logger.debug(f"VEVENT without DTSTART skipped (title={title!r})")
            return None

        start = dtstart.dt
        all_day = isinstance(start, date) and not isinstance(start, datetime)

        tz_name = dtstart.params.get("TZID")
        if not all_day:
            tz_name = tz_name if _is_iana(tz_name) else _zone_name(start.tzinfo)
        if not _is_iana(tz_name):
            tz_name = default_tz

        if not all_day:
            start = self._aware(start, tz_name)

        end = self._resolve_end(component, start, all_day, tz_name)

        rrule = component.get("RRULE")
        recurrence_id = component.get("RECURRENCE-ID")

        return ParsedEvent(
            uid=_text(component, "UID"),
            title=title,
            description=_text(component, "DESCRIPTION"),
            location=_text(component, "LOCATION"),
            start=start,
            end=end,
            timezone=tz_name,
            all_day=all_day,
            recurrence_rule=rrule.to_ical().decode() if rrule is not None else None,
            recurrence_id=self._recurrence_instant(recurrence_id.dt, tz_name) if recurrence_id is not None else None,
        )

    def _resolve_end(self, component, start, all_day: bool, tz_name: str):
        dtend = component.get("DTEND")
        if dtend is not None:
            end = dtend.dt
        elif component.get("DURATION") is not None:
            end = start + component.get("DURATION").dt
        else:
            end = start

        if all_day:
            if isinstance(end, datetime):
                end = end.date()
            return end

        if not isinstance(end, datetime):
            end = datetime.combine(end, datetime.min.time())
        return self._aware(end, tz_name)

    @staticmethod
    def _aware(value: datetime, tz_name: str) -> datetime:
        # Floating times are read in the feed's default zone
        if value.tzinfo is None:
            return value.replace(tzinfo=ZoneInfo(tz_name))
        return value

    def _recurrence_instant(self, value, tz_name: str) -> datetime:
        if not isinstance(value, datetime):
            value = datetime.combine(value, datetime.min.time())
        return self._aware(value, tz_name).astimezone(timezone.utc)
