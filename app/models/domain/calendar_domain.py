# app/models/domain/calendar_domain.py
"""
Calendar Domain Models
The meeting event an insight is generated for, built from a Calendar API event.
"""

from datetime import UTC, datetime


def parse_event_time(value: dict | None) -> datetime | None:
    """Read a Calendar API `start`/`end` object; all-day dates become midnight UTC."""
    if not value:
        return None

    if "date" in value:
        return datetime.strptime(value["date"], "%Y-%m-%d").replace(tzinfo=UTC)

    try:
        parsed = datetime.fromisoformat(value.get("dateTime", "").replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class MeetingEvent:
    """A calendar event opened in the add-on."""

    def __init__(self, data: dict, calendar_id: str = "primary"):
        self.event_id = data.get("id", "")
        self.calendar_id = calendar_id
        self.status = data.get("status", "confirmed")
        self.title = data.get("summary") or ""
        self.description = data.get("description") or ""
        self.start_time = parse_event_time(data.get("start"))
        self.end_time = parse_event_time(data.get("end"))
        self.all_day = "date" in (data.get("start") or {})
        self.guest_emails = [
            guest["email"] for guest in data.get("attendees", []) if isinstance(guest, dict) and guest.get("email")
        ]

    def is_all_day(self) -> bool:
        return self.all_day

    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def has_started(self, now: datetime | None = None) -> bool:
        return bool(self.start_time) and self.start_time <= (now or datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "calendar_id": self.calendar_id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "guest_emails": list(self.guest_emails),
        }
