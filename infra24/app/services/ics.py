"""iCalendar (RFC 5545) export of bookings."""

import re
from datetime import date, datetime
from typing import Iterable, List, Optional, Tuple

from infra24.app.models.core import BookableResource, Booking, Organization, as_naive_utc, utcnow

PRODID = "-//Infra24//Bookings//EN"
ICS_MEDIA_TYPE = "text/calendar; charset=utf-8"
LINE_LIMIT = 75

EVENT_STATUS = {
    "pending": "TENTATIVE",
    "confirmed": "CONFIRMED",
    "completed": "CONFIRMED",
    "cancelled": "CANCELLED",
    "no_show": "CANCELLED",
}
REMINDERS = (
    ("-PT24H", "Booking reminder - 24 hours"),
    ("-PT1H", "Booking reminder - 1 hour"),
)


def format_ics_datetime(value: datetime) -> str:
    return as_naive_utc(value).strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """Split a content line into 75-character chunks joined by CRLF and a space."""
    if len(line) <= LINE_LIMIT:
        return line
    chunks = [line[:LINE_LIMIT]]
    rest = line[LINE_LIMIT:]
    while rest:
        # the leading space of a continuation counts toward its length
        chunks.append(" " + rest[:LINE_LIMIT - 1])
        rest = rest[LINE_LIMIT - 1:]
    return "\r\n".join(chunks)


def _description(booking: Booking, resource: BookableResource, org: Organization) -> str:
    host = (booking.booking_metadata or {}).get("host")
    details = [
        booking.description or f"Booking for {resource.title}",
        "",
        "Booking details:",
        f"- Organization: {org.name}",
        f"- Resource: {resource.title}",
        f"- Host: {host}" if host else None,
        f"- Participants: {booking.participants}" if resource.capacity > 1 else None,
        f"- Booking ID: {booking.id}",
        f"- Notes: {booking.notes}" if booking.notes else None,
    ]
    return "\n".join(line for line in details if line is not None)


def booking_event(booking: Booking, resource: BookableResource, org: Organization,
                  stamp: datetime) -> List[str]:
    """VEVENT lines for one booking. Cancelled bookings carry no reminders."""
    status = EVENT_STATUS.get(booking.status, "TENTATIVE")
    summary = booking.title if status != "CANCELLED" else f"[CANCELLED] {booking.title}"
    sequence = int((booking.booking_metadata or {}).get("sequence", 0))
    lines = [
        "BEGIN:VEVENT",
        f"UID:{booking.id}@{org.slug}.infra24.com",
        f"DTSTAMP:{format_ics_datetime(stamp)}",
        f"DTSTART:{format_ics_datetime(booking.starts_at)}",
        f"DTEND:{format_ics_datetime(booking.ends_at)}",
        f"SUMMARY:{escape_text(summary)}",
        f"DESCRIPTION:{escape_text(_description(booking, resource, org))}",
        f"LOCATION:{escape_text(resource.location or f'{org.name} {resource.title}')}",
        f"STATUS:{status}",
        f"SEQUENCE:{sequence}",
        "TRANSP:OPAQUE",
        f"CATEGORIES:BOOKING,{resource.type.upper()}",
    ]
    if status != "CANCELLED":
        for trigger, text in REMINDERS:
            lines += [
                "BEGIN:VALARM",
                f"TRIGGER:{trigger}",
                "ACTION:DISPLAY",
                f"DESCRIPTION:{text}",
                "END:VALARM",
            ]
    lines.append("END:VEVENT")
    return lines


def bookings_to_ics(events: Iterable[Tuple[Booking, BookableResource]], org: Organization,
                    now: Optional[datetime] = None) -> str:
    """A VCALENDAR document with one VEVENT per (booking, resource) pair."""
    stamp = now or utcnow()
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_text(org.name)} bookings",
    ]
    for booking, resource in events:
        lines.extend(booking_event(booking, resource, org, stamp))
    lines.append("END:VCALENDAR")
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"


def ics_filename(title: str, day: date, cancelled: bool = False) -> str:
    slug = re.sub(r"[^a-z0-9\s]", "", title.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)[:30].strip("-") or "booking"
    return f"{'cancelled-' if cancelled else ''}{slug}-{day.isoformat()}.ics"
