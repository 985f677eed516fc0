"""Booking rules: conflict detection, availability slots and the waitlist."""

import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from datetime import time as clock
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.orm import Session

from infra24.app.core.errors import ConflictError, ValidationFailedError
from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.models.core import (
    BookableResource,
    Booking,
    User,
    WaitlistEntry,
    as_naive_utc,
    utcnow,
)
from infra24.app.repositories.bookings import BookingRepository, WaitlistRepository
from infra24.app.schemas.core import WEEKDAYS

logger = get_logger("bookings")

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_HOST = "default"
DEFAULT_SLOT_MINUTES = 30
DEFAULT_MAX_PER_DAY = 10
MAX_AVAILABILITY_DAYS = 62

WAITLIST_HOLD = timedelta(hours=24)
NOTIFICATION_WINDOW = timedelta(hours=2)
MATCH_TOLERANCE = timedelta(hours=1)
NOTIFY_LIMIT = 5

CLOSED_STATUSES = ("cancelled", "completed")


@dataclass
class BookingConflict:
    type: str
    severity: str
    message: str
    conflicting_booking_ids: List[str] = field(default_factory=list)
    suggested_resolutions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def booking_host(booking: Booking) -> Optional[str]:
    return (booking.booking_metadata or {}).get("host")


# Conflicts


def _resource_conflict(resource: Optional[BookableResource]) -> Optional[BookingConflict]:
    if resource is None:
        return BookingConflict(
            "resource_unavailable", "critical", "Resource not found",
            suggested_resolutions=[
                "Select a different resource",
                "Contact support if this resource should be available",
            ],
        )
    if not resource.is_active:
        return BookingConflict(
            "resource_unavailable", "high", "Resource is currently inactive",
            suggested_resolutions=[
                "Select a different resource",
                "Contact support to reactivate this resource",
            ],
        )
    if not resource.is_bookable:
        return BookingConflict(
            "resource_unavailable", "medium", "Resource is not available for booking",
            suggested_resolutions=[
                "Select a different resource",
                "Contact support for special booking arrangements",
            ],
        )
    return None


def detect_conflicts(
    db: Session,
    org_id: str,
    resource: Optional[BookableResource],
    starts_at: datetime,
    ends_at: datetime,
    participants: int = 1,
    exclude_booking_id: Optional[str] = None,
) -> List[BookingConflict]:
    """Everything that stops ``[starts_at, ends_at)`` from being booked on a resource.

    A single-capacity resource admits no overlapping booking. A shared resource
    (capacity above one) admits overlaps until the participants would exceed
    its capacity.
    """
    unavailable = _resource_conflict(resource)
    if unavailable is not None:
        return [unavailable]

    overlapping = BookingRepository(db).overlapping(
        org_id, resource.id, starts_at, ends_at, exclude_id=exclude_booking_id
    )
    if not overlapping:
        return []
    ids = [b.id for b in overlapping]

    if resource.capacity <= 1:
        return [BookingConflict(
            "double_booking", "high", "Resource is already booked during this time period",
            conflicting_booking_ids=ids,
            suggested_resolutions=[
                "Choose a different time slot",
                "Select a different resource",
                "Contact the existing booking holder to coordinate",
            ],
        )]

    held = sum(b.participants or 1 for b in overlapping)
    if held + participants > resource.capacity:
        return [BookingConflict(
            "capacity_exceeded", "medium",
            f"Resource capacity exceeded ({held}/{resource.capacity})",
            conflicting_booking_ids=ids,
            suggested_resolutions=[
                "Choose a different time slot",
                "Select a different resource with higher capacity",
                "Reduce the number of participants",
            ],
        )]
    return []


def _raise_on_conflict(conflicts: List[BookingConflict], resource_id: str) -> None:
    if conflicts:
        first = conflicts[0]
        logger.warning(f"Booking rejected on resource {resource_id}: {first.type} ({first.message})")
        raise ConflictError(first.message)


# Booking lifecycle


def create_booking(
    db: Session,
    org_id: str,
    resource: BookableResource,
    user: User,
    title: str,
    starts_at: datetime,
    ends_at: datetime,
    participants: int = 1,
    description: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Booking:
    """Create a pending booking; raises ConflictError when the slot is taken."""
    starts_at, ends_at = as_naive_utc(starts_at), as_naive_utc(ends_at)
    # serializes bookings of one resource on databases with row locks
    db.execute(
        select(BookableResource.id).where(BookableResource.id == resource.id).with_for_update()
    )
    _raise_on_conflict(
        detect_conflicts(db, org_id, resource, starts_at, ends_at, participants), resource.id
    )
    booking = BookingRepository(db).create(
        org_id,
        {
            "resource_id": resource.id,
            "user_id": user.id,
            "user_email": user.email,
            "title": title,
            "description": description,
            "starts_at": starts_at,
            "ends_at": ends_at,
            "participants": participants,
            "price": resource.price,
            "notes": notes,
            "status": "pending",
            "booking_metadata": dict(metadata or {}),
        },
    )
    logger.info(f"Booking {booking.id} requested on resource {resource.id} by {user.id}")
    return booking


def _save(db: Session, booking: Booking, operation: str) -> Booking:
    start_time = time.time()
    try:
        db.commit()
        db.refresh(booking)
    except Exception as e:
        db.rollback()
        logger.error(f"Error saving booking {booking.id}: {e}")
        raise
    log_database_operation(operation, "bookings", (time.time() - start_time) * 1000)
    return booking


def confirm_booking(db: Session, org_id: str, booking: Booking, resource: BookableResource) -> Booking:
    if booking.status != "pending":
        raise ConflictError(f"Booking is already {booking.status}")
    _raise_on_conflict(
        detect_conflicts(
            db, org_id, resource, booking.starts_at, booking.ends_at,
            booking.participants or 1, exclude_booking_id=booking.id,
        ),
        resource.id,
    )
    booking.status = "confirmed"
    _save(db, booking, "UPDATE")
    logger.info(f"Booking {booking.id} confirmed")
    return booking


def cancel_booking(
    db: Session,
    org_id: str,
    booking: Booking,
    resource: BookableResource,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Booking, List[Dict[str, Any]]]:
    """Cancel a booking and offer the freed slot to the waitlist.

    Returns the booking and the waitlist notifications that were issued.
    """
    if booking.status in CLOSED_STATUSES:
        raise ConflictError(f"Booking is already {booking.status}")
    now = now or utcnow()
    booking.status = "cancelled"
    booking.cancelled_at = now
    booking.cancellation_reason = reason
    _save(db, booking, "UPDATE")
    logger.info(f"Booking {booking.id} cancelled")

    if booking.ends_at <= now:
        return booking, []
    freed = [{
        "start": booking.starts_at,
        "end": booking.ends_at,
        "host": booking_host(booking) or DEFAULT_HOST,
    }]
    return booking, process_waitlist(db, org_id, resource, freed, now=now)


def reschedule_booking(
    db: Session,
    org_id: str,
    booking: Booking,
    resource: BookableResource,
    starts_at: datetime,
    ends_at: datetime,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    if booking.status in CLOSED_STATUSES:
        raise ValidationFailedError("Cannot reschedule completed or cancelled booking")
    now = now or utcnow()
    starts_at, ends_at = as_naive_utc(starts_at), as_naive_utc(ends_at)
    if starts_at <= now:
        raise ValidationFailedError("New booking time must be in the future")
    _raise_on_conflict(
        detect_conflicts(
            db, org_id, resource, starts_at, ends_at,
            booking.participants or 1, exclude_booking_id=booking.id,
        ),
        resource.id,
    )
    metadata = dict(booking.booking_metadata or {})
    metadata["rescheduled_from"] = {
        "starts_at": booking.starts_at.isoformat(),
        "ends_at": booking.ends_at.isoformat(),
    }
    metadata["rescheduled_at"] = now.isoformat()
    metadata["sequence"] = int(metadata.get("sequence", 0)) + 1
    booking.starts_at = starts_at
    booking.ends_at = ends_at
    booking.booking_metadata = metadata
    if notes is not None:
        booking.notes = notes
    _save(db, booking, "UPDATE")
    logger.info(f"Booking {booking.id} rescheduled to {starts_at.isoformat()}")
    return booking


# Availability


def _clock(value: str) -> clock:
    hours, minutes = value.split(":")
    return clock(int(hours), int(minutes))


def _blacked_out(day: str, blackouts: Sequence[Dict[str, Any]]) -> bool:
    for blackout in blackouts:
        if blackout.get("date"):
            if blackout["date"] == day:
                return True
        elif blackout.get("range"):
            first, last = blackout["range"][0], blackout["range"][1]
            if first <= day <= last:
                return True
    return False


def _slot_is_full(held: List[int], capacity: int) -> bool:
    if capacity <= 1:
        return bool(held)
    return sum(held) >= capacity


def _host_slots(window: Dict[str, Any], day: date, tz: ZoneInfo, slot: timedelta,
                blocked: List[Tuple[Optional[str], datetime, datetime, int]],
                max_per_day: int, capacity: int, now: datetime) -> List[Dict[str, Any]]:
    host = window.get("host") or DEFAULT_HOST
    cursor = as_naive_utc(datetime.combine(day, _clock(window["start"]), tzinfo=tz))
    window_end = as_naive_utc(datetime.combine(day, _clock(window["end"]), tzinfo=tz))
    # a booking without a host holds the resource for every host
    ranges = [(start, end, n) for owner, start, end, n in blocked if owner in (None, host)]

    slots: List[Dict[str, Any]] = []
    while cursor < window_end and len(slots) < max_per_day:
        slot_end = cursor + slot
        if slot_end > window_end:
            break
        held = [n for start, end, n in ranges if cursor < end and slot_end > start]
        if cursor >= now and not _slot_is_full(held, capacity):
            slots.append({"start": cursor, "end": slot_end, "host": host})
        cursor = slot_end
    return slots


def resource_timezone(rules: Dict[str, Any], default: Optional[str] = None) -> str:
    return rules.get("timezone") or default or DEFAULT_TIMEZONE


def generate_slots(
    rules: Dict[str, Any],
    bookings: Sequence[Booking],
    start_date: date,
    end_date: date,
    timezone_name: Optional[str] = None,
    capacity: int = 1,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Free slots of a resource between two dates, inclusive.

    Windows are wall-clock times in the resource timezone. Each active booking
    blocks its own span widened by ``buffer_before`` and ``buffer_after``.
    Slots come back as naive UTC datetimes ordered by start, then host.
    """
    windows = rules.get("windows") or []
    if not windows:
        raise ValidationFailedError("No availability windows configured for this resource")
    tz_name = resource_timezone(rules, timezone_name)
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationFailedError(f"Unknown timezone: {tz_name}")

    slot = timedelta(minutes=rules.get("slot_minutes") or DEFAULT_SLOT_MINUTES)
    before = timedelta(minutes=rules.get("buffer_before") or 0)
    after = timedelta(minutes=rules.get("buffer_after") or 0)
    max_per_day = rules.get("max_per_day_per_host") or DEFAULT_MAX_PER_DAY
    blackouts = rules.get("blackouts") or []
    now = now or utcnow()

    blocked = [
        (booking_host(b), b.starts_at - before, b.ends_at + after, b.participants or 1)
        for b in bookings
    ]
    slots: List[Dict[str, Any]] = []
    day = start_date
    while day <= end_date:
        if not _blacked_out(day.isoformat(), blackouts):
            weekday = WEEKDAYS[day.weekday()]
            for window in windows:
                if weekday in {d.lower() for d in window.get("days") or []}:
                    slots.extend(
                        _host_slots(window, day, tz, slot, blocked, max_per_day, capacity, now)
                    )
        day += timedelta(days=1)

    slots.sort(key=lambda s: (s["start"], s["host"]))
    return slots


def resource_availability(db: Session, org_id: str, resource: BookableResource,
                          start_date: date, end_date: date, timezone_name: Optional[str] = None,
                          now: Optional[datetime] = None) -> Dict[str, Any]:
    if end_date < start_date:
        raise ValidationFailedError("end_date must not be before start_date")
    if (end_date - start_date).days >= MAX_AVAILABILITY_DAYS:
        raise ValidationFailedError(f"Date range cannot exceed {MAX_AVAILABILITY_DAYS} days")
    rules = resource.availability_rules or {}
    # one day of slack on both sides covers every timezone offset
    bookings = BookingRepository(db).overlapping(
        org_id,
        resource.id,
        datetime.combine(start_date - timedelta(days=1), clock()),
        datetime.combine(end_date + timedelta(days=2), clock()),
    )
    slots = generate_slots(
        rules, bookings, start_date, end_date,
        timezone_name=timezone_name, capacity=resource.capacity, now=now,
    )
    return {
        "resource_id": resource.id,
        "timezone": resource_timezone(rules, timezone_name),
        "slot_minutes": rules.get("slot_minutes") or DEFAULT_SLOT_MINUTES,
        "slots": slots,
    }


# Waitlist


def add_to_waitlist(
    db: Session,
    org_id: str,
    resource: BookableResource,
    user: User,
    requested_start: datetime,
    requested_end: datetime,
    user_name: Optional[str] = None,
    priority: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> WaitlistEntry:
    """Queue a user for a resource; lower priority numbers are offered slots first."""
    repo = WaitlistRepository(db)
    now = now or utcnow()
    repo.expire_stale(org_id, resource.id, now=now)
    if repo.pending_for(resource.id, user.email) is not None:
        raise ConflictError("You are already on the waitlist for this resource")
    name = user_name or " ".join(p for p in (user.first_name, user.last_name) if p) or None
    return repo.create(
        org_id,
        {
            "resource_id": resource.id,
            "user_id": user.id,
            "user_email": user.email,
            "user_name": name,
            "requested_start": as_naive_utc(requested_start),
            "requested_end": as_naive_utc(requested_end),
            "priority": priority or repo.next_priority(org_id, resource.id),
            "status": "pending",
            "expires_at": now + WAITLIST_HOLD,
            "entry_metadata": dict(metadata or {}),
        },
    )


def _matches(entry: WaitlistEntry, slot: Dict[str, Any]) -> bool:
    return (
        slot["start"] <= entry.requested_start + MATCH_TOLERANCE
        and slot["end"] >= entry.requested_end - MATCH_TOLERANCE
    )


def process_waitlist(
    db: Session,
    org_id: str,
    resource: BookableResource,
    freed_slots: Sequence[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Offer freed slots to the head of the queue.

    Only the first ``NOTIFY_LIMIT`` pending entries are considered. Each one
    whose requested time matches a slot (within an hour either way) moves to
    ``notified`` and has ``NOTIFICATION_WINDOW`` to book.
    """
    repo = WaitlistRepository(db)
    now = now or utcnow()
    repo.expire_stale(org_id, resource.id, now=now)
    respond_by = now + NOTIFICATION_WINDOW

    notified: List[Tuple[WaitlistEntry, List[Dict[str, Any]]]] = []
    for entry in repo.queue(org_id, resource.id)[:NOTIFY_LIMIT]:
        matching = [slot for slot in freed_slots if _matches(entry, slot)]
        if not matching:
            continue
        entry.status = "notified"
        entry.notified_at = now
        entry.expires_at = respond_by
        notified.append((entry, matching))
    if not notified:
        return []

    notifications = [
        {
            "entry_id": entry.id,
            "user_email": entry.user_email,
            "user_name": entry.user_name,
            "resource_title": resource.title,
            "available_slots": slots,
            "expires_at": respond_by,
        }
        for entry, slots in notified
    ]
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error notifying waitlist of resource {resource.id}: {e}")
        raise
    logger.info(f"Notified {len(notifications)} waitlist entries for resource {resource.id}")
    return notifications


def book_from_waitlist(
    db: Session,
    org_id: str,
    entry: WaitlistEntry,
    resource: BookableResource,
    user: User,
    slot: Dict[str, Any],
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    now = now or utcnow()
    if entry.status != "notified":
        raise ConflictError("Entry is not in notified status")
    if entry.expires_at < now:
        entry.status = "expired"
        db.commit()
        raise ValidationFailedError("Waitlist notification has expired")

    notes = (entry.entry_metadata or {}).get("notes") or "No additional notes"
    booking = create_booking(
        db, org_id, resource, user,
        title=title or f"{resource.title} (waitlist)",
        starts_at=slot["start"],
        ends_at=slot["end"],
        notes=f"Booked from waitlist - {notes}",
        metadata={"host": slot.get("host") or DEFAULT_HOST, "waitlist_entry_id": entry.id},
    )
    entry.status = "booked"
    entry.booking_id = booking.id
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error closing waitlist entry {entry.id}: {e}")
        raise
    return booking
