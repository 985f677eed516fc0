"""Bookable resources, bookings, availability, the waitlist and calendar export."""

from datetime import date, datetime, time
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.db.core import get_db
from infra24.app.models.core import (
    BookableResource,
    Booking,
    Organization,
    User,
    WaitlistEntry,
    as_naive_utc,
)
from infra24.app.repositories.bookings import (
    BookingRepository,
    ResourceRepository,
    WaitlistRepository,
)
from infra24.app.schemas import core as schemas
from infra24.app.services import bookings as booking_service
from infra24.app.services.ics import ICS_MEDIA_TYPE, bookings_to_ics, ics_filename
from infra24.app.tenancy.core import is_feature_enabled, organization_config


def require_bookings_feature(org: Organization = Depends(auth.get_organization)) -> Organization:
    if not is_feature_enabled(organization_config(org), "bookings"):
        raise HTTPException(status_code=404, detail="Bookings are not enabled for this organization")
    return org


router = APIRouter(
    prefix="/organizations/{slug}", dependencies=[Depends(require_bookings_feature)]
)


def _org_timezone(org: Organization) -> Optional[str]:
    return organization_config(org)["settings"].get("timezone")


def _resource_or_404(db: Session, org: Organization, resource_id: str) -> BookableResource:
    resource = ResourceRepository(db).get(org.id, resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


def _booking_for(db: Session, org: Organization, user: User, booking_id: str,
                 action: str) -> Booking:
    """A booking the user owns, or any booking for moderators."""
    booking = BookingRepository(db).get(org.id, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.user_id != user.id:
        auth.require_org_role(db, org, user, auth.MODERATING_ROLES, action=action)
    return booking


# Resources


@router.get("/resources", response_model=List[schemas.ResourceOut])
def list_resources(
    type: Optional[schemas.ResourceType] = None,
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    bookable_only = not auth.has_org_role(db, current_user, org, auth.MODERATING_ROLES)
    return ResourceRepository(db).list_visible(
        org.id, {"type": type, "category": category}, bookable_only, skip=offset, limit=limit
    )


@router.post("/resources", response_model=schemas.ResourceOut, status_code=201)
def create_resource(
    payload: schemas.ResourceCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="create_resource")
    data = payload.model_dump()
    data["created_by"] = current_user.id
    return ResourceRepository(db).create(org.id, data)


@router.get("/resources/{resource_id}", response_model=schemas.ResourceOut)
def get_resource(
    resource_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    resource = _resource_or_404(db, org, resource_id)
    if not (resource.is_active and resource.is_bookable) and not auth.has_org_role(
        db, current_user, org, auth.MODERATING_ROLES
    ):
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


@router.patch("/resources/{resource_id}", response_model=schemas.ResourceOut)
def update_resource(
    resource_id: str,
    payload: schemas.ResourceUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="update_resource")
    resource = ResourceRepository(db).update(
        org.id, resource_id, payload.model_dump(exclude_unset=True)
    )
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return resource


@router.get("/resources/{resource_id}/availability", response_model=schemas.AvailabilityOut)
def get_availability(
    resource_id: str,
    start_date: date,
    end_date: date,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
):
    resource = ResourceRepository(db).get(org.id, resource_id)
    if resource is None or not (resource.is_active and resource.is_bookable):
        raise HTTPException(status_code=404, detail="Resource not found or not bookable")
    return booking_service.resource_availability(
        db, org.id, resource, start_date, end_date, timezone_name=_org_timezone(org)
    )


@router.get("/resources/{resource_id}/conflicts", response_model=List[schemas.ConflictOut])
def check_conflicts(
    resource_id: str,
    starts_at: datetime,
    ends_at: datetime,
    participants: int = Query(1, ge=1),
    exclude_booking_id: Optional[str] = None,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="check_conflicts")
    if ends_at <= starts_at:
        raise HTTPException(status_code=400, detail="ends_at must be after starts_at")
    conflicts = booking_service.detect_conflicts(
        db, org.id, ResourceRepository(db).get(org.id, resource_id),
        as_naive_utc(starts_at), as_naive_utc(ends_at), participants,
        exclude_booking_id=exclude_booking_id,
    )
    return [c.to_dict() for c in conflicts]


# Bookings


@router.get("/bookings", response_model=List[schemas.BookingOut])
def list_bookings(
    resource_id: Optional[str] = None,
    status: Optional[schemas.BookingStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    """Moderators see every booking; members see only their own."""
    auth.require_org_role(db, org, current_user, action="list_bookings")
    own_only = not auth.has_org_role(db, current_user, org, auth.MODERATING_ROLES)
    return BookingRepository(db).search(
        org.id,
        resource_id=resource_id,
        status=status,
        user_id=current_user.id if own_only else None,
        start=datetime.combine(start_date, time.min) if start_date else None,
        end=datetime.combine(end_date, time.max) if end_date else None,
        skip=offset,
        limit=limit,
    )


@router.post("/bookings", response_model=schemas.BookingOut, status_code=201)
def create_booking(
    payload: schemas.BookingCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="create_booking")
    resource = _resource_or_404(db, org, payload.resource_id)
    return booking_service.create_booking(
        db, org.id, resource, current_user,
        title=payload.title,
        starts_at=payload.starts_at,
        ends_at=payload.ends_at,
        participants=payload.participants,
        description=payload.description,
        notes=payload.notes,
        metadata=payload.metadata,
    )


@router.get("/bookings/calendar.ics")
def my_bookings_calendar(
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    """The caller's active bookings as a subscribable calendar."""
    auth.require_org_role(db, org, current_user, action="export_bookings")
    resources = ResourceRepository(db)
    events = [
        (booking, resources.get(org.id, booking.resource_id))
        for booking in BookingRepository(db).search(org.id, user_id=current_user.id, limit=500)
        if booking.status in ("pending", "confirmed")
    ]
    return Response(content=bookings_to_ics(events, org), media_type=ICS_MEDIA_TYPE)


@router.get("/bookings/{booking_id}", response_model=schemas.BookingOut)
def get_booking(
    booking_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    return _booking_for(db, org, current_user, booking_id, action="view_booking")


@router.get("/bookings/{booking_id}/ics")
def booking_ics(
    booking_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    booking = _booking_for(db, org, current_user, booking_id, action="export_booking")
    resource = _resource_or_404(db, org, booking.resource_id)
    filename = ics_filename(
        booking.title, booking.starts_at.date(), cancelled=booking.status == "cancelled"
    )
    return Response(
        content=bookings_to_ics([(booking, resource)], org),
        media_type=ICS_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/bookings/{booking_id}/confirm", response_model=schemas.BookingOut)
def confirm_booking(
    booking_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="confirm_booking")
    booking = BookingRepository(db).get(org.id, booking_id)
    if booking is None:
        raise HTTPException(status_code=404, detail="Booking not found")
    resource = _resource_or_404(db, org, booking.resource_id)
    return booking_service.confirm_booking(db, org.id, booking, resource)


@router.post("/bookings/{booking_id}/cancel", response_model=schemas.BookingCancelOut)
def cancel_booking(
    booking_id: str,
    payload: Optional[schemas.BookingCancel] = None,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    booking = _booking_for(db, org, current_user, booking_id, action="cancel_booking")
    resource = _resource_or_404(db, org, booking.resource_id)
    booking, notifications = booking_service.cancel_booking(
        db, org.id, booking, resource, reason=payload.reason if payload else None
    )
    return {"booking": booking, "waitlist_notifications": notifications}


@router.post("/bookings/{booking_id}/reschedule", response_model=schemas.BookingOut)
def reschedule_booking(
    booking_id: str,
    payload: schemas.BookingReschedule,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    booking = _booking_for(db, org, current_user, booking_id, action="reschedule_booking")
    resource = _resource_or_404(db, org, booking.resource_id)
    return booking_service.reschedule_booking(
        db, org.id, booking, resource, payload.starts_at, payload.ends_at, notes=payload.notes
    )


# Waitlist


@router.post("/resources/{resource_id}/waitlist", response_model=schemas.WaitlistOut, status_code=201)
def join_waitlist(
    resource_id: str,
    payload: schemas.WaitlistCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="join_waitlist")
    resource = _resource_or_404(db, org, resource_id)
    return booking_service.add_to_waitlist(
        db, org.id, resource, current_user,
        payload.requested_start, payload.requested_end,
        user_name=payload.user_name,
        priority=payload.priority,
        metadata=payload.metadata,
    )


@router.get("/resources/{resource_id}/waitlist", response_model=List[schemas.WaitlistOut])
def get_waitlist(
    resource_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="view_waitlist")
    _resource_or_404(db, org, resource_id)
    repo = WaitlistRepository(db)
    repo.expire_stale(org.id, resource_id)
    return repo.queue(org.id, resource_id)


def _entry_for(db: Session, org: Organization, user: User, entry_id: str) -> WaitlistEntry:
    entry = WaitlistRepository(db).get(org.id, entry_id)
    if entry is None or (entry.user_id != user.id
                         and not auth.has_org_role(db, user, org, auth.MODERATING_ROLES)):
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    return entry


@router.post("/waitlist/{entry_id}/book", response_model=schemas.BookingOut, status_code=201)
def book_from_waitlist(
    entry_id: str,
    payload: schemas.WaitlistBook,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    entry = _entry_for(db, org, current_user, entry_id)
    if entry.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="Only the waitlisted user can book this slot")
    resource = _resource_or_404(db, org, entry.resource_id)
    slot = {
        "start": as_naive_utc(payload.slot.start),
        "end": as_naive_utc(payload.slot.end),
        "host": payload.slot.host,
    }
    return booking_service.book_from_waitlist(
        db, org.id, entry, resource, current_user, slot, title=payload.title
    )


@router.delete("/waitlist/{entry_id}")
def leave_waitlist(
    entry_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    entry = _entry_for(db, org, current_user, entry_id)
    if entry.status not in ("pending", "notified"):
        raise HTTPException(status_code=409, detail=f"Waitlist entry is already {entry.status}")
    WaitlistRepository(db).update(org.id, entry.id, {"status": "cancelled"})
    return {"success": True}
