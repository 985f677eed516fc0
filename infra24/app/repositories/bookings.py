"""Repositories for bookable resources, bookings and the waitlist."""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update

from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.crud.core import TenantScopedRepository
from infra24.app.models.core import BookableResource, Booking, WaitlistEntry, utcnow

logger = get_logger(__name__)

# statuses that hold a time slot
ACTIVE_BOOKING_STATUSES = ("pending", "confirmed")


class ResourceRepository(TenantScopedRepository[BookableResource]):
    def __init__(self, session):
        super().__init__(session, BookableResource)

    def list_visible(self, org_id: str, filters: Dict[str, Any], bookable_only: bool,
                     skip: int = 0, limit: int = 50) -> List[BookableResource]:
        filters = dict(filters)
        if bookable_only:
            filters["is_active"] = True
            filters["is_bookable"] = True
        return self.list(
            org_id, filters=filters, order_by=[BookableResource.title], skip=skip, limit=limit
        )


class BookingRepository(TenantScopedRepository[Booking]):
    def __init__(self, session):
        super().__init__(session, Booking)

    def overlapping(self, org_id: str, resource_id: str, starts_at: datetime, ends_at: datetime,
                    exclude_id: Optional[str] = None) -> List[Booking]:
        """Bookings holding any part of ``[starts_at, ends_at)`` on a resource."""
        start_time = time.time()
        stmt = select(Booking).where(
            Booking.organization_id == org_id,
            Booking.resource_id == resource_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.starts_at < ends_at,
            Booking.ends_at > starts_at,
        )
        if exclude_id:
            stmt = stmt.where(Booking.id != exclude_id)
        rows = list(self.session.execute(stmt.order_by(Booking.starts_at)).scalars().all())
        log_database_operation("SELECT", "bookings", (time.time() - start_time) * 1000, len(rows))
        return rows

    def search(self, org_id: str, resource_id: Optional[str] = None, status: Optional[str] = None,
               user_id: Optional[str] = None, start: Optional[datetime] = None,
               end: Optional[datetime] = None, skip: int = 0, limit: int = 100) -> List[Booking]:
        start_time = time.time()
        stmt = select(Booking).where(Booking.organization_id == org_id)
        if resource_id:
            stmt = stmt.where(Booking.resource_id == resource_id)
        if status:
            stmt = stmt.where(Booking.status == status)
        if user_id:
            stmt = stmt.where(Booking.user_id == user_id)
        if start is not None:
            stmt = stmt.where(Booking.starts_at >= start)
        if end is not None:
            stmt = stmt.where(Booking.starts_at <= end)
        stmt = stmt.order_by(Booking.starts_at).offset(skip).limit(limit)
        rows = list(self.session.execute(stmt).scalars().all())
        log_database_operation("SELECT", "bookings", (time.time() - start_time) * 1000, len(rows))
        return rows


class WaitlistRepository(TenantScopedRepository[WaitlistEntry]):
    def __init__(self, session):
        super().__init__(session, WaitlistEntry)

    def pending_for(self, resource_id: str, email: str) -> Optional[WaitlistEntry]:
        return (
            self.session.query(WaitlistEntry)
            .filter(
                WaitlistEntry.resource_id == resource_id,
                func.lower(WaitlistEntry.user_email) == email.lower(),
                WaitlistEntry.status == "pending",
            )
            .first()
        )

    def next_priority(self, org_id: str, resource_id: str) -> int:
        """One past the lowest-ranked pending entry; 1 for an empty waitlist."""
        highest = (
            self.session.query(func.max(WaitlistEntry.priority))
            .filter(
                WaitlistEntry.organization_id == org_id,
                WaitlistEntry.resource_id == resource_id,
                WaitlistEntry.status == "pending",
            )
            .scalar()
        )
        return (highest or 0) + 1

    def queue(self, org_id: str, resource_id: str) -> List[WaitlistEntry]:
        """Pending entries in the order they are offered freed slots."""
        return self.list(
            org_id,
            filters={"resource_id": resource_id, "status": "pending"},
            order_by=[WaitlistEntry.priority, WaitlistEntry.created_at],
            limit=None,
        )

    def expire_stale(self, org_id: str, resource_id: Optional[str] = None,
                     now: Optional[datetime] = None) -> int:
        """Mark pending entries past their hold as expired; returns how many changed."""
        start_time = time.time()
        now = now or utcnow()
        stmt = update(WaitlistEntry).where(
            WaitlistEntry.organization_id == org_id,
            WaitlistEntry.status == "pending",
            WaitlistEntry.expires_at < now,
        )
        if resource_id:
            stmt = stmt.where(WaitlistEntry.resource_id == resource_id)
        try:
            expired = self.session.execute(
                stmt.values(status="expired", updated_at=now).execution_options(
                    synchronize_session=False
                )
            ).rowcount
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error expiring waitlist entries for organization {org_id}: {e}")
            raise
        log_database_operation("UPDATE", "waitlist_entries", (time.time() - start_time) * 1000, expired)
        if expired:
            logger.info(f"Expired {expired} waitlist entries in organization {org_id}")
        return expired
