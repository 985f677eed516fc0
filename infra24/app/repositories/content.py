"""Repositories for organization content: workshops, announcements, artists, courses."""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select

from infra24.app.core.errors import ConflictError, NotFoundError
from infra24.app.core.logging import get_logger, log_database_operation
from infra24.app.crud.core import TenantScopedRepository
from infra24.app.models.core import (
    Announcement,
    ArtistClaimRequest,
    ArtistProfile,
    Course,
    CourseEnrollment,
    Workshop,
    utcnow,
)

logger = get_logger(__name__)

ACTIVE_ANNOUNCEMENT_STATUSES = ("published", "approved")
PUBLIC_VISIBILITIES = ("external", "both")


class WorkshopRepository(TenantScopedRepository[Workshop]):
    def __init__(self, session):
        super().__init__(session, Workshop)

    def list_visible(self, org_id: str, filters: Dict[str, Any], public_only: bool,
                     skip: int = 0, limit: int = 50) -> List[Workshop]:
        filters = dict(filters)
        if public_only:
            filters["is_public"] = True
            filters["is_active"] = True
        return self.list(org_id, filters=filters, skip=skip, limit=limit)


class AnnouncementRepository(TenantScopedRepository[Announcement]):
    def __init__(self, session):
        super().__init__(session, Announcement)

    def list_for_viewer(self, org_id: str, full_access: bool, anonymous: bool,
                        now: Optional[datetime] = None,
                        skip: int = 0, limit: Optional[int] = 100) -> List[Announcement]:
        """Announcements a viewer may see, highest priority first then newest."""
        start_time = time.time()
        now = now or utcnow()
        try:
            stmt = select(Announcement).where(Announcement.organization_id == org_id)
            if not full_access:
                stmt = stmt.where(
                    Announcement.status.in_(ACTIVE_ANNOUNCEMENT_STATUSES),
                    or_(Announcement.expires_at.is_(None), Announcement.expires_at > now),
                )
                if anonymous:
                    stmt = stmt.where(Announcement.visibility.in_(PUBLIC_VISIBILITIES))
            stmt = stmt.order_by(
                Announcement.priority.desc(), Announcement.created_at.desc()
            ).offset(skip)
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = list(self.session.execute(stmt).scalars().all())
            log_database_operation(
                "SELECT", "announcements", (time.time() - start_time) * 1000, len(rows)
            )
            return rows
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error listing announcements for organization {org_id}: {e}")
            raise

    def get_for_viewer(self, org_id: str, obj_id: str, full_access: bool, anonymous: bool,
                       now: Optional[datetime] = None) -> Optional[Announcement]:
        """One announcement, or None when it does not exist or the viewer may not see it."""
        announcement = self.get(org_id, obj_id)
        if announcement is None or full_access:
            return announcement
        now = now or utcnow()
        if announcement.status not in ACTIVE_ANNOUNCEMENT_STATUSES:
            return None
        if announcement.expires_at is not None and announcement.expires_at <= now:
            return None
        if anonymous and announcement.visibility not in PUBLIC_VISIBILITIES:
            return None
        return announcement


class ArtistRepository(TenantScopedRepository[ArtistProfile]):
    def __init__(self, session):
        super().__init__(session, ArtistProfile)

    def search(self, org_id: str, search: Optional[str] = None,
               studio_type: Optional[str] = None, status: str = "all",
               skip: int = 0, limit: int = 50) -> List[ArtistProfile]:
        start_time = time.time()
        stmt = select(ArtistProfile).where(ArtistProfile.organization_id == org_id)
        if search:
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(ArtistProfile.name).like(pattern),
                    func.lower(ArtistProfile.studio_number).like(pattern),
                )
            )
        if studio_type and studio_type.lower() != "all":
            stmt = stmt.where(func.lower(ArtistProfile.studio_type) == studio_type.lower())
        if status == "claimed":
            stmt = stmt.where(ArtistProfile.is_claimed.is_(True))
        elif status == "unclaimed":
            stmt = stmt.where(ArtistProfile.is_claimed.is_(False))
        stmt = stmt.order_by(ArtistProfile.name).offset(skip).limit(limit)
        rows = list(self.session.execute(stmt).scalars().all())
        log_database_operation(
            "SELECT", "artist_profiles", (time.time() - start_time) * 1000, len(rows)
        )
        return rows


class ArtistClaimRepository(TenantScopedRepository[ArtistClaimRequest]):
    def __init__(self, session):
        super().__init__(session, ArtistClaimRequest)

    def pending_for_user(self, profile_id: str, user_id: str) -> Optional[ArtistClaimRequest]:
        return (
            self.session.query(ArtistClaimRequest)
            .filter(
                ArtistClaimRequest.artist_profile_id == profile_id,
                ArtistClaimRequest.user_id == user_id,
                ArtistClaimRequest.status == "pending",
            )
            .first()
        )

    def submit(self, org_id: str, profile: ArtistProfile, user_id: str,
               claim_reason: str, evidence_links: List[str]) -> ArtistClaimRequest:
        if profile.is_claimed:
            raise ConflictError("Artist profile is already claimed")
        if self.pending_for_user(profile.id, user_id) is not None:
            raise ConflictError("You already have a pending claim for this profile")
        return self.create(
            org_id,
            {
                "artist_profile_id": profile.id,
                "user_id": user_id,
                "claim_reason": claim_reason,
                "evidence_links": evidence_links,
                "status": "pending",
            },
        )

    def review(self, org_id: str, claim_id: str, reviewer_id: str, approve: bool) -> ArtistClaimRequest:
        """Approve or reject a pending claim.

        Approving marks the profile claimed by the requester and rejects every
        other pending claim on the same profile.
        """
        claim = self.get(org_id, claim_id)
        if claim is None:
            raise NotFoundError("Claim request not found")
        if claim.status != "pending":
            raise ConflictError(f"Claim request is already {claim.status}")

        start_time = time.time()
        now = utcnow()
        try:
            claim.status = "approved" if approve else "rejected"
            claim.reviewed_by = reviewer_id
            claim.reviewed_at = now
            if approve:
                profile = self.session.get(ArtistProfile, claim.artist_profile_id)
                if profile.is_claimed:
                    raise ConflictError("Artist profile is already claimed")
                profile.is_claimed = True
                profile.claimed_by = claim.user_id
                others = (
                    self.session.query(ArtistClaimRequest)
                    .filter(
                        ArtistClaimRequest.artist_profile_id == claim.artist_profile_id,
                        ArtistClaimRequest.id != claim.id,
                        ArtistClaimRequest.status == "pending",
                    )
                    .all()
                )
                for other in others:
                    other.status = "rejected"
                    other.reviewed_by = reviewer_id
                    other.reviewed_at = now
            self.session.commit()
            self.session.refresh(claim)
            log_database_operation(
                "UPDATE", "artist_claim_requests", (time.time() - start_time) * 1000
            )
            logger.info(f"Claim {claim.id} {claim.status} by {reviewer_id}")
            return claim
        except Exception:
            self.session.rollback()
            raise


class CourseRepository(TenantScopedRepository[Course]):
    def __init__(self, session):
        super().__init__(session, Course)


class EnrollmentRepository(TenantScopedRepository[CourseEnrollment]):
    def __init__(self, session):
        super().__init__(session, CourseEnrollment)

    def for_user(self, course_id: str, user_id: str) -> Optional[CourseEnrollment]:
        return (
            self.session.query(CourseEnrollment)
            .filter(
                CourseEnrollment.course_id == course_id,
                CourseEnrollment.user_id == user_id,
            )
            .first()
        )

    def active_count(self, course_id: str) -> int:
        return (
            self.session.query(func.count(CourseEnrollment.id))
            .filter(
                CourseEnrollment.course_id == course_id,
                CourseEnrollment.status.in_(("active", "completed")),
            )
            .scalar()
            or 0
        )

    def enroll(self, org_id: str, course: Course, user_id: str) -> CourseEnrollment:
        """Enroll a user; raises ConflictError when already enrolled or the course is full."""
        if self.for_user(course.id, user_id) is not None:
            raise ConflictError("Already enrolled in this course")
        if course.max_enrollments and self.active_count(course.id) >= course.max_enrollments:
            raise ConflictError("Course is full")
        return self.create(
            org_id,
            {"course_id": course.id, "user_id": user_id, "status": "active"},
        )

    def set_progress(self, enrollment: CourseEnrollment, percentage: int) -> CourseEnrollment:
        start_time = time.time()
        try:
            enrollment.completion_percentage = percentage
            if percentage >= 100:
                enrollment.status = "completed"
                enrollment.completed_at = enrollment.completed_at or utcnow()
            self.session.commit()
            self.session.refresh(enrollment)
            log_database_operation(
                "UPDATE", "course_enrollments", (time.time() - start_time) * 1000
            )
            return enrollment
        except Exception:
            self.session.rollback()
            raise
