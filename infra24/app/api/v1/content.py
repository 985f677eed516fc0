"""Organization content: workshops, announcements, artist profiles and courses."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from infra24.app.auth import core as auth
from infra24.app.core.logging import log_permission_check
from infra24.app.db.core import get_db
from infra24.app.models.core import Organization, User, naive_datetimes
from infra24.app.repositories.content import (
    AnnouncementRepository,
    ArtistClaimRepository,
    ArtistRepository,
    CourseRepository,
    EnrollmentRepository,
    WorkshopRepository,
)
from infra24.app.schemas import core as schemas

router = APIRouter(prefix="/organizations/{slug}")

FULL_ACCESS_ROLES = ("super_admin",) + auth.MODERATING_ROLES
# everyone else, survey respondents included, sees only public content
STAFF_ROLES = ("super_admin",) + auth.MEMBER_ROLES


# Workshops


@router.get("/workshops", response_model=List[schemas.WorkshopOut])
def list_workshops(
    category: Optional[str] = None,
    event_type: Optional[str] = None,
    event_category: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_public: Optional[bool] = None,
    featured: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    filters = {
        "category": category,
        "event_type": event_type,
        "event_category": event_category,
        "is_active": is_active,
        "is_public": is_public,
        "featured": featured,
    }
    public_only = not auth.has_org_role(db, current_user, org)
    return WorkshopRepository(db).list_visible(
        org.id, filters, public_only=public_only, skip=offset, limit=limit
    )


@router.post("/workshops", response_model=schemas.WorkshopOut, status_code=201)
def create_workshop(
    payload: schemas.WorkshopCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="create_workshop")
    data = naive_datetimes(payload.model_dump())
    data["created_by"] = current_user.id
    return WorkshopRepository(db).create(org.id, data)


@router.get("/workshops/{workshop_id}", response_model=schemas.WorkshopOut)
def get_workshop(
    workshop_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    workshop = WorkshopRepository(db).get(org.id, workshop_id)
    if workshop is None:
        raise HTTPException(status_code=404, detail="Workshop not found")
    if not auth.has_org_role(db, current_user, org) and not (workshop.is_public and workshop.is_active):
        raise HTTPException(status_code=404, detail="Workshop not found")
    return workshop


@router.patch("/workshops/{workshop_id}", response_model=schemas.WorkshopOut)
def update_workshop(
    workshop_id: str,
    payload: schemas.WorkshopUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="update_workshop")
    repo = WorkshopRepository(db)
    existing = repo.get(org.id, workshop_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Workshop not found")
    data = naive_datetimes(payload.model_dump(exclude_unset=True))
    low = data.get("min_participants", existing.min_participants)
    high = data.get("max_participants", existing.max_participants)
    if low is not None and high is not None and low > high:
        raise HTTPException(status_code=400, detail="min_participants cannot exceed max_participants")
    return repo.update(org.id, workshop_id, data)


@router.delete("/workshops/{workshop_id}")
def delete_workshop(
    workshop_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="delete_workshop")
    if not WorkshopRepository(db).delete(org.id, workshop_id):
        raise HTTPException(status_code=404, detail="Workshop not found")
    return {"success": True}


# Announcements


def _can_edit_announcement(db: Session, org: Organization, user: User, announcement) -> bool:
    return (
        auth.has_org_role(db, user, org, auth.MODERATING_ROLES)
        or announcement.created_by == user.id
    )


def _announcement_viewer_role(db: Session, org: Organization, user: Optional[User], action: str) -> Optional[str]:
    """Role of the viewer; signed-in callers from another organization get 403."""
    role = auth.effective_role(db, user, org)
    if user is not None and role is None:
        log_permission_check(f"organization:{org.slug}", action, user.id, org.id, False)
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return role


@router.get("/announcements", response_model=List[schemas.AnnouncementOut])
def list_announcements(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    """Active announcements for the public and members; everything for moderators."""
    role = _announcement_viewer_role(db, org, current_user, "list_announcements")
    return AnnouncementRepository(db).list_for_viewer(
        org.id,
        full_access=role in FULL_ACCESS_ROLES,
        anonymous=role not in STAFF_ROLES,
        skip=offset,
        limit=limit,
    )


@router.post("/announcements", response_model=schemas.AnnouncementOut, status_code=201)
def create_announcement(
    payload: schemas.AnnouncementCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    role = auth.require_org_role(db, org, current_user, action="create_announcement")
    data = naive_datetimes(payload.model_dump())
    if role not in FULL_ACCESS_ROLES or data.get("status") is None:
        data["status"] = "pending"
    data["created_by"] = current_user.id
    return AnnouncementRepository(db).create(org.id, data)


@router.get("/announcements/{announcement_id}", response_model=schemas.AnnouncementOut)
def get_announcement(
    announcement_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    role = _announcement_viewer_role(db, org, current_user, "read_announcement")
    announcement = AnnouncementRepository(db).get_for_viewer(
        org.id,
        announcement_id,
        full_access=role in FULL_ACCESS_ROLES,
        anonymous=role not in STAFF_ROLES,
    )
    if announcement is None:
        raise HTTPException(status_code=404, detail="Announcement not found")
    return announcement


@router.patch("/announcements/{announcement_id}", response_model=schemas.AnnouncementOut)
def update_announcement(
    announcement_id: str,
    payload: schemas.AnnouncementUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    repo = AnnouncementRepository(db)
    announcement = repo.get(org.id, announcement_id)
    if announcement is None:
        raise HTTPException(status_code=404, detail="Announcement not found")
    if not _can_edit_announcement(db, org, current_user, announcement):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    data = naive_datetimes(payload.model_dump(exclude_unset=True))
    if "status" in data and not auth.has_org_role(db, current_user, org, auth.MODERATING_ROLES):
        # only moderators move announcements through review
        data.pop("status")
    return repo.update(org.id, announcement_id, data)


@router.delete("/announcements/{announcement_id}")
def delete_announcement(
    announcement_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    repo = AnnouncementRepository(db)
    announcement = repo.get(org.id, announcement_id)
    if announcement is None:
        raise HTTPException(status_code=404, detail="Announcement not found")
    if not _can_edit_announcement(db, org, current_user, announcement):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    repo.delete(org.id, announcement_id)
    return {"success": True}


# Artist profiles


@router.get("/artists", response_model=List[schemas.ArtistOut])
def list_artists(
    search: Optional[str] = None,
    type: Optional[str] = None,
    status: str = Query("all", pattern="^(all|claimed|unclaimed)$"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
):
    return ArtistRepository(db).search(
        org.id, search=search, studio_type=type, status=status, skip=offset, limit=limit
    )


@router.post("/artists", response_model=schemas.ArtistOut, status_code=201)
def create_artist(
    payload: schemas.ArtistCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="create_artist")
    return ArtistRepository(db).create(org.id, payload.model_dump())


@router.get("/artists/claims", response_model=List[schemas.ArtistClaimOut])
def list_claims(
    status: Optional[str] = Query("pending", pattern="^(pending|approved|rejected)$"),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="list_claims")
    return ArtistClaimRepository(db).list(org.id, filters={"status": status})


@router.post("/artists/claims/{claim_id}/approve", response_model=schemas.ArtistClaimOut)
def approve_claim(
    claim_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="review_claim")
    return ArtistClaimRepository(db).review(org.id, claim_id, current_user.id, approve=True)


@router.post("/artists/claims/{claim_id}/reject", response_model=schemas.ArtistClaimOut)
def reject_claim(
    claim_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, ("org_admin",), action="review_claim")
    return ArtistClaimRepository(db).review(org.id, claim_id, current_user.id, approve=False)


@router.get("/artists/{artist_id}", response_model=schemas.ArtistOut)
def get_artist(
    artist_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
):
    artist = ArtistRepository(db).get(org.id, artist_id)
    if artist is None:
        raise HTTPException(status_code=404, detail="Artist profile not found")
    return artist


@router.patch("/artists/{artist_id}", response_model=schemas.ArtistOut)
def update_artist(
    artist_id: str,
    payload: schemas.ArtistUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    """Org admins edit any profile; an artist edits the profile they claimed."""
    repo = ArtistRepository(db)
    artist = repo.get(org.id, artist_id)
    if artist is None:
        raise HTTPException(status_code=404, detail="Artist profile not found")
    if artist.claimed_by != current_user.id:
        auth.require_org_role(db, org, current_user, ("org_admin",), action="update_artist")
    return repo.update(org.id, artist_id, payload.model_dump(exclude_unset=True))


@router.post("/artists/{artist_id}/claims", response_model=schemas.ArtistClaimOut, status_code=201)
def claim_artist(
    artist_id: str,
    payload: schemas.ArtistClaimCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="claim_artist")
    artist = ArtistRepository(db).get(org.id, artist_id)
    if artist is None:
        raise HTTPException(status_code=404, detail="Artist profile not found")
    return ArtistClaimRepository(db).submit(
        org.id, artist, current_user.id, payload.claim_reason, payload.evidence_links
    )


# Courses


@router.get("/courses", response_model=List[schemas.CourseOut])
def list_courses(
    category: Optional[str] = None,
    level: Optional[str] = None,
    published: Optional[bool] = None,
    featured: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    if not auth.has_org_role(db, current_user, org, auth.MODERATING_ROLES):
        published = True
    filters = {"category": category, "level": level, "published": published, "featured": featured}
    return CourseRepository(db).list(org.id, filters=filters, skip=offset, limit=limit)


@router.post("/courses", response_model=schemas.CourseOut, status_code=201)
def create_course(
    payload: schemas.CourseCreate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="create_course")
    data = payload.model_dump()
    data["created_by"] = current_user.id
    return CourseRepository(db).create(org.id, data)


def _course_or_404(db: Session, org: Organization, course_id: str):
    course = CourseRepository(db).get(org.id, course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@router.get("/courses/{course_id}", response_model=schemas.CourseOut)
def get_course(
    course_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(auth.get_optional_user),
):
    course = _course_or_404(db, org, course_id)
    if not course.published and not auth.has_org_role(db, current_user, org, auth.MODERATING_ROLES):
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@router.patch("/courses/{course_id}", response_model=schemas.CourseOut)
def update_course(
    course_id: str,
    payload: schemas.CourseUpdate,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="update_course")
    course = CourseRepository(db).update(org.id, course_id, payload.model_dump(exclude_unset=True))
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@router.post("/courses/{course_id}/enrollments", response_model=schemas.EnrollmentOut, status_code=201)
def enroll(
    course_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, action="enroll")
    course = _course_or_404(db, org, course_id)
    return EnrollmentRepository(db).enroll(org.id, course, current_user.id)


@router.get("/courses/{course_id}/enrollments", response_model=List[schemas.EnrollmentOut])
def list_enrollments(
    course_id: str,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    auth.require_org_role(db, org, current_user, auth.MODERATING_ROLES, action="list_enrollments")
    _course_or_404(db, org, course_id)
    return EnrollmentRepository(db).list(org.id, filters={"course_id": course_id}, limit=None)


@router.patch("/courses/{course_id}/enrollments/me", response_model=schemas.EnrollmentOut)
def update_progress(
    course_id: str,
    payload: schemas.EnrollmentProgress,
    org: Organization = Depends(auth.get_organization),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth.get_current_user),
):
    repo = EnrollmentRepository(db)
    enrollment = repo.for_user(course_id, current_user.id)
    if enrollment is None or enrollment.organization_id != org.id:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    return repo.set_progress(enrollment, payload.completion_percentage)
