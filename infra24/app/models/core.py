import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from infra24.app.db.core import Base


def gen_uuid():
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def naive_datetimes(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: as_naive_utc(v) if isinstance(v, datetime) else v for k, v in data.items()}


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Organization(TimestampMixin, Base):
    __tablename__ = "organizations"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    domain = Column(String(255))
    subdomain = Column(String(100))
    theme = Column(JSON, default=dict)
    features = Column(JSON, default=dict)
    settings = Column(JSON, default=dict)
    primary_color = Column(String(20))
    logo_url = Column(String(500))
    website_url = Column(String(500))
    support_email = Column(String(255))
    is_active = Column(Boolean, default=True, nullable=False)


class User(TimestampMixin, Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    external_id = Column(String(255), unique=True, nullable=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    created_via = Column(String(50), default="identity_provider")
    user_metadata = Column("metadata", JSON, default=dict)

    memberships = relationship(
        "OrgMembership", back_populates="user", cascade="all, delete-orphan"
    )


class OrgMembership(TimestampMixin, Base):
    __tablename__ = "org_memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),
    )
    id = Column(String(36), primary_key=True, default=gen_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    role = Column(String(50), nullable=False, default="member")
    is_active = Column(Boolean, default=True, nullable=False)

    user = relationship("User", back_populates="memberships")
    organization = relationship("Organization")


class Workshop(TimestampMixin, Base):
    __tablename__ = "workshops"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100))
    level = Column(String(50))
    event_type = Column(String(50), default="workshop")
    event_category = Column(String(100))
    instructor_name = Column(String(255))
    duration_minutes = Column(Integer)
    max_participants = Column(Integer)
    min_participants = Column(Integer, default=1)
    price = Column(Float, default=0.0)
    is_active = Column(Boolean, default=True, nullable=False)
    is_public = Column(Boolean, default=True, nullable=False)
    featured = Column(Boolean, default=False, nullable=False)
    starts_at = Column(DateTime)
    location = Column(String(255))
    learning_objectives = Column(JSON, default=list)
    prerequisites = Column(JSON, default=list)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class Announcement(TimestampMixin, Base):
    __tablename__ = "announcements"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    body = Column(Text)
    type = Column(String(50), default="general")
    sub_type = Column(String(50))
    status = Column(String(20), default="pending", nullable=False)
    visibility = Column(String(20), default="both", nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    tags = Column(JSON, default=list)
    location = Column(String(255))
    starts_at = Column(DateTime)
    ends_at = Column(DateTime)
    scheduled_at = Column(DateTime)
    expires_at = Column(DateTime)
    primary_link = Column(String(500))
    image_url = Column(String(500))
    people = Column(JSON, default=list)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class ArtistProfile(TimestampMixin, Base):
    __tablename__ = "artist_profiles"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    bio = Column(Text)
    studio_number = Column(String(50))
    studio_type = Column(String(50))
    website = Column(String(500))
    instagram = Column(String(255))
    email = Column(String(255))
    is_claimed = Column(Boolean, default=False, nullable=False)
    claimed_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class ArtistClaimRequest(TimestampMixin, Base):
    __tablename__ = "artist_claim_requests"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    artist_profile_id = Column(
        String(36), ForeignKey("artist_profiles.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    claim_reason = Column(Text, nullable=False)
    evidence_links = Column(JSON, default=list)
    status = Column(String(20), default="pending", nullable=False)
    reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime)


class Course(TimestampMixin, Base):
    __tablename__ = "courses"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text)
    category = Column(String(100))
    level = Column(String(50))
    published = Column(Boolean, default=False, nullable=False)
    featured = Column(Boolean, default=False, nullable=False)
    max_enrollments = Column(Integer, default=0, nullable=False)
    duration_weeks = Column(Integer)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class CourseEnrollment(TimestampMixin, Base):
    __tablename__ = "course_enrollments"
    __table_args__ = (
        UniqueConstraint("course_id", "user_id", name="uq_enrollment_course_user"),
    )
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    course_id = Column(String(36), ForeignKey("courses.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default="active", nullable=False)
    completion_percentage = Column(Integer, default=0, nullable=False)
    completed_at = Column(DateTime)


class BookableResource(TimestampMixin, Base):
    __tablename__ = "bookable_resources"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text)
    type = Column(String(20), default="space", nullable=False)
    category = Column(String(100))
    capacity = Column(Integer, default=1, nullable=False)
    duration_minutes = Column(Integer)
    price = Column(Float, default=0.0)
    currency = Column(String(3), default="USD")
    location = Column(String(255))
    availability_rules = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    is_bookable = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    resource_id = Column(
        String(36), ForeignKey("bookable_resources.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    user_email = Column(String(255))
    title = Column(String(255), nullable=False)
    description = Column(Text)
    starts_at = Column(DateTime, nullable=False, index=True)
    ends_at = Column(DateTime, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    participants = Column(Integer, default=1, nullable=False)
    price = Column(Float, default=0.0)
    notes = Column(Text)
    booking_metadata = Column("metadata", JSON, default=dict)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)


class WaitlistEntry(TimestampMixin, Base):
    __tablename__ = "waitlist_entries"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    resource_id = Column(
        String(36), ForeignKey("bookable_resources.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    user_email = Column(String(255), nullable=False)
    user_name = Column(String(255))
    requested_start = Column(DateTime, nullable=False)
    requested_end = Column(DateTime, nullable=False)
    priority = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    expires_at = Column(DateTime, nullable=False)
    notified_at = Column(DateTime)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=True)
    entry_metadata = Column("metadata", JSON, default=dict)


class Survey(TimestampMixin, Base):
    __tablename__ = "surveys"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(20), default="draft", nullable=False)
    form_schema = Column(JSON, default=dict)
    opens_at = Column(DateTime)
    closes_at = Column(DateTime)
    max_responses = Column(Integer)
    max_responses_per_user = Column(Integer)
    requires_authentication = Column(Boolean, default=False, nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class SurveyInvitation(TimestampMixin, Base):
    __tablename__ = "survey_invitations"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    role = Column(String(100))
    magic_token = Column(String(128), unique=True, nullable=False, index=True)
    status = Column(String(20), default="pending", nullable=False)
    expires_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class SurveyResponse(TimestampMixin, Base):
    __tablename__ = "survey_responses"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)
    invitation_id = Column(String(36), ForeignKey("survey_invitations.id"), nullable=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    respondent_email = Column(String(255))
    respondent_role = Column(String(100))
    response_data = Column(JSON, default=dict)
    status = Column(String(20), default="completed", nullable=False)
    completion_time_seconds = Column(Integer)
    ip_address = Column(String(64))
    user_agent = Column(String(500))
    submitted_at = Column(DateTime)


class MagicLink(TimestampMixin, Base):
    __tablename__ = "magic_links"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    token = Column(String(128), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True)
    link_metadata = Column("metadata", JSON, default=dict)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)


class MagicLinkEvent(Base):
    __tablename__ = "magic_link_events"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    token = Column(String(128), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class BudgetLineItem(TimestampMixin, Base):
    __tablename__ = "budget_line_items"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name = Column(String(500), nullable=False)
    category = Column(String(100), nullable=False)
    amount = Column(Float, nullable=False)
    date = Column(String(10), nullable=False)
    vendor = Column(String(255))
    notes = Column(Text)
    image_url = Column(String(500))
    created_by = Column(String(36), ForeignKey("users.id"), nullable=True)


class EmailEvent(Base):
    __tablename__ = "email_events"
    id = Column(String(36), primary_key=True, default=gen_uuid)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    event_type = Column(String(50), nullable=False)
    template = Column(String(100))
    language = Column(String(10))
    recipient = Column(String(255))
    message_id = Column(String(255))
    error = Column(Text)
    payload = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
