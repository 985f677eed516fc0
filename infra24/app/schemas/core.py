from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, model_validator

Role = Literal["super_admin", "org_admin", "moderator", "member", "survey_respondent"]
AnnouncementStatus = Literal["draft", "pending", "approved", "rejected", "published"]
AnnouncementVisibility = Literal["internal", "external", "both"]
StudioType = Literal["Studio", "Associate", "Gallery", "Residency"]
SurveyStatus = Literal["draft", "active", "closed"]
Language = Literal["en", "es"]
ResourceType = Literal["space", "equipment", "person", "workshop"]
BookingStatus = Literal["pending", "confirmed", "cancelled", "completed", "no_show"]
WaitlistStatus = Literal["pending", "notified", "booked", "expired", "cancelled"]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"
ISO_DATE = r"^\d{4}-\d{2}-\d{2}$"


# Organizations


class OrganizationBase(BaseModel):
    name: str
    description: Optional[str] = None
    domain: Optional[str] = None
    subdomain: Optional[str] = None
    theme: Dict[str, Any] = Field(default_factory=dict)
    features: Dict[str, bool] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=dict)
    primary_color: Optional[str] = None
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    support_email: Optional[str] = None


class OrganizationCreate(OrganizationBase):
    slug: str = Field(min_length=2, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")


class OrganizationOut(OrganizationBase):
    id: str
    slug: str
    is_active: bool
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class OrganizationDetail(OrganizationOut):
    css_variables: Dict[str, str] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)


class ThemeUpdate(BaseModel):
    theme: Dict[str, Any] = Field(default_factory=dict)
    primary_color: Optional[str] = None
    logo_url: Optional[str] = None


# Users and memberships


class MembershipOut(BaseModel):
    id: str
    organization_id: str
    role: str
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class UserOut(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_via: Optional[str] = None
    memberships: List[MembershipOut] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class MemberOut(BaseModel):
    user_id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    is_active: bool


class MemberUpsert(BaseModel):
    email: EmailStr
    role: Role = "member"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True


# Workshops


class WorkshopBase(BaseModel):
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    event_type: str = "workshop"
    event_category: Optional[str] = None
    instructor_name: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    max_participants: Optional[int] = Field(default=None, ge=1)
    min_participants: Optional[int] = Field(default=1, ge=0)
    price: float = Field(default=0.0, ge=0)
    is_active: bool = True
    is_public: bool = True
    featured: bool = False
    starts_at: Optional[datetime] = None
    location: Optional[str] = None
    learning_objectives: List[str] = Field(default_factory=list)
    prerequisites: List[str] = Field(default_factory=list)


class WorkshopCreate(WorkshopBase):
    @model_validator(mode="after")
    def check_participants(self):
        if (
            self.min_participants is not None
            and self.max_participants is not None
            and self.min_participants > self.max_participants
        ):
            raise ValueError("min_participants cannot exceed max_participants")
        return self


class WorkshopUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    event_type: Optional[str] = None
    event_category: Optional[str] = None
    instructor_name: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    max_participants: Optional[int] = Field(default=None, ge=1)
    min_participants: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None
    featured: Optional[bool] = None
    starts_at: Optional[datetime] = None
    location: Optional[str] = None
    learning_objectives: Optional[List[str]] = None
    prerequisites: Optional[List[str]] = None


class WorkshopOut(WorkshopBase):
    id: str
    organization_id: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# Announcements


class AnnouncementBase(BaseModel):
    title: str
    body: Optional[str] = None
    type: str = "general"
    sub_type: Optional[str] = None
    visibility: AnnouncementVisibility = "both"
    priority: int = 0
    tags: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    primary_link: Optional[str] = None
    image_url: Optional[str] = None
    people: List[Dict[str, Any]] = Field(default_factory=list)


class AnnouncementCreate(AnnouncementBase):
    status: Optional[AnnouncementStatus] = None


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    type: Optional[str] = None
    sub_type: Optional[str] = None
    status: Optional[AnnouncementStatus] = None
    visibility: Optional[AnnouncementVisibility] = None
    priority: Optional[int] = None
    tags: Optional[List[str]] = None
    location: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    primary_link: Optional[str] = None
    image_url: Optional[str] = None
    people: Optional[List[Dict[str, Any]]] = None


class AnnouncementOut(AnnouncementBase):
    id: str
    organization_id: str
    status: str
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# Artists


class ArtistBase(BaseModel):
    name: str
    bio: Optional[str] = None
    studio_number: Optional[str] = None
    studio_type: Optional[StudioType] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    email: Optional[EmailStr] = None


class ArtistCreate(ArtistBase):
    pass


class ArtistUpdate(BaseModel):
    name: Optional[str] = None
    bio: Optional[str] = None
    studio_number: Optional[str] = None
    studio_type: Optional[StudioType] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    email: Optional[EmailStr] = None


class ArtistOut(BaseModel):
    id: str
    organization_id: str
    name: str
    bio: Optional[str] = None
    studio_number: Optional[str] = None
    studio_type: Optional[str] = None
    website: Optional[str] = None
    instagram: Optional[str] = None
    email: Optional[str] = None
    is_claimed: bool
    claimed_by: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ArtistClaimCreate(BaseModel):
    claim_reason: str = Field(min_length=1)
    evidence_links: List[str] = Field(default_factory=list)


class ArtistClaimOut(BaseModel):
    id: str
    artist_profile_id: str
    user_id: str
    claim_reason: str
    evidence_links: List[str] = Field(default_factory=list)
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# Courses


class CourseBase(BaseModel):
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    published: bool = False
    featured: bool = False
    max_enrollments: int = Field(default=0, ge=0)
    duration_weeks: Optional[int] = Field(default=None, ge=1)


class CourseCreate(CourseBase):
    pass


class CourseUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    published: Optional[bool] = None
    featured: Optional[bool] = None
    max_enrollments: Optional[int] = Field(default=None, ge=0)
    duration_weeks: Optional[int] = Field(default=None, ge=1)


class CourseOut(CourseBase):
    id: str
    organization_id: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class EnrollmentOut(BaseModel):
    id: str
    course_id: str
    user_id: str
    status: str
    completion_percentage: int
    completed_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class EnrollmentProgress(BaseModel):
    completion_percentage: int = Field(ge=0, le=100)


# Bookings


class AvailabilityWindow(BaseModel):
    host: str = "default"
    days: List[str] = Field(min_length=1)
    start: str = Field(pattern=HHMM)
    end: str = Field(pattern=HHMM)

    @model_validator(mode="after")
    def check_window(self):
        unknown = {d.lower() for d in self.days} - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        if self.start >= self.end:
            raise ValueError("Window start must be before its end")
        return self


class Blackout(BaseModel):
    date: Optional[str] = Field(default=None, pattern=ISO_DATE)
    range: Optional[List[str]] = Field(default=None, min_length=2, max_length=2)


class AvailabilityRules(BaseModel):
    timezone: Optional[str] = None
    slot_minutes: int = Field(default=30, ge=5, le=1440)
    buffer_before: int = Field(default=0, ge=0)
    buffer_after: int = Field(default=0, ge=0)
    max_per_day_per_host: int = Field(default=10, ge=1)
    windows: List[AvailabilityWindow] = Field(default_factory=list)
    blackouts: List[Blackout] = Field(default_factory=list)
    pooling: Literal["round_robin", "least_loaded"] = "round_robin"


class ResourceBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: ResourceType = "space"
    category: Optional[str] = None
    capacity: int = Field(default=1, ge=1)
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    price: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    location: Optional[str] = None
    availability_rules: AvailabilityRules = Field(default_factory=AvailabilityRules)
    is_active: bool = True
    is_bookable: bool = True


class ResourceCreate(ResourceBase):
    pass


class ResourceUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    price: Optional[float] = Field(default=None, ge=0)
    location: Optional[str] = None
    availability_rules: Optional[AvailabilityRules] = None
    is_active: Optional[bool] = None
    is_bookable: Optional[bool] = None


class ResourceOut(ResourceBase):
    id: str
    organization_id: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TimeRange(BaseModel):
    starts_at: datetime
    ends_at: datetime

    @model_validator(mode="after")
    def check_range(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class BookingCreate(TimeRange):
    resource_id: str
    title: str = Field(min_length=1)
    description: Optional[str] = None
    participants: int = Field(default=1, ge=1)
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BookingReschedule(TimeRange):
    notes: Optional[str] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = None


class BookingOut(BaseModel):
    id: str
    organization_id: str
    resource_id: str
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    title: str
    description: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    status: BookingStatus
    participants: int
    price: Optional[float] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("booking_metadata", "metadata")
    )
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ConflictOut(BaseModel):
    type: str
    severity: str
    message: str
    conflicting_booking_ids: List[str] = Field(default_factory=list)
    suggested_resolutions: List[str] = Field(default_factory=list)


class AvailabilitySlot(BaseModel):
    start: datetime
    end: datetime
    host: str


class AvailabilityOut(BaseModel):
    resource_id: str
    timezone: str
    slot_minutes: int
    slots: List[AvailabilitySlot]


class WaitlistCreate(BaseModel):
    requested_start: datetime
    requested_end: datetime
    user_name: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_range(self):
        if self.requested_end <= self.requested_start:
            raise ValueError("requested_end must be after requested_start")
        return self


class WaitlistOut(BaseModel):
    id: str
    resource_id: str
    user_id: Optional[str] = None
    user_email: str
    user_name: Optional[str] = None
    requested_start: datetime
    requested_end: datetime
    priority: int
    status: WaitlistStatus
    expires_at: datetime
    notified_at: Optional[datetime] = None
    booking_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("entry_metadata", "metadata")
    )
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class WaitlistNotification(BaseModel):
    entry_id: str
    user_email: str
    user_name: Optional[str] = None
    resource_title: str
    available_slots: List[AvailabilitySlot]
    expires_at: datetime


class BookingCancelOut(BaseModel):
    booking: BookingOut
    waitlist_notifications: List[WaitlistNotification] = Field(default_factory=list)


class WaitlistBook(BaseModel):
    slot: AvailabilitySlot
    title: Optional[str] = None


# Budget


class BudgetLineItemCreate(BaseModel):
    name: str = Field(min_length=1)
    category: str
    amount: float = Field(gt=0)
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    vendor: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None


class BudgetLineItemOut(BudgetLineItemCreate):
    id: str
    organization_id: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


# Surveys


class SurveyBase(BaseModel):
    title: str
    description: Optional[str] = None
    status: SurveyStatus = "draft"
    form_schema: Dict[str, Any] = Field(default_factory=lambda: {"questions": []})
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None
    max_responses: Optional[int] = Field(default=None, ge=1)
    max_responses_per_user: Optional[int] = Field(default=None, ge=1)
    requires_authentication: bool = False


class SurveyCreate(SurveyBase):
    pass


class SurveyUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[SurveyStatus] = None
    form_schema: Optional[Dict[str, Any]] = None
    opens_at: Optional[datetime] = None
    closes_at: Optional[datetime] = None
    max_responses: Optional[int] = Field(default=None, ge=1)
    max_responses_per_user: Optional[int] = Field(default=None, ge=1)
    requires_authentication: Optional[bool] = None


class SurveyOut(SurveyBase):
    id: str
    organization_id: str
    created_by: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class InvitationItem(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    role: Optional[str] = None


class InvitationCreateRequest(BaseModel):
    invitations: List[InvitationItem] = Field(min_length=1)
    expires_in_hours: int = Field(default=168, ge=1)


class InvitationOut(BaseModel):
    id: str
    survey_id: str
    email: str
    name: Optional[str] = None
    role: Optional[str] = None
    magic_token: str
    status: str
    expires_at: datetime
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class SurveyRecipient(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None


class SendInvitationsRequest(BaseModel):
    recipients: List[SurveyRecipient] = Field(default_factory=list)
    language: Language = "en"


class SurveyResponseCreate(BaseModel):
    response_data: Dict[str, Any]
    invitation_token: Optional[str] = None
    magic_token: Optional[str] = None
    respondent_email: Optional[EmailStr] = None
    respondent_role: Optional[str] = None
    completion_time_seconds: Optional[int] = Field(default=None, ge=0)


class SurveyResponseOut(BaseModel):
    id: str
    survey_id: str
    invitation_id: Optional[str] = None
    user_id: Optional[str] = None
    respondent_email: Optional[str] = None
    respondent_role: Optional[str] = None
    response_data: Dict[str, Any]
    status: str
    completion_time_seconds: Optional[int] = None
    submitted_at: Optional[datetime] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class MagicLinkRequest(BaseModel):
    email: EmailStr
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ttl_hours: Optional[int] = Field(default=None, ge=1)


class MagicLinkOut(BaseModel):
    token: str
    url: str
    expires_at: datetime


class SurveyAccessRequest(BaseModel):
    token: str = Field(min_length=1)


class SurveyAccessOut(BaseModel):
    survey_id: Optional[str] = None
    organization_id: Optional[str] = None
    email: str
    user_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
