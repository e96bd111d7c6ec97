from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from datetime import datetime
from urllib.parse import urlparse

from time_utils import as_utc

from models import (
    AttendanceMethod,
    Eligibility,
    EventStatus,
    EventType,
    OrganizerStatus,
    ParticipantType,
    PaymentStatus,
    RegistrationStatus,
    ResetRequestStatus,
    TeamMemberOrigin,
    TeamMemberStatus,
    TeamRegistrationOutcome,
    TeamStatus,
    UserRole,
)

FormFieldType = Literal["text", "textarea", "dropdown", "checkbox", "radio", "number", "email", "date"]


def _normalize_optional_http_url(value: Optional[str], field_name: str, max_length: int = 500) -> Optional[str]:
    raw = str(value or "").strip()
    if not raw:
        return None
    if len(raw) > max_length:
        raise ValueError(f"{field_name} must be at most {max_length} characters")
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be a valid http/https URL")
    return raw


def _normalize_optional_image_url(value: Optional[str], field_name: str, max_length: int = 500) -> Optional[str]:
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.startswith("/"):
        if len(raw) > max_length:
            raise ValueError(f"{field_name} must be at most {max_length} characters")
        return raw
    return _normalize_optional_http_url(raw, field_name, max_length=max_length)


def _clean_tags(value: Optional[List[str]]) -> List[str]:
    seen = []
    for tag in value or []:
        tag = str(tag or "").strip()
        if tag and tag.lower() not in [t.lower() for t in seen]:
            seen.append(tag)
    return seen


# Auth Schemas
class ParticipantRegister(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=6)
    contact_number: Optional[str] = Field(None, max_length=20)
    college_or_org: Optional[str] = Field(None, max_length=255)

    @field_validator('contact_number')
    @classmethod
    def validate_contact_number(cls, v):
        if v and not v.replace('+', '').replace(' ', '').isdigit():
            raise ValueError('Contact number must contain only digits')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    contact_number: Optional[str] = None
    college_or_org: Optional[str] = None
    participant_type: ParticipantType
    role: UserRole
    areas_of_interest: List[str] = []
    followed_organizer_ids: List[int] = []
    onboarding_completed: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None

    @field_validator('areas_of_interest', mode='before')
    @classmethod
    def default_interests(cls, v):
        return v or []


class OrganizerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    logo_url: Optional[str] = None


class OrganizerPublic(OrganizerSummary):
    description: Optional[str] = None
    contact_email: str
    contact_number: Optional[str] = None
    status: OrganizerStatus


class OrganizerResponse(OrganizerPublic):
    discord_webhook: Optional[str] = None
    created_at: Optional[datetime] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    user: Optional[UserResponse] = None
    organizer: Optional[OrganizerResponse] = None


class MeResponse(BaseModel):
    role: str
    user: Optional[UserResponse] = None
    organizer: Optional[OrganizerResponse] = None


class MessageResponse(BaseModel):
    message: str


# User Schemas
class OnboardingRequest(BaseModel):
    areas_of_interest: List[str] = []
    followed_organizer_ids: List[int] = []

    @field_validator('areas_of_interest')
    @classmethod
    def clean_interests(cls, v):
        return _clean_tags(v)


class UserProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=120)
    last_name: Optional[str] = Field(None, min_length=1, max_length=120)
    contact_number: Optional[str] = Field(None, max_length=20)
    college_or_org: Optional[str] = Field(None, max_length=255)
    areas_of_interest: Optional[List[str]] = None

    @field_validator('areas_of_interest')
    @classmethod
    def clean_interests(cls, v):
        return _clean_tags(v) if v is not None else v


class OrganizerProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    category: Optional[str] = Field(None, min_length=2, max_length=120)
    description: Optional[str] = None
    contact_number: Optional[str] = Field(None, max_length=20)
    discord_webhook: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator('discord_webhook')
    @classmethod
    def validate_webhook(cls, v):
        return _normalize_optional_http_url(v, 'discord_webhook')

    @field_validator('logo_url')
    @classmethod
    def validate_logo(cls, v):
        return _normalize_optional_image_url(v, 'logo_url')


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


# Event Schemas
class FormField(BaseModel):
    label: str = Field(..., min_length=1, max_length=200)
    field_type: FormFieldType
    options: List[str] = []
    required: bool = False
    placeholder: Optional[str] = None
    order: int = 0

    @model_validator(mode='after')
    def check_options(self):
        if self.field_type in ("dropdown", "radio", "checkbox") and not self.options:
            raise ValueError(f"'{self.label}' needs at least one option")
        return self


class MerchandiseItemCreate(BaseModel):
    variant_name: str = Field(..., min_length=1, max_length=120)
    size: Optional[str] = Field(None, max_length=40)
    color: Optional[str] = Field(None, max_length=40)
    sku: Optional[str] = Field(None, max_length=80)
    stock: int = Field(0, ge=0)
    price: float = Field(..., ge=0)


class MerchandiseItemResponse(MerchandiseItemCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class EventCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: str = Field(..., min_length=1)
    event_type: EventType
    eligibility: Eligibility = Eligibility.ALL
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime
    registration_limit: int = Field(..., ge=1)
    registration_fee: float = Field(0, ge=0)
    tags: List[str] = []
    venue: Optional[str] = Field(None, max_length=255)
    image_url: Optional[str] = None
    custom_form: List[FormField] = []
    purchase_limit: int = Field(1, ge=1)
    requires_payment_approval: bool = False
    team_size: int = Field(2, ge=2, le=10)
    merchandise_items: List[MerchandiseItemCreate] = []

    @field_validator('start_date', 'end_date', 'registration_deadline')
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v)

    @field_validator('image_url')
    @classmethod
    def validate_image(cls, v):
        return _normalize_optional_image_url(v, 'image_url')

    @model_validator(mode='after')
    def check_schedule(self):
        if self.end_date < self.start_date:
            raise ValueError('End date must be after start date')
        if self.registration_deadline > self.end_date:
            raise ValueError('Registration deadline must be before the event ends')
        if self.event_type == EventType.MERCHANDISE and not self.merchandise_items:
            raise ValueError('Merchandise events need at least one item')
        return self


class EventUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    event_type: Optional[EventType] = None
    eligibility: Optional[Eligibility] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    registration_limit: Optional[int] = Field(None, ge=1)
    registration_fee: Optional[float] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    venue: Optional[str] = Field(None, max_length=255)
    image_url: Optional[str] = None
    custom_form: Optional[List[FormField]] = None
    purchase_limit: Optional[int] = Field(None, ge=1)
    requires_payment_approval: Optional[bool] = None
    team_size: Optional[int] = Field(None, ge=2, le=10)
    merchandise_items: Optional[List[MerchandiseItemCreate]] = None
    close_registrations: Optional[bool] = None

    @field_validator('start_date', 'end_date', 'registration_deadline')
    @classmethod
    def normalize_dates(cls, v):
        return as_utc(v)

    @field_validator('tags')
    @classmethod
    def clean_tags(cls, v):
        return _clean_tags(v) if v is not None else v

    @field_validator('image_url')
    @classmethod
    def validate_image(cls, v):
        return _normalize_optional_image_url(v, 'image_url')


class EventStatusUpdate(BaseModel):
    status: EventStatus


class CustomFormUpdate(BaseModel):
    fields: List[FormField]


class EventSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    event_type: EventType
    start_date: datetime
    end_date: datetime
    venue: Optional[str] = None
    status: EventStatus
    team_size: Optional[int] = None
    organizer: Optional[OrganizerSummary] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organizer_id: int
    organizer: Optional[OrganizerSummary] = None
    name: str
    description: str
    event_type: EventType
    eligibility: Eligibility
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime
    registration_limit: int
    registration_count: int
    registration_fee: float
    tags: List[str] = []
    venue: Optional[str] = None
    image_url: Optional[str] = None
    status: EventStatus
    custom_form: List[FormField] = []
    form_locked: bool = False
    purchase_limit: Optional[int] = None
    requires_payment_approval: bool = False
    team_size: Optional[int] = None
    merchandise_items: List[MerchandiseItemResponse] = []
    view_count: int = 0
    revenue: float = 0
    created_at: Optional[datetime] = None

    @field_validator('tags', 'custom_form', mode='before')
    @classmethod
    def default_list(cls, v):
        return v or []


class EventListResponse(BaseModel):
    events: List[EventResponse]
    total: int
    page: int
    pages: int


class TrendingEvent(BaseModel):
    event: EventResponse
    count: int


# Registration Schemas
class FormResponseItem(BaseModel):
    field_label: str
    value: Any = None


class MerchandisePurchaseRequest(BaseModel):
    variant_id: int
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class ParticipantSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    contact_number: Optional[str] = None
    college_or_org: Optional[str] = None
    participant_type: ParticipantType


class TeamSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    status: TeamStatus
    invite_code: str


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: str
    user_id: int
    event_id: int
    registration_type: EventType
    status: RegistrationStatus
    form_responses: List[Dict[str, Any]] = []
    merchandise_purchases: List[Dict[str, Any]] = []
    total_amount: float = 0
    payment_proof_url: Optional[str] = None
    payment_status: PaymentStatus
    payment_reviewed_by: Optional[int] = None
    payment_reviewed_at: Optional[datetime] = None
    team_id: Optional[int] = None
    qr_code: Optional[str] = None
    email_sent: bool = False
    created_at: Optional[datetime] = None

    @field_validator('form_responses', 'merchandise_purchases', mode='before')
    @classmethod
    def default_list(cls, v):
        return v or []


class RegistrationDetail(RegistrationResponse):
    event: Optional[EventSummary] = None
    team: Optional[TeamSummary] = None


class PaymentRegistrationResponse(RegistrationResponse):
    user: ParticipantSummary


class TicketResponse(RegistrationResponse):
    user: ParticipantSummary
    event: EventSummary
    team: Optional[TeamSummary] = None


class PaymentReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    comment: Optional[str] = Field(None, max_length=500)


class PaymentReviewResponse(BaseModel):
    message: str
    registration: RegistrationResponse


class ParticipantRow(RegistrationResponse):
    user: ParticipantSummary
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None


class ParticipantListResponse(BaseModel):
    registrations: List[ParticipantRow]
    total: int


# Team Schemas
class TeamCreate(BaseModel):
    event_id: int
    name: str = Field(..., min_length=2, max_length=120)


class TeamJoinRequest(BaseModel):
    invite_code: str = Field(..., min_length=4, max_length=10)


class TeamInviteRequest(BaseModel):
    email: EmailStr


class TeamRespondRequest(BaseModel):
    action: Literal["accept", "decline"]
    member_id: Optional[int] = None


class TeamMemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    user: Optional[ParticipantSummary] = None
    status: TeamMemberStatus
    origin: TeamMemberOrigin
    invited_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    registration_outcome: Optional[TeamRegistrationOutcome] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    event_id: int
    event: Optional[EventSummary] = None
    leader_id: int
    leader: Optional[ParticipantSummary] = None
    max_size: int
    invite_code: str
    status: TeamStatus
    leader_registration_outcome: Optional[TeamRegistrationOutcome] = None
    accepted_count: int
    members: List[TeamMemberResponse] = []
    created_at: Optional[datetime] = None


class TeamRegistrationResult(BaseModel):
    user_id: int
    role: Literal["leader", "member"]
    outcome: TeamRegistrationOutcome
    reason: Optional[str] = None


class TeamRegistrationReport(BaseModel):
    team_id: int
    results: List[TeamRegistrationResult]
    created_registration_ids: List[int] = []


class TeamActionResponse(BaseModel):
    message: str
    team: TeamResponse
    registrations: Optional[TeamRegistrationReport] = None


# Attendance Schemas
class ScanRequest(BaseModel):
    event_id: int
    qr_data: str = Field(..., min_length=2)


class ManualCheckInRequest(BaseModel):
    event_id: int
    registration_id: int
    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, v):
        if not v.strip():
            raise ValueError('Reason is required')
        return v.strip()


class RevertCheckInRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    registration_id: int
    ticket_id: Optional[str] = None
    user_id: int
    user: Optional[ParticipantSummary] = None
    checked_in_at: datetime
    method: AttendanceMethod
    marked_by: Optional[int] = None
    is_manual_override: bool = False
    override_reason: Optional[str] = None
    override_audit: List[Dict[str, Any]] = []

    @field_validator('override_audit', mode='before')
    @classmethod
    def default_audit(cls, v):
        return v or []


class CheckInResponse(BaseModel):
    message: str
    already_checked_in: bool
    checked_in_at: datetime
    attendance: AttendanceResponse


class AttendanceSummaryResponse(BaseModel):
    checked: int
    total: int
    not_checked: int
    attendances: List[AttendanceResponse]


class RevertCheckInResponse(BaseModel):
    message: str
    attendance_id: int
    registration_id: int
    audit: List[Dict[str, Any]]


# Forum Schemas
class ParticipantSender(BaseModel):
    kind: Literal["participant"]
    id: int
    name: str


class OrganizerSender(BaseModel):
    kind: Literal["organizer"]
    id: int
    name: str


ForumSender = Annotated[Union[ParticipantSender, OrganizerSender], Field(discriminator="kind")]


class ForumMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    parent_id: Optional[int] = None

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if not v.strip():
            raise ValueError('Message cannot be empty')
        return v.strip()


class AnnouncementCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=16)


class Reaction(BaseModel):
    emoji: str
    users: List[str] = []


class ForumMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    sender: ForumSender
    content: str
    parent_id: Optional[int] = None
    is_announcement: bool = False
    is_pinned: bool = False
    is_deleted: bool = False
    reactions: List[Reaction] = []
    created_at: Optional[datetime] = None

    @field_validator('reactions', mode='before')
    @classmethod
    def default_reactions(cls, v):
        return v or []


# Feedback Schemas
class FeedbackCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class FeedbackItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None


class RatingBucket(BaseModel):
    rating: int
    count: int


class FeedbackSummary(BaseModel):
    feedbacks: List[FeedbackItem]
    total: int
    avg_rating: float
    distribution: List[RatingBucket]


class FeedbackSubmitResponse(BaseModel):
    message: str
    id: int


class FeedbackSubmittedResponse(BaseModel):
    submitted: bool


# Organizer analytics
class RegistrationStat(BaseModel):
    status: RegistrationStatus
    count: int
    amount: float


class EventAnalyticsResponse(BaseModel):
    event: EventResponse
    registration_stats: List[RegistrationStat]
    payment_stats: Dict[str, int]
    attendance: int
    view_count: int


class EventPerformance(BaseModel):
    id: int
    name: str
    event_type: EventType
    registrations: int
    revenue: float
    attendance: int
    items_sold: int
    attendance_rate: int


class DashboardTotals(BaseModel):
    total_registrations: int = 0
    total_revenue: float = 0
    total_attendance: int = 0
    total_items_sold: int = 0
    avg_attendance_rate: int = 0


class DashboardAnalyticsResponse(BaseModel):
    per_event: List[EventPerformance]
    totals: DashboardTotals


class OrganizerProfileResponse(BaseModel):
    organizer: OrganizerPublic
    upcoming_events: List[EventResponse]
    past_events: List[EventResponse]
    follower_count: int = 0


# Admin Schemas
class OrganizerCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    category: str = Field(..., min_length=2, max_length=120)
    contact_email: EmailStr
    contact_number: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    discord_webhook: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator('discord_webhook')
    @classmethod
    def validate_webhook(cls, v):
        return _normalize_optional_http_url(v, 'discord_webhook')

    @field_validator('logo_url')
    @classmethod
    def validate_logo(cls, v):
        return _normalize_optional_image_url(v, 'logo_url')


class OrganizerCredentials(BaseModel):
    email: str
    password: str
    note: str


class OrganizerCreateResponse(BaseModel):
    organizer: OrganizerResponse
    credentials: OrganizerCredentials


class OrganizerStatusUpdate(BaseModel):
    status: OrganizerStatus


class UserStatusUpdate(BaseModel):
    is_active: bool


class AdminStatsResponse(BaseModel):
    total_users: int
    total_organizers: int
    total_events: int
    total_registrations: int
    total_revenue: float
    status_breakdown: Dict[str, int]
    pending_reset_requests: int


# Password reset Schemas
class ResetRequestCreate(BaseModel):
    reason: str = Field(..., min_length=5, max_length=1000)


class ResetRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organizer_id: int
    organizer: Optional[OrganizerSummary] = None
    reason: str
    status: ResetRequestStatus
    admin_comment: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ResetRequestAdminResponse(ResetRequestResponse):
    new_password_plain: Optional[str] = None


class ResetResolveRequest(BaseModel):
    admin_comment: Optional[str] = Field(None, max_length=1000)


class ResetApproveResponse(BaseModel):
    message: str
    request: ResetRequestResponse
    credentials: OrganizerCredentials
