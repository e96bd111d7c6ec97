from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Enum as SQLEnum, ForeignKey, Text, JSON, Index, UniqueConstraint, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
from time_utils import utc_now
import enum


class UserRole(enum.Enum):
    PARTICIPANT = "participant"
    ADMIN = "admin"


class ParticipantType(enum.Enum):
    IIIT = "IIIT"
    NON_IIIT = "Non-IIIT"


class OrganizerStatus(enum.Enum):
    ACTIVE = "active"
    DISABLED = "disabled"
    ARCHIVED = "archived"


class EventType(enum.Enum):
    NORMAL = "normal"
    MERCHANDISE = "merchandise"
    HACKATHON = "hackathon"


class Eligibility(enum.Enum):
    ALL = "all"
    IIIT_ONLY = "iiit-only"
    NON_IIIT_ONLY = "non-iiit-only"


class EventStatus(enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RegistrationStatus(enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(enum.Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TeamStatus(enum.Enum):
    FORMING = "forming"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


class TeamMemberStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class TeamMemberOrigin(enum.Enum):
    INVITE = "invite"              # leader invited, invitee responds
    JOIN_REQUEST = "join_request"  # participant asked, leader responds


class TeamRegistrationOutcome(enum.Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


class AttendanceMethod(enum.Enum):
    QR_SCAN = "qr_scan"
    MANUAL = "manual"


class SenderKind(enum.Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"


class ResetRequestStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    contact_number = Column(String(20), nullable=True)
    college_or_org = Column(String(255), nullable=True)
    participant_type = Column(SQLEnum(ParticipantType), default=ParticipantType.NON_IIIT, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.PARTICIPANT, nullable=False)
    areas_of_interest = Column(JSON, nullable=True)  # ["music", "coding"]
    onboarding_completed = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    follows = relationship("OrganizerFollow", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def followed_organizer_ids(self):
        return [row.organizer_id for row in self.follows]


class Organizer(Base):
    __tablename__ = "organizers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(120), nullable=False)
    contact_email = Column(String(255), unique=True, index=True, nullable=False)
    contact_number = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)
    hashed_password = Column(String(255), nullable=False)
    discord_webhook = Column(String(500), nullable=True)
    logo_url = Column(String(500), nullable=True)
    status = Column(SQLEnum(OrganizerStatus), default=OrganizerStatus.ACTIVE, nullable=False)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    events = relationship("Event", back_populates="organizer")


class OrganizerFollow(Base):
    __tablename__ = "organizer_follows"
    __table_args__ = (UniqueConstraint("user_id", "organizer_id", name="uq_organizer_follow"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="follows")


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    event_type = Column(SQLEnum(EventType), nullable=False)
    eligibility = Column(SQLEnum(Eligibility), default=Eligibility.ALL, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    registration_deadline = Column(DateTime(timezone=True), nullable=False)
    registration_limit = Column(Integer, nullable=False)
    registration_count = Column(Integer, default=0, nullable=False)
    registration_fee = Column(Float, default=0, nullable=False)
    tags = Column(JSON, nullable=True)
    venue = Column(String(255), nullable=True)
    image_url = Column(String(500), nullable=True)
    status = Column(SQLEnum(EventStatus), default=EventStatus.DRAFT, nullable=False)
    # Normal events: [{"label": "T-shirt size", "field_type": "dropdown", "options": [...], "required": true}]
    custom_form = Column(JSON, nullable=True)
    form_locked = Column(Boolean, default=False)
    # Merchandise events
    purchase_limit = Column(Integer, default=1)
    requires_payment_approval = Column(Boolean, default=False)
    # Hackathon events
    team_size = Column(Integer, default=2)
    view_count = Column(Integer, default=0)
    revenue = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    organizer = relationship("Organizer", back_populates="events")
    merchandise_items = relationship(
        "MerchandiseItem",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="MerchandiseItem.id",
    )


class MerchandiseItem(Base):
    __tablename__ = "merchandise_items"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    variant_name = Column(String(120), nullable=False)
    size = Column(String(40), nullable=True)
    color = Column(String(40), nullable=True)
    sku = Column(String(80), nullable=True)
    stock = Column(Integer, default=0, nullable=False)
    price = Column(Float, nullable=False)

    event = relationship("Event", back_populates="merchandise_items")


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        # One live registration per participant and event; cancelled rows do not count.
        Index(
            "uq_registration_live",
            "user_id",
            "event_id",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(String(20), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    registration_type = Column(SQLEnum(EventType), nullable=False)
    status = Column(SQLEnum(RegistrationStatus), default=RegistrationStatus.ACTIVE, nullable=False)
    form_responses = Column(JSON, nullable=True)  # [{"field_label": "...", "value": ...}]
    merchandise_purchases = Column(JSON, nullable=True)  # [{"variant_id": 1, "quantity": 2, "price_at_purchase": 250}]
    total_amount = Column(Float, default=0, nullable=False)
    payment_proof_url = Column(String(500), nullable=True)
    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.NOT_REQUIRED, nullable=False)
    payment_reviewed_by = Column(Integer, ForeignKey("organizers.id"), nullable=True)
    payment_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    qr_code = Column(Text, nullable=True)
    email_sent = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User")
    event = relationship("Event")
    team = relationship("Team")


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    leader_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    max_size = Column(Integer, nullable=False)
    invite_code = Column(String(10), unique=True, index=True, nullable=False)
    status = Column(SQLEnum(TeamStatus), default=TeamStatus.FORMING, nullable=False)
    leader_registration_outcome = Column(SQLEnum(TeamRegistrationOutcome), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    event = relationship("Event")
    leader = relationship("User")
    members = relationship(
        "TeamMember",
        back_populates="team",
        cascade="all, delete-orphan",
        order_by="TeamMember.id",
    )

    @property
    def accepted_count(self) -> int:
        # Leader counts as an accepted member.
        return sum(1 for m in self.members if m.status == TeamMemberStatus.ACCEPTED) + 1


class TeamMember(Base):
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(TeamMemberStatus), default=TeamMemberStatus.PENDING, nullable=False)
    origin = Column(SQLEnum(TeamMemberOrigin), nullable=False)
    invited_at = Column(DateTime(timezone=True), default=utc_now)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    registration_outcome = Column(SQLEnum(TeamRegistrationOutcome), nullable=True)

    team = relationship("Team", back_populates="members")
    user = relationship("User")


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("event_id", "registration_id", name="uq_attendance_event_registration"),)

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    registration_id = Column(Integer, ForeignKey("registrations.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    checked_in_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    method = Column(SQLEnum(AttendanceMethod), default=AttendanceMethod.QR_SCAN, nullable=False)
    marked_by = Column(Integer, ForeignKey("organizers.id"), nullable=True)
    is_manual_override = Column(Boolean, default=False)
    override_reason = Column(Text, nullable=True)
    override_audit = Column(JSON, nullable=True)  # [{"by": 3, "at": "...", "reason": "...", "action": "check_in"}]

    registration = relationship("Registration")
    user = relationship("User")

    @property
    def ticket_id(self):
        return self.registration.ticket_id if self.registration else None


class ForumMessage(Base):
    __tablename__ = "forum_messages"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    sender_kind = Column(SQLEnum(SenderKind), nullable=False)
    sender_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sender_organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=True)
    sender_name = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    parent_id = Column(Integer, ForeignKey("forum_messages.id"), nullable=True)
    is_announcement = Column(Boolean, default=False)
    is_pinned = Column(Boolean, default=False)
    is_deleted = Column(Boolean, default=False)
    reactions = Column(JSON, nullable=True)  # [{"emoji": "+1", "users": ["participant:4"]}]
    created_at = Column(DateTime(timezone=True), default=utc_now)

    @property
    def sender(self) -> dict:
        if self.sender_kind == SenderKind.ORGANIZER:
            return {"kind": "organizer", "id": self.sender_organizer_id, "name": self.sender_name}
        return {"kind": "participant", "id": self.sender_user_id, "name": self.sender_name}


class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (UniqueConstraint("event_id", "user_hash", name="uq_feedback_event_user"),)

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    user_hash = Column(String(64), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class PasswordResetRequest(Base):
    __tablename__ = "password_reset_requests"

    id = Column(Integer, primary_key=True, index=True)
    organizer_id = Column(Integer, ForeignKey("organizers.id"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    status = Column(SQLEnum(ResetRequestStatus), default=ResetRequestStatus.PENDING, nullable=False)
    admin_comment = Column(Text, nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    new_password_plain = Column(String(64), nullable=True)  # cleared once the admin acknowledges
    created_at = Column(DateTime(timezone=True), default=utc_now)

    organizer = relationship("Organizer")


class AdminLog(Base):
    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, nullable=True)
    admin_email = Column(String(255), nullable=False)
    action = Column(String(255), nullable=False)
    method = Column(String(10), nullable=True)
    path = Column(String(255), nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
