import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Session

from database import get_db
from errors import Forbidden, NotFound
from event_lifecycle import (
    apply_event_update,
    effective_status,
    load_event,
    load_owned_event,
    replace_custom_form,
    replace_merchandise_items,
    transition_event,
)
from models import (
    Attendance,
    Eligibility,
    Event,
    EventStatus,
    EventType,
    Feedback,
    ForumMessage,
    Organizer,
    Registration,
    RegistrationStatus,
    Team,
    TeamMember,
    User,
)
from notifications import build_event_embed, post_event_webhook
from schemas import (
    CustomFormUpdate,
    EventCreate,
    EventListResponse,
    EventResponse,
    EventStatusUpdate,
    EventUpdate,
    MessageResponse,
    ParticipantListResponse,
    ParticipantRow,
    TrendingEvent,
)
from search import fuzzy_filter, order_by_preference
from security import ROLE_ADMIN, ROLE_PARTICIPANT, Identity, get_optional_identity, require_organizer, require_organizer_or_admin
from time_utils import utc_now
from utils import export_response, format_datetime, log_admin_action

logger = logging.getLogger(__name__)

router = APIRouter()

PUBLIC_STATUSES = [EventStatus.PUBLISHED, EventStatus.ONGOING, EventStatus.COMPLETED]
TRENDING_WINDOW = timedelta(hours=24)
TRENDING_LIMIT = 5


def serialize_event(event: Event) -> EventResponse:
    return EventResponse.model_validate(event).model_copy(update={"status": effective_status(event)})


def _viewer_is_participant(identity: Optional[Identity]) -> bool:
    return identity is None or identity.role == ROLE_PARTICIPANT


@router.get("/events", response_model=EventListResponse)
def list_events(
    search: Optional[str] = None,
    event_type: Optional[EventType] = None,
    eligibility: Optional[Eligibility] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    followed_clubs: bool = False,
    organizer_id: Optional[int] = None,
    status_filter: Optional[EventStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
):
    query = db.query(Event)
    participant_view = _viewer_is_participant(identity)
    if participant_view:
        query = query.filter(Event.status.in_(PUBLIC_STATUSES))
    elif status_filter:
        query = query.filter(Event.status == status_filter)

    if event_type:
        query = query.filter(Event.event_type == event_type)
    if eligibility:
        query = query.filter(Event.eligibility.in_([eligibility, Eligibility.ALL]))
    if start_date:
        query = query.filter(Event.start_date >= start_date)
    if end_date:
        query = query.filter(Event.start_date <= end_date)
    if organizer_id:
        query = query.filter(Event.organizer_id == organizer_id)
    if followed_clubs and identity and identity.user:
        followed = identity.user.followed_organizer_ids
        if followed:
            query = query.filter(Event.organizer_id.in_(followed))

    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            Event.name.ilike(pattern),
            Event.description.ilike(pattern),
            cast(Event.tags, String).ilike(pattern),
        ))

    events = query.order_by(Event.created_at.desc(), Event.id.desc()).all()
    if term:
        events = fuzzy_filter(events, term)
    if identity and identity.role == ROLE_PARTICIPANT:
        events = order_by_preference(events, identity.user)

    total = len(events)
    page_rows = events[(page - 1) * limit: page * limit]
    return EventListResponse(
        events=[serialize_event(event) for event in page_rows],
        total=total,
        page=page,
        pages=math.ceil(total / limit) if total else 0,
    )


@router.get("/events/trending", response_model=List[TrendingEvent])
def trending_events(db: Session = Depends(get_db)):
    since = utc_now() - TRENDING_WINDOW
    count_col = func.count(Registration.id).label("count")
    rows = (
        db.query(Registration.event_id, count_col)
        .join(Event, Event.id == Registration.event_id)
        .filter(
            Registration.created_at >= since,
            Registration.status == RegistrationStatus.ACTIVE,
            Event.status.in_(PUBLIC_STATUSES),
        )
        .group_by(Registration.event_id)
        .order_by(count_col.desc(), Registration.event_id.asc())
        .limit(TRENDING_LIMIT)
        .all()
    )
    events = {e.id: e for e in db.query(Event).filter(Event.id.in_([r.event_id for r in rows])).all()} if rows else {}
    return [TrendingEvent(event=serialize_event(events[r.event_id]), count=r.count) for r in rows if r.event_id in events]


@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    data = payload.model_dump()
    items = data.pop("merchandise_items")
    event = Event(**data, organizer_id=organizer.id, status=EventStatus.DRAFT, registration_count=0, revenue=0, view_count=0)
    if payload.event_type == EventType.MERCHANDISE:
        replace_merchandise_items(event, items)
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("Event %s created by organizer %s", event.id, organizer.id)
    return serialize_event(event)


@router.get("/events/{event_id}", response_model=EventResponse)
def get_event(
    event_id: int,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    if event.status == EventStatus.DRAFT:
        is_owner = identity is not None and identity.organizer is not None and identity.organizer.id == event.organizer_id
        if not is_owner and not (identity and identity.role == ROLE_ADMIN):
            raise NotFound("Event not found")
    return serialize_event(event)


def _update_event(event_id: int, payload: EventUpdate, organizer: Organizer, db: Session) -> EventResponse:
    event = load_owned_event(db, event_id, organizer.id)
    apply_event_update(event, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(event)
    return serialize_event(event)


@router.put("/events/{event_id}", response_model=EventResponse)
def replace_event(
    event_id: int,
    payload: EventUpdate,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    return _update_event(event_id, payload, organizer, db)


@router.patch("/events/{event_id}", response_model=EventResponse)
def patch_event(
    event_id: int,
    payload: EventUpdate,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    return _update_event(event_id, payload, organizer, db)


@router.patch("/events/{event_id}/status", response_model=EventResponse)
def update_event_status(
    event_id: int,
    payload: EventStatusUpdate,
    background_tasks: BackgroundTasks,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    transition_event(event, payload.status)
    db.commit()
    db.refresh(event)
    if payload.status == EventStatus.PUBLISHED and organizer.discord_webhook:
        background_tasks.add_task(post_event_webhook, organizer.discord_webhook, build_event_embed(event))
    return serialize_event(event)


@router.put("/events/{event_id}/form", response_model=EventResponse)
def update_event_form(
    event_id: int,
    payload: CustomFormUpdate,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    replace_custom_form(event, [field.model_dump() for field in payload.fields])
    db.commit()
    db.refresh(event)
    return serialize_event(event)


@router.delete("/events/{event_id}", response_model=MessageResponse)
def delete_event(
    event_id: int,
    identity: Identity = Depends(require_organizer_or_admin),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    if identity.organizer and event.organizer_id != identity.organizer.id:
        raise Forbidden()

    team_ids = db.query(Team.id).filter(Team.event_id == event.id)
    db.query(Attendance).filter(Attendance.event_id == event.id).delete(synchronize_session=False)
    db.query(Feedback).filter(Feedback.event_id == event.id).delete(synchronize_session=False)
    db.query(ForumMessage).filter(ForumMessage.event_id == event.id).delete(synchronize_session=False)
    db.query(Registration).filter(Registration.event_id == event.id).delete(synchronize_session=False)
    db.query(TeamMember).filter(TeamMember.team_id.in_(team_ids)).delete(synchronize_session=False)
    db.query(Team).filter(Team.event_id == event.id).delete(synchronize_session=False)
    db.delete(event)
    db.commit()

    if identity.role == ROLE_ADMIN:
        log_admin_action(db, identity.user, "delete_event", method="DELETE", path=f"/api/events/{event_id}", meta={"event_id": event_id})
    logger.info("Event %s deleted by %s %s", event_id, identity.role, identity.id)
    return MessageResponse(message="Event deleted")


@router.post("/events/{event_id}/view", response_model=MessageResponse)
def increment_view(event_id: int, db: Session = Depends(get_db)):
    updated = db.query(Event).filter(Event.id == event_id).update(
        {Event.view_count: Event.view_count + 1},
        synchronize_session=False,
    )
    if not updated:
        raise NotFound("Event not found")
    db.commit()
    return MessageResponse(message="View counted")


def _participant_query(db: Session, event: Event, search: Optional[str], status_filter: Optional[RegistrationStatus]):
    query = db.query(Registration).join(User, User.id == Registration.user_id).filter(Registration.event_id == event.id)
    if status_filter:
        query = query.filter(Registration.status == status_filter)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
            Registration.ticket_id.ilike(pattern),
        ))
    return query


@router.get("/events/{event_id}/participants", response_model=ParticipantListResponse)
def event_participants(
    event_id: int,
    search: Optional[str] = None,
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    query = _participant_query(db, event, search, status_filter)
    total = query.count()
    registrations = (
        query.order_by(Registration.created_at.desc(), Registration.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    checked = {
        row.registration_id: row.checked_in_at
        for row in db.query(Attendance.registration_id, Attendance.checked_in_at).filter(Attendance.event_id == event.id).all()
    }
    rows = [
        ParticipantRow.model_validate(reg).model_copy(update={
            "checked_in": reg.id in checked,
            "checked_in_at": checked.get(reg.id),
        })
        for reg in registrations
    ]
    return ParticipantListResponse(registrations=rows, total=total)


@router.get("/events/{event_id}/export")
def export_participants(
    event_id: int,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    registrations = (
        _participant_query(db, event, None, status_filter)
        .order_by(Registration.created_at.asc(), Registration.id.asc())
        .all()
    )
    headers = ["Ticket ID", "First Name", "Last Name", "Email", "Contact", "College/Org", "Type", "Status", "Payment", "Amount", "Registered At"]
    rows = [
        [
            reg.ticket_id,
            reg.user.first_name,
            reg.user.last_name,
            reg.user.email,
            reg.user.contact_number or "",
            reg.user.college_or_org or "",
            reg.user.participant_type.value,
            reg.status.value,
            reg.payment_status.value,
            reg.total_amount or 0,
            format_datetime(reg.created_at),
        ]
        for reg in registrations
    ]
    return export_response(headers, rows, f"event_{event.id}_participants", format)
