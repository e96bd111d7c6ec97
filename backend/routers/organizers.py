from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFound
from event_lifecycle import effective_status, load_owned_event
from models import (
    Attendance,
    Event,
    EventStatus,
    Organizer,
    OrganizerFollow,
    OrganizerStatus,
    PaymentStatus,
    Registration,
    RegistrationStatus,
)
from routers.events import serialize_event
from schemas import (
    DashboardAnalyticsResponse,
    DashboardTotals,
    EventAnalyticsResponse,
    EventPerformance,
    EventResponse,
    OrganizerProfileResponse,
    OrganizerPublic,
    RegistrationStat,
)
from security import require_organizer
from time_utils import utc_now

router = APIRouter()


def _items_sold(registrations) -> int:
    return sum(
        int(purchase.get("quantity") or 0)
        for reg in registrations
        for purchase in reg.merchandise_purchases or []
    )


@router.get("/organizers/my-events", response_model=List[EventResponse])
def my_events(organizer: Organizer = Depends(require_organizer), db: Session = Depends(get_db)):
    events = (
        db.query(Event)
        .filter(Event.organizer_id == organizer.id)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .all()
    )
    return [serialize_event(event) for event in events]


@router.get("/organizers/my-ongoing", response_model=List[EventResponse])
def my_ongoing_events(organizer: Organizer = Depends(require_organizer), db: Session = Depends(get_db)):
    now = utc_now()
    events = (
        db.query(Event)
        .filter(
            Event.organizer_id == organizer.id,
            Event.status.in_([EventStatus.PUBLISHED, EventStatus.ONGOING]),
        )
        .order_by(Event.start_date.asc())
        .all()
    )
    return [serialize_event(event) for event in events if effective_status(event, now) == EventStatus.ONGOING]


@router.get("/organizers/dashboard-analytics", response_model=DashboardAnalyticsResponse)
def dashboard_analytics(organizer: Organizer = Depends(require_organizer), db: Session = Depends(get_db)):
    now = utc_now()
    events = [
        event
        for event in db.query(Event).filter(Event.organizer_id == organizer.id).order_by(Event.start_date.desc()).all()
        if effective_status(event, now) == EventStatus.COMPLETED
    ]

    per_event = []
    for event in events:
        registrations = (
            db.query(Registration)
            .filter(Registration.event_id == event.id, Registration.status != RegistrationStatus.CANCELLED)
            .all()
        )
        attendance = db.query(Attendance).filter(Attendance.event_id == event.id).count()
        counted = len(registrations)
        per_event.append(EventPerformance(
            id=event.id,
            name=event.name,
            event_type=event.event_type,
            registrations=counted,
            revenue=event.revenue or 0,
            attendance=attendance,
            items_sold=_items_sold(r for r in registrations if r.payment_status != PaymentStatus.PENDING),
            attendance_rate=round(attendance / counted * 100) if counted else 0,
        ))

    totals = DashboardTotals(
        total_registrations=sum(p.registrations for p in per_event),
        total_revenue=sum(p.revenue for p in per_event),
        total_attendance=sum(p.attendance for p in per_event),
        total_items_sold=sum(p.items_sold for p in per_event),
        avg_attendance_rate=round(sum(p.attendance_rate for p in per_event) / len(per_event)) if per_event else 0,
    )
    return DashboardAnalyticsResponse(per_event=per_event, totals=totals)


@router.get("/organizers/analytics/{event_id}", response_model=EventAnalyticsResponse)
def event_analytics(event_id: int, organizer: Organizer = Depends(require_organizer), db: Session = Depends(get_db)):
    event = load_owned_event(db, event_id, organizer.id)
    rows = (
        db.query(Registration.status, func.count(Registration.id), func.coalesce(func.sum(Registration.total_amount), 0))
        .filter(Registration.event_id == event.id)
        .group_by(Registration.status)
        .all()
    )
    registration_stats = [RegistrationStat(status=row[0], count=row[1], amount=row[2]) for row in rows]

    payment_rows = (
        db.query(Registration.payment_status, func.count(Registration.id))
        .filter(Registration.event_id == event.id)
        .group_by(Registration.payment_status)
        .all()
    )
    payment_stats = {payment_status.value: count for payment_status, count in payment_rows}
    attendance = db.query(Attendance).filter(Attendance.event_id == event.id).count()
    return EventAnalyticsResponse(
        event=serialize_event(event),
        registration_stats=registration_stats,
        payment_stats=payment_stats,
        attendance=attendance,
        view_count=event.view_count or 0,
    )


@router.get("/organizers/{organizer_id}", response_model=OrganizerProfileResponse)
def organizer_profile(organizer_id: int, db: Session = Depends(get_db)):
    organizer = db.query(Organizer).filter(Organizer.id == organizer_id).first()
    if not organizer or organizer.status == OrganizerStatus.ARCHIVED:
        raise NotFound("Organizer not found")

    now = utc_now()
    events = (
        db.query(Event)
        .filter(
            Event.organizer_id == organizer.id,
            Event.status.in_([EventStatus.PUBLISHED, EventStatus.ONGOING, EventStatus.COMPLETED]),
        )
        .order_by(Event.start_date.asc())
        .all()
    )
    upcoming, past = [], []
    for event in events:
        if effective_status(event, now) == EventStatus.COMPLETED:
            past.append(serialize_event(event))
        else:
            upcoming.append(serialize_event(event))
    past.reverse()

    follower_count = db.query(OrganizerFollow).filter(OrganizerFollow.organizer_id == organizer.id).count()
    return OrganizerProfileResponse(
        organizer=OrganizerPublic.model_validate(organizer),
        upcoming_events=upcoming,
        past_events=past,
        follower_count=follower_count,
    )
