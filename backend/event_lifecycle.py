import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from errors import EventLocked, FormLocked, Forbidden, InvalidTransition, NotFound, ValidationFailed
from models import Event, EventStatus, EventType, MerchandiseItem
from time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EventStatus.DRAFT: {EventStatus.PUBLISHED, EventStatus.CANCELLED},
    EventStatus.PUBLISHED: {EventStatus.ONGOING, EventStatus.CANCELLED},
    EventStatus.ONGOING: {EventStatus.COMPLETED, EventStatus.CANCELLED},
    EventStatus.COMPLETED: set(),
    EventStatus.CANCELLED: set(),
}

# Fields a published event may change without further checks.
PUBLISHED_FREE_FIELDS = {"description", "venue", "image_url", "tags"}
PUBLISHED_GUARDED_FIELDS = {"registration_deadline", "registration_limit", "close_registrations"}

DRAFT_FIELDS = {
    "name",
    "description",
    "event_type",
    "eligibility",
    "start_date",
    "end_date",
    "registration_deadline",
    "registration_limit",
    "registration_fee",
    "tags",
    "venue",
    "image_url",
    "custom_form",
    "purchase_limit",
    "requires_payment_approval",
    "team_size",
    "merchandise_items",
}

OPEN_STATUSES = {EventStatus.PUBLISHED, EventStatus.ONGOING}


def load_event(db: Session, event_id: int) -> Event:
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise NotFound("Event not found")
    return event


def load_owned_event(db: Session, event_id: int, organizer_id: int) -> Event:
    event = load_event(db, event_id)
    if event.organizer_id != organizer_id:
        raise Forbidden()
    return event


def effective_status(event: Event, now: Optional[datetime] = None) -> EventStatus:
    """Display status derived from the event window; never persisted."""
    if event.status in (EventStatus.CANCELLED, EventStatus.DRAFT):
        return event.status
    now = now or utc_now()
    start = as_utc(event.start_date)
    end = as_utc(event.end_date)
    if start <= now <= end:
        return EventStatus.ONGOING
    if now > end:
        return EventStatus.COMPLETED
    return EventStatus.PUBLISHED


def transition_event(event: Event, requested: EventStatus) -> EventStatus:
    current = event.status
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(current.value, requested.value)
    event.status = requested
    logger.info("Event %s moved %s -> %s", event.id, current.value, requested.value)
    return current


def validate_schedule(start_date: datetime, end_date: datetime, registration_deadline: datetime) -> None:
    start = as_utc(start_date)
    end = as_utc(end_date)
    deadline = as_utc(registration_deadline)
    if end < start:
        raise ValidationFailed("End date must be after start date")
    if deadline > end:
        raise ValidationFailed("Registration deadline must be before the event ends")


def replace_merchandise_items(event: Event, items: List[Dict[str, Any]]) -> None:
    event.merchandise_items = [
        MerchandiseItem(
            variant_name=item["variant_name"],
            size=item.get("size"),
            color=item.get("color"),
            sku=item.get("sku"),
            stock=item.get("stock", 0),
            price=item["price"],
        )
        for item in items
    ]


def _apply_draft_update(event: Event, updates: Dict[str, Any]) -> None:
    unknown = set(updates) - DRAFT_FIELDS - {"close_registrations"}
    if unknown:
        raise ValidationFailed(f"Unknown fields: {', '.join(sorted(unknown))}")

    if "custom_form" in updates and event.form_locked:
        raise FormLocked()

    for field, value in updates.items():
        if field == "merchandise_items":
            replace_merchandise_items(event, value or [])
        elif field == "close_registrations":
            if value:
                event.registration_deadline = utc_now()
        else:
            setattr(event, field, value)

    validate_schedule(event.start_date, event.end_date, event.registration_deadline)


def _apply_published_update(event: Event, updates: Dict[str, Any]) -> None:
    locked = set(updates) - PUBLISHED_FREE_FIELDS - PUBLISHED_GUARDED_FIELDS
    if locked:
        raise EventLocked(f"Published events cannot change: {', '.join(sorted(locked))}")

    if "registration_deadline" in updates and updates["registration_deadline"] is not None:
        new_deadline = as_utc(updates["registration_deadline"])
        if new_deadline <= as_utc(event.registration_deadline):
            raise ValidationFailed("Registration deadline can only be extended")

    if "registration_limit" in updates and updates["registration_limit"] is not None:
        if updates["registration_limit"] <= event.registration_limit:
            raise ValidationFailed("Registration limit can only be increased")

    for field in PUBLISHED_FREE_FIELDS:
        if field in updates:
            setattr(event, field, updates[field])
    if updates.get("registration_deadline") is not None:
        event.registration_deadline = updates["registration_deadline"]
    if updates.get("registration_limit") is not None:
        event.registration_limit = updates["registration_limit"]
    if updates.get("close_registrations"):
        event.registration_deadline = utc_now()


def apply_event_update(event: Event, updates: Dict[str, Any]) -> Event:
    if event.status == EventStatus.DRAFT:
        _apply_draft_update(event, updates)
    elif event.status == EventStatus.PUBLISHED:
        _apply_published_update(event, updates)
    else:
        raise EventLocked(f"Cannot edit {event.status.value} events")
    return event


def replace_custom_form(event: Event, fields: List[Dict[str, Any]]) -> Event:
    if event.event_type != EventType.NORMAL:
        raise ValidationFailed("Only normal events have custom forms")
    if event.form_locked:
        raise FormLocked()
    event.custom_form = sorted(fields, key=lambda f: f.get("order", 0))
    return event
