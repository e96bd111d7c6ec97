from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from errors import Forbidden, NotFound, ValidationFailed
from models import Event, ForumMessage, Registration, RegistrationStatus, SenderKind
from security import ROLE_ORGANIZER, ROLE_PARTICIPANT, Identity

DELETED_PLACEHOLDER = "[Message deleted]"
MAX_CONTENT_LENGTH = 2000


def can_access(db: Session, identity: Identity, event: Event) -> bool:
    if identity.role == ROLE_ORGANIZER:
        return event.organizer_id == identity.organizer.id
    if identity.role != ROLE_PARTICIPANT:
        return False
    registration = (
        db.query(Registration.id)
        .filter(
            Registration.user_id == identity.user.id,
            Registration.event_id == event.id,
            Registration.status != RegistrationStatus.CANCELLED,
        )
        .first()
    )
    return registration is not None


def ensure_access(db: Session, identity: Identity, event: Event) -> None:
    if not can_access(db, identity, event):
        raise Forbidden("Must be registered to view forum")


def reactor_key(identity: Identity) -> str:
    return f"{identity.role}:{identity.id}"


def list_messages(db: Session, event: Event, page: int = 1, limit: int = 50) -> List[ForumMessage]:
    # Newest page first, returned oldest-first for display.
    rows = (
        db.query(ForumMessage)
        .filter(ForumMessage.event_id == event.id, ForumMessage.is_deleted.is_(False))
        .order_by(ForumMessage.created_at.desc(), ForumMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    rows.reverse()
    return rows


def post_message(
    db: Session,
    event: Event,
    identity: Identity,
    content: str,
    parent_id: Optional[int] = None,
    is_announcement: bool = False,
) -> ForumMessage:
    content = (content or "").strip()
    if not content or len(content) > MAX_CONTENT_LENGTH:
        raise ValidationFailed("Message must be between 1 and 2000 characters")
    if is_announcement and identity.role != ROLE_ORGANIZER:
        raise Forbidden("Only organizers can post announcements")
    if parent_id is not None:
        parent = (
            db.query(ForumMessage.id)
            .filter(ForumMessage.id == parent_id, ForumMessage.event_id == event.id)
            .first()
        )
        if not parent:
            raise NotFound("Parent message not found")

    is_organizer = identity.role == ROLE_ORGANIZER
    message = ForumMessage(
        event_id=event.id,
        sender_kind=SenderKind.ORGANIZER if is_organizer else SenderKind.PARTICIPANT,
        sender_user_id=None if is_organizer else identity.user.id,
        sender_organizer_id=identity.organizer.id if is_organizer else None,
        sender_name=identity.display_name,
        content=content,
        parent_id=parent_id,
        is_announcement=is_announcement,
        reactions=[],
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def load_message(db: Session, message_id: int, event_id: Optional[int] = None) -> ForumMessage:
    query = db.query(ForumMessage).filter(ForumMessage.id == message_id)
    if event_id is not None:
        query = query.filter(ForumMessage.event_id == event_id)
    message = query.first()
    if not message:
        raise NotFound("Message not found")
    return message


def toggle_pin(db: Session, message: ForumMessage) -> ForumMessage:
    message.is_pinned = not message.is_pinned
    db.commit()
    db.refresh(message)
    return message


def soft_delete(db: Session, message: ForumMessage) -> ForumMessage:
    message.is_deleted = True
    message.content = DELETED_PLACEHOLDER
    db.commit()
    db.refresh(message)
    return message


def toggle_reaction(db: Session, message: ForumMessage, identity: Identity, emoji: str) -> ForumMessage:
    key = reactor_key(identity)
    reactions = [dict(r, users=list(r.get("users", []))) for r in message.reactions or []]
    reaction = next((r for r in reactions if r.get("emoji") == emoji), None)
    if reaction is None:
        reactions.append({"emoji": emoji, "users": [key]})
    elif key in reaction["users"]:
        reaction["users"].remove(key)
        if not reaction["users"]:
            reactions.remove(reaction)
    else:
        reaction["users"].append(key)

    message.reactions = reactions
    flag_modified(message, "reactions")
    db.commit()
    db.refresh(message)
    return message
