from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from errors import Forbidden
from event_lifecycle import load_event
from forum_service import (
    ensure_access,
    list_messages,
    load_message,
    post_message,
    soft_delete,
    toggle_pin,
    toggle_reaction,
)
from models import ForumMessage
from realtime import forum_room, publish
from schemas import AnnouncementCreate, ForumMessageCreate, ForumMessageResponse, ReactionRequest
from security import Identity, get_current_identity

router = APIRouter()


def _broadcast(background_tasks: BackgroundTasks, message: ForumMessage, event_name: str) -> ForumMessageResponse:
    body = ForumMessageResponse.model_validate(message)
    background_tasks.add_task(publish, forum_room(message.event_id), event_name, body.model_dump())
    return body


def _require_event_organizer(identity: Identity, event) -> None:
    if not identity.is_organizer or identity.organizer.id != event.organizer_id:
        raise Forbidden("Only the event organizer can do this")


@router.get("/forum/{event_id}/messages", response_model=List[ForumMessageResponse])
def get_messages(
    event_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    ensure_access(db, identity, event)
    return [ForumMessageResponse.model_validate(m) for m in list_messages(db, event, page, limit)]


@router.post("/forum/{event_id}/messages", response_model=ForumMessageResponse, status_code=status.HTTP_201_CREATED)
def create_message(
    event_id: int,
    payload: ForumMessageCreate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    ensure_access(db, identity, event)
    message = post_message(db, event, identity, payload.content, parent_id=payload.parent_id)
    return _broadcast(background_tasks, message, "new_message")


@router.post("/forum/{event_id}/announcements", response_model=ForumMessageResponse, status_code=status.HTTP_201_CREATED)
def create_announcement(
    event_id: int,
    payload: AnnouncementCreate,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    _require_event_organizer(identity, event)
    message = post_message(db, event, identity, payload.content, is_announcement=True)
    return _broadcast(background_tasks, message, "new_message")


@router.patch("/forum/{event_id}/messages/{message_id}/pin", response_model=ForumMessageResponse)
def pin_message(
    event_id: int,
    message_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    _require_event_organizer(identity, event)
    message = toggle_pin(db, load_message(db, message_id, event.id))
    return _broadcast(background_tasks, message, "message_pinned")


@router.delete("/forum/{event_id}/messages/{message_id}", response_model=ForumMessageResponse)
def delete_message(
    event_id: int,
    message_id: int,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    _require_event_organizer(identity, event)
    message = soft_delete(db, load_message(db, message_id, event.id))
    return _broadcast(background_tasks, message, "message_deleted")


@router.post("/forum/messages/{message_id}/react", response_model=ForumMessageResponse)
def react(
    message_id: int,
    payload: ReactionRequest,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    message = load_message(db, message_id)
    ensure_access(db, identity, load_event(db, message.event_id))
    message = toggle_reaction(db, message, identity, payload.emoji)
    return _broadcast(background_tasks, message, "reaction_updated")
