import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import hash_user_for_feedback
from database import get_db
from errors import EventNotCompleted, FeedbackAlreadySubmitted, Forbidden
from event_lifecycle import load_event, load_owned_event
from models import EventStatus, Feedback, Organizer, Registration, RegistrationStatus, User
from schemas import (
    FeedbackCreate,
    FeedbackItem,
    FeedbackSubmitResponse,
    FeedbackSubmittedResponse,
    FeedbackSummary,
    RatingBucket,
)
from security import require_organizer, require_participant

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/feedback/{event_id}", response_model=FeedbackSubmitResponse, status_code=status.HTTP_201_CREATED)
def submit_feedback(
    event_id: int,
    payload: FeedbackCreate,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    registered = (
        db.query(Registration.id)
        .filter(
            Registration.user_id == user.id,
            Registration.event_id == event.id,
            Registration.status.in_([RegistrationStatus.ACTIVE, RegistrationStatus.COMPLETED]),
        )
        .first()
    )
    if not registered:
        raise Forbidden("Must be registered to give feedback")
    if event.status != EventStatus.COMPLETED:
        raise EventNotCompleted()

    user_hash = hash_user_for_feedback(user.id)
    if db.query(Feedback.id).filter(Feedback.event_id == event.id, Feedback.user_hash == user_hash).first():
        raise FeedbackAlreadySubmitted()

    feedback = Feedback(
        event_id=event.id,
        user_hash=user_hash,
        rating=payload.rating,
        comment=(payload.comment or "").strip() or None,
    )
    db.add(feedback)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise FeedbackAlreadySubmitted()
    db.refresh(feedback)
    logger.info("Feedback %s recorded for event %s", feedback.id, event.id)
    return FeedbackSubmitResponse(message="Feedback submitted anonymously", id=feedback.id)


@router.get("/feedback/{event_id}", response_model=FeedbackSummary)
def feedback_summary(
    event_id: int,
    rating: Optional[int] = Query(None, ge=1, le=5),
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    query = db.query(Feedback).filter(Feedback.event_id == event.id)
    if rating:
        query = query.filter(Feedback.rating == rating)
    feedbacks = query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()

    # Average and distribution always cover every rating, regardless of the filter.
    counts = dict(
        db.query(Feedback.rating, func.count(Feedback.id))
        .filter(Feedback.event_id == event.id)
        .group_by(Feedback.rating)
        .all()
    )
    total_all = sum(counts.values())
    average = round(sum(r * c for r, c in counts.items()) / total_all, 1) if total_all else 0
    return FeedbackSummary(
        feedbacks=[FeedbackItem.model_validate(f) for f in feedbacks],
        total=len(feedbacks),
        avg_rating=average,
        distribution=[RatingBucket(rating=r, count=counts.get(r, 0)) for r in range(1, 6)],
    )


@router.get("/feedback/{event_id}/submitted", response_model=FeedbackSubmittedResponse)
def feedback_submitted(
    event_id: int,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    exists = (
        db.query(Feedback.id)
        .filter(Feedback.event_id == event_id, Feedback.user_hash == hash_user_for_feedback(user.id))
        .first()
    )
    return FeedbackSubmittedResponse(submitted=exists is not None)
