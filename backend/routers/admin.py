import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from auth import generate_password, get_password_hash
from database import get_db
from models import (
    Event,
    Organizer,
    OrganizerFollow,
    OrganizerStatus,
    ParticipantType,
    PasswordResetRequest,
    Registration,
    RegistrationStatus,
    ResetRequestStatus,
    User,
    UserRole,
)
from schemas import (
    AdminStatsResponse,
    MessageResponse,
    OrganizerCreate,
    OrganizerCreateResponse,
    OrganizerCredentials,
    OrganizerResponse,
    OrganizerStatusUpdate,
    UserResponse,
    UserStatusUpdate,
)
from security import require_admin
from utils import log_admin_action

logger = logging.getLogger(__name__)

router = APIRouter()

CREDENTIALS_NOTE = "Share these credentials with the organizer. Password cannot be retrieved again."


def _get_organizer(db: Session, organizer_id: int) -> Organizer:
    organizer = db.query(Organizer).filter(Organizer.id == organizer_id).first()
    if not organizer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organizer not found")
    return organizer


@router.post("/admin/organizers", response_model=OrganizerCreateResponse, status_code=status.HTTP_201_CREATED)
def create_organizer(
    payload: OrganizerCreate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    email = payload.contact_email.lower()
    if db.query(Organizer).filter(Organizer.contact_email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already in use")

    raw_password = generate_password()
    organizer = Organizer(
        name=payload.name.strip(),
        category=payload.category.strip(),
        contact_email=email,
        contact_number=payload.contact_number,
        description=payload.description,
        discord_webhook=payload.discord_webhook,
        logo_url=payload.logo_url,
        hashed_password=get_password_hash(raw_password),
        status=OrganizerStatus.ACTIVE,
        created_by_user_id=admin.id,
    )
    db.add(organizer)
    db.commit()
    db.refresh(organizer)

    logger.info("Organizer %s (%s) created by admin %s", organizer.id, email, admin.id)
    log_admin_action(db, admin, "Create organizer", request.method, request.url.path, {"organizer_id": organizer.id})
    return OrganizerCreateResponse(
        organizer=OrganizerResponse.model_validate(organizer),
        credentials=OrganizerCredentials(email=email, password=raw_password, note=CREDENTIALS_NOTE),
    )


@router.get("/admin/organizers", response_model=List[OrganizerResponse])
def list_organizers(
    status_filter: Optional[OrganizerStatus] = Query(None, alias="status"),
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(Organizer)
    if status_filter:
        query = query.filter(Organizer.status == status_filter)
    organizers = query.order_by(Organizer.created_at.desc(), Organizer.id.desc()).all()
    return [OrganizerResponse.model_validate(org) for org in organizers]


@router.patch("/admin/organizers/{organizer_id}/status", response_model=OrganizerResponse)
def update_organizer_status(
    organizer_id: int,
    payload: OrganizerStatusUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    organizer = _get_organizer(db, organizer_id)
    organizer.status = payload.status
    db.commit()
    db.refresh(organizer)
    log_admin_action(db, admin, "Update organizer status", request.method, request.url.path, {"organizer_id": organizer_id, "status": payload.status.value})
    return OrganizerResponse.model_validate(organizer)


@router.delete("/admin/organizers/{organizer_id}", response_model=MessageResponse)
def delete_organizer(
    organizer_id: int,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    organizer = _get_organizer(db, organizer_id)
    if db.query(Event.id).filter(Event.organizer_id == organizer.id).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organizer has events; archive the organizer instead",
        )
    db.query(OrganizerFollow).filter(OrganizerFollow.organizer_id == organizer.id).delete(synchronize_session=False)
    db.query(PasswordResetRequest).filter(PasswordResetRequest.organizer_id == organizer.id).delete(synchronize_session=False)
    db.delete(organizer)
    db.commit()
    log_admin_action(db, admin, "Delete organizer", request.method, request.url.path, {"organizer_id": organizer_id})
    return MessageResponse(message="Organizer deleted")


@router.get("/admin/users", response_model=List[UserResponse])
def list_users(
    search: Optional[str] = None,
    participant_type: Optional[ParticipantType] = None,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(User).filter(User.role == UserRole.PARTICIPANT)
    if participant_type:
        query = query.filter(User.participant_type == participant_type)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
        ))
    users = query.order_by(User.created_at.desc(), User.id.desc()).all()
    return [UserResponse.model_validate(u) for u in users]


@router.patch("/admin/users/{user_id}/status", response_model=UserResponse)
def update_user_status(
    user_id: int,
    payload: UserStatusUpdate,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = db.query(User).filter(User.id == user_id, User.role == UserRole.PARTICIPANT).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user.is_active = payload.is_active
    db.commit()
    db.refresh(user)
    log_admin_action(db, admin, "Update user status", request.method, request.url.path, {"user_id": user_id, "is_active": payload.is_active})
    return UserResponse.model_validate(user)


@router.get("/admin/stats", response_model=AdminStatsResponse)
def platform_stats(
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    status_breakdown = {
        event_status.value: count
        for event_status, count in db.query(Event.status, func.count(Event.id)).group_by(Event.status).all()
    }
    return AdminStatsResponse(
        total_users=db.query(User).filter(User.role == UserRole.PARTICIPANT).count(),
        total_organizers=db.query(Organizer).count(),
        total_events=db.query(Event).count(),
        total_registrations=db.query(Registration).filter(Registration.status == RegistrationStatus.ACTIVE).count(),
        total_revenue=db.query(func.coalesce(func.sum(Event.revenue), 0)).scalar() or 0,
        status_breakdown=status_breakdown,
        pending_reset_requests=db.query(PasswordResetRequest).filter(PasswordResetRequest.status == ResetRequestStatus.PENDING).count(),
    )
