from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.orm import Session

from auth import get_password_hash, verify_password
from database import get_db
from models import Organizer, OrganizerFollow, OrganizerStatus, User
from schemas import (
    MessageResponse,
    OnboardingRequest,
    OrganizerProfileUpdate,
    OrganizerPublic,
    OrganizerResponse,
    PasswordChangeRequest,
    UserProfileUpdate,
    UserResponse,
)
from security import ROLE_ORGANIZER, Identity, get_current_identity, require_participant

router = APIRouter()


def _active_organizer(db: Session, organizer_id: int) -> Organizer:
    organizer = db.query(Organizer).filter(Organizer.id == organizer_id).first()
    if not organizer or organizer.status != OrganizerStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organizer not found")
    return organizer


def _validate(schema, payload: dict):
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())


def _replace_follows(db: Session, user: User, organizer_ids: List[int]) -> None:
    wanted = set(organizer_ids)
    if wanted:
        found = {
            row.id
            for row in db.query(Organizer.id).filter(Organizer.id.in_(wanted), Organizer.status == OrganizerStatus.ACTIVE).all()
        }
        if wanted - found:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown organizer in follow list")
    current = set(user.followed_organizer_ids)
    for follow in list(user.follows):
        if follow.organizer_id not in wanted:
            user.follows.remove(follow)
    for organizer_id in sorted(wanted - current):
        user.follows.append(OrganizerFollow(organizer_id=organizer_id))


@router.post("/users/onboarding", response_model=UserResponse)
def complete_onboarding(
    payload: OnboardingRequest,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    user.areas_of_interest = payload.areas_of_interest
    _replace_follows(db, user, payload.followed_organizer_ids)
    user.onboarding_completed = True
    db.commit()
    db.refresh(user)
    return UserResponse.model_validate(user)


@router.put("/users/me", response_model=Union[UserResponse, OrganizerResponse])
def update_profile(
    payload: dict,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    if identity.role == ROLE_ORGANIZER:
        updates = _validate(OrganizerProfileUpdate, payload).model_dump(exclude_unset=True)
        organizer = identity.organizer
        for field, value in updates.items():
            setattr(organizer, field, value)
        db.commit()
        db.refresh(organizer)
        return OrganizerResponse.model_validate(organizer)

    updates = _validate(UserProfileUpdate, payload).model_dump(exclude_unset=True)
    user = identity.user
    for field, value in updates.items():
        if value is None and field in ("first_name", "last_name"):
            continue
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return UserResponse.model_validate(user)


@router.post("/users/change-password", response_model=MessageResponse)
def change_password(
    payload: PasswordChangeRequest,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    account = identity.organizer if identity.organizer else identity.user
    if not verify_password(payload.current_password, account.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    account.hashed_password = get_password_hash(payload.new_password)
    db.commit()
    return MessageResponse(message="Password changed successfully")


@router.get("/users/organizers", response_model=List[OrganizerPublic])
def list_active_organizers(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    organizers = (
        db.query(Organizer)
        .filter(Organizer.status == OrganizerStatus.ACTIVE)
        .order_by(Organizer.name.asc())
        .all()
    )
    return [OrganizerPublic.model_validate(org) for org in organizers]


@router.post("/users/follow/{organizer_id}", response_model=UserResponse)
def follow_organizer(
    organizer_id: int,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    _active_organizer(db, organizer_id)
    if organizer_id not in user.followed_organizer_ids:
        user.follows.append(OrganizerFollow(organizer_id=organizer_id))
        db.commit()
        db.refresh(user)
    return UserResponse.model_validate(user)


@router.delete("/users/follow/{organizer_id}", response_model=UserResponse)
def unfollow_organizer(
    organizer_id: int,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    for follow in list(user.follows):
        if follow.organizer_id == organizer_id:
            user.follows.remove(follow)
    db.commit()
    db.refresh(user)
    return UserResponse.model_validate(user)
