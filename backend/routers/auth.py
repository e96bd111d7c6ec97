import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from auth import create_identity_token, get_password_hash, participant_type_for_email, verify_password
from database import get_db
from models import Organizer, OrganizerStatus, ParticipantType, User, UserRole
from schemas import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    OrganizerResponse,
    ParticipantRegister,
    TokenResponse,
    UserResponse,
)
from security import ROLE_ORGANIZER, Identity, get_current_identity

logger = logging.getLogger(__name__)

router = APIRouter()


def _user_token(user: User) -> TokenResponse:
    role = user.role.value
    return TokenResponse(
        access_token=create_identity_token(user.id, role),
        role=role,
        user=UserResponse.model_validate(user),
    )


@router.post("/auth/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(user_data: ParticipantRegister, db: Session = Depends(get_db)):
    email = user_data.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    user = User(
        first_name=user_data.first_name.strip(),
        last_name=user_data.last_name.strip(),
        email=email,
        hashed_password=get_password_hash(user_data.password),
        contact_number=user_data.contact_number,
        college_or_org=user_data.college_or_org,
        participant_type=ParticipantType(participant_type_for_email(email)),
        role=UserRole.PARTICIPANT,
        areas_of_interest=[],
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Participant %s registered (%s)", user.id, user.participant_type.value)
    return _user_token(user)


@router.post("/auth/login", response_model=TokenResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == login_data.email.lower()).first()
    if not user or not verify_password(login_data.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return _user_token(user)


@router.post("/auth/organizer/login", response_model=TokenResponse)
def organizer_login(login_data: LoginRequest, db: Session = Depends(get_db)):
    organizer = db.query(Organizer).filter(Organizer.contact_email == login_data.email.lower()).first()
    if not organizer or not verify_password(login_data.password, organizer.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if organizer.status != OrganizerStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled or archived")
    return TokenResponse(
        access_token=create_identity_token(organizer.id, ROLE_ORGANIZER),
        role=ROLE_ORGANIZER,
        organizer=OrganizerResponse.model_validate(organizer),
    )


@router.get("/auth/me", response_model=MeResponse)
def me(identity: Identity = Depends(get_current_identity)):
    if identity.organizer:
        return MeResponse(role=identity.role, organizer=OrganizerResponse.model_validate(identity.organizer))
    return MeResponse(role=identity.role, user=UserResponse.model_validate(identity.user))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(identity: Identity = Depends(get_current_identity)):
    # Tokens are stateless; the client drops its copy.
    return MessageResponse(message="Logged out")
