from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from auth import decode_token
from database import get_db
from models import Organizer, OrganizerStatus, User, UserRole

ROLE_PARTICIPANT = "participant"
ROLE_ADMIN = "admin"
ROLE_ORGANIZER = "organizer"

security = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)


@dataclass
class Identity:
    role: str
    user: Optional[User] = None
    organizer: Optional[Organizer] = None

    @property
    def id(self) -> int:
        return self.organizer.id if self.organizer else self.user.id

    @property
    def display_name(self) -> str:
        if self.organizer:
            return self.organizer.name
        return self.user.full_name

    @property
    def is_organizer(self) -> bool:
        return self.role == ROLE_ORGANIZER


def identity_from_token(token: str, db: Session) -> Identity:
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    role = payload.get("role")
    sub = payload.get("sub")
    if not sub or role not in {ROLE_PARTICIPANT, ROLE_ADMIN, ROLE_ORGANIZER}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials")

    if role == ROLE_ORGANIZER:
        organizer = db.query(Organizer).filter(Organizer.id == int(sub)).first()
        if organizer is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Organizer not found")
        if organizer.status != OrganizerStatus.ACTIVE:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled or archived")
        return Identity(role=ROLE_ORGANIZER, organizer=organizer)

    user = db.query(User).filter(User.id == int(sub)).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return Identity(role=user.role.value, user=user)


def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Identity:
    return identity_from_token(credentials.credentials, db)


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    db: Session = Depends(get_db),
) -> Optional[Identity]:
    if not credentials:
        return None
    try:
        return identity_from_token(credentials.credentials, db)
    except HTTPException:
        return None


def require_participant(identity: Identity = Depends(get_current_identity)) -> User:
    if identity.role != ROLE_PARTICIPANT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Participant access required")
    return identity.user


def require_admin(identity: Identity = Depends(get_current_identity)) -> User:
    if identity.role != ROLE_ADMIN or identity.user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity.user


def require_organizer(identity: Identity = Depends(get_current_identity)) -> Organizer:
    if identity.role != ROLE_ORGANIZER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organizer access required")
    return identity.organizer


def require_organizer_or_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role not in {ROLE_ORGANIZER, ROLE_ADMIN}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organizer or admin access required")
    return identity
