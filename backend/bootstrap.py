import logging
import os
from typing import Optional

from auth import get_password_hash
from database import Base, engine, get_db
from models import ParticipantType, User, UserRole

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@felicity.iiit.ac.in"


def ensure_default_admin(db) -> Optional[User]:
    email = (os.environ.get("ADMIN_EMAIL") or DEFAULT_ADMIN_EMAIL).strip().lower()
    admin = db.query(User).filter(User.email == email).first()
    if admin:
        if admin.role != UserRole.ADMIN:
            logger.warning("Seed admin email %s belongs to a non-admin account; leaving it untouched", email)
        return admin

    password = os.environ.get("ADMIN_PASSWORD")
    if not password:
        logger.warning("ADMIN_PASSWORD not set; skipping admin seed")
        return None

    admin = User(
        first_name="Platform",
        last_name="Admin",
        email=email,
        hashed_password=get_password_hash(password),
        participant_type=ParticipantType.IIIT,
        role=UserRole.ADMIN,
        areas_of_interest=[],
        onboarding_completed=True,
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Seeded admin account %s", email)
    return admin


def run_bootstrap() -> None:
    Base.metadata.create_all(bind=engine)
    db = next(get_db())
    try:
        ensure_default_admin(db)
    finally:
        db.close()
