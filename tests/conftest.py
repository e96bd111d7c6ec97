from datetime import timedelta
from pathlib import Path
import os
import sys
import tempfile

import pytest

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

_TMP_DIR = Path(tempfile.mkdtemp(prefix="felicity-tests-"))
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'app.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP_DIR / "uploads")
os.environ.pop("S3_BUCKET_NAME", None)
os.environ.pop("ADMIN_PASSWORD", None)

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import create_identity_token, get_password_hash
from database import Base, get_db
from models import (
    Eligibility,
    Event,
    EventStatus,
    EventType,
    MerchandiseItem,
    Organizer,
    OrganizerStatus,
    ParticipantType,
    User,
    UserRole,
)
from security import ROLE_ORGANIZER
from server import app
from time_utils import utc_now

import routers.events
import routers.live
import routers.registrations
import routers.teams

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "secret123"
_PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def record(registration_id):
        sent.append(registration_id)

    monkeypatch.setattr(routers.registrations, "send_ticket_email_task", record)
    monkeypatch.setattr(routers.teams, "send_ticket_email_task", record)
    return sent


@pytest.fixture
def webhooks(monkeypatch):
    posted = []

    def record(url, payload):
        posted.append((url, payload))

    monkeypatch.setattr(routers.events, "post_event_webhook", record)
    return posted


@pytest.fixture
def client(db, sent_emails, webhooks, monkeypatch):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(routers.live, "SessionLocal", TestingSessionLocal)
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


class Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def participant(self, email=None, first_name="Asha", last_name="Rao", **fields) -> User:
        n = self._next()
        email = email or f"participant{n}@example.com"
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            hashed_password=_PASSWORD_HASH,
            participant_type=fields.pop("participant_type", ParticipantType.NON_IIIT),
            role=fields.pop("role", UserRole.PARTICIPANT),
            areas_of_interest=fields.pop("areas_of_interest", []),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def admin(self) -> User:
        return self.participant(email="admin@example.com", first_name="Root", role=UserRole.ADMIN)

    def organizer(self, name=None, **fields) -> Organizer:
        n = self._next()
        organizer = Organizer(
            name=name or f"Club {n}",
            category=fields.pop("category", "Technical"),
            contact_email=fields.pop("contact_email", f"club{n}@clubs.example.com"),
            hashed_password=_PASSWORD_HASH,
            status=fields.pop("status", OrganizerStatus.ACTIVE),
            **fields,
        )
        self.db.add(organizer)
        self.db.commit()
        self.db.refresh(organizer)
        return organizer

    def event(self, organizer, items=None, **fields) -> Event:
        now = utc_now()
        values = dict(
            name="Code Sprint",
            description="An evening of competitive programming",
            event_type=EventType.NORMAL,
            eligibility=Eligibility.ALL,
            start_date=now + timedelta(days=7),
            end_date=now + timedelta(days=8),
            registration_deadline=now + timedelta(days=6),
            registration_limit=100,
            registration_count=0,
            registration_fee=0,
            tags=[],
            status=EventStatus.PUBLISHED,
            custom_form=[],
            purchase_limit=5,
            requires_payment_approval=False,
            team_size=3,
            view_count=0,
            revenue=0,
        )
        values.update(fields)
        event = Event(organizer_id=organizer.id, **values)
        for item in items or []:
            event.merchandise_items.append(MerchandiseItem(**item))
        self.db.add(event)
        self.db.commit()
        self.db.refresh(event)
        return event

    def reload(self, instance):
        self.db.expire_all()
        return self.db.get(type(instance), instance.id)


@pytest.fixture
def make(db):
    return Factory(db)


def auth_headers(account) -> dict:
    if isinstance(account, Organizer):
        token = create_identity_token(account.id, ROLE_ORGANIZER)
    else:
        token = create_identity_token(account.id, account.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
