import json
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFound, ValidationFailed
from event_lifecycle import load_event, load_owned_event
from models import EventType, Organizer, PaymentStatus, Registration, RegistrationStatus, User
from notifications import send_ticket_email_task
from registration_workflow import (
    cancel_registration,
    list_payment_registrations,
    register_participant,
    review_payment,
)
from schemas import (
    FormResponseItem,
    MerchandisePurchaseRequest,
    PaymentRegistrationResponse,
    PaymentReviewRequest,
    PaymentReviewResponse,
    RegistrationDetail,
    RegistrationResponse,
)
from security import require_organizer, require_participant

logger = logging.getLogger(__name__)

router = APIRouter()

_form_responses_adapter = TypeAdapter(List[FormResponseItem])
_purchases_adapter = TypeAdapter(List[MerchandisePurchaseRequest])


def _parse_json_field(raw: Optional[str], adapter: TypeAdapter, field_name: str) -> list:
    if raw is None or not raw.strip():
        return []
    try:
        items = adapter.validate_python(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        logger.info("Rejected %s payload: %s", field_name, exc)
        raise ValidationFailed(f"Invalid {field_name}")
    return [item.model_dump() for item in items]


def _load_registration(db: Session, registration_id: int) -> Registration:
    registration = db.query(Registration).filter(Registration.id == registration_id).first()
    if not registration:
        raise NotFound("Registration not found")
    return registration


@router.post("/registrations", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
def create_registration(
    background_tasks: BackgroundTasks,
    event_id: int = Form(...),
    form_responses: Optional[str] = Form(None),
    merchandise_purchases: Optional[str] = Form(None),
    payment_proof: Optional[UploadFile] = File(None),
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    event = load_event(db, event_id)
    registration = register_participant(
        db,
        event,
        user,
        form_responses=_parse_json_field(form_responses, _form_responses_adapter, "form_responses"),
        merchandise_purchases=_parse_json_field(merchandise_purchases, _purchases_adapter, "merchandise_purchases"),
        payment_proof=payment_proof,
    )
    if registration.payment_status != PaymentStatus.PENDING:
        background_tasks.add_task(send_ticket_email_task, registration.id)
    return RegistrationResponse.model_validate(registration)


@router.get("/registrations/my", response_model=List[RegistrationDetail])
def my_registrations(
    registration_type: Optional[EventType] = None,
    status_filter: Optional[RegistrationStatus] = Query(None, alias="status"),
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    query = db.query(Registration).filter(Registration.user_id == user.id)
    if registration_type:
        query = query.filter(Registration.registration_type == registration_type)
    if status_filter:
        query = query.filter(Registration.status == status_filter)
    registrations = query.order_by(Registration.created_at.desc(), Registration.id.desc()).all()
    return [RegistrationDetail.model_validate(reg) for reg in registrations]


@router.delete("/registrations/{registration_id}", response_model=RegistrationResponse)
def cancel_my_registration(
    registration_id: int,
    user: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    registration = _load_registration(db, registration_id)
    return RegistrationResponse.model_validate(cancel_registration(db, registration, user))


@router.get("/registrations/event/{event_id}/payments", response_model=List[PaymentRegistrationResponse])
def event_payments(
    event_id: int,
    payment_status: Optional[PaymentStatus] = None,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    return [PaymentRegistrationResponse.model_validate(reg) for reg in list_payment_registrations(db, event, payment_status)]


@router.patch("/registrations/{registration_id}/payment-review", response_model=PaymentReviewResponse)
def review_registration_payment(
    registration_id: int,
    payload: PaymentReviewRequest,
    background_tasks: BackgroundTasks,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    registration = _load_registration(db, registration_id)
    registration = review_payment(db, registration, organizer, payload.action)
    if registration.payment_status == PaymentStatus.APPROVED:
        background_tasks.add_task(send_ticket_email_task, registration.id)
        message = "Payment approved"
    else:
        message = "Payment rejected"
    return PaymentReviewResponse(message=message, registration=RegistrationResponse.model_validate(registration))
