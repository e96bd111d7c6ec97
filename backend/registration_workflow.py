"""Registration and payment-approval workflow.

Counters on ``events`` and ``merchandise_items`` are only ever changed through
conditional UPDATE statements, so the capacity and stock checks hold under
concurrent requests without an application-level lock.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import (
    AlreadyCancelled,
    AlreadyReviewed,
    DeadlinePassed,
    DuplicateRegistration,
    EventFull,
    EventNotOpen,
    Forbidden,
    InsufficientStock,
    NotEligible,
    NotFound,
    PaymentProofRequired,
    ValidationFailed,
    WorkflowError,
)
from event_lifecycle import OPEN_STATUSES
from models import (
    Eligibility,
    Event,
    EventType,
    MerchandiseItem,
    Organizer,
    ParticipantType,
    PaymentStatus,
    Registration,
    RegistrationStatus,
    User,
)
from qr_tickets import issue_qr, next_ticket_id
from time_utils import as_utc, utc_now
from utils import discard_upload, store_payment_proof

logger = logging.getLogger(__name__)

COUNTED_PAYMENT_STATES = {PaymentStatus.NOT_REQUIRED, PaymentStatus.APPROVED}


def live_registration(db: Session, user_id: int, event_id: int) -> Optional[Registration]:
    return (
        db.query(Registration)
        .filter(
            Registration.user_id == user_id,
            Registration.event_id == event_id,
            Registration.status != RegistrationStatus.CANCELLED,
        )
        .first()
    )


def is_eligible(event: Event, user: User) -> bool:
    if event.eligibility == Eligibility.IIIT_ONLY:
        return user.participant_type == ParticipantType.IIIT
    if event.eligibility == Eligibility.NON_IIIT_ONLY:
        return user.participant_type == ParticipantType.NON_IIIT
    return True


def check_preconditions(db: Session, event: Event, user: User, now: Optional[datetime] = None) -> None:
    now = now or utc_now()
    if event.status not in OPEN_STATUSES:
        raise EventNotOpen()
    if now > as_utc(event.registration_deadline):
        raise DeadlinePassed()
    if event.registration_count >= event.registration_limit:
        raise EventFull()
    if not is_eligible(event, user):
        raise NotEligible()
    if live_registration(db, user.id, event.id):
        raise DuplicateRegistration()


def reserve_capacity(db: Session, event_id: int, amount: float = 0) -> None:
    updated = (
        db.query(Event)
        .filter(Event.id == event_id, Event.registration_count < Event.registration_limit)
        .update(
            {
                Event.registration_count: Event.registration_count + 1,
                Event.revenue: Event.revenue + amount,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        raise EventFull()


def release_capacity(db: Session, event_id: int) -> None:
    db.query(Event).filter(Event.id == event_id, Event.registration_count > 0).update(
        {Event.registration_count: Event.registration_count - 1},
        synchronize_session=False,
    )


def reserve_stock(db: Session, purchases: List[Dict[str, Any]], labels: Dict[int, str]) -> None:
    for purchase in purchases:
        quantity = purchase["quantity"]
        updated = (
            db.query(MerchandiseItem)
            .filter(MerchandiseItem.id == purchase["variant_id"], MerchandiseItem.stock >= quantity)
            .update({MerchandiseItem.stock: MerchandiseItem.stock - quantity}, synchronize_session=False)
        )
        if not updated:
            raise InsufficientStock(f"Insufficient stock for {labels.get(purchase['variant_id'], 'item')}")


def _variant_label(item: MerchandiseItem) -> str:
    parts = [item.variant_name] + [value for value in (item.size, item.color) if value]
    return " ".join(parts)


def price_purchases(event: Event, purchases: List[Dict[str, Any]]) -> float:
    """Validate requested variants and stamp ``price_at_purchase`` on each line."""
    if not purchases:
        raise ValidationFailed("Select at least one item to purchase")

    variants = {item.id: item for item in event.merchandise_items}
    total_quantity = 0
    total = 0.0
    for purchase in purchases:
        variant = variants.get(purchase.get("variant_id"))
        if not variant:
            raise ValidationFailed("Invalid item variant")
        quantity = purchase.get("quantity") or 0
        if quantity < 1:
            raise ValidationFailed("Quantity must be at least 1")
        total_quantity += quantity
        purchase["price_at_purchase"] = variant.price
        purchase["size"] = purchase.get("size") or variant.size
        purchase["color"] = purchase.get("color") or variant.color
        total += variant.price * quantity

    if event.purchase_limit and total_quantity > event.purchase_limit:
        raise ValidationFailed(f"Purchase limit is {event.purchase_limit} items")
    return total


def validate_form_responses(event: Event, responses: List[Dict[str, Any]]) -> None:
    answers = {str(r.get("field_label")): r.get("value") for r in responses or []}
    for field in event.custom_form or []:
        label = field.get("label")
        value = answers.get(label)
        empty = value is None or (isinstance(value, (str, list)) and len(value) == 0)
        if field.get("required") and empty:
            raise ValidationFailed(f"'{label}' is required")
        if empty:
            continue
        options = field.get("options") or []
        kind = field.get("field_type")
        if kind in ("dropdown", "radio") and options and value not in options:
            raise ValidationFailed(f"Invalid option for '{label}'")
        if kind == "checkbox" and options:
            chosen = value if isinstance(value, list) else [value]
            if any(item not in options for item in chosen):
                raise ValidationFailed(f"Invalid option for '{label}'")
        if kind == "number":
            try:
                float(value)
            except (TypeError, ValueError):
                raise ValidationFailed(f"'{label}' must be a number")
        if kind == "email" and "@" not in str(value):
            raise ValidationFailed(f"'{label}' must be an email address")


def register_participant(
    db: Session,
    event: Event,
    user: User,
    form_responses: Optional[List[Dict[str, Any]]] = None,
    merchandise_purchases: Optional[List[Dict[str, Any]]] = None,
    payment_proof: Optional[UploadFile] = None,
) -> Registration:
    check_preconditions(db, event, user)

    purchases = [dict(p) for p in merchandise_purchases or []]
    total_amount = 0.0
    payment_status = PaymentStatus.NOT_REQUIRED
    needs_stock = False

    if event.event_type == EventType.HACKATHON:
        raise ValidationFailed("Hackathon registrations are created through teams")

    if event.event_type == EventType.MERCHANDISE:
        total_amount = price_purchases(event, purchases)
        if event.requires_payment_approval:
            payment_status = PaymentStatus.PENDING
        else:
            needs_stock = True
    else:
        purchases = []
        validate_form_responses(event, form_responses)
        if (event.registration_fee or 0) > 0:
            total_amount = event.registration_fee
            payment_status = PaymentStatus.PENDING

    if payment_status == PaymentStatus.PENDING and payment_proof is None:
        raise PaymentProofRequired()

    registration = Registration(
        ticket_id=next_ticket_id(db),
        user_id=user.id,
        event_id=event.id,
        registration_type=event.event_type,
        status=RegistrationStatus.ACTIVE,
        form_responses=(form_responses or []) if event.event_type == EventType.NORMAL else [],
        merchandise_purchases=purchases,
        total_amount=total_amount,
        payment_status=payment_status,
    )

    proof_url = None
    try:
        db.add(registration)
        db.flush()
        if needs_stock:
            labels = {item.id: _variant_label(item) for item in event.merchandise_items}
            reserve_stock(db, purchases, labels)
        if payment_status != PaymentStatus.PENDING:
            reserve_capacity(db, event.id, total_amount)
            issue_qr(registration)
        if event.event_type == EventType.NORMAL and not event.form_locked:
            event.form_locked = True
        if payment_status == PaymentStatus.PENDING:
            # Stored last so a rejected registration leaves no upload behind.
            proof_url = store_payment_proof(payment_proof)
            registration.payment_proof_url = proof_url
        db.commit()
    except IntegrityError:
        db.rollback()
        discard_upload(proof_url)
        raise DuplicateRegistration()
    except WorkflowError:
        db.rollback()
        raise
    except HTTPException:
        db.rollback()
        raise

    db.refresh(registration)
    logger.info(
        "Registration %s created for user %s on event %s (%s)",
        registration.ticket_id, user.id, event.id, payment_status.value,
    )
    return registration


def list_payment_registrations(db: Session, event: Event, payment_status: Optional[PaymentStatus] = None) -> List[Registration]:
    query = db.query(Registration).filter(
        Registration.event_id == event.id,
        Registration.payment_status != PaymentStatus.NOT_REQUIRED,
    )
    if payment_status:
        query = query.filter(Registration.payment_status == payment_status)
    return query.order_by(Registration.created_at.desc(), Registration.id.desc()).all()


def review_payment(db: Session, registration: Registration, organizer: Organizer, action: str) -> Registration:
    event = registration.event
    if event.organizer_id != organizer.id:
        raise Forbidden()
    if registration.status != RegistrationStatus.ACTIVE:
        raise AlreadyCancelled()
    if registration.payment_status != PaymentStatus.PENDING:
        raise AlreadyReviewed()

    approve = action == "approve"
    new_status = PaymentStatus.APPROVED if approve else PaymentStatus.REJECTED
    reviewed_at = utc_now()

    try:
        claimed = (
            db.query(Registration)
            .filter(
                Registration.id == registration.id,
                Registration.status == RegistrationStatus.ACTIVE,
                Registration.payment_status == PaymentStatus.PENDING,
            )
            .update(
                {
                    Registration.payment_status: new_status,
                    Registration.payment_reviewed_by: organizer.id,
                    Registration.payment_reviewed_at: reviewed_at,
                },
                synchronize_session=False,
            )
        )
        if not claimed:
            # Reviewed or cancelled since it was loaded.
            raise AlreadyReviewed()

        if approve:
            purchases = registration.merchandise_purchases or []
            if purchases:
                labels = {item.id: _variant_label(item) for item in event.merchandise_items}
                reserve_stock(db, purchases, labels)
            reserve_capacity(db, event.id, registration.total_amount or 0)
            issue_qr(registration)
        db.commit()
    except WorkflowError:
        db.rollback()
        raise

    db.refresh(registration)
    logger.info("Payment for %s %s by organizer %s", registration.ticket_id, new_status.value, organizer.id)
    return registration


def cancel_registration(db: Session, registration: Registration, user: User) -> Registration:
    if registration.user_id != user.id:
        raise NotFound("Registration not found")
    if registration.status == RegistrationStatus.CANCELLED:
        raise AlreadyCancelled()

    counted = registration.payment_status in COUNTED_PAYMENT_STATES
    updated = (
        db.query(Registration)
        .filter(Registration.id == registration.id, Registration.status != RegistrationStatus.CANCELLED)
        .update({Registration.status: RegistrationStatus.CANCELLED}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise AlreadyCancelled()
    # Revenue stays as recorded; only the head count is returned.
    if counted:
        release_capacity(db, registration.event_id)
    db.commit()
    db.refresh(registration)
    logger.info("Registration %s cancelled", registration.ticket_id)
    return registration


def create_team_member_registration(db: Session, event: Event, user_id: int, team_id: int) -> Registration:
    """Insert one confirmed hackathon registration inside a savepoint."""
    with db.begin_nested():
        reserve_capacity(db, event.id, 0)
        registration = Registration(
            ticket_id=next_ticket_id(db),
            user_id=user_id,
            event_id=event.id,
            registration_type=EventType.HACKATHON,
            status=RegistrationStatus.ACTIVE,
            form_responses=[],
            merchandise_purchases=[],
            total_amount=0,
            payment_status=PaymentStatus.NOT_REQUIRED,
            team_id=team_id,
        )
        db.add(registration)
        db.flush()
        issue_qr(registration)
    return registration
