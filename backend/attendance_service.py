import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import NotFound, ValidationFailed
from models import Attendance, AttendanceMethod, Event, Organizer, Registration, RegistrationStatus
from qr_tickets import parse_scanned_payload
from time_utils import utc_now

logger = logging.getLogger(__name__)


def existing_attendance(db: Session, event_id: int, registration_id: int) -> Optional[Attendance]:
    return (
        db.query(Attendance)
        .filter(Attendance.event_id == event_id, Attendance.registration_id == registration_id)
        .first()
    )


def resolve_scanned_registration(db: Session, event: Event, raw_payload: str) -> Registration:
    ticket_id, user_id = parse_scanned_payload(raw_payload)
    query = db.query(Registration).filter(
        Registration.event_id == event.id,
        Registration.status == RegistrationStatus.ACTIVE,
    )
    registration = None
    if ticket_id:
        registration = query.filter(Registration.ticket_id == ticket_id).first()
    if registration is None and user_id is not None:
        registration = query.filter(Registration.user_id == user_id).first()
    if registration is None:
        raise NotFound("Invalid ticket or not registered for this event")
    return registration


def _record(db: Session, attendance: Attendance) -> Tuple[Attendance, bool]:
    db.add(attendance)
    try:
        db.commit()
    except IntegrityError:
        # Another scanner got there first.
        db.rollback()
        return existing_attendance(db, attendance.event_id, attendance.registration_id), False
    db.refresh(attendance)
    return attendance, True


def scan_ticket(db: Session, event: Event, organizer: Organizer, raw_payload: str) -> Tuple[Attendance, bool]:
    """Check in the ticket in ``raw_payload``; returns ``(attendance, created)``."""
    registration = resolve_scanned_registration(db, event, raw_payload)
    already = existing_attendance(db, event.id, registration.id)
    if already:
        return already, False

    return _record(db, Attendance(
        event_id=event.id,
        registration_id=registration.id,
        user_id=registration.user_id,
        checked_in_at=utc_now(),
        method=AttendanceMethod.QR_SCAN,
        marked_by=organizer.id,
        is_manual_override=False,
    ))


def manual_check_in(db: Session, event: Event, organizer: Organizer, registration_id: int, reason: str) -> Tuple[Attendance, bool]:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("A reason is required for manual check-in")

    registration = (
        db.query(Registration)
        .filter(
            Registration.id == registration_id,
            Registration.event_id == event.id,
            Registration.status != RegistrationStatus.CANCELLED,
        )
        .first()
    )
    if not registration:
        raise NotFound("Registration not found")

    already = existing_attendance(db, event.id, registration.id)
    if already:
        return already, False

    now = utc_now()
    return _record(db, Attendance(
        event_id=event.id,
        registration_id=registration.id,
        user_id=registration.user_id,
        checked_in_at=now,
        method=AttendanceMethod.MANUAL,
        marked_by=organizer.id,
        is_manual_override=True,
        override_reason=reason,
        override_audit=[{"by": organizer.id, "at": now.isoformat(), "reason": reason, "action": "check_in"}],
    ))


def revert_check_in(db: Session, event: Event, organizer: Organizer, attendance_id: int, reason: Optional[str] = None) -> Dict:
    attendance = (
        db.query(Attendance)
        .filter(Attendance.id == attendance_id, Attendance.event_id == event.id)
        .first()
    )
    if not attendance:
        raise NotFound("Attendance record not found")

    audit = list(attendance.override_audit or [])
    audit.append({"by": organizer.id, "at": utc_now().isoformat(), "reason": reason or "", "action": "revert"})
    # The row is deleted, so the trail only survives in the log and the response.
    logger.info("Check-in %s reverted on event %s: %s", attendance.id, event.id, audit)
    result = {
        "attendance_id": attendance.id,
        "registration_id": attendance.registration_id,
        "audit": audit,
    }
    db.delete(attendance)
    db.commit()
    return result


def attendance_summary(db: Session, event: Event) -> Dict:
    records: List[Attendance] = (
        db.query(Attendance)
        .filter(Attendance.event_id == event.id)
        .order_by(Attendance.checked_in_at.desc(), Attendance.id.desc())
        .all()
    )
    total = (
        db.query(Registration)
        .filter(Registration.event_id == event.id, Registration.status == RegistrationStatus.ACTIVE)
        .count()
    )
    checked = len(records)
    return {
        "checked": checked,
        "total": total,
        "not_checked": max(total - checked, 0),
        "attendances": records,
    }
