from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from attendance_service import attendance_summary, manual_check_in, revert_check_in, scan_ticket
from database import get_db
from event_lifecycle import load_owned_event
from models import Attendance, Organizer
from realtime import attendance_room, publish
from schemas import (
    AttendanceResponse,
    AttendanceSummaryResponse,
    CheckInResponse,
    ManualCheckInRequest,
    RevertCheckInRequest,
    RevertCheckInResponse,
    ScanRequest,
)
from security import require_organizer
from utils import export_response, format_datetime

router = APIRouter()


def _check_in_response(background_tasks: BackgroundTasks, attendance: Attendance, created: bool) -> CheckInResponse:
    record = AttendanceResponse.model_validate(attendance)
    if created:
        background_tasks.add_task(publish, attendance_room(attendance.event_id), "new_checkin", record.model_dump())
    return CheckInResponse(
        message="Checked in" if created else "Already checked in",
        already_checked_in=not created,
        checked_in_at=attendance.checked_in_at,
        attendance=record,
    )


@router.post("/attendance/scan", response_model=CheckInResponse)
def scan(
    payload: ScanRequest,
    background_tasks: BackgroundTasks,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, payload.event_id, organizer.id)
    attendance, created = scan_ticket(db, event, organizer, payload.qr_data)
    return _check_in_response(background_tasks, attendance, created)


@router.post("/attendance/manual", response_model=CheckInResponse)
def manual(
    payload: ManualCheckInRequest,
    background_tasks: BackgroundTasks,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, payload.event_id, organizer.id)
    attendance, created = manual_check_in(db, event, organizer, payload.registration_id, payload.reason)
    return _check_in_response(background_tasks, attendance, created)


@router.get("/attendance/{event_id}", response_model=AttendanceSummaryResponse)
def event_attendance(
    event_id: int,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    summary = attendance_summary(db, event)
    return AttendanceSummaryResponse(
        checked=summary["checked"],
        total=summary["total"],
        not_checked=summary["not_checked"],
        attendances=[AttendanceResponse.model_validate(a) for a in summary["attendances"]],
    )


@router.get("/attendance/{event_id}/export")
def export_attendance(
    event_id: int,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    records = attendance_summary(db, event)["attendances"]
    headers = ["Ticket ID", "Name", "Email", "Checked In At", "Method", "Manual Override", "Override Reason"]
    rows = [
        [
            record.ticket_id or "",
            record.user.full_name,
            record.user.email,
            format_datetime(record.checked_in_at),
            record.method.value,
            "Yes" if record.is_manual_override else "No",
            record.override_reason or "",
        ]
        for record in records
    ]
    return export_response(headers, rows, f"event_{event.id}_attendance", format)


@router.delete("/attendance/{event_id}/{attendance_id}", response_model=RevertCheckInResponse)
def revert(
    event_id: int,
    attendance_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[RevertCheckInRequest] = None,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    event = load_owned_event(db, event_id, organizer.id)
    result = revert_check_in(db, event, organizer, attendance_id, payload.reason if payload else None)
    background_tasks.add_task(publish, attendance_room(event.id), "checkin_reverted", result)
    return RevertCheckInResponse(message="Check-in reverted", **result)
