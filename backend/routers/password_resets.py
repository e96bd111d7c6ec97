import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from auth import generate_password, get_password_hash
from database import get_db
from models import Organizer, PasswordResetRequest, ResetRequestStatus, User
from schemas import (
    MessageResponse,
    OrganizerCredentials,
    ResetApproveResponse,
    ResetRequestAdminResponse,
    ResetRequestCreate,
    ResetRequestResponse,
    ResetResolveRequest,
)
from security import require_admin, require_organizer
from time_utils import utc_now
from utils import log_admin_action

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_request(db: Session, request_id: int) -> PasswordResetRequest:
    reset_request = db.query(PasswordResetRequest).filter(PasswordResetRequest.id == request_id).first()
    if not reset_request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    return reset_request


def _resolve(reset_request: PasswordResetRequest, admin: User, new_status: ResetRequestStatus, comment: Optional[str]) -> None:
    if reset_request.status != ResetRequestStatus.PENDING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request already resolved")
    reset_request.status = new_status
    reset_request.admin_comment = comment
    reset_request.resolved_by = admin.id
    reset_request.resolved_at = utc_now()


@router.post("/password-reset-requests", response_model=ResetRequestResponse, status_code=status.HTTP_201_CREATED)
def submit_request(
    payload: ResetRequestCreate,
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    pending = (
        db.query(PasswordResetRequest.id)
        .filter(PasswordResetRequest.organizer_id == organizer.id, PasswordResetRequest.status == ResetRequestStatus.PENDING)
        .first()
    )
    if pending:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You already have a pending request")

    reset_request = PasswordResetRequest(organizer_id=organizer.id, reason=payload.reason.strip())
    db.add(reset_request)
    db.commit()
    db.refresh(reset_request)
    logger.info("Password reset requested by organizer %s", organizer.id)
    return ResetRequestResponse.model_validate(reset_request)


@router.get("/password-reset-requests/my", response_model=List[ResetRequestResponse])
def my_requests(
    organizer: Organizer = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    requests = (
        db.query(PasswordResetRequest)
        .filter(PasswordResetRequest.organizer_id == organizer.id)
        .order_by(PasswordResetRequest.created_at.desc(), PasswordResetRequest.id.desc())
        .all()
    )
    return [ResetRequestResponse.model_validate(r) for r in requests]


@router.get("/password-reset-requests", response_model=List[ResetRequestAdminResponse])
def all_requests(
    status_filter: Optional[ResetRequestStatus] = Query(None, alias="status"),
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    query = db.query(PasswordResetRequest)
    if status_filter:
        query = query.filter(PasswordResetRequest.status == status_filter)
    requests = query.order_by(PasswordResetRequest.created_at.desc(), PasswordResetRequest.id.desc()).all()
    return [ResetRequestAdminResponse.model_validate(r) for r in requests]


@router.post("/password-reset-requests/{request_id}/approve", response_model=ResetApproveResponse)
def approve_request(
    request_id: int,
    request: Request,
    payload: Optional[ResetResolveRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reset_request = _get_request(db, request_id)
    _resolve(reset_request, admin, ResetRequestStatus.APPROVED, payload.admin_comment if payload else None)

    new_password = generate_password()
    organizer = reset_request.organizer
    organizer.hashed_password = get_password_hash(new_password)
    # Held until the admin acknowledges it.
    reset_request.new_password_plain = new_password
    db.commit()
    db.refresh(reset_request)

    log_admin_action(db, admin, "Approve password reset", request.method, request.url.path, {"organizer_id": organizer.id})
    return ResetApproveResponse(
        message="Request approved",
        request=ResetRequestResponse.model_validate(reset_request),
        credentials=OrganizerCredentials(
            email=organizer.contact_email,
            password=new_password,
            note="Share with organizer. Cleared after acknowledgment.",
        ),
    )


@router.post("/password-reset-requests/{request_id}/reject", response_model=MessageResponse)
def reject_request(
    request_id: int,
    request: Request,
    payload: Optional[ResetResolveRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reset_request = _get_request(db, request_id)
    _resolve(reset_request, admin, ResetRequestStatus.REJECTED, payload.admin_comment if payload else None)
    db.commit()
    log_admin_action(db, admin, "Reject password reset", request.method, request.url.path, {"request_id": request_id})
    return MessageResponse(message="Request rejected")


@router.post("/password-reset-requests/{request_id}/acknowledge", response_model=MessageResponse)
def acknowledge_credentials(
    request_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    reset_request = _get_request(db, request_id)
    reset_request.new_password_plain = None
    db.commit()
    return MessageResponse(message="Credential acknowledged and cleared")
