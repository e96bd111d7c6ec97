from typing import Optional

from fastapi import HTTPException, status


class WorkflowError(HTTPException):
    """Domain failure surfaced to the caller as ``{"detail": ..., "code": ...}``."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "workflow_error"
    default_detail = "Request could not be completed"

    def __init__(self, detail: Optional[str] = None, **extra):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)
        self.extra = extra


class ValidationFailed(WorkflowError):
    code = "validation_failed"
    default_detail = "Invalid request"


class NotFound(WorkflowError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_detail = "Not found"


class Forbidden(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_detail = "Not your event"


class InvalidTransition(WorkflowError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot transition from {current} to {requested}", current=current, requested=requested)


class EventLocked(WorkflowError):
    code = "event_locked"
    default_detail = "Event can no longer be edited"


class FormLocked(WorkflowError):
    code = "form_locked"
    default_detail = "Form is locked after first registration"


class EventNotOpen(WorkflowError):
    code = "event_not_open"
    default_detail = "Event is not open for registration"


class DeadlinePassed(WorkflowError):
    code = "deadline_passed"
    default_detail = "Registration deadline has passed"


class EventFull(WorkflowError):
    code = "event_full"
    default_detail = "Event is fully booked"


class NotEligible(WorkflowError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_eligible"
    default_detail = "You are not eligible for this event"


class DuplicateRegistration(WorkflowError):
    code = "duplicate_registration"
    default_detail = "Already registered for this event"


class InsufficientStock(WorkflowError):
    code = "insufficient_stock"
    default_detail = "Insufficient stock"


class PaymentProofRequired(WorkflowError):
    code = "payment_proof_required"
    default_detail = "Payment proof is required"


class AlreadyReviewed(WorkflowError):
    code = "already_reviewed"
    default_detail = "Payment already reviewed"


class AlreadyCancelled(WorkflowError):
    code = "already_cancelled"
    default_detail = "Already cancelled"


class InvalidPayload(WorkflowError):
    code = "invalid_payload"
    default_detail = "Invalid QR code"


class TeamFull(WorkflowError):
    code = "team_full"
    default_detail = "Team is full"


class TeamNotForming(WorkflowError):
    code = "team_not_forming"
    default_detail = "Team is not accepting members"


class EventNotCompleted(WorkflowError):
    code = "event_not_completed"
    default_detail = "Feedback can only be submitted for completed events"


class FeedbackAlreadySubmitted(WorkflowError):
    code = "feedback_already_submitted"
    default_detail = "Already submitted feedback for this event"
