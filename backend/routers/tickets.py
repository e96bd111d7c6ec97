from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from errors import NotFound
from models import Registration
from schemas import TicketResponse
from security import ROLE_ORGANIZER, ROLE_PARTICIPANT, Identity, get_current_identity

router = APIRouter()


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
def get_ticket(
    ticket_id: str,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    registration = db.query(Registration).filter(Registration.ticket_id == ticket_id.strip().upper()).first()
    if not registration:
        raise NotFound("Ticket not found")

    # Owner or the organizer running the event; everyone else gets the same 404.
    allowed = (
        (identity.role == ROLE_PARTICIPANT and registration.user_id == identity.user.id)
        or (identity.role == ROLE_ORGANIZER and registration.event.organizer_id == identity.organizer.id)
    )
    if not allowed:
        raise NotFound("Ticket not found")
    return TicketResponse.model_validate(registration)
