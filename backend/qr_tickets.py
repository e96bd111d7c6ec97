import base64
import json
import secrets
from io import BytesIO
from typing import Optional, Tuple

import qrcode
from sqlalchemy.orm import Session

from errors import InvalidPayload
from models import Registration


def make_ticket_id() -> str:
    return "TKT-" + secrets.token_hex(6).upper()


def next_ticket_id(db: Session) -> str:
    candidate = make_ticket_id()
    while db.query(Registration.id).filter(Registration.ticket_id == candidate).first():
        candidate = make_ticket_id()
    return candidate


def build_ticket_payload(ticket_id: str, event_id: int, user_id: int, team_id: Optional[int] = None) -> str:
    data = {"ticketId": ticket_id, "eventId": event_id, "userId": user_id}
    if team_id is not None:
        data["teamId"] = team_id
    return json.dumps(data, separators=(",", ":"))


def render_qr_data_uri(data_string: str) -> str:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(data_string)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"


def issue_qr(registration: Registration) -> str:
    payload = build_ticket_payload(
        registration.ticket_id,
        registration.event_id,
        registration.user_id,
        registration.team_id,
    )
    registration.qr_code = render_qr_data_uri(payload)
    return registration.qr_code


def parse_scanned_payload(raw: str) -> Tuple[Optional[str], Optional[int]]:
    """Return ``(ticket_id, user_id)`` from a scanned ticket, at least one of them set."""
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        raise InvalidPayload()
    if not isinstance(parsed, dict):
        raise InvalidPayload()

    ticket_id = parsed.get("ticketId")
    user_id = parsed.get("userId")
    if ticket_id is not None and not isinstance(ticket_id, str):
        raise InvalidPayload()
    if user_id is not None:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            raise InvalidPayload()
    if not ticket_id and user_id is None:
        raise InvalidPayload()
    return ticket_id, user_id
