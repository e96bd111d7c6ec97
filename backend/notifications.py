import base64
import logging
from typing import Optional

import requests

from database import SessionLocal
from email_templates import QR_CID, build_ticket_email
from emailer import send_email
from models import Event, Registration, Team
from time_utils import to_local, utc_now

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10
DISCORD_EMBED_COLOR = 0x5865F2


def _qr_png_bytes(qr_code: Optional[str]) -> Optional[bytes]:
    if not qr_code or "," not in qr_code:
        return None
    return base64.b64decode(qr_code.split(",", 1)[1])


def send_ticket_email_task(registration_id: int) -> None:
    """Send the confirmation email for a registration and mark it as sent.

    Runs after the response has been returned, in its own session, so a mail
    failure never touches the registration that was already committed.
    """
    db = SessionLocal()
    try:
        registration = db.query(Registration).filter(Registration.id == registration_id).first()
        if not registration:
            logger.warning("Ticket email skipped, registration %s no longer exists", registration_id)
            return
        event = registration.event
        team_name = None
        if registration.team_id:
            team = db.query(Team).filter(Team.id == registration.team_id).first()
            team_name = team.name if team else None

        subject, html, text = build_ticket_email(registration.user, event, registration, team_name=team_name)
        png = _qr_png_bytes(registration.qr_code)
        send_email(
            registration.user.email,
            subject,
            html,
            text,
            inline_images={QR_CID: png} if png else None,
        )
        registration.email_sent = True
        db.commit()
        logger.info("Ticket email sent for %s", registration.ticket_id)
    except Exception:
        db.rollback()
        logger.exception("Ticket email failed for registration %s", registration_id)
    finally:
        db.close()


def build_event_embed(event: Event) -> dict:
    description = (event.description or "")[:200]
    if len(event.description or "") > 200:
        description += "..."
    return {
        "embeds": [{
            "title": f"New Event: {event.name}",
            "description": description,
            "color": DISCORD_EMBED_COLOR,
            "fields": [
                {"name": "Type", "value": event.event_type.value, "inline": True},
                {"name": "Start Date", "value": to_local(event.start_date).strftime("%d %b %Y"), "inline": True},
                {"name": "Deadline", "value": to_local(event.registration_deadline).strftime("%d %b %Y"), "inline": True},
            ],
            "timestamp": utc_now().isoformat(),
        }]
    }


def post_event_webhook(webhook_url: str, payload: dict) -> None:
    try:
        response = requests.post(webhook_url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Event webhook post failed: %s", exc)
