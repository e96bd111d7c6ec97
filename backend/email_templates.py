import os
from pathlib import Path
from typing import Optional, Tuple

from jinja2 import Environment, FileSystemLoader, select_autoescape

from time_utils import to_local

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
FRONTEND_BASE_URL = os.environ.get("FRONTEND_BASE_URL", "")
QR_CID = "ticket-qr"

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html", "xml")),
)


def _purchase_lines(event, registration):
    variants = {item.id: item for item in (event.merchandise_items or [])}
    lines = []
    for purchase in registration.merchandise_purchases or []:
        item = variants.get(purchase.get("variant_id"))
        label = item.variant_name if item else "Item"
        extras = [value for value in (purchase.get("size"), purchase.get("color")) if value]
        if extras:
            label = f"{label} ({', '.join(extras)})"
        lines.append({"label": label, "quantity": purchase.get("quantity", 1)})
    return lines


def build_ticket_email(user, event, registration, team_name: Optional[str] = None) -> Tuple[str, str, str]:
    subject = f"Registration Confirmed - {event.name}"
    start = to_local(event.start_date)
    start_text = start.strftime("%d %b %Y, %I:%M %p") if start else ""
    ticket_url = ""
    if FRONTEND_BASE_URL:
        ticket_url = f"{FRONTEND_BASE_URL.rstrip('/')}/tickets/{registration.ticket_id}"
    purchases = _purchase_lines(event, registration)

    html = _environment.get_template("ticket_email.html").render(
        participant_name=user.first_name,
        event_name=event.name,
        ticket_id=registration.ticket_id,
        event_type=event.event_type.value,
        start_date=start_text,
        venue=event.venue,
        team_name=team_name,
        total_amount=registration.total_amount,
        purchases=purchases,
        qr_cid=QR_CID if registration.qr_code else None,
        ticket_url=ticket_url,
    )

    text_lines = [
        f"Hello {user.first_name},",
        "",
        f"You are registered for {event.name}.",
        f"Ticket ID: {registration.ticket_id}",
        f"Starts: {start_text}",
    ]
    if event.venue:
        text_lines.append(f"Venue: {event.venue}")
    if team_name:
        text_lines.append(f"Team: {team_name}")
    for line in purchases:
        text_lines.append(f"- {line['label']} x {line['quantity']}")
    if ticket_url:
        text_lines.append(f"View your ticket: {ticket_url}")
    text_lines.extend(["", "Regards,", "Felicity Team"])
    return subject, html, "\n".join(text_lines) + "\n"
