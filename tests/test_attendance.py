from models import Attendance
from qr_tickets import build_ticket_payload


def _registered(client, make, headers, organizer, **event_fields):
    event = make.event(organizer, **event_fields)
    user = make.participant(first_name="Meera", last_name="Iyer")
    body = client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(user)).json()
    return event, user, body


def _scan(client, headers, organizer, event, qr_data):
    return client.post("/api/attendance/scan", json={"event_id": event.id, "qr_data": qr_data}, headers=headers(organizer))


def test_scan_checks_in_once(client, make, headers):
    organizer = make.organizer()
    event, user, registration = _registered(client, make, headers, organizer)
    payload = build_ticket_payload(registration["ticket_id"], event.id, user.id)

    first = _scan(client, headers, organizer, event, payload)
    assert first.status_code == 200
    assert first.json()["message"] == "Checked in"
    assert first.json()["already_checked_in"] is False
    assert first.json()["attendance"]["ticket_id"] == registration["ticket_id"]

    second = _scan(client, headers, organizer, event, payload)
    assert second.status_code == 200
    assert second.json()["already_checked_in"] is True
    assert second.json()["checked_in_at"] == first.json()["checked_in_at"]
    assert make.db.query(Attendance).filter(Attendance.event_id == event.id).count() == 1


def test_scan_falls_back_to_user_id(client, make, headers):
    organizer = make.organizer()
    event, user, _ = _registered(client, make, headers, organizer)
    resp = _scan(client, headers, organizer, event, '{"userId": %d}' % user.id)
    assert resp.status_code == 200
    assert resp.json()["attendance"]["user_id"] == user.id


def test_scan_rejects_garbage(client, make, headers):
    organizer = make.organizer()
    event, _, _ = _registered(client, make, headers, organizer)
    resp = _scan(client, headers, organizer, event, "not-json-at-all")
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_payload"


def test_scan_ticket_for_other_event_not_found(client, make, headers):
    organizer = make.organizer()
    event, user, registration = _registered(client, make, headers, organizer)
    other_event = make.event(organizer, name="Another Night")
    resp = _scan(client, headers, organizer, other_event, build_ticket_payload(registration["ticket_id"], event.id, user.id))
    assert resp.status_code == 404


def test_other_organizer_cannot_scan(client, make, headers):
    organizer = make.organizer()
    event, user, registration = _registered(client, make, headers, organizer)
    resp = _scan(client, headers, make.organizer(), event, build_ticket_payload(registration["ticket_id"], event.id, user.id))
    assert resp.status_code == 403


def test_manual_check_in_records_reason(client, make, headers):
    organizer = make.organizer()
    event, _, registration = _registered(client, make, headers, organizer)

    resp = client.post(
        "/api/attendance/manual",
        json={"event_id": event.id, "registration_id": registration["id"], "reason": "Phone died"},
        headers=headers(organizer),
    )
    assert resp.status_code == 200
    attendance = resp.json()["attendance"]
    assert attendance["method"] == "manual"
    assert attendance["is_manual_override"] is True
    assert attendance["override_reason"] == "Phone died"
    assert attendance["override_audit"][0]["action"] == "check_in"


def test_manual_check_in_requires_reason(client, make, headers):
    organizer = make.organizer()
    event, _, registration = _registered(client, make, headers, organizer)
    resp = client.post(
        "/api/attendance/manual",
        json={"event_id": event.id, "registration_id": registration["id"], "reason": "   "},
        headers=headers(organizer),
    )
    assert resp.status_code == 422


def test_revert_allows_new_check_in(client, make, headers):
    organizer = make.organizer()
    event, user, registration = _registered(client, make, headers, organizer)
    payload = build_ticket_payload(registration["ticket_id"], event.id, user.id)
    attendance_id = _scan(client, headers, organizer, event, payload).json()["attendance"]["id"]

    resp = client.request(
        "DELETE",
        f"/api/attendance/{event.id}/{attendance_id}",
        json={"reason": "Scanned the wrong person"},
        headers=headers(organizer),
    )
    assert resp.status_code == 200
    assert resp.json()["audit"][-1]["reason"] == "Scanned the wrong person"
    assert make.db.query(Attendance).filter(Attendance.event_id == event.id).count() == 0

    again = _scan(client, headers, organizer, event, payload)
    assert again.json()["already_checked_in"] is False


def test_summary_and_export(client, make, headers):
    organizer = make.organizer()
    event, user, registration = _registered(client, make, headers, organizer)
    late = make.participant(first_name="Dev")
    client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(late))
    _scan(client, headers, organizer, event, build_ticket_payload(registration["ticket_id"], event.id, user.id))

    summary = client.get(f"/api/attendance/{event.id}", headers=headers(organizer)).json()
    assert summary["checked"] == 1
    assert summary["total"] == 2
    assert summary["not_checked"] == 1

    participants = client.get(f"/api/events/{event.id}/participants", headers=headers(organizer)).json()["registrations"]
    checked = {p["ticket_id"]: p["checked_in"] for p in participants}
    assert checked[registration["ticket_id"]] is True
    assert list(checked.values()).count(False) == 1

    resp = client.get(f"/api/attendance/{event.id}/export", params={"format": "csv"}, headers=headers(organizer))
    assert resp.status_code == 200
    lines = resp.text.strip().splitlines()
    assert lines[0] == "Ticket ID,Name,Email,Checked In At,Method,Manual Override,Override Reason"
    assert lines[1].startswith(f"{registration['ticket_id']},Meera Iyer,")
    assert len(lines) == 2
