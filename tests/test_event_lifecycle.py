from datetime import timedelta
from types import SimpleNamespace

import pytest
import requests

import notifications
import routers.events
from event_lifecycle import effective_status
from models import EventStatus, EventType
from time_utils import utc_now


def _event_payload(**overrides):
    now = utc_now()
    payload = {
        "name": "Robotics Workshop",
        "description": "Build a line follower in an afternoon",
        "event_type": "normal",
        "eligibility": "all",
        "start_date": (now + timedelta(days=10)).isoformat(),
        "end_date": (now + timedelta(days=11)).isoformat(),
        "registration_deadline": (now + timedelta(days=9)).isoformat(),
        "registration_limit": 50,
        "tags": ["robotics", "hardware"],
    }
    payload.update(overrides)
    return payload


def test_organizer_creates_draft_event(client, make, headers):
    organizer = make.organizer()
    resp = client.post("/api/events", json=_event_payload(), headers=headers(organizer))
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "draft"
    assert body["registration_count"] == 0
    assert body["organizer"]["id"] == organizer.id


def test_participant_cannot_create_event(client, make, headers):
    user = make.participant()
    resp = client.post("/api/events", json=_event_payload(), headers=headers(user))
    assert resp.status_code == 403


def test_merchandise_event_requires_items(client, make, headers):
    organizer = make.organizer()
    resp = client.post("/api/events", json=_event_payload(event_type="merchandise"), headers=headers(organizer))
    assert resp.status_code == 422


def test_invalid_transition_leaves_status_unchanged(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer, status=EventStatus.DRAFT)

    resp = client.patch(f"/api/events/{event.id}/status", json={"status": "completed"}, headers=headers(organizer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_transition"
    assert make.reload(event).status == EventStatus.DRAFT


def test_publish_posts_webhook_when_configured(client, make, headers, webhooks):
    organizer = make.organizer(discord_webhook="https://discord.example.com/api/webhooks/1/abc")
    event = make.event(organizer, status=EventStatus.DRAFT)

    resp = client.patch(f"/api/events/{event.id}/status", json={"status": "published"}, headers=headers(organizer))
    assert resp.status_code == 200
    assert resp.json()["status"] == "published"
    assert len(webhooks) == 1
    url, payload = webhooks[0]
    assert url == organizer.discord_webhook
    assert payload["embeds"][0]["title"] == f"New Event: {event.name}"


def test_other_organizer_cannot_change_status(client, make, headers):
    owner = make.organizer()
    other = make.organizer()
    event = make.event(owner, status=EventStatus.DRAFT)
    resp = client.patch(f"/api/events/{event.id}/status", json={"status": "published"}, headers=headers(other))
    assert resp.status_code == 403


def test_published_deadline_can_only_move_forward(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer)
    deadline = make.reload(event).registration_deadline

    earlier = (deadline - timedelta(days=1)).isoformat()
    resp = client.patch(f"/api/events/{event.id}", json={"registration_deadline": earlier}, headers=headers(organizer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_failed"

    later = (deadline + timedelta(hours=12)).isoformat()
    resp = client.patch(f"/api/events/{event.id}", json={"registration_deadline": later}, headers=headers(organizer))
    assert resp.status_code == 200


def test_published_event_locks_core_fields(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer)
    resp = client.put(f"/api/events/{event.id}", json={"name": "Renamed"}, headers=headers(organizer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "event_locked"

    resp = client.put(f"/api/events/{event.id}", json={"venue": "Himalaya 105"}, headers=headers(organizer))
    assert resp.status_code == 200
    assert resp.json()["venue"] == "Himalaya 105"


def test_published_limit_cannot_shrink(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer, registration_limit=20)
    resp = client.patch(f"/api/events/{event.id}", json={"registration_limit": 10}, headers=headers(organizer))
    assert resp.status_code == 400
    resp = client.patch(f"/api/events/{event.id}", json={"registration_limit": 30}, headers=headers(organizer))
    assert resp.json()["registration_limit"] == 30


def test_form_locked_after_first_registration(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer, custom_form=[{"label": "Team name", "field_type": "text", "required": False, "options": [], "order": 0}])
    user = make.participant()

    resp = client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(user))
    assert resp.status_code == 201

    form = {"fields": [{"label": "Diet", "field_type": "dropdown", "options": ["Veg", "Non-veg"]}]}
    resp = client.put(f"/api/events/{event.id}/form", json=form, headers=headers(organizer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "form_locked"


def test_participants_do_not_see_drafts(client, make, headers):
    organizer = make.organizer()
    make.event(organizer, name="Secret Draft", status=EventStatus.DRAFT)
    make.event(organizer, name="Open Mic Night")
    user = make.participant()

    resp = client.get("/api/events", headers=headers(user))
    assert resp.status_code == 200
    names = [e["name"] for e in resp.json()["events"]]
    assert names == ["Open Mic Night"]


def test_search_is_fuzzy(client, make):
    organizer = make.organizer()
    make.event(organizer, name="Hackathon Kickoff", event_type=EventType.NORMAL)
    make.event(organizer, name="Music Night", description="Live bands")

    resp = client.get("/api/events", params={"search": "hackathon"})
    names = [e["name"] for e in resp.json()["events"]]
    assert names == ["Hackathon Kickoff"]


def test_followed_clubs_rank_first(client, make, headers):
    followed = make.organizer()
    other = make.organizer()
    make.event(followed, name="Followed Club Meetup")
    make.event(other, name="Newer Event Elsewhere")
    user = make.participant()

    resp = client.post(f"/api/users/follow/{followed.id}", headers=headers(user))
    assert resp.status_code == 200

    names = [e["name"] for e in client.get("/api/events", headers=headers(user)).json()["events"]]
    assert names[0] == "Followed Club Meetup"


def test_view_count_increments(client, make):
    organizer = make.organizer()
    event = make.event(organizer)
    assert client.post(f"/api/events/{event.id}/view").status_code == 200
    assert client.post(f"/api/events/{event.id}/view").status_code == 200
    assert make.reload(event).view_count == 2


def test_effective_status_follows_clock():
    now = utc_now()
    event = SimpleNamespace(
        status=EventStatus.PUBLISHED,
        start_date=now - timedelta(hours=1),
        end_date=now + timedelta(hours=1),
    )
    assert effective_status(event, now) == EventStatus.ONGOING
    assert effective_status(event, now + timedelta(hours=2)) == EventStatus.COMPLETED
    assert effective_status(event, now - timedelta(hours=2)) == EventStatus.PUBLISHED

    event.status = EventStatus.CANCELLED
    assert effective_status(event, now) == EventStatus.CANCELLED


def test_export_participants_csv(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer)
    user = make.participant(first_name="Kiran")
    client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(user))

    resp = client.get(f"/api/events/{event.id}/export", params={"format": "csv"}, headers=headers(organizer))
    assert resp.status_code == 200
    lines = resp.text.strip().splitlines()
    assert lines[0].startswith("Ticket ID,First Name,Last Name,Email")
    assert "Kiran" in lines[1]


def test_trending_counts_recent_registrations(client, make, headers):
    organizer = make.organizer()
    busy = make.event(organizer, name="Busy Event")
    quiet = make.event(organizer, name="Quiet Event")
    for _ in range(2):
        client.post("/api/registrations", data={"event_id": str(busy.id)}, headers=headers(make.participant()))
    client.post("/api/registrations", data={"event_id": str(quiet.id)}, headers=headers(make.participant()))

    trending = client.get("/api/events/trending").json()
    assert [(t["event"]["name"], t["count"]) for t in trending] == [("Busy Event", 2), ("Quiet Event", 1)]


def test_drafts_hidden_from_other_organizers(client, make, headers):
    owner = make.organizer()
    draft = make.event(owner, status=EventStatus.DRAFT)
    assert client.get(f"/api/events/{draft.id}", headers=headers(owner)).status_code == 200
    assert client.get(f"/api/events/{draft.id}", headers=headers(make.organizer())).status_code == 404
    assert client.get(f"/api/events/{draft.id}").status_code == 404


@pytest.mark.parametrize("failure", ["unreachable", "server_error"])
def test_publish_survives_webhook_failure(client, make, headers, monkeypatch, failure):
    calls = []

    def fake_post(url, json=None, timeout=None):
        calls.append(url)
        if failure == "unreachable":
            raise requests.ConnectionError("connection refused")
        response = requests.Response()
        response.status_code = 502
        response.url = url
        return response

    monkeypatch.setattr(routers.events, "post_event_webhook", notifications.post_event_webhook)
    monkeypatch.setattr(notifications.requests, "post", fake_post)
    organizer = make.organizer(discord_webhook="https://discord.example.com/api/webhooks/1/abc")
    event = make.event(organizer, status=EventStatus.DRAFT)

    resp = client.patch(f"/api/events/{event.id}/status", json={"status": "published"}, headers=headers(organizer))
    assert resp.status_code == 200
    assert resp.json()["status"] == "published"
    assert calls == [organizer.discord_webhook]
    assert make.reload(event).status == EventStatus.PUBLISHED
