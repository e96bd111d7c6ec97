from models import EventType, Registration, RegistrationStatus


def _hackathon(make, organizer, **fields):
    fields.setdefault("team_size", 3)
    return make.event(organizer, name="24h Hackathon", event_type=EventType.HACKATHON, **fields)


def _create_team(client, headers, leader, event, name="Null Pointers"):
    resp = client.post("/api/teams", json={"event_id": event.id, "name": name}, headers=headers(leader))
    assert resp.status_code == 201
    return resp.json()


def _join(client, headers, user, team):
    resp = client.post("/api/teams/join", json={"invite_code": team["invite_code"].lower()}, headers=headers(user))
    assert resp.status_code == 200
    return resp.json()["team"]


def _member_id(team, user):
    return next(m["id"] for m in team["members"] if m["user_id"] == user.id)


def test_team_fills_and_registers_everyone(client, make, headers, sent_emails):
    organizer = make.organizer()
    event = _hackathon(make, organizer)
    leader, alice, bob = make.participant(), make.participant(), make.participant()

    team = _create_team(client, headers, leader, event)
    assert team["max_size"] == 3
    assert team["status"] == "forming"

    _join(client, headers, alice, team)
    team = _join(client, headers, bob, team)

    resp = client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, alice)},
        headers=headers(leader),
    )
    assert resp.status_code == 200
    assert resp.json()["registrations"] is None

    resp = client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, bob)},
        headers=headers(leader),
    )
    body = resp.json()
    assert body["team"]["status"] == "complete"
    results = body["registrations"]["results"]
    assert [r["outcome"] for r in results] == ["created", "created", "created"]
    assert results[0]["role"] == "leader"

    registrations = make.db.query(Registration).filter(Registration.event_id == event.id).all()
    assert len(registrations) == 3
    assert len({r.ticket_id for r in registrations}) == 3
    assert all(r.team_id == team["id"] and r.qr_code for r in registrations)
    assert make.reload(event).registration_count == 3
    assert sorted(sent_emails) == sorted(r.id for r in registrations)


def test_retry_is_idempotent(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer, team_size=2)
    leader, member = make.participant(), make.participant()

    team = _create_team(client, headers, leader, event)
    team = _join(client, headers, member, team)
    client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, member)},
        headers=headers(leader),
    )

    resp = client.post(f"/api/teams/{team['id']}/complete-registrations", headers=headers(organizer))
    assert resp.status_code == 200
    report = resp.json()["registrations"]
    assert report["created_registration_ids"] == []
    assert {r["outcome"] for r in report["results"]} == {"created"}
    assert make.db.query(Registration).filter(Registration.event_id == event.id).count() == 2

    outsider = make.participant()
    resp = client.post(f"/api/teams/{team['id']}/complete-registrations", headers=headers(outsider))
    assert resp.status_code == 403


def test_already_registered_member_is_skipped(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer, team_size=2)
    leader, member = make.participant(), make.participant()
    make.db.add(Registration(
        ticket_id="TKT-EXISTING0001",
        user_id=member.id,
        event_id=event.id,
        registration_type=EventType.HACKATHON,
        status=RegistrationStatus.ACTIVE,
    ))
    make.db.commit()

    team = _create_team(client, headers, leader, event)
    team = _join(client, headers, member, team)
    resp = client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, member)},
        headers=headers(leader),
    )
    outcomes = {r["role"]: r for r in resp.json()["registrations"]["results"]}
    assert outcomes["leader"]["outcome"] == "created"
    assert outcomes["member"]["outcome"] == "skipped"


def test_full_event_marks_member_failed(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer, team_size=2, registration_limit=1)
    leader, member = make.participant(), make.participant()

    team = _create_team(client, headers, leader, event)
    team = _join(client, headers, member, team)
    resp = client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, member)},
        headers=headers(leader),
    )
    results = resp.json()["registrations"]["results"]
    assert [r["outcome"] for r in results] == ["created", "failed"]
    assert results[1]["reason"] == "Event is fully booked"
    assert make.reload(event).registration_count == 1


def test_invite_flow(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer)
    leader, invitee = make.participant(), make.participant()
    team = _create_team(client, headers, leader, event)

    resp = client.post(f"/api/teams/{team['id']}/invite", json={"email": invitee.email}, headers=headers(leader))
    assert resp.status_code == 200
    resp = client.post(f"/api/teams/{team['id']}/invite", json={"email": invitee.email}, headers=headers(leader))
    assert resp.status_code == 400

    resp = client.post(f"/api/teams/{team['id']}/respond", json={"action": "accept"}, headers=headers(invitee))
    assert resp.status_code == 200
    assert resp.json()["team"]["accepted_count"] == 2

    mine = client.get("/api/teams/my", headers=headers(invitee)).json()
    assert [t["id"] for t in mine] == [team["id"]]


def test_non_leader_cannot_invite(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer)
    leader, stranger = make.participant(), make.participant()
    team = _create_team(client, headers, leader, event)
    resp = client.post(f"/api/teams/{team['id']}/invite", json={"email": "x@example.com"}, headers=headers(stranger))
    assert resp.status_code == 403


def test_join_rejected_when_full(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer, team_size=2)
    leader, member, late = make.participant(), make.participant(), make.participant()
    team = _create_team(client, headers, leader, event)
    team = _join(client, headers, member, team)
    client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, member)},
        headers=headers(leader),
    )

    resp = client.post("/api/teams/join", json={"invite_code": team["invite_code"]}, headers=headers(late))
    assert resp.status_code == 400
    assert resp.json()["code"] in ("team_full", "team_not_forming")


def test_leave_reverts_complete_team(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer, team_size=2)
    leader, member = make.participant(), make.participant()
    team = _create_team(client, headers, leader, event)
    team = _join(client, headers, member, team)
    client.post(
        f"/api/teams/{team['id']}/respond",
        json={"action": "accept", "member_id": _member_id(team, member)},
        headers=headers(leader),
    )

    resp = client.delete(f"/api/teams/{team['id']}/leave", headers=headers(member))
    assert resp.json()["message"] == "Left team"
    team = client.get(f"/api/teams/{team['id']}", headers=headers(leader)).json()
    assert team["status"] == "forming"
    assert team["members"] == []

    resp = client.delete(f"/api/teams/{team['id']}/leave", headers=headers(leader))
    assert resp.json()["message"].startswith("Team disbanded")


def test_team_requires_hackathon(client, make, headers):
    organizer = make.organizer()
    event = make.event(organizer)
    resp = client.post("/api/teams", json={"event_id": event.id, "name": "Solo"}, headers=headers(make.participant()))
    assert resp.status_code == 400


def test_direct_hackathon_registration_rejected(client, make, headers):
    organizer = make.organizer()
    event = _hackathon(make, organizer)
    resp = client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(make.participant()))
    assert resp.status_code == 400
