from bootstrap import ensure_default_admin
from conftest import PASSWORD
from models import AdminLog, OrganizerStatus, User, UserRole


def _login(client, email, password=PASSWORD, organizer=False):
    path = "/api/auth/organizer/login" if organizer else "/api/auth/login"
    return client.post(path, json={"email": email, "password": password})


def test_register_derives_participant_type(client):
    resp = client.post("/api/auth/register", json={
        "first_name": "Riya",
        "last_name": "Shah",
        "email": "Riya.Shah@students.iiit.ac.in",
        "password": "hunter22",
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "participant"
    assert body["user"]["email"] == "riya.shah@students.iiit.ac.in"
    assert body["user"]["participant_type"] == "IIIT"

    resp = client.post("/api/auth/register", json={
        "first_name": "Sam",
        "last_name": "Lee",
        "email": "sam@gmail.com",
        "password": "hunter22",
    })
    assert resp.json()["user"]["participant_type"] == "Non-IIIT"


def test_duplicate_email_rejected(client, make):
    user = make.participant()
    resp = client.post("/api/auth/register", json={
        "first_name": "Again",
        "last_name": "User",
        "email": user.email,
        "password": "hunter22",
    })
    assert resp.status_code == 400


def test_login_and_me(client, make):
    user = make.participant()
    resp = _login(client, user.email)
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["role"] == "participant"
    assert me["user"]["id"] == user.id

    assert _login(client, user.email, password="wrong-password").status_code == 401


def test_disabled_participant_cannot_login(client, make):
    user = make.participant(is_active=False)
    assert _login(client, user.email).status_code == 403


def test_organizer_login_respects_status(client, make):
    organizer = make.organizer()
    resp = _login(client, organizer.contact_email, organizer=True)
    assert resp.status_code == 200
    assert resp.json()["role"] == "organizer"
    assert resp.json()["organizer"]["id"] == organizer.id

    archived = make.organizer(status=OrganizerStatus.ARCHIVED)
    assert _login(client, archived.contact_email, organizer=True).status_code == 403


def test_protected_routes_need_token(client):
    assert client.get("/api/auth/me").status_code in (401, 403)
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"}).status_code == 401


def test_admin_creates_organizer_with_working_credentials(client, make, headers):
    admin = make.admin()
    resp = client.post("/api/admin/organizers", json={
        "name": "Music Club",
        "category": "Cultural",
        "contact_email": "music@clubs.example.com",
    }, headers=headers(admin))
    assert resp.status_code == 201
    credentials = resp.json()["credentials"]
    assert credentials["email"] == "music@clubs.example.com"

    assert _login(client, credentials["email"], credentials["password"], organizer=True).status_code == 200
    assert make.db.query(AdminLog).filter(AdminLog.action == "Create organizer").count() == 1

    resp = client.post("/api/admin/organizers", json={
        "name": "Music Club Again",
        "category": "Cultural",
        "contact_email": "music@clubs.example.com",
    }, headers=headers(admin))
    assert resp.status_code == 400


def test_admin_routes_reject_others(client, make, headers):
    assert client.get("/api/admin/stats", headers=headers(make.participant())).status_code == 403
    assert client.get("/api/admin/stats", headers=headers(make.organizer())).status_code == 403


def test_delete_organizer_with_events_conflicts(client, make, headers):
    admin = make.admin()
    busy = make.organizer()
    make.event(busy)
    idle = make.organizer()

    assert client.delete(f"/api/admin/organizers/{busy.id}", headers=headers(admin)).status_code == 409
    assert client.delete(f"/api/admin/organizers/{idle.id}", headers=headers(admin)).status_code == 200

    resp = client.patch(f"/api/admin/organizers/{busy.id}/status", json={"status": "archived"}, headers=headers(admin))
    assert resp.json()["status"] == "archived"
    assert client.get(f"/api/organizers/{busy.id}", headers=headers(make.participant())).status_code == 404


def test_admin_disables_user(client, make, headers):
    admin = make.admin()
    user = make.participant(email="kavya@gmail.com", first_name="Kavya")
    make.participant()

    found = client.get("/api/admin/users", params={"search": "kavya"}, headers=headers(admin)).json()
    assert [u["id"] for u in found] == [user.id]

    resp = client.patch(f"/api/admin/users/{user.id}/status", json={"is_active": False}, headers=headers(admin))
    assert resp.json()["is_active"] is False
    assert _login(client, user.email).status_code == 403


def test_admin_stats(client, make, headers):
    admin = make.admin()
    organizer = make.organizer()
    event = make.event(organizer)
    user = make.participant()
    client.post("/api/registrations", data={"event_id": str(event.id)}, headers=headers(user))
    client.post("/api/password-reset-requests", json={"reason": "Lost the sheet"}, headers=headers(organizer))

    stats = client.get("/api/admin/stats", headers=headers(admin)).json()
    assert stats["total_users"] == 1
    assert stats["total_organizers"] == 1
    assert stats["total_events"] == 1
    assert stats["total_registrations"] == 1
    assert stats["status_breakdown"] == {"published": 1}
    assert stats["pending_reset_requests"] == 1


def test_password_reset_flow(client, make, headers):
    admin = make.admin()
    organizer = make.organizer()

    resp = client.post("/api/password-reset-requests", json={"reason": "Former secretary left"}, headers=headers(organizer))
    assert resp.status_code == 201
    request_id = resp.json()["id"]
    resp = client.post("/api/password-reset-requests", json={"reason": "Asking once more"}, headers=headers(organizer))
    assert resp.status_code == 400

    pending = client.get("/api/password-reset-requests", params={"status": "pending"}, headers=headers(admin)).json()
    assert [r["id"] for r in pending] == [request_id]

    resp = client.post(f"/api/password-reset-requests/{request_id}/approve", json={"admin_comment": "ok"}, headers=headers(admin))
    assert resp.status_code == 200
    new_password = resp.json()["credentials"]["password"]
    assert _login(client, organizer.contact_email, organizer=True).status_code == 401
    assert _login(client, organizer.contact_email, new_password, organizer=True).status_code == 200

    listed = client.get("/api/password-reset-requests", headers=headers(admin)).json()
    assert listed[0]["new_password_plain"] == new_password
    client.post(f"/api/password-reset-requests/{request_id}/acknowledge", headers=headers(admin))
    listed = client.get("/api/password-reset-requests", headers=headers(admin)).json()
    assert listed[0]["new_password_plain"] is None

    resp = client.post(f"/api/password-reset-requests/{request_id}/reject", headers=headers(admin))
    assert resp.status_code == 400

    mine = client.get("/api/password-reset-requests/my", headers=headers(organizer)).json()
    assert mine[0]["status"] == "approved"


def test_onboarding_and_follow(client, make, headers):
    first = make.organizer(name="Dance Crew")
    second = make.organizer(name="Art Society")
    user = make.participant()

    resp = client.post("/api/users/onboarding", json={
        "areas_of_interest": ["Dance", "Art"],
        "followed_organizer_ids": [first.id],
    }, headers=headers(user))
    assert resp.status_code == 200
    assert resp.json()["onboarding_completed"] is True
    assert resp.json()["followed_organizer_ids"] == [first.id]

    resp = client.post(f"/api/users/follow/{second.id}", headers=headers(user))
    assert sorted(resp.json()["followed_organizer_ids"]) == sorted([first.id, second.id])
    resp = client.delete(f"/api/users/follow/{first.id}", headers=headers(user))
    assert resp.json()["followed_organizer_ids"] == [second.id]

    names = [o["name"] for o in client.get("/api/users/organizers", headers=headers(user)).json()]
    assert names == ["Art Society", "Dance Crew"]


def test_change_password(client, make, headers):
    user = make.participant()
    resp = client.post("/api/users/change-password", json={
        "current_password": "nope-nope",
        "new_password": "brand-new-pass",
    }, headers=headers(user))
    assert resp.status_code == 400

    resp = client.post("/api/users/change-password", json={
        "current_password": PASSWORD,
        "new_password": "brand-new-pass",
    }, headers=headers(user))
    assert resp.status_code == 200
    assert _login(client, user.email, "brand-new-pass").status_code == 200


def test_seed_admin_is_created_once(make, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "Root@Felicity.test.org")
    monkeypatch.setenv("ADMIN_PASSWORD", "change-me-now")

    admin = ensure_default_admin(make.db)
    assert admin.role == UserRole.ADMIN
    assert admin.email == "root@felicity.test.org"
    assert ensure_default_admin(make.db).id == admin.id
    assert make.db.query(User).filter(User.role == UserRole.ADMIN).count() == 1


def test_seed_admin_skipped_without_password(make, monkeypatch):
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    assert ensure_default_admin(make.db) is None
