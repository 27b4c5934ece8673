from tests.conftest import PASSWORD, add_user, login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert client.get("/healthz").status_code == 200


def test_login_and_admin_access(client, db):
    add_user(db, "admin@example.com", "admin")
    add_user(db, "eater@example.com", "customer")
    db.commit()

    # Anonymous -> 401
    assert client.get("/api/admin/overview").status_code == 401

    token = login(client, "eater@example.com")
    r = client.get("/api/admin/overview")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "admin.view"
    client.post("/api/auth/logout", headers={"X-CSRF-Token": token})

    login(client, "admin@example.com")
    r = client.get("/api/admin/overview")
    assert r.status_code == 200
    assert r.json["users"]["by_role"]["admin"] == 1
    assert r.json["users"]["by_role"]["customer"] == 1


def test_mutations_require_csrf_header(client, db):
    add_user(db, "eater@example.com", "customer")
    db.commit()
    token = login(client, "eater@example.com")

    r = client.post("/api/support/tickets", json={"subject": "Late", "description": "Where is it?"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = client.post(
        "/api/support/tickets",
        json={"subject": "Late", "description": "Where is it?"},
        headers={"X-CSRF-Token": token},
    )
    assert r.status_code == 201


def test_invalid_credentials_are_audited(client, db):
    from app.fooddash.models import AuditEvent

    add_user(db, "eater@example.com", "customer")
    db.commit()
    r = client.post("/api/auth/login", json={"email": "eater@example.com", "password": PASSWORD + "x"})
    assert r.status_code == 401
    assert db.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1
