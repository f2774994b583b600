import pytest


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True
    assert r.json["schemaOk"] is True


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_me_logout(login):
    alice = login("alice@acme.test")
    assert alice.csrf
    assert alice.user["tenantKey"] == "acme"
    assert alice.user["roles"] == ["admin"]

    r = alice.get("/auth/me")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["data"]["user"]["email"] == "alice@acme.test"

    r = alice.post("/auth/logout")
    assert r.status_code == 200
    r = alice.get("/auth/me")
    assert r.status_code == 401
    assert r.json["error"]["code"] == "UNAUTHENTICATED"


def test_login_invalid_credentials(client):
    r = client.post("/auth/login", json={"email": "alice@acme.test", "password": "wrong"})
    assert r.status_code == 401
    assert r.json == {"success": False, "error": {"code": "INVALID_CREDENTIALS", "message": "Invalid credentials."}}


@pytest.mark.parametrize("body", [{"email": 1, "password": "pw"}, {"email": "alice@acme.test", "password": 123}])
def test_login_rejects_non_string_fields(client, body):
    r = client.post("/auth/login", json=body)
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"


def test_login_inactive_user_rejected(client):
    r = client.post("/auth/login", json={"email": "erin@acme.test", "password": "pw"})
    assert r.status_code == 401


def test_login_is_rate_limited(client):
    for _ in range(5):
        r = client.post("/auth/login", json={"email": "alice@acme.test", "password": "nope"})
        assert r.status_code == 401
    r = client.post("/auth/login", json={"email": "alice@acme.test", "password": "pw"})
    assert r.status_code == 429
    assert r.json["error"]["code"] == "RATE_LIMITED"
    assert r.json["error"]["retryAfter"] >= 1


def test_api_requires_login(client):
    r = client.get("/api/conversations")
    assert r.status_code == 401
    assert r.json["success"] is False
    assert r.json["error"]["code"] == "UNAUTHENTICATED"


def test_api_requires_permission(login):
    vera = login("vera@acme.test")
    r = vera.get("/api/conversations")
    assert r.status_code == 403
    assert r.json["error"]["code"] == "PERMISSION_DENIED"


def test_csrf_required_for_unsafe_methods(alice, ids):
    r = alice.client.post("/api/conversations", json={"type": "direct", "participantIds": [ids["bob"]]})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "CSRF_FAILED"

    r = alice.post("/api/conversations", json={"type": "direct", "participantIds": [ids["bob"]]})
    assert r.status_code == 201


def test_tenant_header_must_match_session(alice):
    r = alice.get("/api/conversations", headers={"X-Tenant-Id": "globex"})
    assert r.status_code == 403
    assert r.json["error"]["code"] == "TENANT_MISMATCH"

    assert alice.get("/api/conversations", headers={"X-Tenant": "acme"}).status_code == 200
    assert alice.get("/api/conversations", headers={"X-Tenant-Id": str(alice.user["tenantId"])}).status_code == 200


def test_unknown_api_route_uses_envelope(alice):
    r = alice.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json["success"] is False
    assert r.json["error"]["code"] == "NOT_FOUND"


def test_login_writes_audit_event(app, login):
    from app.tenanthub.db import session_scope
    from app.tenanthub.models import AuditEvent

    login("alice@acme.test")
    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
    assert "auth.login" in actions
