from models import db
from models.session import Session

from conftest import PASSWORD


def web_login(client, email, password=PASSWORD, **extra):
    return client.post("/auth/login", json={"email": email, "password": password, **extra})


def csrf_headers(client):
    return {"X-CSRF-Token": client.get_cookie("csrf_token").value}


def test_login_sets_session_and_csrf_cookies(client, customer):
    resp = web_login(client, "customer@example.com")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["message"] == "Login OK"
    assert "token" not in body["data"]

    assert client.get_cookie("storefront_session") is not None
    assert client.get_cookie("csrf_token") is not None
    assert client.get("/auth/me").get_json()["data"]["email"] == "customer@example.com"


def test_non_admin_can_use_web_login(client, customer):
    assert web_login(client, "customer@example.com").status_code == 200


def test_logout_requires_csrf(client, customer):
    web_login(client, "customer@example.com")
    resp = client.post("/auth/logout")
    assert resp.status_code == 403
    assert resp.get_json()["error_code"] == "CSRF_FAILED"

    resp = client.post("/auth/logout", headers={"X-CSRF-Token": "forged"})
    assert resp.status_code == 403


def test_logout_revokes_session_and_clears_cached_data(client, customer, cache):
    web_login(client, "customer@example.com")
    sess = Session.query.filter_by(user_id=customer.id).one()
    cache.put(f"session:{sess.id}:cart", ["sku-1"])
    cache.put(f"session:{sess.id}:user_preferences", {"theme": "dark"})
    old_csrf = client.get_cookie("csrf_token").value

    resp = client.post("/auth/logout", headers=csrf_headers(client))
    assert resp.status_code == 200
    assert "cart" in resp.get_json()["data"]["keys_cleared"]

    assert cache.get(f"session:{sess.id}:cart") is None
    assert cache.get(f"session:{sess.id}:user_preferences") is None
    assert db.session.get(Session, sess.id).revoked is True
    assert client.get_cookie("storefront_session") is None
    assert client.get_cookie("csrf_token").value != old_csrf
    assert client.get("/auth/me").status_code == 401


def test_idle_web_session_expires(client, customer, clock):
    web_login(client, "customer@example.com")
    clock.advance(minutes=31)
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.get_json()["error_code"] == "SESSION_EXPIRED"
    assert Session.query.filter_by(user_id=customer.id).one().revoked is True


def test_absolute_session_lifetime(client, customer, clock):
    web_login(client, "customer@example.com")
    for _ in range(16):
        clock.advance(minutes=29)
        assert client.get("/auth/me").status_code == 200
    clock.advance(minutes=29)
    # 8h after login the session is gone even though it was never idle
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.get_json()["error_code"] == "UNAUTHENTICATED"


def test_token_only_operations_are_unsupported(client, customer):
    web_login(client, "customer@example.com")
    refresh = client.post("/api/auth/refresh", headers=csrf_headers(client))
    assert refresh.status_code == 400
    assert refresh.get_json()["error_code"] == "UNSUPPORTED"

    devices = client.get("/api/auth/devices")
    assert devices.status_code == 400
    assert devices.get_json()["error_code"] == "UNSUPPORTED"


def test_admin_web_session_reaches_admin_api(client, admin):
    web_login(client, "admin@example.com")
    assert client.get("/api/admin/dashboard").status_code == 200


def test_revoke_all_from_web_session(client, customer, issue_token):
    issue_token(customer, name="phone")
    web_login(client, "customer@example.com")
    resp = client.post("/api/auth/revoke-all", headers=csrf_headers(client))
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data == {"revoked_tokens": 1, "revoked_sessions": 1}
    assert client.get("/auth/me").status_code == 401


def test_revoke_others_keeps_current_web_session(client, customer, issue_token):
    phone = issue_token(customer, name="phone")
    web_login(client, "customer@example.com")
    resp = client.post("/api/auth/revoke-others", headers=csrf_headers(client))
    assert resp.get_json()["data"]["revoked_tokens"] == 1
    assert client.get("/auth/me").status_code == 200
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {phone.plain_text}"}).status_code == 401
