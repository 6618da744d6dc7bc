import json
from datetime import timedelta

from models import db
from models.access_token import AccessToken
from models.audit_log import AuditLog
from models.user import User
from security.activity import update_last_activity
from security.guard import unauthorized_attempts_key
from security.lockout import lock_account
from security.telemetry import request_patterns, usage_this_hour

from conftest import bearer

DASHBOARD = "/api/admin/dashboard"


def _audit(action):
    return AuditLog.query.filter_by(action=action).all()


class TestGuardOrder:
    def test_unauthenticated(self, client):
        resp = client.get(DASHBOARD)
        assert resp.status_code == 401
        assert resp.get_json()["error_code"] == "UNAUTHENTICATED"

    def test_garbage_token_is_unauthenticated(self, client):
        resp = client.get(DASHBOARD, headers=bearer("pb_1|nope"))
        assert resp.status_code == 401
        assert resp.get_json()["error_code"] == "UNAUTHENTICATED"

    def test_expired_token_before_role_check(self, client, customer, issue_token, clock):
        issued = issue_token(customer, ttl=timedelta(minutes=1))
        clock.advance(minutes=2)
        resp = client.get(DASHBOARD, headers=bearer(issued.plain_text))
        assert resp.status_code == 401
        assert resp.get_json()["error_code"] == "INVALID_TOKEN"
        assert _audit("ADMIN_ACCESS_DENIED") == []

    def test_non_admin_gets_insufficient_privileges(self, client, customer, issue_token):
        plain = issue_token(customer).plain_text
        resp = client.get(DASHBOARD, headers=bearer(plain))
        assert resp.status_code == 403
        assert resp.get_json()["error_code"] == "INSUFFICIENT_PRIVILEGES"

        denied = _audit("ADMIN_ACCESS_DENIED")
        assert len(denied) == 1
        assert denied[0].level == "warning"
        meta = json.loads(denied[0].metadata_json)
        assert meta["email"] == "customer@example.com"
        assert meta["method"] == "GET"
        assert meta["headers"]["authorization"] == "Bearer [REDACTED]"
        assert plain not in denied[0].metadata_json

    def test_role_is_checked_before_lock(self, client, customer, issue_token):
        plain = issue_token(customer).plain_text
        lock_account(customer)
        resp = client.get(DASHBOARD, headers=bearer(plain))
        assert resp.status_code == 403

    def test_locked_admin(self, client, admin, issue_token):
        plain = issue_token(admin).plain_text
        lock_account(admin)
        resp = client.get(DASHBOARD, headers=bearer(plain))
        assert resp.status_code == 423
        body = resp.get_json()
        assert body["error_code"] == "ACCOUNT_LOCKED"
        assert body["retry_after"] == 300

    def test_expired_admin_lock_is_cleared_by_guard(self, client, admin, issue_token, clock):
        plain = issue_token(admin).plain_text
        lock_account(admin)
        clock.advance(minutes=6)
        assert client.get(DASHBOARD, headers=bearer(plain)).status_code == 200
        assert db.session.get(User, admin.id).account_locked_until is None

    def test_idle_admin_is_logged_out(self, client, admin, issue_token, clock):
        issued = issue_token(admin)
        token_id = issued.token.id
        update_last_activity(admin)
        clock.advance(minutes=31)

        resp = client.get(DASHBOARD, headers=bearer(issued.plain_text))
        assert resp.status_code == 401
        assert resp.get_json()["error_code"] == "SESSION_EXPIRED"
        assert db.session.get(AccessToken, token_id) is None

    def test_admin_passes_and_activity_is_recorded(self, client, admin, issue_token, clock):
        issued = issue_token(admin)
        token_id = issued.token.id
        clock.advance(minutes=1)

        resp = client.get(DASHBOARD, headers=bearer(issued.plain_text))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["users"] == 1

        assert db.session.get(User, admin.id).last_activity == clock.now()
        assert db.session.get(AccessToken, token_id).last_used_at == clock.now()
        assert usage_this_hour(token_id) == 1
        patterns = request_patterns(token_id)
        assert patterns[-1]["endpoint"] == DASHBOARD
        assert patterns[-1]["method"] == "GET"


class TestTokenIdentity:
    def test_revoked_token_id_is_not_reused(self, client, admin, issue_token):
        first = issue_token(admin, name="laptop")
        first_id = first.token.id
        assert client.get(DASHBOARD, headers=bearer(first.plain_text)).status_code == 200
        assert client.post("/api/auth/logout", headers=bearer(first.plain_text)).status_code == 200
        assert db.session.get(AccessToken, first_id) is None

        second = issue_token(admin, name="phone")
        assert second.token.id > first_id
        assert request_patterns(second.token.id) == []
        assert usage_this_hour(second.token.id) == 0

    def test_old_plain_text_does_not_resolve_after_reissue(self, client, admin, issue_token, token_store):
        first = issue_token(admin, name="laptop")
        token_store.revoke(first.token.id)
        issue_token(admin, name="phone")

        assert token_store.find(first.plain_text) is None
        assert client.get(DASHBOARD, headers=bearer(first.plain_text)).status_code == 401


class TestUnauthorizedEscalation:
    def test_tenth_denied_request_locks_the_account(self, client, customer, issue_token, app):
        plain = issue_token(customer).plain_text
        for _ in range(9):
            assert client.get(DASHBOARD, headers=bearer(plain)).status_code == 403
        assert db.session.get(User, customer.id).account_locked_until is None

        assert client.get(DASHBOARD, headers=bearer(plain)).status_code == 403
        assert db.session.get(User, customer.id).account_locked_until is not None
        assert app.extensions["rate_limiter"].attempts(unauthorized_attempts_key(customer.id)) == 10

        locked = _audit("ACCOUNT_LOCKED_UNAUTHORIZED_ACCESS")
        assert len(locked) == 1
        assert locked[0].level == "critical"

        login = client.post("/auth/login", json={"email": "customer@example.com", "password": "correct horse battery"})
        assert login.status_code == 423

    def test_denied_request_counter_window(self, client, customer, issue_token, clock):
        plain = issue_token(customer).plain_text
        for _ in range(9):
            client.get(DASHBOARD, headers=bearer(plain))
        clock.advance(seconds=301)
        client.get(DASHBOARD, headers=bearer(plain))
        assert db.session.get(User, customer.id).account_locked_until is None


class TestSuspiciousActivity:
    def test_user_agent_change_is_logged(self, client, admin, issue_token):
        plain = issue_token(admin).plain_text
        client.get(DASHBOARD, headers={**bearer(plain), "User-Agent": "browser-a"})
        assert _audit("SUSPICIOUS_ACTIVITY") == []

        client.get(DASHBOARD, headers={**bearer(plain), "User-Agent": "browser-b"})
        events = _audit("SUSPICIOUS_ACTIVITY")
        assert len(events) == 1
        assert json.loads(events[0].metadata_json)["reasons"] == ["user_agent_changed"]

    def test_ip_change_is_logged_but_not_blocked(self, client, admin, issue_token):
        plain = issue_token(admin).plain_text
        client.get(DASHBOARD, headers={**bearer(plain), "X-Forwarded-For": "10.0.0.1"})
        resp = client.get(DASHBOARD, headers={**bearer(plain), "X-Forwarded-For": "10.0.0.2"})
        assert resp.status_code == 200
        reasons = json.loads(_audit("SUSPICIOUS_ACTIVITY")[0].metadata_json)["reasons"]
        assert reasons == ["ip_changed"]

    def test_rapid_requests(self, client, admin, issue_token, app):
        app.config["RAPID_REQUEST_THRESHOLD"] = 3
        plain = issue_token(admin).plain_text
        for _ in range(4):
            assert client.get(DASHBOARD, headers=bearer(plain)).status_code == 200
        reasons = json.loads(_audit("SUSPICIOUS_ACTIVITY")[-1].metadata_json)["reasons"]
        assert "rapid_requests" in reasons


class TestAdminEndpoints:
    def test_missing_ability(self, client, admin, customer, issue_token):
        plain = issue_token(admin, abilities=("admin:read",)).plain_text
        resp = client.post(f"/api/admin/users/{customer.id}/unlock", headers=bearer(plain))
        assert resp.status_code == 403
        body = resp.get_json()
        assert body["error_code"] == "INSUFFICIENT_ABILITIES"
        assert body["missing_abilities"] == ["admin:write"]

    def test_unlock_user(self, client, admin, customer, issue_token):
        lock_account(customer)
        plain = issue_token(admin).plain_text
        resp = client.post(f"/api/admin/users/{customer.id}/unlock", headers=bearer(plain))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["locked"] is False
        assert db.session.get(User, customer.id).account_locked_until is None

    def test_unlock_unknown_user(self, client, admin, issue_token):
        plain = issue_token(admin).plain_text
        resp = client.post("/api/admin/users/999/unlock", headers=bearer(plain))
        assert resp.status_code == 404

    def test_list_users_shows_lock_state(self, client, admin, customer, issue_token):
        lock_account(customer)
        plain = issue_token(admin).plain_text
        resp = client.get("/api/admin/users", headers=bearer(plain))
        users = {u["email"]: u for u in resp.get_json()["data"]}
        assert users["customer@example.com"]["locked"] is True
        assert users["admin@example.com"]["tokens"] == 1

    def test_revoke_user_tokens(self, client, admin, customer, issue_token):
        issue_token(customer, name="a")
        issue_token(customer, name="b")
        plain = issue_token(admin).plain_text
        resp = client.delete(f"/api/admin/users/{customer.id}/tokens", headers=bearer(plain))
        assert resp.status_code == 200
        assert resp.get_json()["data"]["revoked_tokens"] == 2
        assert AccessToken.query.filter_by(user_id=customer.id).count() == 0

    def test_token_activity(self, client, admin, issue_token):
        issued = issue_token(admin)
        plain, token_id = issued.plain_text, issued.token.id
        client.get(DASHBOARD, headers=bearer(plain))
        resp = client.get(f"/api/admin/tokens/{token_id}/activity", headers=bearer(plain))
        data = resp.get_json()["data"]
        # the activity request itself is recorded before the handler runs
        assert data["requests_this_hour"] == 2
        assert len(data["recent_requests"]) == 2
