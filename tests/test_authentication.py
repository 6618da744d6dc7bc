from datetime import timedelta

import pytest

from models import db
from models.user import User
from security.authentication import attempt_login, logout, refresh, throttle_key
from security.credentials import BearerToken, WebSession, extract_bearer_token
from security.errors import AuthError, ErrorCode

from conftest import PASSWORD

IP = "203.0.113.7"


def _login(email, password=PASSWORD, **kwargs):
    kwargs.setdefault("ip", IP)
    return attempt_login(email, password, **kwargs)


def test_throttle_key_normalizes_email():
    assert throttle_key(" Admin@Example.com ", IP) == f"admin@example.com|{IP}"


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc|def") == "abc|def"
    assert extract_bearer_token("bearer  abc ") == "abc"
    assert extract_bearer_token("Basic abc") == ""
    assert extract_bearer_token("") == ""


class TestAttemptLogin:
    def test_bearer_result(self, admin):
        result = _login("admin@example.com", require_admin=True, device_name="tablet")
        assert isinstance(result.credential, BearerToken)
        assert result.credential.token.name == "tablet"
        assert result.to_dict()["token"] == result.plain_text_token

    def test_web_session_result(self, customer, clock):
        result = _login("customer@example.com", issue_token=False, remember=True)
        assert isinstance(result.credential, WebSession)
        assert result.credential.token_id is None
        assert result.session_token
        assert result.expires_at == clock.now() + timedelta(days=30)
        assert "token" not in result.to_dict()

    def test_default_device_names(self, admin, customer):
        assert _login("admin@example.com", require_admin=True).credential.token.name == "admin-token"
        assert _login("customer@example.com").credential.token.name == "web-token"

    def test_web_token_abilities_for_non_admin_flow(self, customer):
        result = _login("customer@example.com")
        assert result.abilities == ["web:access"]

    def test_lock_short_circuits_password_check(self, customer, clock):
        for i in range(5):
            with pytest.raises(AuthError):
                _login("customer@example.com", "bad", ip=f"198.51.100.{i}")

        with pytest.raises(AuthError) as exc:
            _login("customer@example.com", "still-bad", ip="192.0.2.1")
        assert exc.value.code == ErrorCode.ACCOUNT_LOCKED
        assert exc.value.retry_after == 300
        # the locked attempt does not count as another failure
        assert db.session.get(User, customer.id).failed_login_attempts == 5

    def test_throttle_error_details(self, customer):
        for _ in range(5):
            with pytest.raises(AuthError):
                _login("nobody@example.com", "bad")

        with pytest.raises(AuthError) as exc:
            _login("nobody@example.com", "bad")
        err = exc.value
        assert err.code == ErrorCode.THROTTLED
        assert err.status_code == 429
        assert err.details["retry_after"] == 60
        assert err.details["retry_after_minutes"] == 1

    def test_forbidden_happens_after_reset(self, customer):
        with pytest.raises(AuthError):
            _login("customer@example.com", "bad")

        with pytest.raises(AuthError) as exc:
            _login("customer@example.com", require_admin=True)
        assert exc.value.code == ErrorCode.FORBIDDEN
        assert db.session.get(User, customer.id).failed_login_attempts == 0


class TestLogoutAndRefresh:
    def test_logout_bearer_only_removes_that_token(self, admin, token_store):
        first = _login("admin@example.com", require_admin=True)
        second = _login("admin@example.com", require_admin=True)
        first_id = first.credential.token_id

        assert logout(first.credential, admin) == {"revoked_token": first_id}
        assert token_store.count_for_user(admin.id) == 1
        assert token_store.find(second.plain_text_token) is not None

    def test_refresh_rejects_web_sessions(self, customer):
        result = _login("customer@example.com", issue_token=False)
        with pytest.raises(AuthError) as exc:
            refresh(result.credential, customer)
        assert exc.value.code == ErrorCode.UNSUPPORTED
