"""
Login / logout / refresh protocol and device management.

A login attempt runs strictly in this order, stopping at the first failure:

    1. rate limit (email|ip)         -> THROTTLED, nothing written to the database
    2. account lock                  -> ACCOUNT_LOCKED, password is not checked
    3. password                      -> INVALID_CREDENTIALS (limiter hit, user counter +1)
    4. reset limiter + lock state, then the admin role gate -> FORBIDDEN
    5. record activity and issue a bearer token or a cookie session

Unknown email and wrong password produce the same error; only an existing user's
failure counter moves.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from models.user import User
from security.activity import update_last_activity
from security.credentials import AuthCredential, BearerToken, WebSession
from security.errors import AuthError, ErrorCode
from security.lockout import (
    increment_failed_attempts,
    is_account_locked,
    lock_seconds_remaining,
    reset_account_lock,
)
from security.password import verify_password
from security.rate_limit import get_rate_limiter
from security.session import create_session, revoke_all_sessions, revoke_session
from security.tokens import get_token_store
from utils.audit import log_event
from utils.clock import utcnow


@dataclass
class LoginResult:
    user: User
    credential: AuthCredential
    expires_at: Optional[datetime]
    abilities: list = field(default_factory=list)
    plain_text_token: Optional[str] = None
    session_token: Optional[str] = None

    def to_dict(self) -> dict:
        body = {
            "user": self.user.to_view(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "abilities": self.abilities,
        }
        if self.plain_text_token:
            body["token"] = self.plain_text_token
            body["token_type"] = "Bearer"
        return body


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def throttle_key(email: str, ip: str) -> str:
    return f"{normalize_email(email)}|{ip}"


def token_ttl(remember: bool = False) -> timedelta:
    cfg = current_app.config
    if remember:
        return timedelta(days=cfg.get("REMEMBER_TOKEN_TTL_DAYS", 30))
    return timedelta(minutes=cfg.get("TOKEN_TTL_MINUTES", 7 * 24 * 60))


def attempt_login(email: str, password: str, *, ip: str, device_name: str | None = None,
                  remember: bool = False, require_admin: bool = False,
                  issue_token: bool = True) -> LoginResult:
    cfg = current_app.config
    limiter = get_rate_limiter()
    email = normalize_email(email)
    key = throttle_key(email, ip)

    # 1. throttle
    if limiter.too_many_attempts(key, cfg.get("LOGIN_MAX_ATTEMPTS", 5)):
        seconds = limiter.available_in(key)
        log_event("LOGIN_THROTTLED", level="warning", persist=False,
                  metadata={"email": email, "retry_after": seconds})
        raise AuthError(
            ErrorCode.THROTTLED,
            f"Too many login attempts. Please try again in {seconds} seconds.",
            retry_after=seconds,
            retry_after_minutes=math.ceil(seconds / 60),
        )

    # 2. lock
    user = User.query.filter_by(email=email).first()
    if user is not None and is_account_locked(user):
        seconds = lock_seconds_remaining(user)
        log_event("LOGIN_LOCKED", user_id=user.id, level="warning",
                  metadata={"email": email, "seconds_left": seconds})
        raise AuthError(
            ErrorCode.ACCOUNT_LOCKED,
            "Account is locked due to too many failed login attempts. "
            f"Please try again in {math.ceil(seconds / 60)} minutes.",
            retry_after=seconds,
        )

    # 3. credentials
    if user is None or not verify_password(password, user.password_hash):
        limiter.hit(key, cfg.get("LOGIN_DECAY_SECONDS", 60))
        fail_count, locked_now = (0, False)
        if user is not None:
            fail_count, locked_now = increment_failed_attempts(user)
        log_event(
            "LOGIN_FAIL",
            user_id=user.id if user else None,
            level="warning",
            metadata={"email": email, "fail_count": fail_count, "locked_now": locked_now},
        )
        raise AuthError(ErrorCode.INVALID_CREDENTIALS)

    # 4. credentials are good: reset state for every role, then gate admins
    limiter.clear(key)
    reset_account_lock(user)

    if require_admin and not user.is_admin:
        log_event("LOGIN_FORBIDDEN", user_id=user.id, level="warning",
                  metadata={"email": email, "role": user.role})
        raise AuthError(ErrorCode.FORBIDDEN)

    # 5. success
    update_last_activity(user)

    if issue_token:
        abilities = list(cfg.get("ADMIN_TOKEN_ABILITIES" if require_admin else "WEB_TOKEN_ABILITIES", []))
        issued = get_token_store().issue(
            user,
            device_name or ("admin-token" if require_admin else "web-token"),
            abilities,
            token_ttl(remember),
        )
        log_event("LOGIN_SUCCESS", user_id=user.id, entity="access_token", entity_id=issued.token.id,
                  metadata={"device_name": issued.token.name, "remember": remember})
        return LoginResult(
            user=user,
            credential=BearerToken(issued.token),
            expires_at=issued.token.expires_at,
            abilities=issued.token.abilities,
            plain_text_token=issued.plain_text,
        )

    sess, raw = create_session(user.id, remember=remember)
    log_event("LOGIN_SUCCESS", user_id=user.id, entity="web_session", entity_id=sess.id,
              metadata={"remember": remember})
    return LoginResult(
        user=user,
        credential=WebSession(sess),
        expires_at=sess.expires_at,
        abilities=["*"],
        session_token=raw,
    )


def clear_session_data(session_id: int) -> list:
    """Drop session-scoped cache entries (cart, preferences, ...) for a web session."""
    cache = current_app.extensions["cache"]
    keys = list(current_app.config.get("LOGOUT_CLEAR_KEYS", []))
    for name in keys:
        cache.forget(f"session:{session_id}:{name}")
    return keys


def logout(credential: AuthCredential, user: User, context: str = "logout") -> dict:
    """
    Ends exactly the credential used for this request. Bearer: the token row is
    deleted. Cookie: the session row is revoked and its cached data cleared; the
    caller must drop the cookie and rotate the CSRF token on the response.
    """
    if isinstance(credential, BearerToken):
        token_id = credential.token_id
        get_token_store().revoke(token_id)
        log_event("LOGOUT", user_id=user.id, entity="access_token", entity_id=token_id,
                  metadata={"type": "api", "context": context})
        return {"revoked_token": token_id}

    session_id = credential.session_id
    revoke_session(credential.session)
    keys = clear_session_data(session_id)
    log_event("LOGOUT", user_id=user.id, entity="web_session", entity_id=session_id,
              metadata={"type": "web", "context": context, "keys_cleared": keys})
    return {"revoked_session": session_id, "keys_cleared": keys}


def refresh(credential: AuthCredential, user: User) -> dict:
    if not isinstance(credential, BearerToken):
        raise AuthError(ErrorCode.UNSUPPORTED, "Token refresh is not available for session-based authentication.")

    cfg = current_app.config
    token = credential.token
    store = get_token_store()
    limiter = get_rate_limiter()

    key = f"refresh:{token.id}"
    if limiter.too_many_attempts(key, cfg.get("REFRESH_MAX_ATTEMPTS", 10)):
        seconds = limiter.available_in(key)
        raise AuthError(ErrorCode.THROTTLED, "Too many refresh attempts.", retry_after=seconds)
    limiter.hit(key, cfg.get("REFRESH_DECAY_SECONDS", 60))

    if token.expires_at is None:
        raise AuthError(ErrorCode.NOT_YET_NEEDED, "Token does not expire.", expires_at=None)

    threshold = cfg.get("TOKEN_REFRESH_THRESHOLD_SECONDS", 2 * 60 * 60)
    remaining = (token.expires_at - utcnow()).total_seconds()
    if remaining > threshold:
        raise AuthError(
            ErrorCode.NOT_YET_NEEDED,
            expires_at=token.expires_at.isoformat(),
            refresh_available_in=math.ceil(remaining - threshold),
        )

    ttl = token_ttl()
    if cfg.get("ROTATE_TOKENS_ON_REFRESH", False):
        name, abilities, old_id = token.name, token.abilities, token.id
        store.revoke(old_id)
        issued = store.issue(user, name, abilities, ttl)
        log_event("TOKEN_ROTATED", user_id=user.id, entity="access_token", entity_id=issued.token.id,
                  metadata={"previous_token_id": old_id})
        return {
            "token": issued.plain_text,
            "token_type": "Bearer",
            "expires_at": issued.token.expires_at.isoformat(),
        }

    expires_at = store.extend(token, ttl)
    log_event("TOKEN_REFRESHED", user_id=user.id, entity="access_token", entity_id=token.id)
    return {"expires_at": expires_at.isoformat()}


def list_devices(credential: AuthCredential, user: User) -> list:
    if not isinstance(credential, BearerToken):
        raise AuthError(ErrorCode.UNSUPPORTED, "Device listing is only available for API tokens.")
    current_id = credential.token_id
    return [t.summary(current_id) for t in get_token_store().list_active(user)]


def revoke_device(credential: AuthCredential, user: User, token_id: int) -> dict:
    is_current = token_id == credential.token_id
    if not get_token_store().revoke(token_id, user=user):
        raise AuthError(ErrorCode.NOT_FOUND)
    log_event("DEVICE_REVOKED", user_id=user.id, entity="access_token", entity_id=token_id,
              metadata={"current": is_current})
    return {"revoked_token": token_id, "current": is_current}


def revoke_other_devices(credential: AuthCredential, user: User) -> dict:
    tokens = get_token_store().revoke_all_except_current(user, credential.token_id)
    except_session = credential.session_id if isinstance(credential, WebSession) else None
    sessions = revoke_all_sessions(user.id, except_session_id=except_session)
    log_event("DEVICES_REVOKED_OTHERS", user_id=user.id,
              metadata={"revoked_tokens": tokens, "revoked_sessions": sessions})
    return {"revoked_tokens": tokens, "revoked_sessions": sessions}


def revoke_all_devices(credential: AuthCredential, user: User) -> dict:
    tokens = get_token_store().revoke_all_for_user(user)
    sessions = revoke_all_sessions(user.id)
    if isinstance(credential, WebSession):
        clear_session_data(credential.session_id)
    log_event("DEVICES_REVOKED_ALL", user_id=user.id,
              metadata={"revoked_tokens": tokens, "revoked_sessions": sessions})
    return {"revoked_tokens": tokens, "revoked_sessions": sessions}
