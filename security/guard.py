"""
Per-request gate for the admin API.

Checks run in a fixed order and the first failure ends the request:

    1. authenticated                 401 UNAUTHENTICATED
    2. token valid and unexpired     401 INVALID_TOKEN (expired tokens are deleted)
    3. admin role                    403 INSUFFICIENT_PRIVILEGES (logged + throttled)
    4. account not locked            423 ACCOUNT_LOCKED
    5. not idle                      401 SESSION_EXPIRED (credential is logged out)
    6. telemetry + anomaly logging   never blocks
"""
from functools import wraps

from flask import current_app, g, request

from security.activity import is_session_expired, update_last_activity
from security.authentication import logout
from security.credentials import BearerToken
from security.errors import AuthError, ErrorCode
from security.lockout import is_account_locked, lock_account, lock_seconds_remaining
from security.rate_limit import get_rate_limiter
from security.telemetry import detect_suspicious_activity, log_suspicious_activity, record_token_usage
from utils.audit import log_event
from utils.auth_context import validate_credential


def unauthorized_attempts_key(user_id: int) -> str:
    return f"unauthorized_attempts:{user_id}"


def log_unauthorized_access(user) -> None:
    log_event(
        "ADMIN_ACCESS_DENIED",
        user_id=user.id,
        level="warning",
        metadata={
            "email": user.email,
            "role": user.role,
            "method": request.method,
            "endpoint": request.url,
            "headers": {
                "authorization": "Bearer [REDACTED]" if request.headers.get("Authorization") else None,
                "x-forwarded-for": request.headers.get("X-Forwarded-For"),
                "x-real-ip": request.headers.get("X-Real-IP"),
            },
        },
    )


def apply_unauthorized_rate_limit(user) -> bool:
    """
    Counts denied admin-API requests by a non-admin. Past the threshold the account is locked
    with the same lock used for failed logins. Returns True when it locked the account.
    """
    cfg = current_app.config
    limiter = get_rate_limiter()
    key = unauthorized_attempts_key(user.id)
    limiter.hit(key, cfg.get("UNAUTHORIZED_DECAY_SECONDS", 300))

    if not limiter.too_many_attempts(key, cfg.get("UNAUTHORIZED_MAX_ATTEMPTS", 10)):
        return False

    lock_account(user)
    log_event(
        "ACCOUNT_LOCKED_UNAUTHORIZED_ACCESS",
        user_id=user.id,
        level="critical",
        metadata={"email": user.email, "attempts": limiter.attempts(key)},
    )
    return True


def authorize_admin_request():
    credential = getattr(g, "credential", None)
    user = getattr(g, "user", None)

    if credential is None or user is None:
        raise AuthError(ErrorCode.UNAUTHENTICATED)

    validate_credential(credential)

    if not user.is_admin:
        log_unauthorized_access(user)
        apply_unauthorized_rate_limit(user)
        raise AuthError(ErrorCode.INSUFFICIENT_PRIVILEGES)

    if is_account_locked(user):
        raise AuthError(ErrorCode.ACCOUNT_LOCKED, retry_after=lock_seconds_remaining(user))

    if is_session_expired(user):
        logout(credential, user, context="session_expired")
        g.user = None
        g.credential = None
        raise AuthError(ErrorCode.SESSION_EXPIRED)

    update_last_activity(user)
    if isinstance(credential, BearerToken):
        record_token_usage(credential.token_id)

    reasons = detect_suspicious_activity(user)
    if reasons:
        log_suspicious_activity(user, reasons)
    return credential, user


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        authorize_admin_request()
        return fn(*args, **kwargs)
    return wrapper
