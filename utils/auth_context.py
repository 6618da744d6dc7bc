from functools import wraps
from flask import current_app, g

from security.activity import is_session_expired, update_last_activity
from security.authentication import logout
from security.credentials import BearerToken, resolve_credential
from security.errors import AuthError, ErrorCode
from security.rate_limit import get_rate_limiter
from security.session import touch_session
from security.tokens import get_token_store


def load_current_user():
    credential, user = resolve_credential()
    g.credential = credential
    g.user = user


def validate_credential(credential) -> None:
    """Bearer tokens are checked for expiry (expired ones are deleted) and stamped as used."""
    if isinstance(credential, BearerToken):
        result = get_token_store().validate(credential.token)
        if not result.valid:
            g.user = None
            g.credential = None
            raise AuthError(ErrorCode.INVALID_TOKEN, reason=result.reason.value)
        return
    touch_session(credential.session)


def enforce_session_activity(credential, user) -> None:
    """Idle users are logged out of this credential; active ones get last_activity refreshed."""
    if is_session_expired(user):
        logout(credential, user, context="session_expired")
        g.user = None
        g.credential = None
        raise AuthError(ErrorCode.SESSION_EXPIRED)
    update_last_activity(user)


def throttle_api_requests(credential) -> None:
    if not isinstance(credential, BearerToken):
        return
    limiter = get_rate_limiter()
    key = f"api:{credential.token_id}"
    if limiter.too_many_attempts(key, current_app.config.get("API_MAX_REQUESTS", 1000)):
        raise AuthError(ErrorCode.THROTTLED, "Too many requests.", retry_after=limiter.available_in(key))
    limiter.hit(key, current_app.config.get("API_DECAY_SECONDS", 60))


def authenticate_request():
    credential = getattr(g, "credential", None)
    user = getattr(g, "user", None)
    if credential is None or user is None:
        raise AuthError(ErrorCode.UNAUTHENTICATED)
    validate_credential(credential)
    throttle_api_requests(credential)
    enforce_session_activity(credential, user)
    return credential, user


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        authenticate_request()
        return fn(*args, **kwargs)
    return wrapper
