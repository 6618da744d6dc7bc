import hmac
import secrets
from flask import request, current_app

from security.errors import AuthError, ErrorCode

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

def issue_csrf_token(resp):
    """Set a fresh double-submit token; also used to rotate it on logout."""
    token = secrets.token_urlsafe(32)
    resp.set_cookie(
        CSRF_COOKIE,
        token,
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp

def require_csrf() -> None:
    cookie_token = request.cookies.get(CSRF_COOKIE) or ""
    header_token = request.headers.get(CSRF_HEADER) or ""
    if not cookie_token or not header_token or not hmac.compare_digest(cookie_token, header_token):
        raise AuthError(ErrorCode.CSRF_FAILED)
