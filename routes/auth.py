"""Cookie-session login for the first-party web UI."""
from flask import Blueprint, request, jsonify, current_app, g

from security.authentication import attempt_login, logout as end_credential
from security.credentials import WebSession
from security.csrf import issue_csrf_token
from security.errors import AuthError, ErrorCode
from security.session import session_lifetime
from utils.audit import client_ip
from utils.auth_context import login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def read_login_payload():
    """Returns (email, password, data) or raises VALIDATION_ERROR."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    errors = {}
    if not _is_valid_email(email):
        errors["email"] = "A valid email is required"
    if not isinstance(password, str) or not password:
        errors["password"] = "Password is required"
    if errors:
        raise AuthError(ErrorCode.VALIDATION_ERROR, errors=errors)
    return email, password, data


@auth_bp.post("/login")
def login():
    email, password, data = read_login_payload()
    remember = bool(data.get("remember") or data.get("remember_me"))

    result = attempt_login(email, password, ip=client_ip(), remember=remember, issue_token=False)

    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
    resp = jsonify(success=True, message="Login OK", data=result.to_dict())
    resp.set_cookie(
        cookie_name,
        result.session_token,
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=session_lifetime(remember),
        path="/",
    )
    resp = issue_csrf_token(resp)
    return resp, 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(success=True, data=g.user.to_view()), 200


@auth_bp.post("/logout")
@login_required
def logout():
    info = end_credential(g.credential, g.user)

    resp = jsonify(success=True, message="Logged out", data=info)
    if isinstance(g.credential, WebSession):
        cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
        resp.delete_cookie(cookie_name, path="/")
        # rotate CSRF with the session
        resp = issue_csrf_token(resp)
    return resp, 200
