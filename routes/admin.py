from flask import Blueprint, jsonify, g
from models import db
from models.access_token import AccessToken
from models.user import User
from security.errors import AuthError, ErrorCode
from security.guard import admin_required
from security.lockout import is_lock_expired, reset_account_lock
from security.rbac import require_abilities
from security.session import revoke_all_sessions
from security.telemetry import request_patterns, usage_this_hour
from security.tokens import get_token_store
from utils.audit import log_event
from utils.clock import utcnow

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise AuthError(ErrorCode.NOT_FOUND, "User not found")
    return user


def _lock_view(user: User, now) -> dict:
    locked = user.account_locked_until is not None and not is_lock_expired(user, now)
    return {
        "failed_login_attempts": user.failed_login_attempts,
        "locked": locked,
        "account_locked_until": user.account_locked_until.isoformat() if locked else None,
    }


@admin_bp.get("/dashboard")
@admin_required
@require_abilities("admin:read")
def dashboard():
    now = utcnow()
    locked_users = User.query.filter(User.account_locked_until.is_not(None), User.account_locked_until >= now).count()
    active_tokens = AccessToken.query.filter(
        db.or_(AccessToken.expires_at.is_(None), AccessToken.expires_at > now)
    ).count()
    log_event("ADMIN_DASHBOARD_VIEW", user_id=g.user.id)
    return jsonify(success=True, data={
        "users": User.query.count(),
        "locked_users": locked_users,
        "active_tokens": active_tokens,
    }), 200


@admin_bp.get("/users")
@admin_required
@require_abilities("admin:read")
def list_users():
    now = utcnow()
    users = User.query.order_by(User.created_at.desc()).limit(200).all()
    return jsonify(success=True, data=[
        {**u.to_view(), **_lock_view(u, now), "tokens": u.tokens.count()}
        for u in users
    ]), 200


@admin_bp.post("/users/<int:user_id>/unlock")
@admin_required
@require_abilities("admin:read", "admin:write")
def unlock_user(user_id: int):
    user = _get_user_or_404(user_id)
    reset_account_lock(user)
    log_event("ADMIN_UNLOCK_USER", user_id=g.user.id, entity="user", entity_id=user.id)
    return jsonify(success=True, message="Account unlocked", data=_lock_view(user, utcnow())), 200


@admin_bp.delete("/users/<int:user_id>/tokens")
@admin_required
@require_abilities("admin:read", "admin:write")
def revoke_user_tokens(user_id: int):
    user = _get_user_or_404(user_id)
    tokens = get_token_store().revoke_all_for_user(user)
    sessions = revoke_all_sessions(user.id)
    log_event(
        "ADMIN_REVOKE_USER_TOKENS",
        user_id=g.user.id,
        entity="user",
        entity_id=user.id,
        metadata={"revoked_tokens": tokens, "revoked_sessions": sessions},
    )
    return jsonify(success=True, data={"revoked_tokens": tokens, "revoked_sessions": sessions}), 200


@admin_bp.get("/tokens/<int:token_id>/activity")
@admin_required
@require_abilities("admin:read")
def token_activity(token_id: int):
    token = db.session.get(AccessToken, token_id)
    if token is None:
        raise AuthError(ErrorCode.NOT_FOUND, "Token not found")
    return jsonify(success=True, data={
        "token": token.summary(),
        "requests_this_hour": usage_this_hour(token.id),
        "recent_requests": request_patterns(token.id),
    }), 200
