import hashlib
import secrets
from datetime import timedelta
from flask import request, current_app

from models import db
from models.session import Session
from utils.audit import client_ip, client_user_agent
from utils.clock import utcnow

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def session_lifetime(remember: bool = False) -> int:
    if remember:
        return current_app.config.get("REMEMBER_SESSION_LIFETIME_SECONDS", 30 * 24 * 60 * 60)
    return current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

def create_session(user_id: int, remember: bool = False) -> tuple[Session, str]:
    """
    Creates a server-side session and returns (row, RAW token) for the cookie.
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)
    now = utcnow()

    row = Session(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(seconds=session_lifetime(remember)),
        ip=client_ip(),
        user_agent=client_user_agent()[:255] or None,
    )
    db.session.add(row)
    db.session.commit()
    return row, raw_token

def raw_session_token():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "storefront_session")
    return request.cookies.get(cookie_name)

def find_session(raw_token: str):
    """Live (unrevoked, unexpired) session for a raw cookie token, else None."""
    if not raw_token:
        return None

    sess = Session.query.filter_by(token_hash=_hash_token(raw_token), revoked=False).first()
    if not sess:
        return None

    # Absolute expiry; mark it so later lookups skip the row
    if sess.expires_at <= utcnow():
        sess.revoked = True
        db.session.commit()
        return None
    return sess

def touch_session(sess: Session) -> None:
    Session.query.filter_by(id=sess.id).update({Session.last_seen_at: utcnow()}, synchronize_session=False)
    db.session.commit()

def revoke_session(sess: Session) -> bool:
    updated = Session.query.filter_by(id=sess.id, revoked=False).update(
        {Session.revoked: True}, synchronize_session=False
    )
    db.session.commit()
    return updated > 0

def revoke_all_sessions(user_id: int, except_session_id=None) -> int:
    q = Session.query.filter(Session.user_id == user_id, Session.revoked.is_(False))
    if except_session_id is not None:
        q = q.filter(Session.id != except_session_id)
    count = q.update({Session.revoked: True}, synchronize_session=False)
    db.session.commit()
    return count
