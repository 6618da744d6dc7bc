"""
Bearer token ("device") lifecycle: issuance with a per-user cap, lookup, lazy
expiry eviction, usage stamping and revocation.

Plain-text tokens look like ``<prefix><id>|<secret>``. Only sha256(secret) is
stored, so a leaked database cannot be replayed against the API.
"""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from models import db
from models.access_token import AccessToken
from models.user import User
from security.errors import ErrorCode


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


@dataclass
class IssuedToken:
    token: AccessToken
    plain_text: str


@dataclass
class TokenValidation:
    valid: bool
    reason: Optional[ErrorCode] = None


def token_can(token: AccessToken, ability: str) -> bool:
    abilities = token.abilities
    return "*" in abilities or ability in abilities


class TokenStore:
    def __init__(self, clock, *, prefix: str = "", max_tokens_per_user: int = 10, abilities=None):
        self.clock = clock
        self.prefix = prefix
        self.max_tokens_per_user = max_tokens_per_user
        # None accepts any ability string
        self.known_abilities = frozenset(abilities) if abilities is not None else None

    def check_abilities(self, abilities) -> None:
        if self.known_abilities is None:
            return
        unknown = sorted(a for a in abilities if a != "*" and a not in self.known_abilities)
        if unknown:
            raise ValueError(f"Unknown token abilities: {', '.join(unknown)}")

    # ---------- issuance ----------
    def issue(self, user: User, name: str, abilities=None, ttl: timedelta | None = None) -> IssuedToken:
        """
        Create a token for `user`. Existing tokens beyond cap-1 are evicted first
        (least recently used, never-used first) so that afterwards the user holds at
        most `max_tokens_per_user` tokens and the new token is never the one evicted.

        Raises ValueError for abilities outside the configured catalogue.
        """
        abilities = list(abilities or ["*"])
        self.check_abilities(abilities)
        keep = max(self.max_tokens_per_user - 1, 0)
        self.prune_excess(user, keep=keep)

        now = self.clock.now()
        secret = secrets.token_urlsafe(30)[:40]
        row = AccessToken(
            user_id=user.id,
            name=(name or "api-token")[:120],
            token_hash=_hash_secret(secret),
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )
        row.abilities = abilities
        db.session.add(row)
        db.session.commit()
        # another issue may have inserted between the first prune and this commit
        self.prune_excess(user, keep=keep, exclude_id=row.id)
        return IssuedToken(token=row, plain_text=f"{self.prefix}{row.id}|{secret}")

    # ---------- lookup ----------
    def find(self, plain_text: str) -> Optional[AccessToken]:
        """Resolve a plain-text token to its row. Does not check expiry."""
        if not plain_text:
            return None
        raw = plain_text
        if self.prefix and raw.startswith(self.prefix):
            raw = raw[len(self.prefix):]
        token_id, sep, secret = raw.partition("|")
        if not sep or not token_id.isdigit() or not secret:
            return None

        row = db.session.get(AccessToken, int(token_id))
        if row is None:
            return None
        if not hmac.compare_digest(row.token_hash, _hash_secret(secret)):
            return None
        return row

    def validate(self, token: AccessToken) -> TokenValidation:
        """
        Side effects: an expired token is deleted; a valid one gets last_used_at = now.
        """
        now = self.clock.now()
        if token.is_expired(now):
            self.revoke(token.id)
            return TokenValidation(False, ErrorCode.EXPIRED)

        AccessToken.query.filter_by(id=token.id).update(
            {AccessToken.last_used_at: now}, synchronize_session=False
        )
        db.session.commit()
        db.session.refresh(token)
        return TokenValidation(True)

    def list_active(self, user: User) -> list[AccessToken]:
        now = self.clock.now()
        return (
            AccessToken.query
            .filter(AccessToken.user_id == user.id)
            .filter(db.or_(AccessToken.expires_at.is_(None), AccessToken.expires_at > now))
            .order_by(AccessToken.last_used_at.desc().nulls_last(), AccessToken.created_at.desc())
            .all()
        )

    def count_for_user(self, user_id: int) -> int:
        return AccessToken.query.filter_by(user_id=user_id).count()

    # ---------- mutation ----------
    def extend(self, token: AccessToken, ttl: timedelta) -> datetime:
        expires_at = self.clock.now() + ttl
        AccessToken.query.filter_by(id=token.id).update(
            {AccessToken.expires_at: expires_at}, synchronize_session=False
        )
        db.session.commit()
        db.session.refresh(token)
        return expires_at

    def revoke(self, token_id: int, user: User | None = None) -> bool:
        q = AccessToken.query.filter_by(id=token_id)
        if user is not None:
            q = q.filter_by(user_id=user.id)
        deleted = q.delete(synchronize_session=False)
        db.session.commit()
        return deleted > 0

    def revoke_all_for_user(self, user: User) -> int:
        deleted = AccessToken.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    def revoke_all_except_current(self, user: User, current_token_id: int | None) -> int:
        q = AccessToken.query.filter(AccessToken.user_id == user.id)
        if current_token_id is not None:
            q = q.filter(AccessToken.id != current_token_id)
        deleted = q.delete(synchronize_session=False)
        db.session.commit()
        return deleted

    def eviction_order(self, user_id: int, exclude_id: int | None = None):
        """Least recently used first; never-used tokens count as least recent."""
        q = AccessToken.query.filter(AccessToken.user_id == user_id)
        if exclude_id is not None:
            q = q.filter(AccessToken.id != exclude_id)
        return (
            q.order_by(
                AccessToken.last_used_at.asc().nulls_first(),
                AccessToken.created_at.asc(),
                AccessToken.id.asc(),
            )
        )

    def excess_token_ids(self, user_id: int, keep: int, exclude_id: int | None = None) -> list[int]:
        total = self.eviction_order(user_id, exclude_id).count()
        if total <= keep:
            return []
        rows = self.eviction_order(user_id, exclude_id).limit(total - keep).with_entities(AccessToken.id).all()
        return [r.id for r in rows]

    def prune_excess(self, user: User, keep: int | None = None, exclude_id: int | None = None) -> int:
        """`exclude_id` is never evicted and does not count towards `keep`."""
        keep = self.max_tokens_per_user if keep is None else keep
        ids = self.excess_token_ids(user.id, keep, exclude_id)
        if not ids:
            return 0
        # concurrent evictions may target the same ids
        deleted = AccessToken.query.filter(AccessToken.id.in_(ids)).delete(synchronize_session=False)
        db.session.commit()
        return deleted


def get_token_store() -> TokenStore:
    return current_app.extensions["token_store"]
