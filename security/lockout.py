import math
from datetime import datetime, timedelta
from flask import current_app

from models import db
from models.user import User
from utils.clock import utcnow


def _threshold() -> int:
    return current_app.config.get("ACCOUNT_LOCK_THRESHOLD", 5)


def lock_account(user: User) -> datetime:
    """Lock `user` for ACCOUNT_LOCK_MINUTES from now. Returns the unlock time."""
    until = utcnow() + timedelta(minutes=current_app.config.get("ACCOUNT_LOCK_MINUTES", 5))
    User.query.filter_by(id=user.id).update(
        {User.account_locked_until: until}, synchronize_session=False
    )
    db.session.commit()
    db.session.refresh(user)
    return until


def increment_failed_attempts(user: User) -> tuple[int, bool]:
    """
    Increments the failure counter in the database (not in Python), so two racing
    failed logins both count. Returns (fail_count, locked_now).
    """
    User.query.filter_by(id=user.id).update(
        {User.failed_login_attempts: User.failed_login_attempts + 1},
        synchronize_session=False,
    )
    db.session.commit()
    db.session.refresh(user)

    if user.failed_login_attempts >= _threshold():
        lock_account(user)
        return user.failed_login_attempts, True
    return user.failed_login_attempts, False


def reset_account_lock(user: User) -> None:
    User.query.filter_by(id=user.id).update(
        {User.failed_login_attempts: 0, User.account_locked_until: None},
        synchronize_session=False,
    )
    db.session.commit()
    db.session.refresh(user)


def is_lock_expired(user: User, now: datetime) -> bool:
    """Pure check: a lock exists and its time has passed."""
    return user.account_locked_until is not None and now > user.account_locked_until


def is_account_locked(user: User) -> bool:
    """
    Lock check with reconciliation: an expired lock is cleared (counter and timestamp)
    as a side effect, so every reader observes the same unlocked state.
    """
    if user.account_locked_until is None:
        return False
    if is_lock_expired(user, utcnow()):
        reset_account_lock(user)
        return False
    return True


def lock_seconds_remaining(user: User) -> int:
    if user.account_locked_until is None:
        return 0
    seconds = (user.account_locked_until - utcnow()).total_seconds()
    return max(1, math.ceil(seconds)) if seconds > 0 else 0
