from datetime import timedelta
from flask import current_app

from models import db
from models.user import User
from utils.clock import utcnow


def update_last_activity(user: User) -> None:
    now = utcnow()
    User.query.filter_by(id=user.id).update({User.last_activity: now}, synchronize_session=False)
    db.session.commit()
    db.session.refresh(user)


def is_session_expired(user: User) -> bool:
    # A user who has never been active is not expired; new sessions stay alive
    if user.last_activity is None:
        return False
    idle = timedelta(minutes=current_app.config.get("IDLE_TIMEOUT_MINUTES", 30))
    return user.last_activity < utcnow() - idle
