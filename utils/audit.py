import json
import logging
from flask import current_app, has_request_context, request

from models import db
from models.audit_log import AuditLog
from utils.clock import utcnow


def client_ip() -> str:
    if not has_request_context():
        return "cli"
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def client_user_agent() -> str:
    if not has_request_context():
        return ""
    return request.headers.get("User-Agent", "")


def log_event(action: str, user_id=None, *, level="info", persist=True,
              entity=None, entity_id=None, metadata=None):
    """
    Emit an audit event to the app logger and, unless persist=False, to audit_logs.
    """
    now = utcnow()
    ip = client_ip()
    user_agent = client_user_agent()
    route = request.path if has_request_context() else None

    fields = {
        "action": action,
        "user_id": user_id,
        "ip": ip,
        "user_agent": user_agent,
        "route": route,
        "timestamp": now.isoformat(),
    }
    if metadata:
        fields.update(metadata)
    current_app.logger.log(logging.getLevelName(level.upper()), action, extra={"audit": fields})

    if not persist:
        return

    row = AuditLog(
        user_id=user_id,
        action=action,
        level=level,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent[:255] if user_agent else None,
        route=route[:255] if route else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
        timestamp=now,
    )
    db.session.add(row)
    db.session.commit()
