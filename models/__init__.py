from .db import db
from .user import User, ROLE_ADMIN, ROLE_USER
from .access_token import AccessToken
from .session import Session
from .audit_log import AuditLog
