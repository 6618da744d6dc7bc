from functools import wraps
from flask import g

from security.credentials import BearerToken
from security.errors import AuthError, ErrorCode
from security.tokens import token_can


def credential_can(ability: str) -> bool:
    """Cookie sessions are first-party and carry every ability; tokens carry their own."""
    credential = getattr(g, "credential", None)
    if credential is None:
        return False
    if isinstance(credential, BearerToken):
        return token_can(credential.token, ability)
    return True


def require_abilities(*abilities: str):
    """
    Usage: @require_abilities("admin:read", "admin:write")  (all must be granted)
    Stack under @admin_required or @login_required.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            missing = [a for a in abilities if not credential_can(a)]
            if missing:
                raise AuthError(ErrorCode.INSUFFICIENT_ABILITIES, missing_abilities=missing)
            return fn(*args, **kwargs)
        return wrapper
    return decorator

