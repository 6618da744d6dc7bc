"""
How a request proved who it is.

A request is authenticated either by a bearer token (API clients, one row per
device) or by a first-party cookie session. Refresh and device listing only make
sense for the former.
"""
from dataclasses import dataclass
from typing import Optional, Union

from flask import request

from models import db
from models.access_token import AccessToken
from models.session import Session
from models.user import User
from security.session import find_session, raw_session_token
from security.tokens import get_token_store


@dataclass
class BearerToken:
    token: AccessToken

    @property
    def user_id(self) -> int:
        return self.token.user_id

    @property
    def token_id(self) -> Optional[int]:
        return self.token.id


@dataclass
class WebSession:
    session: Session

    @property
    def user_id(self) -> int:
        return self.session.user_id

    @property
    def session_id(self) -> int:
        return self.session.id

    @property
    def token_id(self) -> Optional[int]:
        return None


AuthCredential = Union[BearerToken, WebSession]


def extract_bearer_token(authorization: str) -> str:
    parts = (authorization or "").strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return ""
    return parts[1].strip()


def resolve_credential() -> tuple[Optional[AuthCredential], Optional[User]]:
    """
    Bearer header wins over the cookie. Expiry is not judged here; a resolved
    token may still be expired and is rejected (and evicted) by validation.
    """
    plain = extract_bearer_token(request.headers.get("Authorization", ""))
    if plain:
        token = get_token_store().find(plain)
        if token is None:
            return None, None
        return BearerToken(token), token.user

    sess = find_session(raw_session_token())
    if sess is None:
        return None, None
    user = db.session.get(User, sess.user_id)
    if user is None:
        return None, None
    return WebSession(sess), user
