import json
from datetime import datetime
from models.db import db


class AccessToken(db.Model):
    __tablename__ = "access_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # device label, e.g. "admin-token" or "iPhone"
    name = db.Column(db.String(120), nullable=False)

    # sha256 of the secret part; the plain text is only returned once at issuance
    token_hash = db.Column(db.String(64), unique=True, nullable=False)
    abilities_json = db.Column(db.Text, nullable=False, default="[]")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)  # null = never expires

    user = db.relationship("User", back_populates="tokens")

    __table_args__ = (
        db.Index("ix_access_tokens_user_expires", "user_id", "expires_at"),
        db.Index("ix_access_tokens_user_last_used", "user_id", "last_used_at"),
        # ids are never reused; cache keys and audit rows reference them
        {"sqlite_autoincrement": True},
    )

    @property
    def abilities(self) -> list:
        return json.loads(self.abilities_json or "[]")

    @abilities.setter
    def abilities(self, values) -> None:
        self.abilities_json = json.dumps(sorted(set(values or [])))

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def summary(self, current_id=None) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "abilities": self.abilities,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_current": current_id is not None and self.id == current_id,
        }
