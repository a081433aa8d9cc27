"""
Factory Standards Build Tracker
Auth domain model.

Models:
    - User: login identity. ``role`` plays the part of the auth
      provider's custom claim and is re-read on every privileged call.
"""

import uuid
from datetime import datetime, timezone

from buildtrack.models import db


def _uuid():
    return uuid.uuid4().hex


# ── Constants ────────────────────────────────────────────────────────────────

USER_ROLES = ("staff", "client", "admin", "factory", "accounting")


class User(db.Model):
    """Portal user account."""

    __tablename__ = "users"

    uid = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True,
                              comment="bcrypt hash; NULL until the user sets a password")
    display_name = db.Column(db.String(200), nullable=True)
    role = db.Column(db.String(20), nullable=True, index=True,
                     comment="client | staff | admin | factory | accounting")
    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    disabled = db.Column(db.Boolean, nullable=False, default=False)

    # One-time set-password link (only the SHA-256 of the token is kept)
    password_reset_token_hash = db.Column(db.String(64), nullable=True, index=True)
    password_reset_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    last_sign_in_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_staff(self):
        return self.role in ("staff", "admin")

    def to_dict(self):
        return {
            "uid": self.uid,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "email_verified": self.email_verified,
            "disabled": self.disabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_sign_in_at": self.last_sign_in_at.isoformat() if self.last_sign_in_at else None,
        }

    def __repr__(self):
        return f"<User {self.uid}: {self.email} ({self.role})>"
