"""
Factory Standards Build Tracker
Client domain model.

Models:
    - ClientProfile: contact details for a client account, keyed by uid.
      Credentials live only on ``User`` (hashed); nothing here is secret.
      A profile can outlive its account, and its email is then the only
      address the client is reachable at.
"""

from datetime import datetime, timezone

from buildtrack.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


PREFERRED_CONTACT = {"email", "phone"}


class ClientProfile(db.Model):
    __tablename__ = "client_profiles"

    uid = db.Column(db.String(36), primary_key=True, comment="users.uid; kept when the account is gone")
    email = db.Column(db.String(255), nullable=True, index=True)
    display_name = db.Column(db.String(200), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    alternate_email = db.Column(db.String(255), nullable=True)
    shipping_address = db.Column(db.JSON, nullable=True,
                                 comment="{street, city, state, postal_code, country}")
    preferred_contact = db.Column(db.String(10), nullable=True)
    notes = db.Column(db.Text, nullable=True, comment="Staff-only notes")
    assigned_run_ids = db.Column(db.JSON, nullable=True)

    account_created_at = db.Column(db.DateTime(timezone=True), nullable=True)
    account_created_by = db.Column(db.String(36), nullable=True)

    archived = db.Column(db.Boolean, nullable=False, default=False)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.String(36), nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    updated_by = db.Column(db.String(36), nullable=True)

    def to_dict(self, include_staff_fields=True):
        d = {
            "uid": self.uid,
            "email": self.email,
            "display_name": self.display_name,
            "phone": self.phone,
            "alternate_email": self.alternate_email,
            "shipping_address": self.shipping_address,
            "preferred_contact": self.preferred_contact,
            "assigned_run_ids": self.assigned_run_ids or [],
            "account_created_at": _iso(self.account_created_at),
            "archived": self.archived,
            "updated_at": _iso(self.updated_at),
        }
        if include_staff_fields:
            d["notes"] = self.notes
            d["account_created_by"] = self.account_created_by
            d["archived_at"] = _iso(self.archived_at)
            d["updated_by"] = self.updated_by
        return d

    def __repr__(self):
        return f"<ClientProfile {self.uid}: {self.email}>"
