"""
Factory Standards Build Tracker
Custom Shop domain model.

Models:
    - CustomShopRequest: a client's one-off build enquiry
"""

import uuid
from datetime import datetime, timezone

from buildtrack.models import db


def _uuid():
    return uuid.uuid4().hex


REQUEST_STATUSES = ("submitted", "reviewing", "quoted", "accepted", "declined")


class CustomShopRequest(db.Model):
    __tablename__ = "custom_shop_requests"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    submitter_uid = db.Column(db.String(36), nullable=True, index=True)
    submitter_email = db.Column(db.String(255), nullable=True)
    submitter_name = db.Column(db.String(200), nullable=True)
    model = db.Column(db.String(200), nullable=True)
    guitar_description = db.Column(db.Text, nullable=False)
    motivation_notes = db.Column(db.Text, nullable=True)
    additional_notes = db.Column(db.Text, nullable=True)
    inspiration_image_urls = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="submitted")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def request_number(self):
        """Short human reference, e.g. ``CS-3F9A01``."""
        return f"CS-{self.id[-6:].upper()}"

    def to_dict(self):
        return {
            "id": self.id,
            "request_number": self.request_number,
            "submitter_uid": self.submitter_uid,
            "submitter_email": self.submitter_email,
            "submitter_name": self.submitter_name,
            "model": self.model,
            "guitar_description": self.guitar_description,
            "motivation_notes": self.motivation_notes,
            "additional_notes": self.additional_notes,
            "inspiration_image_urls": self.inspiration_image_urls or [],
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<CustomShopRequest {self.request_number}>"
