"""
Factory Standards Build Tracker
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from buildtrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "guitar_stage_changed",
    "guitar_note_added",
    "guitar_note_comment",
    "guitar_created",
    "guitar_assigned",
    "run_created",
    "run_archived",
    "guitar_archived",
    "run_update",
    "run_update_comment",
    "payment_pending_approval",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_uid = db.Column(db.String(36), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    # Link to source entity
    guitar_id = db.Column(db.String(36), nullable=True)
    run_id = db.Column(db.String(36), nullable=True)
    note_id = db.Column(db.String(36), nullable=True)
    extra = db.Column("metadata", db.JSON, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_uid": self.user_uid,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "guitar_id": self.guitar_id,
            "run_id": self.run_id,
            "note_id": self.note_id,
            "metadata": self.extra or {},
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
