"""
Factory Standards Build Tracker
Outbox model.

Models:
    - OutboxEvent: side effect recorded in the same transaction as the
      write that caused it, dispatched after commit.
"""

from datetime import datetime, timezone

from buildtrack.models import db

OUTBOX_STATUSES = {"pending", "dispatching", "dispatched", "failed"}


class OutboxEvent(db.Model):
    __tablename__ = "outbox_events"

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(60), nullable=False, index=True,
                           comment="e.g. guitar.stage_changed, run_update.created")
    payload = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(12), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "dispatched_at": self.dispatched_at.isoformat() if self.dispatched_at else None,
        }

    def __repr__(self):
        return f"<OutboxEvent {self.id}: {self.event_type} ({self.status})>"
