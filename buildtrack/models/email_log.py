"""
Factory Standards Build Tracker
Email log model.

Models:
    - EmailLog: outbound email audit trail
"""

from datetime import datetime, timezone

from buildtrack.models import db

EMAIL_STATUSES = {"sent", "failed"}


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every send attempt made through the Mailgun gateway is logged here.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    cc = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), default="sent",
                       comment="sent, failed")
    error_message = db.Column(db.Text, nullable=True)
    provider_message_id = db.Column(db.String(255), nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "template_name": self.template_name,
            "cc": self.cc,
            "status": self.status,
            "error_message": self.error_message,
            "provider_message_id": self.provider_message_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.recipient_email} [{self.status}]>"
