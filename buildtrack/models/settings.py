"""
Factory Standards Build Tracker
Application settings model.

Models:
    - AppSettings: singleton row (id=1) holding one JSON blob per
      settings section. Defaults live in ``settings_service``.
"""

from datetime import datetime, timezone

from buildtrack.models import db

SETTINGS_SECTIONS = ("branding", "general", "email", "notifications", "system", "run_specs")


class AppSettings(db.Model):
    __tablename__ = "app_settings"

    SINGLETON_ID = 1

    id = db.Column(db.Integer, primary_key=True, default=SINGLETON_ID)
    branding = db.Column(db.JSON, nullable=True)
    general = db.Column(db.JSON, nullable=True)
    email = db.Column(db.JSON, nullable=True)
    notifications = db.Column(db.JSON, nullable=True)
    system = db.Column(db.JSON, nullable=True)
    run_specs = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
    updated_by = db.Column(db.String(36), nullable=True)

    def __repr__(self):
        return f"<AppSettings updated_at={self.updated_at}>"
