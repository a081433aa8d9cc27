"""
Factory Standards Build Tracker
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of user activity and staff
      mutations (logins, client page views, stage changes, archives).
"""

import json
from datetime import datetime, timezone

from buildtrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    # Client activity
    "login",
    "view_my_guitars",
    "view_guitar",
    "view_run_updates",
    # Build lifecycle
    "guitar.stage_change",
    "guitar.archive",
    "guitar.unarchive",
    "run.archive",
    "run.unarchive",
    "client.archive",
    "client.unarchive",
    # Accounts
    "user.create",
    "user.set_role",
    "user.reset_password",
    # Invoices
    "payment.approve",
    "payment.reject",
    # Settings
    "settings.update",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action.  ``diff_json`` carries an old→new snapshot for
    field-level changes.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_uid"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(db.String(30), nullable=False,
                            comment="guitar | run | client | user | invoice | settings")
    entity_id = db.Column(db.String(36), nullable=True)

    action = db.Column(db.String(60), nullable=False)
    actor_uid = db.Column(db.String(36), nullable=True, comment="NULL for system entries")
    actor_email = db.Column(db.String(255), nullable=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_uid": self.actor_uid,
            "actor_email": self.actor_email,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────


def write_audit(
    *,
    entity_type: str,
    entity_id: str | None,
    action: str,
    actor_uid: str | None = None,
    actor_email: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        action=action,
        actor_uid=actor_uid,
        actor_email=actor_email,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
