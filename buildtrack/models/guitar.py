"""
Factory Standards Build Tracker
Guitar build domain model.

Models:
    - Guitar: one customer order tracked through a run's stages
    - StageTransition: append-only stage change log (source of truth for
      the current stage; ``Guitar.stage_id`` is the denormalised pointer)
    - GuitarNote: timestamped build log entry, optionally client-visible
    - NoteComment: discussion under a note
"""

import uuid
from datetime import datetime, timezone

from buildtrack.models import db


def _uuid():
    return uuid.uuid4().hex


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

NOTE_TYPES = ("update", "milestone", "quality_check", "issue", "status_change", "general")

NOTE_TYPE_LABELS = {
    "update": "Update",
    "milestone": "Milestone",
    "quality_check": "Quality check",
    "issue": "Issue",
    "status_change": "Status change",
    "general": "Note",
}

# Spec fields a guitar may carry in its ``specs`` bag
SPEC_FIELDS = (
    "body_wood", "top_wood", "neck_wood", "fretboard_wood", "fret_material",
    "inlays", "scale_length", "neck_profile", "pickups", "electronics",
    "hardware_color", "bridge", "tuners", "finish_type", "binding",
    "strings", "case", "notes",
)


class Guitar(db.Model):
    """
    Customer build order.

    ``client_uid`` is optional: an unassigned guitar is a valid state.
    ``customer_name``/``customer_email`` are a snapshot taken at order
    time and may diverge from the live user record.
    """

    __tablename__ = "guitars"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    run_id = db.Column(
        db.String(36), db.ForeignKey("runs.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.String(36), db.ForeignKey("run_stages.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    client_uid = db.Column(db.String(36), nullable=True, index=True)
    customer_name = db.Column(db.String(200), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    order_number = db.Column(db.String(50), nullable=True, index=True)
    model = db.Column(db.String(200), nullable=True)
    finish = db.Column(db.String(200), nullable=True)
    serial = db.Column(db.String(100), nullable=True)
    specs = db.Column(db.JSON, nullable=True)

    reference_images = db.Column(db.JSON, nullable=True)
    cover_photo_url = db.Column(db.String(1000), nullable=True)
    photo_count = db.Column(db.Integer, nullable=False, default=0)

    price = db.Column(db.Numeric(12, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True)
    invoice_trigger_stage_id = db.Column(db.String(36), nullable=True)

    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    version = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version}

    run = db.relationship("Run", lazy="joined")
    stage = db.relationship("RunStage", lazy="joined", foreign_keys=[stage_id])

    @property
    def label(self):
        """``model – finish`` as shown in emails and notifications."""
        model = self.model or "Your guitar"
        return f"{model} – {self.finish}" if self.finish else model

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "stage_id": self.stage_id,
            "client_uid": self.client_uid,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "order_number": self.order_number,
            "model": self.model,
            "finish": self.finish,
            "serial": self.serial,
            "specs": self.specs or {},
            "reference_images": self.reference_images or [],
            "cover_photo_url": self.cover_photo_url,
            "photo_count": self.photo_count,
            "price": float(self.price) if self.price is not None else None,
            "currency": self.currency,
            "invoice_trigger_stage_id": self.invoice_trigger_stage_id,
            "archived": self.archived,
            "archived_at": _iso(self.archived_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
        }

    def snapshot(self):
        """Fields the stage-change email handler diffs on."""
        return {
            "id": self.id,
            "run_id": self.run_id,
            "stage_id": self.stage_id,
            "client_uid": self.client_uid,
            "model": self.model,
            "finish": self.finish,
        }

    def __repr__(self):
        return f"<Guitar {self.id}: {self.model} ({self.order_number})>"


class StageTransition(db.Model):
    """Immutable record of one stage change."""

    __tablename__ = "stage_transitions"

    id = db.Column(db.Integer, primary_key=True)
    guitar_id = db.Column(
        db.String(36), db.ForeignKey("guitars.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    from_stage_id = db.Column(db.String(36), nullable=True, comment="NULL for the initial placement")
    to_stage_id = db.Column(db.String(36), nullable=False)
    actor_uid = db.Column(db.String(36), nullable=True)
    note_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "guitar_id": self.guitar_id,
            "from_stage_id": self.from_stage_id,
            "to_stage_id": self.to_stage_id,
            "actor_uid": self.actor_uid,
            "note_id": self.note_id,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<StageTransition {self.guitar_id}: {self.from_stage_id} -> {self.to_stage_id}>"


class GuitarNote(db.Model):
    """Build log entry. Append-only; only ``photo_urls`` is ever trimmed."""

    __tablename__ = "guitar_notes"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    guitar_id = db.Column(
        db.String(36), db.ForeignKey("guitars.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage_id = db.Column(db.String(36), nullable=False, comment="Stage active when written")
    author_uid = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(20), nullable=False, default="update")
    visible_to_client = db.Column(db.Boolean, nullable=False, default=False)
    photo_urls = db.Column(db.JSON, nullable=True)
    viewed_by = db.Column(db.JSON, nullable=True, comment="uid -> ISO timestamp of first view")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "guitar_id": self.guitar_id,
            "stage_id": self.stage_id,
            "author_uid": self.author_uid,
            "author_name": self.author_name,
            "message": self.message,
            "type": self.type,
            "visible_to_client": self.visible_to_client,
            "photo_urls": self.photo_urls or [],
            "viewed_by": self.viewed_by or {},
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<GuitarNote {self.id}: {self.type}>"


class NoteComment(db.Model):
    __tablename__ = "note_comments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    note_id = db.Column(
        db.String(36), db.ForeignKey("guitar_notes.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    guitar_id = db.Column(db.String(36), nullable=False, index=True)
    author_uid = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "note_id": self.note_id,
            "guitar_id": self.guitar_id,
            "author_uid": self.author_uid,
            "author_name": self.author_name,
            "message": self.message,
            "created_at": _iso(self.created_at),
        }
