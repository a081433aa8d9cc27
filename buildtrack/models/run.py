"""
Factory Standards Build Tracker
Run domain model.

Models:
    - Run: production batch of guitars sharing one stage pipeline
    - RunStage: one step of a run's ordered pipeline (order dense from 0)
    - RunUpdate: progress post on a run, optionally broadcast to clients
    - RunUpdateComment: discussion under a run update
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


class Run(db.Model):
    """Production batch. Never deleted, only archived."""

    __tablename__ = "runs"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    factory = db.Column(db.String(50), nullable=True, comment="e.g. perth | korea")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    thumbnail_url = db.Column(db.String(1000), nullable=True)
    spec_constraints = db.Column(db.JSON, nullable=True,
                                 comment="spec category -> list of allowed values")

    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by = db.Column(db.String(36), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    stages = db.relationship(
        "RunStage", backref="run", lazy="select",
        order_by="RunStage.order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_stages=False):
        d = {
            "id": self.id,
            "name": self.name,
            "factory": self.factory,
            "is_active": self.is_active,
            "starts_at": _iso(self.starts_at),
            "ends_at": _iso(self.ends_at),
            "thumbnail_url": self.thumbnail_url,
            "spec_constraints": self.spec_constraints or {},
            "archived": self.archived,
            "archived_at": _iso(self.archived_at),
            "archived_by": self.archived_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_stages:
            d["stages"] = [s.to_dict() for s in self.stages]
        return d

    def __repr__(self):
        return f"<Run {self.id}: {self.name}>"


class RunStage(db.Model):
    """
    One step in a run's build pipeline.

    ``label`` is the internal (staff) name, ``client_status_label`` what
    clients see. ``invoice_schedule`` optionally raises an invoice when a
    guitar reaches the stage.
    """

    __tablename__ = "run_stages"
    __table_args__ = (
        db.UniqueConstraint("run_id", "order", name="uq_run_stage_order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    run_id = db.Column(
        db.String(36), db.ForeignKey("runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    label = db.Column(db.String(200), nullable=False)
    client_status_label = db.Column(db.String(200), nullable=True)
    order = db.Column(db.Integer, nullable=False)
    internal_only = db.Column(db.Boolean, nullable=False, default=False)
    requires_note = db.Column(db.Boolean, nullable=False, default=False)
    requires_photo = db.Column(db.Boolean, nullable=False, default=False)
    invoice_schedule = db.Column(
        db.JSON, nullable=True,
        comment="{amount, currency?, title?, description?, due_days_after_trigger?, payment_link?}",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def display_label(self):
        return self.label or self.client_status_label or self.id

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "label": self.label,
            "client_status_label": self.client_status_label,
            "order": self.order,
            "internal_only": self.internal_only,
            "requires_note": self.requires_note,
            "requires_photo": self.requires_photo,
            "invoice_schedule": self.invoice_schedule,
        }

    def __repr__(self):
        return f"<RunStage {self.order}: {self.label}>"


class RunUpdate(db.Model):
    """Progress post on a run."""

    __tablename__ = "run_updates"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    run_id = db.Column(
        db.String(36), db.ForeignKey("runs.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    author_uid = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(200), nullable=True)
    visible_to_clients = db.Column(db.Boolean, nullable=False, default=False)
    image_urls = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "run_id": self.run_id,
            "title": self.title,
            "message": self.message,
            "author_uid": self.author_uid,
            "author_name": self.author_name,
            "visible_to_clients": self.visible_to_clients,
            "image_urls": self.image_urls or [],
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<RunUpdate {self.id}: {self.title[:40]}>"


class RunUpdateComment(db.Model):
    __tablename__ = "run_update_comments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    run_update_id = db.Column(
        db.String(36), db.ForeignKey("run_updates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    run_id = db.Column(db.String(36), nullable=False)
    author_uid = db.Column(db.String(36), nullable=True)
    author_name = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "run_update_id": self.run_update_id,
            "run_id": self.run_id,
            "author_uid": self.author_uid,
            "author_name": self.author_name,
            "message": self.message,
            "created_at": _iso(self.created_at),
        }
