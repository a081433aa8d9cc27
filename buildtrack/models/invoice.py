"""
Factory Standards Build Tracker
Invoice domain model.

Models:
    - Invoice: amount owed by a client, optionally tied to a guitar and
      the stage that raised it
    - InvoicePayment: append-only payment ledger; total paid is derived
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

INVOICE_STATUSES = {"pending", "partial", "paid", "overdue"}
APPROVAL_STATUSES = {"pending", "approved", "rejected"}
PAYMENT_METHODS = {"bank_transfer", "card", "cash", "paypal", "other"}
DEFAULT_CURRENCY = "AUD"


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    client_uid = db.Column(db.String(36), nullable=False, index=True)
    guitar_id = db.Column(
        db.String(36), db.ForeignKey("guitars.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    triggered_by_stage_id = db.Column(db.String(36), nullable=True)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default=DEFAULT_CURRENCY)
    status = db.Column(db.String(10), nullable=False, default="pending")
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_days_after_trigger = db.Column(db.Integer, nullable=True)
    payment_link = db.Column(db.String(1000), nullable=True)
    download_url = db.Column(db.String(1000), nullable=True)

    uploaded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    uploaded_by = db.Column(db.String(36), nullable=True)

    payments = db.relationship(
        "InvoicePayment", backref="invoice", lazy="select",
        order_by="InvoicePayment.paid_at", cascade="all, delete-orphan",
    )

    @property
    def total_paid(self):
        """Sum of approved (and legacy unstatused) payments."""
        return round(sum(float(p.amount) for p in self.payments if p.counts_toward_total), 2)

    def to_dict(self, include_payments=True):
        d = {
            "id": self.id,
            "client_uid": self.client_uid,
            "guitar_id": self.guitar_id,
            "triggered_by_stage_id": self.triggered_by_stage_id,
            "title": self.title,
            "description": self.description,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "status": self.status,
            "due_date": _iso(self.due_date),
            "due_days_after_trigger": self.due_days_after_trigger,
            "payment_link": self.payment_link,
            "download_url": self.download_url,
            "uploaded_at": _iso(self.uploaded_at),
            "uploaded_by": self.uploaded_by,
            "total_paid": self.total_paid,
        }
        if include_payments:
            d["payments"] = [p.to_dict() for p in self.payments]
        return d

    def __repr__(self):
        return f"<Invoice {self.id}: {self.title} {self.amount} {self.currency}>"


class InvoicePayment(db.Model):
    __tablename__ = "invoice_payments"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    invoice_id = db.Column(
        db.String(36), db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=True)
    method = db.Column(db.String(20), nullable=True)
    note = db.Column(db.Text, nullable=True)
    receipt_url = db.Column(db.String(1000), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    recorded_by = db.Column(db.String(36), nullable=True)

    approval_status = db.Column(db.String(10), nullable=True,
                                comment="pending | approved | rejected; NULL = legacy, counts as approved")
    approved_by = db.Column(db.String(36), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    @property
    def counts_toward_total(self):
        return self.approval_status in (None, "approved")

    def to_dict(self):
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": float(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "method": self.method,
            "note": self.note,
            "receipt_url": self.receipt_url,
            "paid_at": _iso(self.paid_at),
            "recorded_by": self.recorded_by,
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "rejection_reason": self.rejection_reason,
        }
