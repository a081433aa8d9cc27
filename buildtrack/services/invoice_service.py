"""Invoice service layer — client invoices and the payment ledger.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Totals are never stored: ``Invoice.total_paid`` sums approved payments
(and legacy payments without an approval status) and ``recompute_status``
derives pending / partial / paid from it after every ledger change.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.invoice import (
    DEFAULT_CURRENCY,
    INVOICE_STATUSES,
    PAYMENT_METHODS,
    Invoice,
    InvoicePayment,
)
from buildtrack.services import outbox
from buildtrack.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

DEFAULT_DUE_DAYS = 30


def _amount(value, field="amount"):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"})
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", details={field: "invalid"})
    return amount.quantize(Decimal("0.01"))


def _currency(value):
    return (value or DEFAULT_CURRENCY).strip().upper()[:3]


# ── Lookups ──────────────────────────────────────────────────────────────


def get_invoice(invoice_id, client_uid=None):
    """Load an invoice; with ``client_uid`` it must belong to that client."""
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None or (client_uid is not None and invoice.client_uid != client_uid):
        raise NotFoundError(resource="Invoice", resource_id=invoice_id)
    return invoice


def get_payment(invoice, payment_id):
    for payment in invoice.payments:
        if payment.id == payment_id:
            return payment
    raise NotFoundError(resource="Payment", resource_id=payment_id)


def list_for_client(client_uid):
    return (
        Invoice.query.filter_by(client_uid=client_uid)
        .order_by(Invoice.uploaded_at.desc())
        .all()
    )


def list_for_guitar(guitar_id):
    return (
        Invoice.query.filter_by(guitar_id=guitar_id)
        .order_by(Invoice.uploaded_at.desc())
        .all()
    )


def list_all(status=None):
    q = Invoice.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Invoice.uploaded_at.desc()).all()


def list_pending_payments():
    """Client-recorded payments waiting for accounting review."""
    return (
        InvoicePayment.query.filter_by(approval_status="pending")
        .order_by(InvoicePayment.paid_at)
        .all()
    )


def calculate_guitar_total_paid(guitar_id):
    return round(sum(inv.total_paid for inv in list_for_guitar(guitar_id)), 2)


def guitar_balance(guitar):
    """{"total_paid", "remaining"} for a guitar with a price."""
    total_paid = calculate_guitar_total_paid(guitar.id)
    price = float(guitar.price or 0)
    return {"total_paid": total_paid, "remaining": round(max(price - total_paid, 0), 2)}


# ── Status ───────────────────────────────────────────────────────────────


def recompute_status(invoice):
    """paid if total ≥ amount, partial if total > 0, else pending."""
    db.session.flush()
    db.session.expire(invoice, ["payments"])
    total = invoice.total_paid
    if total >= float(invoice.amount):
        invoice.status = "paid"
    elif total > 0:
        invoice.status = "partial"
    else:
        invoice.status = "pending"
    return invoice.status


# ── Invoices ─────────────────────────────────────────────────────────────


def create_invoice(client_uid, data, uploaded_by=None):
    if not client_uid:
        raise ValidationError("client_uid is required", details={"client_uid": "required"})
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    due_days = data.get("due_days_after_trigger")
    invoice = Invoice(
        client_uid=client_uid,
        guitar_id=data.get("guitar_id"),
        triggered_by_stage_id=data.get("triggered_by_stage_id"),
        title=title,
        description=data.get("description"),
        amount=_amount(data.get("amount")),
        currency=_currency(data.get("currency")),
        status="pending",
        due_date=parse_datetime(data.get("due_date")),
        due_days_after_trigger=int(due_days) if due_days else None,
        payment_link=data.get("payment_link"),
        download_url=data.get("download_url"),
        uploaded_by=uploaded_by,
    )
    db.session.add(invoice)
    db.session.flush()
    logger.info("Invoice created id=%s client=%s amount=%s %s",
                invoice.id, client_uid, invoice.amount, invoice.currency)
    return invoice


def create_scheduled_invoice(guitar, stage, actor_uid=None):
    """Raise the invoice a stage's ``invoice_schedule`` asks for.

    Returns None when the stage has no usable schedule or the guitar has
    no client.
    """
    schedule = stage.invoice_schedule or {}
    if not guitar.client_uid or not schedule.get("enabled", True) or not schedule.get("amount"):
        return None
    due_days = int(schedule.get("due_days") or schedule.get("due_days_after_trigger") or DEFAULT_DUE_DAYS)
    model = guitar.model or "guitar"
    return create_invoice(
        guitar.client_uid,
        {
            "title": schedule.get("title") or f"{stage.label} - {model}",
            "description": schedule.get("description") or f"Invoice for {model} - {stage.label}",
            "amount": schedule["amount"],
            "currency": schedule.get("currency") or DEFAULT_CURRENCY,
            "due_date": datetime.now(timezone.utc) + timedelta(days=due_days),
            "payment_link": schedule.get("payment_link"),
            "guitar_id": guitar.id,
            "triggered_by_stage_id": stage.id,
        },
        uploaded_by=actor_uid or "system",
    )


def fill_trigger_due_dates(guitar_id, stage_id):
    """Set due dates on invoices waiting for this guitar to reach ``stage_id``."""
    now = datetime.now(timezone.utc)
    waiting = Invoice.query.filter(
        Invoice.guitar_id == guitar_id,
        Invoice.triggered_by_stage_id == stage_id,
        Invoice.due_date.is_(None),
        Invoice.due_days_after_trigger.isnot(None),
    ).all()
    for invoice in waiting:
        invoice.due_date = now + timedelta(days=invoice.due_days_after_trigger)
    if waiting:
        db.session.flush()
    return waiting


def update_invoice(invoice, data):
    for field in ("title", "description", "payment_link", "download_url"):
        if field in data:
            setattr(invoice, field, data[field])
    if "amount" in data:
        invoice.amount = _amount(data["amount"])
    if "currency" in data:
        invoice.currency = _currency(data["currency"])
    if "due_date" in data:
        invoice.due_date = parse_datetime(data["due_date"])
    if "status" in data:
        if data["status"] not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(INVOICE_STATUSES))}")
        invoice.status = data["status"]
    else:
        recompute_status(invoice)
    db.session.flush()
    return invoice


def delete_invoice(invoice):
    db.session.delete(invoice)
    db.session.flush()


# ── Payments ─────────────────────────────────────────────────────────────


def record_payment(invoice, data, actor, recorded_by_client=False):
    """Append a payment.

    Client-recorded payments start ``pending`` and do not count until
    approved; staff-recorded payments are approved immediately.
    """
    method = data.get("method")
    if method and method not in PAYMENT_METHODS:
        raise ValidationError(f"method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")

    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount=_amount(data.get("amount")),
        currency=_currency(data.get("currency") or invoice.currency),
        method=method,
        note=data.get("note"),
        receipt_url=data.get("receipt_url"),
        paid_at=parse_datetime(data.get("paid_at")) or datetime.now(timezone.utc),
        recorded_by="client" if recorded_by_client else actor.uid,
        approval_status="pending" if recorded_by_client else "approved",
    )
    if not recorded_by_client:
        payment.approved_by = actor.uid
        payment.approved_at = datetime.now(timezone.utc)
    db.session.add(payment)
    recompute_status(invoice)

    if recorded_by_client:
        outbox.enqueue("invoice.payment_pending", {
            "invoice_id": invoice.id,
            "payment_id": payment.id,
            "client_uid": invoice.client_uid,
            "guitar_id": invoice.guitar_id,
            "title": invoice.title,
            "amount": float(payment.amount),
            "currency": payment.currency,
        })
    db.session.flush()
    return payment


def review_payment(invoice, payment, actor, approved, rejection_reason=None):
    if payment.approval_status != "pending":
        raise ValidationError("Only pending payments can be reviewed",
                              details={"approval_status": payment.approval_status})
    payment.approval_status = "approved" if approved else "rejected"
    payment.approved_by = actor.uid
    payment.approved_at = datetime.now(timezone.utc)
    if not approved and rejection_reason:
        payment.rejection_reason = rejection_reason
    write_audit(
        entity_type="invoice", entity_id=invoice.id,
        action="payment.approve" if approved else "payment.reject",
        actor_uid=actor.uid, actor_email=actor.email,
        diff={"payment_id": payment.id, "amount": float(payment.amount)},
    )
    recompute_status(invoice)
    db.session.flush()
    return payment


def update_payment(invoice, payment, data):
    if "amount" in data:
        payment.amount = _amount(data["amount"])
    if "currency" in data:
        payment.currency = _currency(data["currency"])
    if "method" in data:
        if data["method"] and data["method"] not in PAYMENT_METHODS:
            raise ValidationError(f"method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")
        payment.method = data["method"]
    if "note" in data:
        payment.note = data["note"]
    if "paid_at" in data:
        payment.paid_at = parse_datetime(data["paid_at"]) or payment.paid_at
    recompute_status(invoice)
    db.session.flush()
    return payment


def delete_payment(invoice, payment):
    db.session.delete(payment)
    recompute_status(invoice)
    db.session.flush()
