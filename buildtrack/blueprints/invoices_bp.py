"""
Factory Standards Build Tracker
Invoices blueprint — client invoices and the payment ledger.

Endpoints summary:
    INVOICE  /api/v1/invoices                                  GET   (staff/accounting; ?status)
             /api/v1/invoices/mine                             GET
             /api/v1/clients/<uid>/invoices                    GET, POST (JSON or multipart)
             /api/v1/invoices/<iid>                            GET, PUT, DELETE

    PAYMENT  /api/v1/invoices/<iid>/payments                   POST  (client → pending, staff → approved)
             /api/v1/invoices/<iid>/payments/<pid>             PUT, DELETE
             /api/v1/invoices/<iid>/payments/<pid>/approve     POST
             /api/v1/invoices/<iid>/payments/<pid>/reject      POST
             /api/v1/payments/pending                          GET
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import commit_and_dispatch, json_body, register_service_error_handlers
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import invoice_service, storage_service
from buildtrack.services.permission_service import Capability, has_capability

logger = logging.getLogger(__name__)

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/v1")
register_service_error_handlers(invoices_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _manages_invoices(user):
    return has_capability(user.role, Capability.INVOICES_MANAGE)


def _get_invoice_for_user(iid, user):
    """Staff/accounting reach every invoice; clients only their own."""
    if _manages_invoices(user):
        return invoice_service.get_invoice(iid)
    return invoice_service.get_invoice(iid, client_uid=user.uid)


def _payload_with_file(key_builder):
    """JSON body, or multipart form fields plus an optional ``file`` upload."""
    if request.files:
        data = request.form.to_dict()
        file = request.files.get("file")
        if file is not None and file.filename:
            data["_uploaded_url"] = storage_service.save_upload(
                file, key_builder(file.filename),
                allowed_extensions=storage_service.ALLOWED_DOCUMENT_EXTENSIONS,
            )
        return data
    return json_body()


# ═══════════════════════════════════════════════════════════════════════════
#  INVOICES
# ═══════════════════════════════════════════════════════════════════════════

@invoices_bp.route("/invoices", methods=["GET"])
@require_capability(Capability.INVOICES_MANAGE)
def list_invoices():
    invoices = invoice_service.list_all(status=request.args.get("status"))
    return jsonify({"items": [inv.to_dict() for inv in invoices], "total": len(invoices)})


@invoices_bp.route("/invoices/mine", methods=["GET"])
@require_auth
def my_invoices():
    invoices = invoice_service.list_for_client(get_current_user().uid)
    return jsonify({"items": [inv.to_dict() for inv in invoices], "total": len(invoices)})


@invoices_bp.route("/clients/<uid>/invoices", methods=["GET"])
@require_capability(Capability.INVOICES_MANAGE)
def list_client_invoices(uid):
    invoices = invoice_service.list_for_client(uid)
    return jsonify({"items": [inv.to_dict() for inv in invoices], "total": len(invoices)})


@invoices_bp.route("/clients/<uid>/invoices", methods=["POST"])
@require_capability(Capability.INVOICES_MANAGE)
def create_invoice(uid):
    data = _payload_with_file(lambda name: storage_service.invoice_file_key(uid, name))
    if data.get("_uploaded_url"):
        data["download_url"] = data.pop("_uploaded_url")
    invoice = invoice_service.create_invoice(uid, data, uploaded_by=get_current_user().uid)
    commit_and_dispatch()
    return jsonify(invoice.to_dict()), 201


@invoices_bp.route("/invoices/<iid>", methods=["GET"])
@require_auth
def get_invoice(iid):
    return jsonify(_get_invoice_for_user(iid, get_current_user()).to_dict())


@invoices_bp.route("/invoices/<iid>", methods=["PUT"])
@require_capability(Capability.INVOICES_MANAGE)
def update_invoice(iid):
    invoice = invoice_service.update_invoice(invoice_service.get_invoice(iid), json_body())
    commit_and_dispatch()
    return jsonify(invoice.to_dict())


@invoices_bp.route("/invoices/<iid>", methods=["DELETE"])
@require_capability(Capability.INVOICES_MANAGE)
def delete_invoice(iid):
    invoice = invoice_service.get_invoice(iid)
    download_url = invoice.download_url
    invoice_service.delete_invoice(invoice)
    commit_and_dispatch()
    if download_url:
        storage_service.delete_owned(download_url)
    return jsonify({"deleted": True, "id": iid})


# ═══════════════════════════════════════════════════════════════════════════
#  PAYMENTS
# ═══════════════════════════════════════════════════════════════════════════

@invoices_bp.route("/invoices/<iid>/payments", methods=["POST"])
@require_auth
def record_payment(iid):
    user = get_current_user()
    invoice = _get_invoice_for_user(iid, user)
    data = _payload_with_file(lambda name: storage_service.invoice_file_key(invoice.client_uid, name))
    if data.get("_uploaded_url"):
        data["receipt_url"] = data.pop("_uploaded_url")
    payment = invoice_service.record_payment(
        invoice, data, user, recorded_by_client=not _manages_invoices(user),
    )
    commit_and_dispatch()
    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()}), 201


@invoices_bp.route("/invoices/<iid>/payments/<pid>", methods=["PUT"])
@require_capability(Capability.INVOICES_MANAGE)
def update_payment(iid, pid):
    invoice = invoice_service.get_invoice(iid)
    payment = invoice_service.update_payment(invoice, invoice_service.get_payment(invoice, pid), json_body())
    commit_and_dispatch()
    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()})


@invoices_bp.route("/invoices/<iid>/payments/<pid>", methods=["DELETE"])
@require_capability(Capability.INVOICES_MANAGE)
def delete_payment(iid, pid):
    invoice = invoice_service.get_invoice(iid)
    invoice_service.delete_payment(invoice, invoice_service.get_payment(invoice, pid))
    commit_and_dispatch()
    return jsonify({"deleted": True, "id": pid, "invoice": invoice.to_dict()})


@invoices_bp.route("/invoices/<iid>/payments/<pid>/approve", methods=["POST"])
@require_capability(Capability.PAYMENTS_APPROVE)
def approve_payment(iid, pid):
    invoice = invoice_service.get_invoice(iid)
    payment = invoice_service.review_payment(
        invoice, invoice_service.get_payment(invoice, pid), get_current_user(), approved=True,
    )
    commit_and_dispatch()
    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()})


@invoices_bp.route("/invoices/<iid>/payments/<pid>/reject", methods=["POST"])
@require_capability(Capability.PAYMENTS_APPROVE)
def reject_payment(iid, pid):
    """Body: { "reason": "..." }"""
    invoice = invoice_service.get_invoice(iid)
    payment = invoice_service.review_payment(
        invoice, invoice_service.get_payment(invoice, pid), get_current_user(),
        approved=False, rejection_reason=json_body().get("reason"),
    )
    commit_and_dispatch()
    return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()})


@invoices_bp.route("/payments/pending", methods=["GET"])
@require_capability(Capability.PAYMENTS_APPROVE)
def pending_payments():
    payments = invoice_service.list_pending_payments()
    return jsonify({"items": [p.to_dict() for p in payments], "total": len(payments)})
