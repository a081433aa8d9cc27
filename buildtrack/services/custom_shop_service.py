"""Custom Shop service layer — one-off build enquiries.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().
"""
import logging

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.custom_shop import REQUEST_STATUSES, CustomShopRequest
from buildtrack.services import outbox
from buildtrack.services.storage_service import normalize_image_link

logger = logging.getLogger(__name__)

CUSTOM_SHOP_EVENT = "custom_shop_request.created"


def submit_request(data, submitter):
    description = (data.get("guitar_description") or "").strip()
    if not description:
        raise ValidationError("guitar_description is required",
                              details={"guitar_description": "required"})

    request = CustomShopRequest(
        submitter_uid=submitter.uid,
        submitter_email=submitter.email,
        submitter_name=submitter.display_name,
        model=(data.get("model") or "").strip() or None,
        guitar_description=description,
        motivation_notes=data.get("motivation_notes"),
        additional_notes=data.get("additional_notes"),
        inspiration_image_urls=[normalize_image_link(u) for u in data.get("inspiration_image_urls") or []] or None,
        status="submitted",
    )
    db.session.add(request)
    db.session.flush()
    outbox.enqueue(CUSTOM_SHOP_EVENT, {"request_id": request.id})
    logger.info("Custom Shop request %s submitted by %s", request.request_number, submitter.uid)
    return request


def get_request(request_id, user=None, view_all=True):
    request = db.session.get(CustomShopRequest, request_id)
    if request is None or (not view_all and request.submitter_uid != user.uid):
        raise NotFoundError(resource="CustomShopRequest", resource_id=request_id)
    return request


def list_requests(submitter_uid=None, status=None):
    q = CustomShopRequest.query
    if submitter_uid:
        q = q.filter_by(submitter_uid=submitter_uid)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(CustomShopRequest.created_at.desc()).all()


def update_status(request, status):
    if status not in REQUEST_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(REQUEST_STATUSES)}",
                              details={"status": status})
    request.status = status
    db.session.flush()
    return request
