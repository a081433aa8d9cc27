"""
Factory Standards Build Tracker
Custom Shop blueprint — one-off build enquiries.

    /api/v1/custom-shop/requests                  GET, POST
    /api/v1/custom-shop/requests/<rid>            GET
    /api/v1/custom-shop/requests/<rid>/status     PATCH   (staff)
    /api/v1/custom-shop/inspiration-images        POST    (multipart)
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import commit_and_dispatch, json_body, register_service_error_handlers
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import custom_shop_service, storage_service
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

custom_shop_bp = Blueprint("custom_shop", __name__, url_prefix="/api/v1/custom-shop")
register_service_error_handlers(custom_shop_bp)


def _manages(user):
    return has_capability(user.role, Capability.CUSTOM_SHOP_MANAGE)


@custom_shop_bp.route("/requests", methods=["GET"])
@require_auth
def list_requests():
    """Staff see every request (optionally ?status=); clients see their own."""
    user = get_current_user()
    if _manages(user):
        items = custom_shop_service.list_requests(status=request.args.get("status"))
    else:
        items = custom_shop_service.list_requests(submitter_uid=user.uid)
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@custom_shop_bp.route("/requests", methods=["POST"])
@require_auth
def submit_request():
    req = custom_shop_service.submit_request(json_body(), get_current_user())
    commit_and_dispatch()
    return jsonify(req.to_dict()), 201


@custom_shop_bp.route("/requests/<rid>", methods=["GET"])
@require_auth
def get_request(rid):
    user = get_current_user()
    req = custom_shop_service.get_request(rid, user, view_all=_manages(user))
    return jsonify(req.to_dict())


@custom_shop_bp.route("/requests/<rid>/status", methods=["PATCH"])
@require_capability(Capability.CUSTOM_SHOP_MANAGE)
def update_status(rid):
    req = custom_shop_service.update_status(
        custom_shop_service.get_request(rid), json_body().get("status"),
    )
    commit_and_dispatch()
    return jsonify(req.to_dict())


@custom_shop_bp.route("/inspiration-images", methods=["POST"])
@require_auth
def upload_inspiration_images():
    files = request.files.getlist("files") or request.files.getlist("file")
    if not files:
        return api_error(E.VALIDATION_REQUIRED, "files are required")
    temp_id = f"custom-shop-{get_current_user().uid}"
    urls = [
        storage_service.save_upload(f, storage_service.reference_image_key(f.filename, temp_id))
        for f in files
    ]
    return jsonify({"urls": urls}), 201
