"""
Factory Standards Build Tracker
Settings blueprint — the singleton application settings record.

    /api/v1/settings                     GET     (any signed-in user; branding is public to the portal)
    /api/v1/settings/<section>           PUT     (admin)
    /api/v1/settings/branding/<asset>    POST    (admin, multipart: logo / favicon / email_logo)
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import commit_and_dispatch, json_body, register_service_error_handlers
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import settings_service, storage_service
from buildtrack.services.permission_service import Capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")
register_service_error_handlers(settings_bp)

_ASSET_FIELDS = {"logo": "company_logo", "favicon": "favicon", "email_logo": "email_logo"}


@settings_bp.route("", methods=["GET"])
@require_auth
def get_settings():
    return jsonify(settings_service.get_settings())


@settings_bp.route("/<section>", methods=["PUT"])
@require_capability(Capability.SETTINGS_MANAGE)
def update_section(section):
    settings = settings_service.update_section(section, json_body(), get_current_user())
    commit_and_dispatch()
    return jsonify(settings)


@settings_bp.route("/branding/<asset>", methods=["POST"])
@require_capability(Capability.SETTINGS_MANAGE)
def upload_branding_asset(asset):
    file = request.files.get("file")
    if file is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    url = storage_service.save_upload(file, storage_service.branding_asset_key(asset, file.filename))
    settings = settings_service.update_section(
        "branding", {_ASSET_FIELDS[asset]: url}, get_current_user(),
    )
    commit_and_dispatch()
    return jsonify({"url": url, "settings": settings}), 201
