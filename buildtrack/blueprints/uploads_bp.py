"""
Factory Standards Build Tracker
Uploads blueprint — serves stored files to the people allowed to see them.

Endpoints:
    GET /uploads/<key>

Access by key prefix:
    branding/<asset>/...            anyone (logos are embedded in emails)
    runs/<run_id>/...               any signed-in user
    invoices/<client_uid>/...       that client, or INVOICES_MANAGE
    guitars/<guitar_id>/...         the guitar's client, or GUITARS_VIEW_ALL
    guitars/draft-<uid>-<tmp>/...   the uploader, or GUITARS_VIEW_ALL
    guitars/custom-shop-<uid>/...   that client, or GUITARS_VIEW_ALL
"""

import logging

from flask import Blueprint, send_from_directory

from buildtrack.auth import auth_error_message, get_current_user
from buildtrack.models import db
from buildtrack.models.guitar import Guitar
from buildtrack.services import storage_service
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

uploads_bp = Blueprint("uploads", __name__)

PUBLIC_AREAS = {"branding"}


def can_read_upload(user, key: str) -> bool:
    """True if ``user`` may download the stored file at ``key``."""
    area, _, rest = key.partition("/")
    owner = rest.split("/", 1)[0]

    if area == "runs":
        return True
    if area == "invoices":
        return owner == user.uid or has_capability(user.role, Capability.INVOICES_MANAGE)
    if area != "guitars":
        return False

    if has_capability(user.role, Capability.GUITARS_VIEW_ALL):
        return True
    if owner == f"custom-shop-{user.uid}" or owner.startswith(f"{storage_service.draft_prefix(user.uid)}-"):
        return True
    guitar = db.session.get(Guitar, owner)
    if guitar is not None:
        return guitar.client_uid == user.uid
    # Draft uploads from another session end up in the client's gallery
    url = storage_service.url_for_key(key)
    return any(
        url in (g.reference_images or [])
        for g in Guitar.query.filter_by(client_uid=user.uid)
    )


@uploads_bp.route("/uploads/<path:key>", methods=["GET"])
def uploaded_file(key):
    if key.partition("/")[0] not in PUBLIC_AREAS:
        user = get_current_user()
        if user is None:
            return api_error(E.UNAUTHORIZED, auth_error_message())
        if not can_read_upload(user, key):
            logger.warning("User %s (role=%s) denied upload %s", user.uid, user.role, key)
            return api_error(E.FORBIDDEN, "Permission denied")
    return send_from_directory(storage_service.upload_root(), key)
