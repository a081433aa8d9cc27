"""
Factory Standards Build Tracker
Notifications blueprint — the caller's in-app notifications.

    /api/v1/notifications                   GET     (?unread_only, ?limit, ?offset)
    /api/v1/notifications/unread-count      GET
    /api/v1/notifications/<nid>/read        PATCH
    /api/v1/notifications/mark-all-read     POST
    /api/v1/notifications/<nid>             DELETE
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import arg_flag, commit_and_dispatch, register_service_error_handlers
from buildtrack.core.exceptions import NotFoundError
from buildtrack.models import db
from buildtrack.services.notification import NotificationService

logger = logging.getLogger(__name__)

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_service_error_handlers(notifications_bp)


def _get_own(nid):
    notif = NotificationService.get_for_user(nid, get_current_user().uid)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=nid)
    return notif


@notifications_bp.route("/notifications", methods=["GET"])
@require_auth
def list_notifications():
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_user(
        get_current_user().uid, unread_only=arg_flag("unread_only"), limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notifications_bp.route("/notifications/unread-count", methods=["GET"])
@require_auth
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(get_current_user().uid)})


@notifications_bp.route("/notifications/<int:nid>/read", methods=["PATCH"])
@require_auth
def mark_read(nid):
    notif = _get_own(nid)
    notif.mark_read()
    commit_and_dispatch()
    return jsonify(notif.to_dict())


@notifications_bp.route("/notifications/mark-all-read", methods=["POST"])
@require_auth
def mark_all_read():
    count = NotificationService.mark_all_read(get_current_user().uid)
    commit_and_dispatch()
    return jsonify({"marked_read": count})


@notifications_bp.route("/notifications/<int:nid>", methods=["DELETE"])
@require_auth
def delete_notification(nid):
    db.session.delete(_get_own(nid))
    commit_and_dispatch()
    return jsonify({"deleted": True, "id": nid})
