"""
Factory Standards Build Tracker
Audit blueprint.

    GET  /api/v1/audit-logs      admin; filters ?action, ?actor_uid, ?entity_type, ?entity_id
    POST /api/v1/activity        the caller records a client activity (page views)
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import (
    commit_and_dispatch,
    json_body,
    paginate_query,
    register_service_error_handlers,
)
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import client_service
from buildtrack.services.permission_service import Capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_service_error_handlers(audit_bp)


@audit_bp.route("/audit-logs", methods=["GET"])
@require_capability(Capability.AUDIT_VIEW)
def list_audit_logs():
    q = client_service.list_audit_logs(
        action=request.args.get("action"),
        actor_uid=request.args.get("actor_uid"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
    )
    items, total = paginate_query(q, default_limit=100, max_limit=500)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})


@audit_bp.route("/activity", methods=["POST"])
@require_auth
def record_activity():
    """Body: { "action": "view_guitar", "entity_id": "...", "details": {...} }"""
    data = json_body()
    action = data.get("action")
    if action not in client_service.CLIENT_ACTIVITY_ACTIONS:
        return api_error(
            E.VALIDATION_INVALID,
            f"action must be one of: {', '.join(client_service.CLIENT_ACTIVITY_ACTIONS)}",
        )
    entry = client_service.record_activity(
        get_current_user(), action,
        entity_type=data.get("entity_type") or "user",
        entity_id=data.get("entity_id"),
        details=data.get("details") if isinstance(data.get("details"), dict) else None,
    )
    commit_and_dispatch()
    return jsonify(entry.to_dict()), 201
