"""
Factory Standards Build Tracker
Clients blueprint — client profiles.

    /api/v1/clients                        GET           (staff; ?search, ?include_archived)
    /api/v1/clients/me                     GET, PUT      (own profile)
    /api/v1/clients/<uid>                  GET, PUT      (staff)
    /api/v1/clients/<uid>/archive          POST
    /api/v1/clients/<uid>/unarchive        POST
    /api/v1/clients/<uid>/guitars          GET
"""

import logging

from flask import Blueprint, jsonify, request

from buildtrack.auth import get_current_user, require_auth
from buildtrack.blueprints import (
    arg_flag,
    commit_and_dispatch,
    json_body,
    register_service_error_handlers,
)
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import client_service, guitar_service
from buildtrack.services.permission_service import Capability

logger = logging.getLogger(__name__)

clients_bp = Blueprint("clients", __name__, url_prefix="/api/v1")
register_service_error_handlers(clients_bp)


@clients_bp.route("/clients", methods=["GET"])
@require_capability(Capability.CLIENTS_MANAGE)
def list_clients():
    clients = client_service.list_clients(
        include_archived=arg_flag("include_archived"),
        search=request.args.get("search"),
    )
    return jsonify({"items": [c.to_dict() for c in clients], "total": len(clients)})


@clients_bp.route("/clients/me", methods=["GET"])
@require_auth
def get_my_profile():
    user = get_current_user()
    profile = client_service.get_or_create_profile(user)
    commit_and_dispatch()
    return jsonify(profile.to_dict(include_staff_fields=False))


@clients_bp.route("/clients/me", methods=["PUT"])
@require_auth
def update_my_profile():
    user = get_current_user()
    profile = client_service.get_or_create_profile(user)
    data = {k: v for k, v in json_body().items() if k != "assigned_run_ids"}
    profile = client_service.update_profile(profile, data, user, staff=False)
    commit_and_dispatch()
    return jsonify(profile.to_dict(include_staff_fields=False))


@clients_bp.route("/clients/<uid>", methods=["GET"])
@require_capability(Capability.CLIENTS_MANAGE)
def get_client(uid):
    return jsonify(client_service.get_profile(uid).to_dict())


@clients_bp.route("/clients/<uid>", methods=["PUT"])
@require_capability(Capability.CLIENTS_MANAGE)
def update_client(uid):
    profile = client_service.update_profile(
        client_service.get_profile(uid), json_body(), get_current_user(), staff=True,
    )
    commit_and_dispatch()
    return jsonify(profile.to_dict())


@clients_bp.route("/clients/<uid>/archive", methods=["POST"])
@require_capability(Capability.CLIENTS_MANAGE)
def archive_client(uid):
    profile = client_service.archive_client(client_service.get_profile(uid), get_current_user())
    commit_and_dispatch()
    return jsonify(profile.to_dict())


@clients_bp.route("/clients/<uid>/unarchive", methods=["POST"])
@require_capability(Capability.CLIENTS_MANAGE)
def unarchive_client(uid):
    profile = client_service.unarchive_client(client_service.get_profile(uid), get_current_user())
    commit_and_dispatch()
    return jsonify(profile.to_dict())


@clients_bp.route("/clients/<uid>/guitars", methods=["GET"])
@require_capability(Capability.GUITARS_VIEW_ALL)
def list_client_guitars(uid):
    guitars = guitar_service.list_for_client(uid, include_archived=arg_flag("include_archived"))
    return jsonify({"items": [g.to_dict() for g in guitars], "total": len(guitars)})
