"""
Factory Standards Build Tracker
Runs blueprint — runs, stage pipelines and run updates.

Endpoints summary:
    RUN     /api/v1/runs                                   GET, POST
            /api/v1/runs/<rid>                             GET, PUT
            /api/v1/runs/<rid>/archive                     POST
            /api/v1/runs/<rid>/unarchive                   POST
            /api/v1/runs/<rid>/thumbnail                   POST  (multipart)
            /api/v1/runs/<rid>/guitars                     GET

    STAGE   /api/v1/runs/<rid>/stages                      GET, POST
            /api/v1/runs/<rid>/stages/order                PUT
            /api/v1/runs/<rid>/stages/<sid>                PUT, DELETE

    UPDATE  /api/v1/runs/<rid>/updates                     GET, POST
            /api/v1/runs/<rid>/updates/<uid>               GET
            /api/v1/runs/<rid>/updates/<uid>/comments      GET, POST
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
from buildtrack.core.exceptions import NotFoundError
from buildtrack.middleware.permission_required import require_capability
from buildtrack.services import (
    client_service,
    guitar_service,
    run_service,
    run_update_service,
    storage_service,
)
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

runs_bp = Blueprint("runs", __name__, url_prefix="/api/v1")
register_service_error_handlers(runs_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _sees_all_runs(user):
    return has_capability(user.role, Capability.RUNS_VIEW_ALL)


def _get_run_for_user(rid, user):
    """Clients only reach runs they have a guitar in, or active runs open to orders."""
    run = run_service.get_run(rid)
    if _sees_all_runs(user):
        return run
    if run.id in guitar_service.client_run_ids(user.uid):
        return run
    if run.is_active and not run.archived:
        return run
    raise NotFoundError(resource="Run", resource_id=rid)


# ═══════════════════════════════════════════════════════════════════════════
#  RUNS
# ═══════════════════════════════════════════════════════════════════════════

@runs_bp.route("/runs", methods=["GET"])
@require_auth
def list_runs():
    """Staff see every run; clients see their own runs, or open runs with ?active_only."""
    user = get_current_user()
    include_archived = arg_flag("include_archived")
    active_only = arg_flag("active_only")
    if _sees_all_runs(user):
        runs = run_service.list_runs(include_archived=include_archived, active_only=active_only)
    elif active_only:
        runs = run_service.list_runs(active_only=True)
    else:
        runs = run_service.list_runs(run_ids=guitar_service.client_run_ids(user.uid))
    return jsonify({
        "items": [r.to_dict(include_stages=arg_flag("include_stages")) for r in runs],
        "total": len(runs),
    })


@runs_bp.route("/runs", methods=["POST"])
@require_capability(Capability.RUNS_MANAGE)
def create_run():
    run = run_service.create_run(json_body(), actor=get_current_user())
    commit_and_dispatch()
    return jsonify(run.to_dict(include_stages=True)), 201


@runs_bp.route("/runs/<rid>", methods=["GET"])
@require_auth
def get_run(rid):
    run = _get_run_for_user(rid, get_current_user())
    return jsonify(run.to_dict(include_stages=True))


@runs_bp.route("/runs/<rid>", methods=["PUT"])
@require_capability(Capability.RUNS_MANAGE)
def update_run(rid):
    run = run_service.update_run(run_service.get_run(rid), json_body())
    commit_and_dispatch()
    return jsonify(run.to_dict(include_stages=True))


@runs_bp.route("/runs/<rid>/archive", methods=["POST"])
@require_capability(Capability.RUNS_MANAGE)
def archive_run(rid):
    run = run_service.archive_run(run_service.get_run(rid), get_current_user())
    commit_and_dispatch()
    return jsonify(run.to_dict())


@runs_bp.route("/runs/<rid>/unarchive", methods=["POST"])
@require_capability(Capability.RUNS_MANAGE)
def unarchive_run(rid):
    run = run_service.unarchive_run(run_service.get_run(rid), get_current_user())
    commit_and_dispatch()
    return jsonify(run.to_dict())


@runs_bp.route("/runs/<rid>/thumbnail", methods=["POST"])
@require_capability(Capability.RUNS_MANAGE)
def upload_thumbnail(rid):
    run = run_service.get_run(rid)
    file = request.files.get("file")
    if file is None:
        return api_error(E.VALIDATION_REQUIRED, "file is required")
    previous = run.thumbnail_url
    url = storage_service.save_upload(file, storage_service.run_thumbnail_key(run.id, file.filename))
    run_service.update_run(run, {"thumbnail_url": url})
    commit_and_dispatch()
    if previous and previous != url:
        storage_service.delete_owned(previous)
    return jsonify(run.to_dict()), 201


@runs_bp.route("/runs/<rid>/guitars", methods=["GET"])
@require_capability(Capability.GUITARS_VIEW_ALL)
def list_run_guitars(rid):
    run = run_service.get_run(rid)
    guitars = guitar_service.list_for_run(
        run.id,
        include_archived=arg_flag("include_archived"),
        stage_id=request.args.get("stage_id"),
    )
    return jsonify({"items": [g.to_dict() for g in guitars], "total": len(guitars)})


# ═══════════════════════════════════════════════════════════════════════════
#  STAGES
# ═══════════════════════════════════════════════════════════════════════════

@runs_bp.route("/runs/<rid>/stages", methods=["GET"])
@require_auth
def list_stages(rid):
    user = get_current_user()
    run = _get_run_for_user(rid, user)
    stages = run_service.list_stages(run.id)
    if not _sees_all_runs(user):
        stages = [s for s in stages if not s.internal_only]
    return jsonify({"items": [s.to_dict() for s in stages], "total": len(stages)})


@runs_bp.route("/runs/<rid>/stages", methods=["POST"])
@require_capability(Capability.RUNS_MANAGE)
def add_stage(rid):
    run = run_service.get_run(rid)
    stage = run_service.add_stage(run, json_body())
    commit_and_dispatch()
    return jsonify(stage.to_dict()), 201


@runs_bp.route("/runs/<rid>/stages/order", methods=["PUT"])
@require_capability(Capability.RUNS_MANAGE)
def reorder_stages(rid):
    """Body: { "stage_ids": [...every stage id, in the new order] }"""
    run = run_service.get_run(rid)
    stages = run_service.reorder_stages(run, json_body().get("stage_ids"))
    commit_and_dispatch()
    return jsonify({"items": [s.to_dict() for s in stages], "total": len(stages)})


@runs_bp.route("/runs/<rid>/stages/<sid>", methods=["PUT"])
@require_capability(Capability.RUNS_MANAGE)
def update_stage(rid, sid):
    stage = run_service.update_stage(run_service.get_stage(rid, sid), json_body())
    commit_and_dispatch()
    return jsonify(stage.to_dict())


@runs_bp.route("/runs/<rid>/stages/<sid>", methods=["DELETE"])
@require_capability(Capability.RUNS_MANAGE)
def delete_stage(rid, sid):
    run_service.delete_stage(run_service.get_stage(rid, sid))
    commit_and_dispatch()
    return jsonify({"deleted": True, "id": sid})


# ═══════════════════════════════════════════════════════════════════════════
#  RUN UPDATES
# ═══════════════════════════════════════════════════════════════════════════

@runs_bp.route("/runs/<rid>/updates", methods=["GET"])
@require_auth
def list_updates(rid):
    user = get_current_user()
    run = _get_run_for_user(rid, user)
    updates = run_update_service.list_updates(run, user)
    if user.role == "client":
        client_service.record_activity(user, "view_run_updates", entity_type="run", entity_id=run.id)
        commit_and_dispatch()
    return jsonify({"items": [u.to_dict() for u in updates], "total": len(updates)})


@runs_bp.route("/runs/<rid>/updates", methods=["POST"])
@require_capability(Capability.RUN_UPDATES_POST)
def create_update(rid):
    run = run_service.get_run(rid)
    update = run_update_service.create_update(run, json_body(), get_current_user())
    commit_and_dispatch()
    return jsonify(update.to_dict()), 201


@runs_bp.route("/runs/<rid>/updates/<uid>", methods=["GET"])
@require_auth
def get_update(rid, uid):
    user = get_current_user()
    run = _get_run_for_user(rid, user)
    update = run_update_service.get_update(run, uid, user)
    return jsonify(update.to_dict())


@runs_bp.route("/runs/<rid>/updates/<uid>/comments", methods=["GET"])
@require_auth
def list_update_comments(rid, uid):
    user = get_current_user()
    run = _get_run_for_user(rid, user)
    update = run_update_service.get_update(run, uid, user)
    comments = run_update_service.list_comments(update)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@runs_bp.route("/runs/<rid>/updates/<uid>/comments", methods=["POST"])
@require_auth
def add_update_comment(rid, uid):
    user = get_current_user()
    run = _get_run_for_user(rid, user)
    update = run_update_service.get_update(run, uid, user)
    comment = run_update_service.add_comment(update, json_body().get("message"), user)
    commit_and_dispatch()
    return jsonify(comment.to_dict()), 201
