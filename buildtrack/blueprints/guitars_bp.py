"""
Factory Standards Build Tracker
Guitars blueprint — build orders, stage changes, notes and photos.

Endpoints summary:
    GUITAR  /api/v1/guitars                                     POST
            /api/v1/guitars/mine                                GET
            /api/v1/guitars/onboard                             POST
            /api/v1/guitars/<gid>                               GET, PUT
            /api/v1/guitars/<gid>/archive                       POST
            /api/v1/guitars/<gid>/unarchive                     POST
            /api/v1/guitars/<gid>/gallery                       POST  (JSON urls or multipart)
            /api/v1/guitars/reference-images                    POST  (multipart, before creation)

    STAGE   /api/v1/guitars/<gid>/advance-stage                 POST
            /api/v1/guitars/<gid>/history                       GET

    NOTE    /api/v1/guitars/<gid>/notes                         GET, POST
            /api/v1/guitars/<gid>/notes/<nid>/viewed            POST
            /api/v1/guitars/<gid>/notes/<nid>/photos            POST, DELETE
            /api/v1/guitars/<gid>/notes/<nid>/comments          GET, POST
            /api/v1/guitars/<gid>/photos/upload                 POST  (multipart)

    MONEY   /api/v1/guitars/<gid>/invoices                      GET
            /api/v1/guitars/<gid>/balance                       GET
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
from buildtrack.models import db
from buildtrack.models.run import RunStage
from buildtrack.services import (
    client_service,
    guitar_service,
    invoice_service,
    note_service,
    stage_pipeline,
    storage_service,
)
from buildtrack.services.permission_service import Capability
from buildtrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

guitars_bp = Blueprint("guitars", __name__, url_prefix="/api/v1")
register_service_error_handlers(guitars_bp)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _stage_summary(stage_id, staff_view):
    stage = db.session.get(RunStage, stage_id) if stage_id else None
    if stage is None:
        return None
    if staff_view:
        return {"id": stage.id, "label": stage.label, "order": stage.order,
                "client_status_label": stage.client_status_label,
                "internal_only": stage.internal_only}
    return {"id": stage.id, "label": stage.client_status_label or stage.label, "order": stage.order}


def _guitar_payload(guitar, user):
    staff_view = guitar_service.can_view_all(user)
    d = guitar.to_dict()
    d["stage"] = _stage_summary(guitar.stage_id, staff_view)
    d["run_name"] = guitar.run.name if guitar.run else None
    return d


def _uploaded_files():
    files = request.files.getlist("files") or request.files.getlist("file")
    if not files:
        return None
    return files


# ═══════════════════════════════════════════════════════════════════════════
#  GUITARS
# ═══════════════════════════════════════════════════════════════════════════

@guitars_bp.route("/guitars", methods=["POST"])
@require_capability(Capability.GUITARS_MANAGE)
def create_guitar():
    user = get_current_user()
    guitar = guitar_service.create_guitar(json_body(), user)
    commit_and_dispatch()
    return jsonify(_guitar_payload(guitar, user)), 201


@guitars_bp.route("/guitars/mine", methods=["GET"])
@require_auth
def my_guitars():
    user = get_current_user()
    guitars = guitar_service.list_for_client(user.uid, include_archived=arg_flag("include_archived"))
    items = [_guitar_payload(g, user) for g in guitars]
    if user.role == "client":
        client_service.record_activity(user, "view_my_guitars")
        commit_and_dispatch()
    return jsonify({"items": items, "total": len(items)})


@guitars_bp.route("/guitars/onboard", methods=["POST"])
@require_auth
def onboard_guitar():
    """A client registers their own order in an open run."""
    user = get_current_user()
    guitar = guitar_service.onboard_client_guitar(json_body(), user)
    commit_and_dispatch()
    return jsonify(_guitar_payload(guitar, user)), 201


@guitars_bp.route("/guitars/<gid>", methods=["GET"])
@require_auth
def get_guitar(gid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    payload = _guitar_payload(guitar, user)
    if user.role == "client":
        client_service.record_activity(user, "view_guitar", entity_type="guitar", entity_id=guitar.id)
        commit_and_dispatch()
    return jsonify(payload)


@guitars_bp.route("/guitars/<gid>", methods=["PUT"])
@require_capability(Capability.GUITARS_MANAGE)
def update_guitar(gid):
    user = get_current_user()
    guitar = guitar_service.update_guitar(guitar_service.get_guitar(gid), json_body())
    commit_and_dispatch()
    return jsonify(_guitar_payload(guitar, user))


@guitars_bp.route("/guitars/<gid>/archive", methods=["POST"])
@require_capability(Capability.GUITARS_MANAGE)
def archive_guitar(gid):
    guitar = guitar_service.archive_guitar(guitar_service.get_guitar(gid), get_current_user())
    commit_and_dispatch()
    return jsonify(guitar.to_dict())


@guitars_bp.route("/guitars/<gid>/unarchive", methods=["POST"])
@require_capability(Capability.GUITARS_MANAGE)
def unarchive_guitar(gid):
    guitar = guitar_service.unarchive_guitar(guitar_service.get_guitar(gid), get_current_user())
    commit_and_dispatch()
    return jsonify(guitar.to_dict())


@guitars_bp.route("/guitars/reference-images", methods=["POST"])
@require_auth
def upload_reference_images():
    """Upload reference images before the guitar exists; returns their URLs."""
    files = _uploaded_files()
    if not files:
        return api_error(E.VALIDATION_REQUIRED, "files are required")
    draft = request.form.get("temp_id") or "temp"
    temp_id = f"{storage_service.draft_prefix(get_current_user().uid)}-{draft}"
    urls = [
        storage_service.save_upload(f, storage_service.reference_image_key(f.filename, temp_id))
        for f in files
    ]
    return jsonify({"urls": urls}), 201


@guitars_bp.route("/guitars/<gid>/gallery", methods=["POST"])
@require_auth
def add_gallery_images(gid):
    """Owner or staff append reference images (uploaded files or pasted links)."""
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    files = _uploaded_files()
    if files:
        urls = [
            storage_service.save_upload(f, storage_service.reference_image_key(f.filename, guitar.id))
            for f in files
        ]
    else:
        urls = json_body().get("image_urls") or []
    guitar = guitar_service.add_gallery_images(guitar, urls)
    commit_and_dispatch()
    return jsonify(_guitar_payload(guitar, user)), 201


# ═══════════════════════════════════════════════════════════════════════════
#  STAGE CHANGES
# ═══════════════════════════════════════════════════════════════════════════

@guitars_bp.route("/guitars/<gid>/advance-stage", methods=["POST"])
@require_capability(Capability.GUITARS_ADVANCE_STAGE)
def advance_stage(gid):
    """
    Move a guitar to another stage of its run.

    Body: {
        "stage_id": "...",
        "expected_stage_id": "...",          optional, 409 when stale
        "note": {"message", "type", "visible_to_client", "photo_urls"}   optional
    }
    """
    data = json_body()
    stage_id = data.get("stage_id")
    if not stage_id:
        return api_error(E.VALIDATION_REQUIRED, "stage_id is required")
    note = data.get("note") if isinstance(data.get("note"), dict) else {}

    result = stage_pipeline.advance_stage(
        gid,
        stage_id,
        get_current_user(),
        note_message=note.get("message"),
        note_type=note.get("type") or "status_change",
        visible_to_client=bool(note.get("visible_to_client", False)),
        photo_urls=note.get("photo_urls"),
        expected_stage_id=data.get("expected_stage_id"),
    )
    commit_and_dispatch()
    return jsonify(result.to_dict())


@guitars_bp.route("/guitars/<gid>/history", methods=["GET"])
@require_capability(Capability.GUITARS_VIEW_ALL)
def stage_history(gid):
    guitar = guitar_service.get_guitar(gid)
    transitions = guitar_service.stage_history(guitar.id)
    return jsonify({
        "items": [t.to_dict() for t in transitions],
        "total": len(transitions),
        "current_stage_id": guitar_service.current_stage_id(guitar),
    })


# ═══════════════════════════════════════════════════════════════════════════
#  NOTES & PHOTOS
# ═══════════════════════════════════════════════════════════════════════════

@guitars_bp.route("/guitars/<gid>/notes", methods=["GET"])
@require_auth
def list_notes(gid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    limit = request.args.get("limit", type=int)
    notes = note_service.list_notes(guitar, user, limit=limit)
    return jsonify({"items": [n.to_dict() for n in notes], "total": len(notes)})


@guitars_bp.route("/guitars/<gid>/notes", methods=["POST"])
@require_capability(Capability.NOTES_CREATE)
def add_note(gid):
    guitar = guitar_service.get_guitar(gid)
    note = note_service.add_note(guitar, json_body(), get_current_user())
    commit_and_dispatch()
    return jsonify(note.to_dict()), 201


@guitars_bp.route("/guitars/<gid>/notes/<nid>/viewed", methods=["POST"])
@require_auth
def mark_note_viewed(gid, nid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    note = note_service.mark_viewed(note_service.get_note(guitar, nid, user), user)
    commit_and_dispatch()
    return jsonify(note.to_dict())


@guitars_bp.route("/guitars/<gid>/photos/upload", methods=["POST"])
@require_capability(Capability.NOTES_CREATE)
def upload_photos(gid):
    """Multipart ``files`` stored under the guitar's stage folder; returns URLs."""
    guitar = guitar_service.get_guitar(gid)
    files = _uploaded_files()
    if not files:
        return api_error(E.VALIDATION_REQUIRED, "files are required")
    stage_id = request.form.get("stage_id") or guitar.stage_id
    urls = [
        storage_service.save_upload(f, storage_service.guitar_photo_key(guitar.id, stage_id, f.filename))
        for f in files
    ]
    return jsonify({"urls": urls}), 201


@guitars_bp.route("/guitars/<gid>/notes/<nid>/photos", methods=["POST"])
@require_capability(Capability.NOTES_CREATE)
def add_note_photos(gid, nid):
    """Body: { "photo_urls": [...] } — uploaded URLs or pasted folder links."""
    guitar = guitar_service.get_guitar(gid)
    note = note_service.get_note(guitar, nid)
    note = note_service.add_photos(guitar, note, json_body().get("photo_urls") or [])
    commit_and_dispatch()
    return jsonify(note.to_dict()), 201


@guitars_bp.route("/guitars/<gid>/notes/<nid>/photos", methods=["DELETE"])
@require_capability(Capability.NOTES_CREATE)
def delete_note_photo(gid, nid):
    """Body: { "url": "..." }"""
    url = json_body().get("url") or request.args.get("url")
    if not url:
        return api_error(E.VALIDATION_REQUIRED, "url is required")
    guitar = guitar_service.get_guitar(gid)
    note = note_service.get_note(guitar, nid)
    note_service.remove_photo(guitar, note, url)
    commit_and_dispatch()
    file_deleted = note_service.delete_photo_file(guitar, note, url)
    return jsonify({"note": note.to_dict(), "file_deleted": file_deleted})


@guitars_bp.route("/guitars/<gid>/notes/<nid>/comments", methods=["GET"])
@require_auth
def list_note_comments(gid, nid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    note = note_service.get_note(guitar, nid, user)
    comments = note_service.list_comments(note)
    return jsonify({"items": [c.to_dict() for c in comments], "total": len(comments)})


@guitars_bp.route("/guitars/<gid>/notes/<nid>/comments", methods=["POST"])
@require_auth
def add_note_comment(gid, nid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    note = note_service.get_note(guitar, nid, user)
    comment = note_service.add_comment(guitar, note, json_body().get("message"), user)
    commit_and_dispatch()
    return jsonify(comment.to_dict()), 201


# ═══════════════════════════════════════════════════════════════════════════
#  INVOICES
# ═══════════════════════════════════════════════════════════════════════════

@guitars_bp.route("/guitars/<gid>/invoices", methods=["GET"])
@require_auth
def list_guitar_invoices(gid):
    user = get_current_user()
    guitar = guitar_service.get_guitar_for_user(gid, user)
    invoices = invoice_service.list_for_guitar(guitar.id)
    if not guitar_service.can_view_all(user):
        invoices = [inv for inv in invoices if inv.client_uid == user.uid]
    return jsonify({"items": [inv.to_dict() for inv in invoices], "total": len(invoices)})


@guitars_bp.route("/guitars/<gid>/balance", methods=["GET"])
@require_auth
def guitar_balance(gid):
    guitar = guitar_service.get_guitar_for_user(gid, get_current_user())
    if guitar.price is None:
        raise NotFoundError(resource="Price", resource_id=gid)
    return jsonify({
        "guitar_id": guitar.id,
        "price": float(guitar.price),
        "currency": guitar.currency,
        **invoice_service.guitar_balance(guitar),
    })
