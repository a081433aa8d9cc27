"""Guitar service layer — build orders, visibility and history.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Stage changes go through ``stage_pipeline.advance_stage``; nothing here
moves a guitar between stages after creation.
"""
import logging
from datetime import datetime, timezone

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.guitar import SPEC_FIELDS, Guitar, StageTransition
from buildtrack.services import run_service
from buildtrack.services.notification import NotificationService
from buildtrack.services.permission_service import Capability, has_capability
from buildtrack.services.storage_service import normalize_image_link
from buildtrack.utils.helpers import clean_fields

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "client_uid", "customer_name", "customer_email", "order_number", "model",
    "finish", "serial", "cover_photo_url", "photo_count", "price", "currency",
    "invoice_trigger_stage_id",
)


# ── Visibility ───────────────────────────────────────────────────────────


def can_view_all(user):
    return has_capability(user.role, Capability.GUITARS_VIEW_ALL)


def get_guitar(guitar_id):
    guitar = db.session.get(Guitar, guitar_id)
    if guitar is None:
        raise NotFoundError(resource="Guitar", resource_id=guitar_id)
    return guitar


def get_guitar_for_user(guitar_id, user):
    """Load a guitar the user may see.

    Clients asking for somebody else's guitar get the same NotFoundError
    as for a missing one.
    """
    guitar = get_guitar(guitar_id)
    if can_view_all(user):
        return guitar
    if guitar.client_uid != user.uid:
        raise NotFoundError(resource="Guitar", resource_id=guitar_id)
    return guitar


def list_for_run(run_id, include_archived=False, stage_id=None):
    q = Guitar.query.filter_by(run_id=run_id)
    if not include_archived:
        q = q.filter(Guitar.archived.is_(False))
    if stage_id:
        q = q.filter_by(stage_id=stage_id)
    return q.order_by(Guitar.created_at).all()


def list_for_client(client_uid, include_archived=False):
    q = Guitar.query.filter_by(client_uid=client_uid)
    if not include_archived:
        q = q.filter(Guitar.archived.is_(False))
    return q.order_by(Guitar.created_at.desc()).all()


def client_run_ids(client_uid):
    rows = (
        db.session.query(Guitar.run_id)
        .filter(Guitar.client_uid == client_uid)
        .distinct()
        .all()
    )
    return [r.run_id for r in rows]


# ── Specs ────────────────────────────────────────────────────────────────


def _clean_specs(specs, run):
    """Drop unknown keys and blanks; enforce the run's allowed values."""
    if specs is None:
        return None
    if not isinstance(specs, dict):
        raise ValidationError("specs must be an object")
    cleaned = clean_fields({k: v for k, v in specs.items() if k in SPEC_FIELDS})
    constraints = run.spec_constraints or {}
    errors = {}
    for key, value in cleaned.items():
        allowed = constraints.get(key)
        if allowed and value not in allowed:
            errors[key] = f"must be one of: {', '.join(map(str, allowed))}"
    if errors:
        raise ValidationError("Specs not allowed for this run", details=errors)
    return cleaned or None


# ── Create ───────────────────────────────────────────────────────────────


def _notify_created(guitar, actor):
    suffix = f" for {guitar.customer_name}" if guitar.customer_name else ""
    NotificationService.notify_all_staff(
        type="guitar_created",
        title=f"New Guitar Added: {guitar.model}",
        message=f"{guitar.model} - {guitar.finish} ({guitar.order_number}){suffix}",
        guitar_id=guitar.id,
        run_id=guitar.run_id,
        metadata={
            "guitarModel": guitar.model,
            "guitarFinish": guitar.finish,
            "customerName": guitar.customer_name,
        },
        exclude_uid=getattr(actor, "uid", None),
    )


def _notify_assigned(guitar):
    NotificationService.notify_user(
        guitar.client_uid,
        type="guitar_assigned",
        title=f"{guitar.model or 'A guitar'} has been added to your account",
        message=f"You can now follow the build of {guitar.label}.",
        guitar_id=guitar.id,
        run_id=guitar.run_id,
        metadata={"guitarModel": guitar.model, "guitarFinish": guitar.finish},
    )


def create_guitar(data, actor):
    """Create a guitar in a run.

    ``stage_id`` defaults to the run's first stage and must belong to the
    run. The initial placement is recorded as a transition with no
    ``from_stage_id``.

    Returns:
        Guitar instance (already flushed).
    """
    run_id = data.get("run_id")
    if not run_id:
        raise ValidationError("run_id is required", details={"run_id": "required"})
    run = run_service.get_run(run_id)
    if run.archived:
        raise ValidationError("Cannot add guitars to an archived run")

    stage_id = data.get("stage_id")
    if stage_id:
        stage = run_service.get_stage(run.id, stage_id)
    else:
        stage = run_service.get_first_stage(run.id)
        if stage is None:
            raise ValidationError("Run has no stages", details={"run_id": "no stages"})

    fields = clean_fields({k: data.get(k) for k in EDITABLE_FIELDS})
    guitar = Guitar(
        run_id=run.id,
        stage_id=stage.id,
        specs=_clean_specs(data.get("specs"), run),
        reference_images=[normalize_image_link(u) for u in data.get("reference_images") or []] or None,
        **fields,
    )
    db.session.add(guitar)
    db.session.flush()

    db.session.add(StageTransition(
        guitar_id=guitar.id,
        from_stage_id=None,
        to_stage_id=stage.id,
        actor_uid=getattr(actor, "uid", None),
    ))
    _notify_created(guitar, actor)
    if guitar.client_uid and guitar.client_uid != getattr(actor, "uid", None):
        _notify_assigned(guitar)
    db.session.flush()

    logger.info("Guitar created id=%s run=%s stage=%s", guitar.id, run.id, stage.id,
                extra={"guitar_id": guitar.id, "run_id": run.id})
    return guitar


def onboard_client_guitar(data, client):
    """A client registers their own order: always first stage, owned by them."""
    payload = {
        "run_id": data.get("run_id"),
        "order_number": data.get("order_number"),
        "model": data.get("model"),
        "finish": data.get("finish"),
        "specs": data.get("specs"),
        "reference_images": data.get("reference_images"),
        "client_uid": client.uid,
        "customer_name": client.display_name,
        "customer_email": client.email,
    }
    if not (payload["model"] or "").strip():
        raise ValidationError("model is required", details={"model": "required"})
    run = run_service.get_run(payload["run_id"]) if payload["run_id"] else None
    if run is not None and not run.is_active:
        raise ValidationError("This run is not accepting orders")
    return create_guitar(payload, client)


# ── Update ───────────────────────────────────────────────────────────────


def update_guitar(guitar, data):
    """Apply editable fields. Blank strings clear a field; ``stage_id`` is ignored."""
    previous_client = guitar.client_uid
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if isinstance(value, str):
            value = value.strip() or None
        setattr(guitar, field, value)
    if "specs" in data:
        guitar.specs = _clean_specs(data["specs"], guitar.run)
    if "reference_images" in data:
        guitar.reference_images = [normalize_image_link(u) for u in data["reference_images"] or []] or None
    if guitar.invoice_trigger_stage_id:
        run_service.get_stage(guitar.run_id, guitar.invoice_trigger_stage_id)

    if guitar.client_uid and guitar.client_uid != previous_client:
        _notify_assigned(guitar)
    db.session.flush()
    return guitar


def add_gallery_images(guitar, image_urls):
    """Append client-submitted images to ``reference_images``."""
    if not image_urls:
        raise ValidationError("image_urls is required", details={"image_urls": "required"})
    images = list(guitar.reference_images or [])
    images.extend(normalize_image_link(u) for u in image_urls)
    guitar.reference_images = images
    guitar.updated_at = datetime.now(timezone.utc)
    db.session.flush()
    return guitar


def archive_guitar(guitar, actor):
    if guitar.archived:
        return guitar
    guitar.archived = True
    guitar.archived_at = datetime.now(timezone.utc)
    guitar.archived_by = actor.uid
    write_audit(entity_type="guitar", entity_id=guitar.id, action="guitar.archive",
                actor_uid=actor.uid, actor_email=actor.email)
    NotificationService.notify_all_staff(
        type="guitar_archived",
        title=f"Guitar Archived: {guitar.model}",
        message=f"{guitar.model} - {guitar.finish} ({guitar.order_number}) has been archived",
        guitar_id=guitar.id,
        run_id=guitar.run_id,
        metadata={
            "guitarModel": guitar.model,
            "guitarFinish": guitar.finish,
            "customerName": guitar.customer_name,
        },
        exclude_uid=actor.uid,
    )
    db.session.flush()
    return guitar


def unarchive_guitar(guitar, actor):
    guitar.archived = False
    guitar.archived_at = None
    guitar.archived_by = None
    write_audit(entity_type="guitar", entity_id=guitar.id, action="guitar.unarchive",
                actor_uid=actor.uid, actor_email=actor.email)
    db.session.flush()
    return guitar


# ── History ──────────────────────────────────────────────────────────────


def stage_history(guitar_id):
    return (
        StageTransition.query.filter_by(guitar_id=guitar_id)
        .order_by(StageTransition.created_at, StageTransition.id)
        .all()
    )


def current_stage_id(guitar):
    """Current stage derived from the transition log (falls back to the pointer)."""
    latest = (
        StageTransition.query.filter_by(guitar_id=guitar.id)
        .order_by(StageTransition.id.desc())
        .first()
    )
    return latest.to_stage_id if latest else guitar.stage_id
