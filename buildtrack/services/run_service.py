"""Run service layer — production runs and their stage pipelines.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Operations:
- Run create (with initial stages) / update / get / list
- Stage add / update / delete / reorder, keeping ``order`` dense from 0
- Run archive / unarchive with staff notification + audit
"""
import logging
from datetime import datetime, timezone

from buildtrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.guitar import Guitar
from buildtrack.models.run import Run, RunStage
from buildtrack.services.notification import NotificationService
from buildtrack.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

RUN_FIELDS = ("name", "factory", "is_active", "thumbnail_url", "spec_constraints")
STAGE_FIELDS = (
    "label", "client_status_label", "internal_only",
    "requires_note", "requires_photo", "invoice_schedule",
)


# ── Lookups ──────────────────────────────────────────────────────────────


def get_run(run_id):
    run = db.session.get(Run, run_id)
    if run is None:
        raise NotFoundError(resource="Run", resource_id=run_id)
    return run


def get_stage(run_id, stage_id):
    stage = db.session.get(RunStage, stage_id)
    if stage is None or stage.run_id != run_id:
        raise NotFoundError(resource="RunStage", resource_id=stage_id)
    return stage


def list_stages(run_id):
    return RunStage.query.filter_by(run_id=run_id).order_by(RunStage.order).all()


def get_first_stage(run_id):
    """Stage with the minimum order, or None for a run without stages."""
    return (
        RunStage.query.filter_by(run_id=run_id)
        .order_by(RunStage.order)
        .first()
    )


def list_runs(include_archived=False, active_only=False, run_ids=None):
    q = Run.query
    if not include_archived:
        q = q.filter(Run.archived.is_(False))
    if active_only:
        q = q.filter(Run.is_active.is_(True))
    if run_ids is not None:
        if not run_ids:
            return []
        q = q.filter(Run.id.in_(run_ids))
    return q.order_by(Run.created_at.desc()).all()


# ── Run CRUD ─────────────────────────────────────────────────────────────


def _validate_stage_data(data):
    label = (data.get("label") or "").strip()
    if not label:
        raise ValidationError("Stage label is required", details={"label": "required"})
    schedule = data.get("invoice_schedule")
    if schedule is not None:
        if not isinstance(schedule, dict):
            raise ValidationError("invoice_schedule must be an object")
        try:
            amount = float(schedule.get("amount") or 0)
        except (TypeError, ValueError):
            raise ValidationError("invoice_schedule.amount must be a number")
        if amount < 0:
            raise ValidationError("invoice_schedule.amount must not be negative")
    return label


def create_run(data, actor=None):
    """Create a run together with its initial stages.

    ``data["stages"]`` is an ordered list; orders are assigned 0..n-1 in
    list order regardless of any ``order`` keys supplied.

    Returns:
        Run instance (already flushed).
    """
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Run name is required", details={"name": "required"})

    run = Run(
        name=name,
        factory=data.get("factory"),
        is_active=bool(data.get("is_active", True)),
        starts_at=parse_datetime(data.get("starts_at")) or datetime.now(timezone.utc),
        ends_at=parse_datetime(data.get("ends_at")),
        thumbnail_url=data.get("thumbnail_url"),
        spec_constraints=data.get("spec_constraints"),
    )
    db.session.add(run)
    db.session.flush()

    for index, stage_data in enumerate(data.get("stages") or []):
        label = _validate_stage_data(stage_data)
        db.session.add(RunStage(
            run_id=run.id,
            label=label,
            client_status_label=stage_data.get("client_status_label"),
            order=index,
            internal_only=bool(stage_data.get("internal_only", False)),
            requires_note=bool(stage_data.get("requires_note", False)),
            requires_photo=bool(stage_data.get("requires_photo", False)),
            invoice_schedule=stage_data.get("invoice_schedule"),
        ))
    db.session.flush()

    NotificationService.notify_all_staff(
        type="run_created",
        title=f"New Run Created: {run.name}",
        message=f'A new run "{run.name}" has been created',
        run_id=run.id,
        metadata={"runName": run.name},
        exclude_uid=getattr(actor, "uid", None),
    )
    db.session.flush()
    logger.info("Run created id=%s stages=%d", run.id, len(run.stages), extra={"run_id": run.id})
    return run


def update_run(run, data):
    for field in RUN_FIELDS:
        if field in data:
            setattr(run, field, data[field])
    if "starts_at" in data:
        run.starts_at = parse_datetime(data["starts_at"])
    if "ends_at" in data:
        run.ends_at = parse_datetime(data["ends_at"])
    if not (run.name or "").strip():
        raise ValidationError("Run name is required", details={"name": "required"})
    db.session.flush()
    return run


def archive_run(run, actor):
    if run.archived:
        return run
    run.archived = True
    run.archived_at = datetime.now(timezone.utc)
    run.archived_by = actor.uid
    write_audit(entity_type="run", entity_id=run.id, action="run.archive",
                actor_uid=actor.uid, actor_email=actor.email)
    NotificationService.notify_all_staff(
        type="run_archived",
        title=f"Run Archived: {run.name}",
        message=f'Run "{run.name}" has been archived',
        run_id=run.id,
        metadata={"runName": run.name},
        exclude_uid=actor.uid,
    )
    db.session.flush()
    return run


def unarchive_run(run, actor):
    run.archived = False
    run.archived_at = None
    run.archived_by = None
    write_audit(entity_type="run", entity_id=run.id, action="run.unarchive",
                actor_uid=actor.uid, actor_email=actor.email)
    db.session.flush()
    return run


# ── Stages ───────────────────────────────────────────────────────────────


def _apply_order(stages):
    """Write dense orders 0..n-1 in the given sequence.

    Orders are first moved to negative placeholders so the unique
    (run_id, order) constraint never sees two rows with the same value
    mid-update.
    """
    for index, stage in enumerate(stages):
        stage.order = -(index + 1)
    db.session.flush()
    for index, stage in enumerate(stages):
        stage.order = index
    db.session.flush()


def add_stage(run, data):
    """Insert a stage. ``position`` (0-based) defaults to the end."""
    label = _validate_stage_data(data)
    stages = list_stages(run.id)
    position = data.get("position", data.get("order"))
    try:
        position = len(stages) if position is None else int(position)
    except (TypeError, ValueError):
        raise ValidationError("position must be an integer")
    position = max(0, min(position, len(stages)))

    stage = RunStage(
        run_id=run.id,
        label=label,
        client_status_label=data.get("client_status_label"),
        order=len(stages) + 1000,
        internal_only=bool(data.get("internal_only", False)),
        requires_note=bool(data.get("requires_note", False)),
        requires_photo=bool(data.get("requires_photo", False)),
        invoice_schedule=data.get("invoice_schedule"),
    )
    db.session.add(stage)
    db.session.flush()

    stages.insert(position, stage)
    _apply_order(stages)
    db.session.expire(run, ["stages"])
    return stage


def update_stage(stage, data):
    if "label" in data:
        stage.label = _validate_stage_data({**stage.to_dict(), **data})
    for field in STAGE_FIELDS:
        if field == "label" or field not in data:
            continue
        if field == "invoice_schedule":
            _validate_stage_data({"label": stage.label, "invoice_schedule": data[field]})
        setattr(stage, field, data[field])
    db.session.flush()
    return stage


def delete_stage(stage):
    """Delete a stage nobody is parked at, then close the gap in orders."""
    in_use = Guitar.query.filter_by(stage_id=stage.id).count()
    if in_use:
        raise ConflictError(
            resource="RunStage", field="id", value=stage.id,
            message=f"{in_use} guitar(s) are at this stage; move them before deleting it",
        )
    run = stage.run
    db.session.delete(stage)
    db.session.flush()
    _apply_order(list_stages(run.id))
    db.session.expire(run, ["stages"])


def reorder_stages(run, stage_ids):
    """Apply a full new ordering given as a list of every stage id."""
    stages = {s.id: s for s in list_stages(run.id)}
    if not isinstance(stage_ids, list) or sorted(stage_ids) != sorted(stages):
        raise ValidationError(
            "stage_ids must list every stage of the run exactly once",
            details={"stage_ids": "mismatch"},
        )
    _apply_order([stages[sid] for sid in stage_ids])
    db.session.expire(run, ["stages"])
    return list_stages(run.id)
