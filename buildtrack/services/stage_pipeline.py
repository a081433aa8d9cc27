"""
Stage Pipeline — moving a guitar between the stages of its run.

One call does the whole unit of work inside the caller's transaction:
  - validates the target stage against the guitar's run
  - enforces ``requires_note`` / ``requires_photo`` before any write
  - optimistic concurrency via ``expected_stage_id`` and the guitar's
    version counter
  - appends the StageTransition, moves the stage pointer, adds the note
  - raises the stage's scheduled invoice and fills trigger due dates
  - in-app notifications (staff always, client unless internal-only)
  - enqueues ``guitar.stage_changed`` with before/after snapshots

Usage:
    from buildtrack.services.stage_pipeline import advance_stage

    result = advance_stage(guitar_id, target_stage_id, actor,
                           note_message="Neck carved", visible_to_client=True)
    db.session.commit()
    outbox.dispatch_after_commit()
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm.exc import StaleDataError

from buildtrack.core.exceptions import ConflictError, NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.guitar import NOTE_TYPES, Guitar, GuitarNote, StageTransition
from buildtrack.models.run import RunStage
from buildtrack.services import invoice_service, outbox
from buildtrack.services.notification import NotificationService

logger = logging.getLogger(__name__)

STAGE_CHANGED_EVENT = "guitar.stage_changed"


@dataclass
class AdvanceResult:
    guitar: Guitar
    changed: bool
    transition: StageTransition | None = None
    note: GuitarNote | None = None
    invoices: list = field(default_factory=list)

    def to_dict(self):
        return {
            "changed": self.changed,
            "guitar": self.guitar.to_dict(),
            "transition": self.transition.to_dict() if self.transition else None,
            "note": self.note.to_dict() if self.note else None,
            "invoice_ids": [inv.id for inv in self.invoices],
        }


def _notify(guitar, stage, actor_uid):
    stage_name = stage.label or "Unknown Stage"
    client_label = stage.client_status_label or stage_name
    run_name = guitar.run.name if guitar.run else None

    NotificationService.notify_all_staff(
        type="guitar_stage_changed",
        title=f"Guitar moved to {stage_name}",
        message=f"{guitar.model} - {guitar.finish} ({guitar.order_number}) moved to {stage_name}",
        guitar_id=guitar.id,
        run_id=guitar.run_id,
        metadata={
            "guitarModel": guitar.model,
            "guitarFinish": guitar.finish,
            "customerName": guitar.customer_name,
            "stageName": stage_name,
            "runName": run_name,
        },
        exclude_uid=actor_uid,
    )
    if guitar.client_uid and not stage.internal_only:
        NotificationService.notify_user(
            guitar.client_uid,
            type="guitar_stage_changed",
            title=f"{guitar.model} moved to {client_label}",
            message=f"Your guitar is now in {client_label}.",
            guitar_id=guitar.id,
            run_id=guitar.run_id,
            metadata={
                "guitarModel": guitar.model,
                "guitarFinish": guitar.finish,
                "stageName": client_label,
            },
        )


def advance_stage(
    guitar_id: str,
    target_stage_id: str,
    actor,
    *,
    note_message: str | None = None,
    note_type: str = "status_change",
    visible_to_client: bool = False,
    photo_urls: list[str] | None = None,
    expected_stage_id: str | None = None,
) -> AdvanceResult:
    """
    Move a guitar to ``target_stage_id``.

    Raises:
        NotFoundError: unknown guitar.
        ValidationError: stage of another run, missing required note or
            photo, unknown note type.
        ConflictError: ``expected_stage_id`` is stale, or a concurrent
            writer bumped the guitar's version first.
    """
    guitar = db.session.get(Guitar, guitar_id)
    if guitar is None:
        raise NotFoundError(resource="Guitar", resource_id=guitar_id)

    stage = db.session.get(RunStage, target_stage_id) if target_stage_id else None
    if stage is None or stage.run_id != guitar.run_id:
        raise ValidationError(
            "Stage does not belong to this guitar's run",
            details={"stage_id": target_stage_id},
        )

    if expected_stage_id is not None and expected_stage_id != guitar.stage_id:
        raise ConflictError(
            resource="Guitar", field="stage_id", value=guitar.stage_id,
            message="Guitar has moved since it was loaded; refresh and try again",
        )

    if stage.id == guitar.stage_id:
        return AdvanceResult(guitar=guitar, changed=False)

    message = (note_message or "").strip()
    photos = [u for u in (photo_urls or []) if u]
    if stage.requires_note and not message:
        raise ValidationError(f'A note is required to move to "{stage.label}"',
                              details={"note_message": "required"})
    if stage.requires_photo and not photos:
        raise ValidationError(f'At least one photo is required to move to "{stage.label}"',
                              details={"photo_urls": "required"})
    if note_type not in NOTE_TYPES:
        raise ValidationError(f"Note type must be one of: {', '.join(NOTE_TYPES)}")

    actor_uid = getattr(actor, "uid", None)
    before = guitar.snapshot()
    from_stage_id = guitar.stage_id

    note = None
    if message or photos:
        note = GuitarNote(
            guitar_id=guitar.id,
            stage_id=stage.id,
            author_uid=actor_uid,
            author_name=getattr(actor, "display_name", None) or getattr(actor, "email", None),
            message=message,
            type=note_type,
            visible_to_client=bool(visible_to_client),
            photo_urls=photos or None,
        )
        db.session.add(note)

    guitar.stage_id = stage.id
    guitar.stage = stage
    guitar.updated_at = datetime.now(timezone.utc)
    try:
        db.session.flush()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent stage change on guitar %s", guitar_id, extra={"guitar_id": guitar_id})
        raise ConflictError(
            resource="Guitar", field="version", value=None,
            message="Guitar was changed by someone else; refresh and try again",
        )

    transition = StageTransition(
        guitar_id=guitar.id,
        from_stage_id=from_stage_id,
        to_stage_id=stage.id,
        actor_uid=actor_uid,
        note_id=note.id if note else None,
    )
    db.session.add(transition)

    invoices = []
    scheduled = invoice_service.create_scheduled_invoice(guitar, stage, actor_uid)
    if scheduled is not None:
        invoices.append(scheduled)
    invoice_service.fill_trigger_due_dates(guitar.id, stage.id)

    _notify(guitar, stage, actor_uid)
    write_audit(
        entity_type="guitar", entity_id=guitar.id, action="guitar.stage_change",
        actor_uid=actor_uid, actor_email=getattr(actor, "email", None),
        diff={"stage_id": {"old": from_stage_id, "new": stage.id}},
    )
    outbox.enqueue(STAGE_CHANGED_EVENT, {"before": before, "after": guitar.snapshot()})
    db.session.flush()

    logger.info(
        "Guitar %s moved %s -> %s by %s", guitar.id, from_stage_id, stage.id, actor_uid,
        extra={"guitar_id": guitar.id, "run_id": guitar.run_id, "user_uid": actor_uid},
    )
    return AdvanceResult(guitar=guitar, changed=True, transition=transition,
                         note=note, invoices=invoices)
