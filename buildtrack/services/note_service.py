"""Note service layer — build log entries, photos and note comments.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm.attributes import flag_modified

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.guitar import NOTE_TYPE_LABELS, NOTE_TYPES, GuitarNote, NoteComment
from buildtrack.models.run import RunStage
from buildtrack.services import outbox, storage_service
from buildtrack.services.notification import NotificationService
from buildtrack.services.permission_service import Capability, has_capability

logger = logging.getLogger(__name__)

NOTE_COMMENT_EVENT = "note_comment.created"


def author_name_of(user):
    return user.display_name or user.email or "Unknown"


def sees_internal_notes(user):
    return has_capability(user.role, Capability.NOTES_VIEW_INTERNAL)


# ── Notes ────────────────────────────────────────────────────────────────


def get_note(guitar, note_id, user=None):
    """Load a note of ``guitar``; clients only reach client-visible ones."""
    note = db.session.get(GuitarNote, note_id)
    if note is None or note.guitar_id != guitar.id:
        raise NotFoundError(resource="Note", resource_id=note_id)
    if user is not None and not sees_internal_notes(user) and not note.visible_to_client:
        raise NotFoundError(resource="Note", resource_id=note_id)
    return note


def list_notes(guitar, user, limit=None):
    """Newest first. Clients get client-visible notes only."""
    q = GuitarNote.query.filter_by(guitar_id=guitar.id)
    if not sees_internal_notes(user):
        q = q.filter(GuitarNote.visible_to_client.is_(True))
    q = q.order_by(GuitarNote.created_at.desc(), GuitarNote.id)
    if limit:
        q = q.limit(limit)
    return q.all()


def add_note(guitar, data, author):
    """Append a note.

    ``stage_id`` defaults to the guitar's current stage; any stage of the
    guitar's run is accepted.
    """
    note_type = data.get("type") or "update"
    if note_type not in NOTE_TYPES:
        raise ValidationError(f"Note type must be one of: {', '.join(NOTE_TYPES)}",
                              details={"type": note_type})

    stage_id = data.get("stage_id") or guitar.stage_id
    stage = db.session.get(RunStage, stage_id)
    if stage is None or stage.run_id != guitar.run_id:
        raise ValidationError("Stage does not belong to this guitar's run",
                              details={"stage_id": stage_id})

    message = (data.get("message") or "").strip()
    photos = [storage_service.normalize_image_link(u) for u in data.get("photo_urls") or [] if u]
    if not message and not photos:
        raise ValidationError("A note needs a message or at least one photo",
                              details={"message": "required"})

    note = GuitarNote(
        guitar_id=guitar.id,
        stage_id=stage.id,
        author_uid=author.uid,
        author_name=author_name_of(author),
        message=message,
        type=note_type,
        visible_to_client=bool(data.get("visible_to_client", False)),
        photo_urls=photos or None,
    )
    db.session.add(note)
    db.session.flush()

    if photos:
        guitar.photo_count = (guitar.photo_count or 0) + len(photos)
        if not guitar.cover_photo_url:
            guitar.cover_photo_url = photos[0]
        guitar.updated_at = datetime.now(timezone.utc)

    _notify_note(guitar, note)
    db.session.flush()
    return note


def _notify_note(guitar, note):
    label = NOTE_TYPE_LABELS.get(note.type, "Update").lower()
    run_name = guitar.run.name if guitar.run else None
    photos = note.photo_urls or []

    if note.visible_to_client or photos:
        with_photos = f" with {len(photos)} photo(s)" if photos else ""
        NotificationService.notify_all_staff(
            type="guitar_note_added",
            title=f"New {label}: {guitar.model}",
            message=f"{note.author_name} added a {label}{with_photos}",
            guitar_id=guitar.id,
            run_id=guitar.run_id,
            note_id=note.id,
            metadata={
                "guitarModel": guitar.model,
                "guitarFinish": guitar.finish,
                "customerName": guitar.customer_name,
                "runName": run_name,
                "authorName": note.author_name,
                "noteType": note.type,
            },
            exclude_uid=note.author_uid,
        )
    if guitar.client_uid and note.visible_to_client and guitar.client_uid != note.author_uid:
        NotificationService.notify_user(
            guitar.client_uid,
            type="guitar_note_added",
            title=f"New {label} on {guitar.model}",
            message=note.message or f"A new {label} has been posted.",
            guitar_id=guitar.id,
            run_id=guitar.run_id,
            note_id=note.id,
            metadata={
                "guitarModel": guitar.model,
                "guitarFinish": guitar.finish,
                "runName": run_name,
                "authorName": note.author_name,
                "noteType": note.type,
            },
        )


def mark_viewed(note, user):
    """Record the first time ``user`` viewed the note."""
    viewed = dict(note.viewed_by or {})
    if user.uid in viewed:
        return note
    viewed[user.uid] = datetime.now(timezone.utc).isoformat()
    note.viewed_by = viewed
    flag_modified(note, "viewed_by")
    db.session.flush()
    return note


def add_photos(guitar, note, photo_urls):
    photos = [storage_service.normalize_image_link(u) for u in photo_urls if u]
    if not photos:
        raise ValidationError("photo_urls is required", details={"photo_urls": "required"})
    note.photo_urls = list(note.photo_urls or []) + photos
    flag_modified(note, "photo_urls")
    guitar.photo_count = (guitar.photo_count or 0) + len(photos)
    if not guitar.cover_photo_url:
        guitar.cover_photo_url = photos[0]
    db.session.flush()
    return note


def remove_photo(guitar, note, url):
    """Drop ``url`` from the note (flush only).

    The stored file is left in place; call ``delete_photo_file`` once the
    change is committed.
    """
    photos = list(note.photo_urls or [])
    if url not in photos:
        raise NotFoundError(resource="Photo", resource_id=url)
    photos.remove(url)
    note.photo_urls = photos or None
    flag_modified(note, "photo_urls")
    guitar.photo_count = max((guitar.photo_count or 0) - 1, 0)
    if guitar.cover_photo_url == url:
        guitar.cover_photo_url = None
    db.session.flush()


def delete_photo_file(guitar, note, url):
    """Best-effort delete of a removed photo; True when a stored file went away."""
    deleted = storage_service.delete_owned(url)
    if not deleted and storage_service.is_owned_url(url):
        logger.warning("Stored photo for note %s was not deleted", note.id,
                       extra={"guitar_id": guitar.id})
    return deleted


# ── Comments ─────────────────────────────────────────────────────────────


def list_comments(note):
    return (
        NoteComment.query.filter_by(note_id=note.id)
        .order_by(NoteComment.created_at, NoteComment.id)
        .all()
    )


def add_comment(guitar, note, message, author):
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required", details={"message": "required"})
    comment = NoteComment(
        note_id=note.id,
        guitar_id=guitar.id,
        author_uid=author.uid,
        author_name=author_name_of(author),
        message=message,
    )
    db.session.add(comment)
    db.session.flush()
    outbox.enqueue(NOTE_COMMENT_EVENT, {
        "guitar_id": guitar.id,
        "note_id": note.id,
        "comment_id": comment.id,
        "author_uid": author.uid,
        "author_name": comment.author_name,
        "message": message,
    })
    return comment
