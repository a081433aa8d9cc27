"""Run update service layer — progress posts and their comments.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Creating a client-visible update notifies the run's clients in-app right
away; the email broadcast runs from the ``run_update.created`` outbox
event after commit.
"""
import logging

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.guitar import Guitar
from buildtrack.models.run import RunUpdate, RunUpdateComment
from buildtrack.services import outbox
from buildtrack.services.notification import NotificationService
from buildtrack.services.permission_service import Capability, has_capability

logger = logging.getLogger(__name__)

RUN_UPDATE_EVENT = "run_update.created"
RUN_UPDATE_COMMENT_EVENT = "run_update_comment.created"


def run_client_uids(run_id):
    """Unique client uids across the run's guitars."""
    rows = (
        db.session.query(Guitar.client_uid)
        .filter(Guitar.run_id == run_id, Guitar.client_uid.isnot(None))
        .distinct()
        .order_by(Guitar.client_uid)
        .all()
    )
    return [r.client_uid for r in rows]


def _client_has_guitar_in_run(client_uid, run_id):
    return (
        Guitar.query.filter_by(run_id=run_id, client_uid=client_uid).first() is not None
    )


def get_update(run, update_id, user=None):
    update = db.session.get(RunUpdate, update_id)
    if update is None or update.run_id != run.id:
        raise NotFoundError(resource="RunUpdate", resource_id=update_id)
    if user is not None and not has_capability(user.role, Capability.RUNS_VIEW_ALL):
        if not update.visible_to_clients or not _client_has_guitar_in_run(user.uid, run.id):
            raise NotFoundError(resource="RunUpdate", resource_id=update_id)
    return update


def list_updates(run, user):
    """Newest first. Clients see client-visible updates of runs they have guitars in."""
    q = RunUpdate.query.filter_by(run_id=run.id)
    if not has_capability(user.role, Capability.RUNS_VIEW_ALL):
        if not _client_has_guitar_in_run(user.uid, run.id):
            return []
        q = q.filter(RunUpdate.visible_to_clients.is_(True))
    return q.order_by(RunUpdate.created_at.desc(), RunUpdate.id).all()


def create_update(run, data, author):
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    update = RunUpdate(
        run_id=run.id,
        title=title,
        message=(data.get("message") or "").strip(),
        author_uid=author.uid,
        author_name=author.display_name or author.email,
        visible_to_clients=bool(data.get("visible_to_clients", False)),
        image_urls=data.get("image_urls") or None,
    )
    db.session.add(update)
    db.session.flush()

    metadata = {"runName": run.name, "authorName": update.author_name}
    if update.visible_to_clients:
        for uid in run_client_uids(run.id):
            NotificationService.notify_user(
                uid, type="run_update", title=update.title, message=update.message,
                run_id=run.id, metadata=metadata,
            )
    NotificationService.notify_all_staff(
        type="run_update",
        title=f"Run Update: {update.title}",
        message=f"{update.author_name} posted an update to {run.name or 'the run'}",
        run_id=run.id,
        metadata=metadata,
        exclude_uid=author.uid,
    )
    outbox.enqueue(RUN_UPDATE_EVENT, {"run_id": run.id, "update_id": update.id})
    db.session.flush()
    logger.info("Run update posted run=%s update=%s visible=%s",
                run.id, update.id, update.visible_to_clients, extra={"run_id": run.id})
    return update


# ── Comments ─────────────────────────────────────────────────────────────


def list_comments(update):
    return (
        RunUpdateComment.query.filter_by(run_update_id=update.id)
        .order_by(RunUpdateComment.created_at, RunUpdateComment.id)
        .all()
    )


def add_comment(update, message, author):
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required", details={"message": "required"})
    comment = RunUpdateComment(
        run_update_id=update.id,
        run_id=update.run_id,
        author_uid=author.uid,
        author_name=author.display_name or author.email or "Unknown",
        message=message,
    )
    db.session.add(comment)
    db.session.flush()
    outbox.enqueue(RUN_UPDATE_COMMENT_EVENT, {
        "run_id": update.run_id,
        "update_id": update.id,
        "comment_id": comment.id,
        "author_uid": author.uid,
        "author_name": comment.author_name,
        "message": message,
    })
    return comment
