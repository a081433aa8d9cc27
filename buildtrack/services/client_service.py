"""Client service layer — client profiles and the activity log.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().
"""
import logging
from datetime import datetime, timezone

from buildtrack.core.exceptions import NotFoundError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import AUDIT_ACTIONS, AuditLog, write_audit
from buildtrack.models.auth import User
from buildtrack.models.client import PREFERRED_CONTACT, ClientProfile

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "phone", "alternate_email", "shipping_address",
                  "preferred_contact", "assigned_run_ids")
STAFF_ONLY_FIELDS = ("notes",)
ADDRESS_KEYS = ("street", "city", "state", "postal_code", "country")

CLIENT_ACTIVITY_ACTIONS = ("login", "view_my_guitars", "view_guitar", "view_run_updates")


def get_profile(uid):
    profile = db.session.get(ClientProfile, uid)
    if profile is None:
        raise NotFoundError(resource="ClientProfile", resource_id=uid)
    return profile


def get_or_create_profile(user):
    profile = db.session.get(ClientProfile, user.uid)
    if profile is None:
        profile = ClientProfile(uid=user.uid, email=user.email, display_name=user.display_name)
        db.session.add(profile)
        db.session.flush()
    return profile


def list_clients(include_archived=False, search=None):
    q = ClientProfile.query.join(User, User.uid == ClientProfile.uid).filter(User.role == "client")
    if not include_archived:
        q = q.filter(ClientProfile.archived.is_(False))
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(db.or_(
            db.func.lower(ClientProfile.email).like(like),
            db.func.lower(ClientProfile.display_name).like(like),
        ))
    return q.order_by(ClientProfile.display_name, ClientProfile.email).all()


def update_profile(profile, data, actor, staff=False):
    """Apply profile fields. ``notes`` is only writable by staff."""
    allowed = PROFILE_FIELDS + (STAFF_ONLY_FIELDS if staff else ())
    for field in allowed:
        if field not in data:
            continue
        value = data[field]
        if field == "preferred_contact" and value and value not in PREFERRED_CONTACT:
            raise ValidationError(
                f"preferred_contact must be one of: {', '.join(sorted(PREFERRED_CONTACT))}")
        if field == "shipping_address" and value is not None:
            if not isinstance(value, dict):
                raise ValidationError("shipping_address must be an object")
            value = {k: value.get(k) for k in ADDRESS_KEYS if value.get(k)}
        if field == "assigned_run_ids" and value is not None and not isinstance(value, list):
            raise ValidationError("assigned_run_ids must be a list")
        setattr(profile, field, value)
    profile.updated_by = actor.uid
    profile.updated_at = datetime.now(timezone.utc)
    if "display_name" in data:
        user = db.session.get(User, profile.uid)
        if user is not None:
            user.display_name = data["display_name"]
    db.session.flush()
    return profile


def archive_client(profile, actor):
    profile.archived = True
    profile.archived_at = datetime.now(timezone.utc)
    profile.archived_by = actor.uid
    profile.updated_by = actor.uid
    write_audit(entity_type="client", entity_id=profile.uid, action="client.archive",
                actor_uid=actor.uid, actor_email=actor.email)
    db.session.flush()
    return profile


def unarchive_client(profile, actor):
    profile.archived = False
    profile.archived_at = None
    profile.archived_by = None
    profile.updated_by = actor.uid
    write_audit(entity_type="client", entity_id=profile.uid, action="client.unarchive",
                actor_uid=actor.uid, actor_email=actor.email)
    db.session.flush()
    return profile


# ── Activity ─────────────────────────────────────────────────────────────


def record_activity(user, action, entity_type="user", entity_id=None, details=None):
    """Append a user-activity row (login, page views)."""
    if action not in AUDIT_ACTIONS:
        raise ValidationError(f"Unknown audit action: {action}")
    return write_audit(
        entity_type=entity_type,
        entity_id=entity_id or user.uid,
        action=action,
        actor_uid=user.uid,
        actor_email=user.email,
        diff=details,
    )


def list_audit_logs(action=None, actor_uid=None, entity_type=None, entity_id=None):
    q = AuditLog.query
    if action:
        q = q.filter_by(action=action)
    if actor_uid:
        q = q.filter_by(actor_uid=actor_uid)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id:
        q = q.filter_by(entity_id=entity_id)
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
