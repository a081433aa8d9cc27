"""
Factory Standards Build Tracker
Notification Service.

Central service for creating and querying in-app notifications. Create
methods only add to the session; the caller's transaction commits them
together with the write that caused them.
"""

import logging
from datetime import datetime, timezone

from buildtrack.models import db
from buildtrack.models.auth import User
from buildtrack.models.notification import Notification
from buildtrack.services.permission_service import STAFF_ROLES

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify_user(uid, *, type, title, message="", guitar_id=None, run_id=None,
                    note_id=None, metadata=None):
        """Create a single notification record for ``uid``."""
        notif = Notification(
            user_uid=uid,
            type=type,
            title=title,
            message=message,
            guitar_id=guitar_id,
            run_id=run_id,
            note_id=note_id,
            extra=metadata or None,
        )
        db.session.add(notif)
        return notif

    @staticmethod
    def staff_uids():
        """UIDs of every enabled staff/admin account, de-duplicated."""
        rows = (
            db.session.query(User.uid)
            .filter(User.role.in_(STAFF_ROLES), User.disabled.is_(False))
            .order_by(User.uid)
            .all()
        )
        return list(dict.fromkeys(r.uid for r in rows))

    @staticmethod
    def notify_all_staff(*, type, title, message="", guitar_id=None, run_id=None,
                         note_id=None, metadata=None, exclude_uid=None):
        """
        Create one notification per staff/admin user.

        Args:
            exclude_uid: skip the actor so staff aren't notified of their own action.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for uid in NotificationService.staff_uids():
            if uid == exclude_uid:
                continue
            notifications.append(NotificationService.notify_user(
                uid, type=type, title=title, message=message, guitar_id=guitar_id,
                run_id=run_id, note_id=note_id, metadata=metadata,
            ))
        if not notifications:
            logger.info("No staff users to notify (type=%s)", type)
        else:
            logger.debug("Notified %d staff (type=%s)", len(notifications), type)
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(uid, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_uid=uid)
        if unread_only:
            q = q.filter(Notification.is_read.is_(False))
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(uid):
        return Notification.query.filter_by(user_uid=uid, is_read=False).count()

    # ── Update ────────────────────────────────────────────────────────────

    @staticmethod
    def get_for_user(notification_id, uid):
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_uid != uid:
            return None
        return notif

    @staticmethod
    def mark_all_read(uid):
        """Mark every unread notification of ``uid`` as read. Returns the count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(user_uid=uid, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session=False)
        )
        return count
